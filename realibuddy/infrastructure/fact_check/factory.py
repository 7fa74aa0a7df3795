"""Factory for creating and managing fact-check providers."""

import os
from typing import Dict, Optional, Type

from ...domain.ports.fact_check_provider import FactCheckProvider
from .gemini_adapter import GeminiAdapter, GeminiConfig
from .perplexity_adapter import PerplexityAdapter, PerplexityConfig

# Provider name -> (config model, environment variable holding its key)
PROVIDER_SETTINGS = {
    "perplexity": (PerplexityConfig, "PERPLEXITY_API_KEY"),
    "gemini": (GeminiConfig, "GEMINI_API_KEY"),
}


class FactCheckProviderFactory:
    """Factory for creating and managing fact-check providers."""

    def __init__(self):
        """Initialize the factory."""
        self._providers: Dict[str, Type[FactCheckProvider]] = {}
        self._instances: Dict[str, FactCheckProvider] = {}

        # Register default providers
        self.register_provider("perplexity", PerplexityAdapter)
        self.register_provider("gemini", GeminiAdapter)

    def register_provider(self, name: str, provider_class: Type[FactCheckProvider]) -> None:
        """Register a new fact-check provider.

        Args:
            name: Provider name
            provider_class: Provider class
        """
        self._providers[name] = provider_class

    async def create_provider(
        self,
        name: str,
        **kwargs
    ) -> FactCheckProvider:
        """Create and initialize a provider instance.

        Args:
            name: Provider name
            **kwargs: Provider-specific configuration

        Returns:
            Initialized provider instance

        Raises:
            ValueError: If provider not found
        """
        if name not in self._providers:
            raise ValueError(f"Provider '{name}' not found")

        if name not in self._instances:
            if name in PROVIDER_SETTINGS:
                config_class, key_variable = PROVIDER_SETTINGS[name]
                kwargs.setdefault("api_key", os.getenv(key_variable, ""))
                provider = self._providers[name](config=config_class(**kwargs))
            else:
                provider = self._providers[name](**kwargs)

            await provider.initialize()
            self._instances[name] = provider

        return self._instances[name]

    def get_provider(self, name: str) -> Optional[FactCheckProvider]:
        """Get an existing provider instance.

        Args:
            name: Provider name

        Returns:
            Provider instance if exists, None otherwise
        """
        return self._instances.get(name)

    @property
    def available_providers(self) -> Dict[str, bool]:
        """Get dictionary of registered providers and their availability."""
        return {
            name: name in self._instances
            for name in self._providers
        }

    async def shutdown(self) -> None:
        """Shutdown all provider instances."""
        for provider in self._instances.values():
            await provider.shutdown()
        self._instances.clear()
