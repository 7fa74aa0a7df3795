"""Factory for the live transcription provider."""

import logging
import os
from typing import Callable, Dict, List, Optional

from ...domain.ports.stt_provider import STTProvider
from .deepgram_adapter import DeepgramAdapter, DeepgramConfig

logger = logging.getLogger(__name__)


def build_deepgram(settings: dict) -> STTProvider:
    """Build a Deepgram adapter, taking the key from DEEPGRAM_API_KEY if not given."""
    settings.setdefault("api_key", os.getenv("DEEPGRAM_API_KEY", ""))
    return DeepgramAdapter(config=DeepgramConfig(**settings))


class STTProviderFactory:
    """Creates transcription providers by name and shuts them down together.

    One instance is kept per provider name; every connection opens its own
    stream on that shared instance.
    """

    def __init__(self):
        self._builders: Dict[str, Callable[[dict], STTProvider]] = {"deepgram": build_deepgram}
        self._instances: Dict[str, STTProvider] = {}

    @property
    def supported_providers(self) -> List[str]:
        return list(self._builders)

    async def create_provider(
        self,
        provider_name: str,
        settings: Optional[dict] = None,
    ) -> STTProvider:
        """Create and initialize a provider, or return the existing one.

        Args:
            provider_name: Provider to create (``STT_PROVIDER``)
            settings: ``DeepgramConfig`` fields such as ``api_key`` or ``model``

        Raises:
            ValueError: If the provider is unknown
            ConnectionError: If the provider cannot initialize (missing key)
        """
        if provider_name not in self._builders:
            raise ValueError(
                f"Unknown STT provider: {provider_name} (supported: {', '.join(self._builders)})"
            )

        if provider_name not in self._instances:
            provider = self._builders[provider_name](dict(settings or {}))
            await provider.initialize()
            self._instances[provider_name] = provider
            logger.info(f"🎙️ STT provider '{provider_name}' initialized")

        return self._instances[provider_name]

    async def shutdown_all(self) -> None:
        """Shut down every provider this factory created."""
        for provider_name, provider in list(self._instances.items()):
            await provider.shutdown()
            del self._instances[provider_name]
