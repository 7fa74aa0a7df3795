"""Dependency injection configuration for hexagonal architecture."""

import logging
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from ..domain.ports.actuation_provider import ActuationProvider
from ..domain.ports.claim_ledger import ClaimLedger
from ..domain.ports.fact_check_provider import FactCheckProvider
from ..domain.ports.stt_provider import STTProvider
from ..domain.services.safety_governor import SafetyGovernor, now_ms
from ..domain.services.session_orchestrator import Notifier, SessionOrchestrator
from .actuation.pavlok_adapter import PavlokAdapter, PavlokConfig
from .config import RealiBuddyConfig
from .fact_check.factory import FactCheckProviderFactory
from .persistence.sql_ledger import SqlClaimLedger
from .stt.factory import STTProviderFactory

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Service container for dependency injection.

    Owns the process-wide objects: the ledger, the single safety governor
    and the external providers. Each connection gets its own orchestrator
    from ``create_orchestrator``.
    """

    def __init__(
        self,
        config: Optional[RealiBuddyConfig] = None,
        ledger: Optional[ClaimLedger] = None,
        stt_provider: Optional[STTProvider] = None,
        fact_checker: Optional[FactCheckProvider] = None,
        actuator: Optional[ActuationProvider] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize service container.

        Providers passed in are used as-is; missing ones are built from config
        at startup.
        """
        self._config = config or RealiBuddyConfig.from_env()
        self._clock = clock
        self._ledger = ledger or SqlClaimLedger(self._config.database_url, clock=clock)
        self._stt_provider = stt_provider
        self._fact_checker = fact_checker
        self._actuator = actuator
        self._stt_factory = STTProviderFactory()
        self._fact_check_factory = FactCheckProviderFactory()
        self._governor: Optional[SafetyGovernor] = None
        self._started = False

    @property
    def config(self) -> RealiBuddyConfig:
        return self._config

    @property
    def ledger(self) -> ClaimLedger:
        return self._ledger

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def governor(self) -> SafetyGovernor:
        """Get the process-wide safety governor."""
        if self._governor is None:
            raise RuntimeError("Service container not started")
        return self._governor

    async def startup(self) -> None:
        """Open the ledger, load the governor and initialize providers.

        Raises:
            GovernorFaultError: If safety state cannot be loaded
        """
        if self._started:
            return

        logger.info("🔧 Setting up service container...")
        await self._ledger.initialize()
        self._governor = await SafetyGovernor.load(
            self._ledger, self._config.governor_config(), clock=self._clock
        )
        await self._governor.cleanup_old_records()

        if self._stt_provider is None:
            self._stt_provider = await self._create_stt_provider()
        if self._fact_checker is None:
            self._fact_checker = await self._create_fact_checker()
        if self._actuator is None:
            self._actuator = await self._create_actuator()

        self._started = True
        logger.info("✅ Service container setup completed")

    async def _create_stt_provider(self) -> Optional[STTProvider]:
        logger.info("🎙️ Setting up STT provider...")
        try:
            provider = await self._stt_factory.create_provider(
                self._config.stt_provider,
                {"api_key": self._config.deepgram_api_key},
            )
        except Exception as e:
            logger.warning(f"⚠️ Failed to setup STT provider: {e}")
            return None
        logger.info("✅ STT provider ready")
        return provider

    async def _create_fact_checker(self) -> Optional[FactCheckProvider]:
        logger.info("🤖 Setting up fact-check provider...")
        try:
            provider = await self._fact_check_factory.create_provider(
                self._config.fact_check_provider,
                api_key=self._config.fact_check_api_key,
            )
        except Exception as e:
            logger.warning(f"⚠️ Failed to setup fact-check provider: {e}")
            return None
        logger.info("✅ Fact-check provider ready")
        return provider

    async def _create_actuator(self) -> Optional[ActuationProvider]:
        logger.info("⚡ Setting up actuation provider...")
        actuator = PavlokAdapter(config=PavlokConfig(api_token=self._config.pavlok_api_token))
        try:
            await actuator.initialize()
        except Exception as e:
            logger.warning(f"⚠️ Failed to setup actuation provider: {e}")
            return None
        logger.info("✅ Actuation provider ready")
        return actuator

    async def shutdown(self) -> None:
        """Shut down providers and close the ledger."""
        if not self._started:
            return
        logger.info("🧹 Shutting down service container...")
        await self._stt_factory.shutdown_all()
        await self._fact_check_factory.shutdown()
        if self._actuator is not None:
            await self._actuator.shutdown()
        await self._ledger.shutdown()
        self._started = False

    def provider_status(self) -> Dict[str, Dict[str, Any]]:
        """Report which providers are configured and available."""
        status = {}
        for role, provider in (
            ("stt", self._stt_provider),
            ("fact_check", self._fact_checker),
            ("actuation", self._actuator),
        ):
            status[role] = {
                "name": provider.provider_name if provider is not None else None,
                "available": bool(provider is not None and provider.is_available),
            }
        return status

    def create_orchestrator(self, notify: Notifier, require_stt: bool = True) -> SessionOrchestrator:
        """Create an orchestrator for one connection.

        Pass ``require_stt=False`` for text-only use (one-shot claim checks).

        Raises:
            RuntimeError: If the container is not started or a provider is missing
        """
        missing = [
            role
            for role, provider in (
                ("transcription", self._stt_provider if require_stt else True),
                ("fact-check", self._fact_checker),
                ("actuation", self._actuator),
            )
            if provider is None
        ]
        if missing:
            raise RuntimeError(f"Providers unavailable: {', '.join(missing)}")

        return SessionOrchestrator(
            governor=self.governor,
            ledger=self._ledger,
            stt_provider=self._stt_provider,
            fact_checker=self._fact_checker,
            actuator=self._actuator,
            notify=notify,
            config=self._config.orchestrator_config(),
            clock=self._clock,
        )


# Global service container instance
@lru_cache()
def get_service_container() -> ServiceContainer:
    """Get global service container instance.

    Returns:
        Service container instance
    """
    return ServiceContainer()
