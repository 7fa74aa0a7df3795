"""Pavlok implementation of the actuation provider interface."""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, Field

from ...domain.errors import CollaboratorError
from ...domain.models.session import MAX_INTENSITY, MIN_INTENSITY
from ...domain.models.verification import StimulusKind
from ...domain.ports.actuation_provider import ActuationProvider

logger = logging.getLogger(__name__)


class PavlokConfig(BaseModel):
    """Configuration for Pavlok adapter."""

    api_token: str = Field(..., description="Pavlok API bearer token")
    base_url: str = Field(default="https://api.pavlok.com", description="API base URL")
    timeout: float = Field(default=10.0, description="API timeout in seconds")


class PavlokAdapter(ActuationProvider):
    """Sends stimuli to a Pavlok wearable through its cloud API."""

    def __init__(
        self,
        config: Optional[PavlokConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the adapter."""
        self._config = config or PavlokConfig(api_token="")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Create the HTTP client."""
        if not self._config.api_token:
            raise ConnectionError("Failed to initialize Pavlok provider: PAVLOK_API_TOKEN is not set")

        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._config.api_token}",
                    "Content-Type": "application/json",
                },
            )
        self._initialized = True
        logger.info("✅ Pavlok provider ready")

    async def deliver(self, kind: StimulusKind, intensity: int, reason: str) -> None:
        """Send one stimulus; returns only once the API accepted it."""
        if not self._client:
            raise RuntimeError("Provider not initialized")
        if not MIN_INTENSITY <= intensity <= MAX_INTENSITY:
            raise ValueError(
                f"Invalid {kind.value} intensity: {intensity}. Must be between {MIN_INTENSITY}-{MAX_INTENSITY}."
            )

        logger.info(f"Sending {kind.value}: intensity={intensity}, reason={reason!r}")
        try:
            response = await self._client.post(
                "/api/v5/stimulus/send",
                json={
                    "stimulus": {
                        "stimulusType": kind.value,
                        "stimulusValue": intensity,
                        "reason": reason,
                    }
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ Pavlok rejected {kind.value}: {e.response.status_code} {e.response.text[:200]}")
            raise CollaboratorError("actuation", f"Pavlok API returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"❌ Pavlok request failed: {e}")
            raise CollaboratorError("actuation", f"Failed to send {kind.value}: {e}") from e

        logger.info(f"✅ {kind.value} delivered")

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._initialized = False

    @property
    def provider_name(self) -> str:
        return "pavlok"

    @property
    def is_available(self) -> bool:
        return self._initialized and self._client is not None
