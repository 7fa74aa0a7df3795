"""Port interface for remote-stimulus devices."""

from abc import ABC, abstractmethod

from ..models.verification import StimulusKind


class ActuationProvider(ABC):
    """Abstract interface for actuation providers.

    ``deliver`` returning normally means the device accepted the stimulus;
    any failure must raise.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the provider."""
        pass

    @abstractmethod
    async def deliver(self, kind: StimulusKind, intensity: int, reason: str) -> None:
        """Deliver a stimulus.

        Args:
            kind: Stimulus type
            intensity: Stimulus strength, 1-100
            reason: Human-readable reason shown on the device

        Raises:
            ValueError: If intensity is outside 1-100
            CollaboratorError: If the device API rejects or fails the request
        """
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Clean up resources."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is available."""
        pass
