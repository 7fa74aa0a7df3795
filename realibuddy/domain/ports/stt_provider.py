"""Port interface for streaming Speech-to-Text (STT) providers."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import AsyncIterator

from pydantic import BaseModel, Field


class AudioEncoding(str, Enum):
    """Supported raw audio encodings."""

    LINEAR16 = "linear16"
    OPUS = "opus"
    MULAW = "mulaw"


class AudioFormat(BaseModel):
    """Format of the audio frames a client streams."""

    encoding: AudioEncoding = AudioEncoding.LINEAR16
    sample_rate: int = Field(default=16000, gt=0)
    channels: int = Field(default=1, ge=1)


class TranscriptEvent(BaseModel):
    """One utterance event emitted by a transcription stream."""

    text: str
    is_final: bool
    timestamp: int  # Epoch milliseconds


class TranscriptionStream(ABC):
    """An open, bidirectional transcription session.

    Audio frames go in through ``send``; utterance events come out of
    ``events`` in the order the provider emits them.
    """

    @abstractmethod
    async def send(self, frame: bytes) -> None:
        """Send one audio frame to the provider."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[TranscriptEvent]:
        """Iterate over utterance events until the stream ends."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Finish the stream and release the connection."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Check whether the stream still accepts audio."""
        pass


class STTProvider(ABC):
    """Abstract interface for streaming Speech-to-Text providers.

    This port defines how STT services will interact with our system.
    Concrete implementations live in the infrastructure layer.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the STT provider and its resources."""
        pass

    @abstractmethod
    async def open(self, audio_format: AudioFormat) -> TranscriptionStream:
        """Open a live transcription stream.

        Args:
            audio_format: Format of the frames that will be sent

        Returns:
            An open transcription stream
        """
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Shutdown the provider and clean up resources."""
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
