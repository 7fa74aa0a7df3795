"""Deepgram live-streaming implementation of the STT provider interface."""

import json
import logging
from typing import AsyncIterator, Callable, Optional, Set
from urllib.parse import urlencode

import websockets
from pydantic import BaseModel, Field
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ...domain.errors import CollaboratorError
from ...domain.ports.stt_provider import (
    AudioFormat,
    STTProvider,
    TranscriptEvent,
    TranscriptionStream,
)
from ...domain.services.safety_governor import now_ms

logger = logging.getLogger(__name__)


class DeepgramConfig(BaseModel):
    """Configuration for Deepgram adapter."""

    api_key: str
    url: str = "wss://api.deepgram.com/v1/listen"
    model: str = "nova-2"
    language: str = "en"
    smart_format: bool = True
    punctuate: bool = True
    interim_results: bool = True
    endpointing_ms: int = Field(default=3000, description="Silence before an utterance is finalized")
    open_timeout: float = 10.0


def _flag(value: bool) -> str:
    return "true" if value else "false"


class DeepgramStream(TranscriptionStream):
    """One live Deepgram connection."""

    def __init__(self, connection, clock: Callable[[], int] = now_ms):
        self._ws = connection
        self._clock = clock
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, frame: bytes) -> None:
        if not self._open:
            raise CollaboratorError("transcription", "stream is closed")
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            self._open = False
            raise CollaboratorError("transcription", f"connection closed ({e})") from e

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    continue
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"⚠️ Ignoring non-JSON Deepgram message: {message[:100]}")
                    continue

                message_type = data.get("type")
                if message_type == "Metadata":
                    logger.debug(f"Deepgram metadata: request_id={data.get('request_id')}")
                    continue
                if message_type != "Results":
                    continue

                alternatives = (data.get("channel") or {}).get("alternatives") or []
                transcript = alternatives[0].get("transcript", "") if alternatives else ""
                if not transcript:
                    continue

                is_final = bool(data.get("is_final"))
                logger.debug(f"{'Final' if is_final else 'Interim'} transcript: {transcript}")
                yield TranscriptEvent(text=transcript, is_final=is_final, timestamp=self._clock())
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            raise CollaboratorError("transcription", f"connection lost ({e})") from e
        finally:
            self._open = False

    async def close(self) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        if self._open:
            self._open = False
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
            except ConnectionClosed:
                logger.debug("Deepgram connection already closed")
        await ws.close()
        logger.info("Deepgram connection closed")


class DeepgramAdapter(STTProvider):
    """Deepgram implementation of the streaming STT provider interface."""

    def __init__(
        self,
        config: Optional[DeepgramConfig] = None,
        provider_name: str = "deepgram",
        connect: Callable = websockets.connect,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the adapter."""
        self._config = config or DeepgramConfig(api_key="")
        self._name = provider_name
        self._connect = connect
        self._clock = clock
        self._streams: Set[DeepgramStream] = set()
        self._initialized = False

    async def initialize(self) -> None:
        """Check that credentials are configured."""
        if not self._config.api_key:
            self._initialized = False
            raise ConnectionError("Failed to initialize Deepgram provider: DEEPGRAM_API_KEY is not set")
        self._initialized = True
        logger.info(f"✅ Deepgram provider ready (model={self._config.model})")

    def listen_url(self, audio_format: AudioFormat) -> str:
        """Build the live-listen URL for an audio format."""
        params = {
            "model": self._config.model,
            "language": self._config.language,
            "smart_format": _flag(self._config.smart_format),
            "punctuate": _flag(self._config.punctuate),
            "interim_results": _flag(self._config.interim_results),
            "encoding": audio_format.encoding.value,
            "sample_rate": audio_format.sample_rate,
            "channels": audio_format.channels,
            "endpointing": self._config.endpointing_ms,
        }
        return f"{self._config.url}?{urlencode(params)}"

    async def open(self, audio_format: AudioFormat) -> TranscriptionStream:
        """Open a live transcription connection."""
        if not self._initialized:
            raise RuntimeError("Provider not initialized")

        try:
            connection = await self._connect(
                self.listen_url(audio_format),
                additional_headers={"Authorization": f"Token {self._config.api_key}"},
                open_timeout=self._config.open_timeout,
            )
        except (OSError, WebSocketException, TimeoutError) as e:
            logger.error(f"❌ Deepgram connection failed: {e}")
            raise CollaboratorError("transcription", f"could not connect to Deepgram: {e}") from e

        logger.info("🎙️ Deepgram connection established")
        stream = DeepgramStream(connection, clock=self._clock)
        self._streams = {s for s in self._streams if s.is_open}
        self._streams.add(stream)
        return stream

    async def shutdown(self) -> None:
        """Close any streams still open."""
        for stream in list(self._streams):
            if stream.is_open:
                await stream.close()
        self._streams.clear()
        self._initialized = False

    @property
    def provider_name(self) -> str:
        return self._name

    @property
    def is_available(self) -> bool:
        return self._initialized
