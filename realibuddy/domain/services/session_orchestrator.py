"""Per-connection orchestration: transcript -> fact-check -> gated actuation -> record."""

import asyncio
import logging
import math
from enum import Enum
from typing import Awaitable, Callable, Optional, Set, TypeVar

from pydantic import BaseModel, Field

from ..errors import GovernorFaultError, InvalidCommandError, LedgerError
from ..models.messages import (
    ActuationDelivered,
    CheckClaim,
    EmergencyStop,
    ErrorMessage,
    FactCheckResultMessage,
    FactCheckStarted,
    InfoMessage,
    SafetyStatus,
    ServerMessage,
    StartMonitoring,
    StopMonitoring,
    TranscriptFinal,
    TranscriptInterim,
    parse_command,
)
from ..models.session import MAX_INTENSITY, MIN_INTENSITY, FactCheckRecord, SessionRecord
from ..models.verification import SourceFilter, StimulusKind, Verdict
from ..ports.actuation_provider import ActuationProvider
from ..ports.claim_ledger import ClaimLedger
from ..ports.fact_check_provider import FactCheckProvider
from ..ports.stt_provider import AudioFormat, STTProvider, TranscriptionStream
from .safety_governor import OutcomeStatus, SafetyGovernor, now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_BASE_INTENSITY = 10
MAX_BASE_INTENSITY = 80

Notifier = Callable[[ServerMessage], Awaitable[None]]


def clamp_base_intensity(value: float) -> float:
    """Clamp a base intensity (configured or client-supplied) to the allowed 10-80 range."""
    return max(MIN_BASE_INTENSITY, min(MAX_BASE_INTENSITY, value))


def calculate_intensity(base_intensity: float, confidence: float) -> int:
    """Stimulus intensity for a FALSE verdict.

    ``clamp(floor(base * confidence), 1, 100)`` with the floor applied before
    the clamp, so e.g. base=30, confidence=0.5 gives 15 and an out-of-range
    confidence of 1.5 at base=80 is capped at 100.
    """
    return min(max(math.floor(base_intensity * confidence), MIN_INTENSITY), MAX_INTENSITY)


class OrchestratorConfig(BaseModel):
    """Per-connection pipeline configuration."""

    base_intensity: float = Field(default=30, ge=1, le=100, description="Default base intensity")
    max_claim_length: int = Field(default=1000, gt=0, description="Longest accepted claim text")
    stimulus_kind: StimulusKind = Field(default=StimulusKind.ZAP, description="Stimulus for false claims")
    audio_format: AudioFormat = Field(default_factory=AudioFormat, description="Client audio format")
    transcription_timeout: float = Field(default=10.0, gt=0, description="Stream open/close timeout (s)")
    fact_check_timeout: float = Field(default=30.0, gt=0, description="Fact-check timeout (s)")
    actuation_timeout: float = Field(default=10.0, gt=0, description="Device call timeout (s)")
    ledger_timeout: float = Field(default=5.0, gt=0, description="Ledger call timeout (s)")


class OrchestratorState(str, Enum):
    """Lifecycle of one connection."""

    IDLE = "idle"
    MONITORING = "monitoring"
    CLOSED = "closed"


class SessionOrchestrator:
    """Drives one connection through transcription, fact-checking and gated actuation.

    Finalized utterances are evaluated in background tasks so the transcript
    consumer never blocks; evaluations may therefore complete out of order.
    Each one carries its own claim, session id and base intensity, and writes
    its own ledger record.

    No actuation happens without a governor approval obtained after the
    verdict, and every evaluation that reaches a verdict is written to the
    ledger before its delivery notification goes out.
    """

    def __init__(
        self,
        governor: SafetyGovernor,
        ledger: ClaimLedger,
        stt_provider: STTProvider,
        fact_checker: FactCheckProvider,
        actuator: ActuationProvider,
        notify: Notifier,
        config: Optional[OrchestratorConfig] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the orchestrator.

        Args:
            governor: Process-wide safety governor
            ledger: Durable claim ledger
            stt_provider: Streaming transcription provider
            fact_checker: Claim verification provider
            actuator: Remote stimulus provider
            notify: Coroutine receiving every outbound notification
            config: Pipeline configuration
            clock: Epoch-millisecond clock
        """
        self._governor = governor
        self._ledger = ledger
        self._stt = stt_provider
        self._fact_checker = fact_checker
        self._actuator = actuator
        self._send = notify
        self._config = config or OrchestratorConfig()
        self._clock = clock

        self._state = OrchestratorState.IDLE
        self._base_intensity = clamp_base_intensity(self._config.base_intensity)
        if self._base_intensity != self._config.base_intensity:
            logger.warning(
                f"⚠️ Base intensity {self._config.base_intensity} outside "
                f"{MIN_BASE_INTENSITY}-{MAX_BASE_INTENSITY}, using {self._base_intensity}"
            )
        self._stream: Optional[TranscriptionStream] = None
        self._consumer: Optional[asyncio.Task] = None
        self._session: Optional[SessionRecord] = None
        self._session_tasks: Set[asyncio.Task] = set()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def session(self) -> Optional[SessionRecord]:
        """The open monitoring session, if any."""
        return self._session

    @property
    def base_intensity(self) -> float:
        return self._base_intensity

    @property
    def actuation_suppressed(self) -> bool:
        """Check if the process-wide emergency stop is engaged."""
        return self._governor.emergency_stop_active

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _notify(self, message: ServerMessage) -> None:
        try:
            await self._send(message)
        except Exception as e:
            logger.warning(f"⚠️ Could not deliver '{message.type}' notification: {e}")

    async def _error(self, message: str) -> None:
        await self._notify(ErrorMessage(message=message))

    async def _ledger_op(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._config.ledger_timeout)
        except asyncio.TimeoutError as e:
            raise LedgerError(f"ledger call timed out after {self._config.ledger_timeout}s") from e

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"❌ Background task failed: {exc}", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every background evaluation and session close to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _validate_claim(self, text: str) -> str:
        claim = (text or "").strip()
        if not claim:
            raise InvalidCommandError("Claim text is empty")
        if len(claim) > self._config.max_claim_length:
            raise InvalidCommandError(
                f"Claim text exceeds {self._config.max_claim_length} characters"
            )
        return claim

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def handle_command(self, payload: dict) -> None:
        """Validate and dispatch one decoded client command.

        Input errors are reported as ``error`` notifications and leave the
        orchestrator untouched.
        """
        try:
            command = parse_command(payload)
            claim = self._validate_claim(command.text) if isinstance(command, CheckClaim) else None
        except InvalidCommandError as e:
            logger.warning(f"⚠️ Rejected command: {e}")
            await self._error(str(e))
            return

        if self._state is OrchestratorState.CLOSED:
            logger.debug(f"Ignoring '{command.type}' on closed connection")
            return

        if command.base_intensity is not None:
            self._base_intensity = clamp_base_intensity(command.base_intensity)
            logger.info(f"🎚️ Base intensity set to {self._base_intensity}")

        if isinstance(command, StartMonitoring):
            await self.start_monitoring()
        elif isinstance(command, StopMonitoring):
            await self.stop_monitoring()
        elif isinstance(command, EmergencyStop):
            await self.emergency_stop()
        elif isinstance(command, CheckClaim):
            self._spawn(self.check_claim(claim, source_filter=command.source_filter))

    async def start_monitoring(self, base_intensity: Optional[float] = None) -> None:
        """Open a session and a transcription stream, then start consuming events."""
        if self._state is OrchestratorState.MONITORING:
            await self._notify(InfoMessage(message="Monitoring already active"))
            return
        if self._state is OrchestratorState.CLOSED:
            return

        if base_intensity is not None:
            self._base_intensity = clamp_base_intensity(base_intensity)

        logger.info("🔴 Starting monitoring")
        try:
            session = await self._ledger_op(self._ledger.create_session(self._clock()))
        except LedgerError as e:
            logger.error(f"❌ Could not open session: {e}")
            await self._error(f"Failed to open session: {e}")
            return

        try:
            stream = await asyncio.wait_for(
                self._stt.open(self._config.audio_format),
                timeout=self._config.transcription_timeout,
            )
        except Exception as e:
            detail = str(e) or type(e).__name__
            logger.error(f"❌ Transcription stream failed to open: {detail}")
            await self._error(f"Transcription failed to start: {detail}")
            await self._close_session(session)
            return

        self._session = session
        self._stream = stream
        self._session_tasks = set()
        self._state = OrchestratorState.MONITORING
        self._consumer = asyncio.create_task(self._consume(stream, session))

        logger.info(f"✅ Monitoring started: session={session.id}")
        await self._notify(InfoMessage(message="Monitoring started"))

    async def send_audio(self, frame: bytes) -> None:
        """Forward one audio frame to the open transcription stream."""
        if self._state is not OrchestratorState.MONITORING or self._stream is None:
            logger.debug("Dropping audio frame: not monitoring")
            return
        try:
            await self._stream.send(frame)
        except Exception as e:
            logger.warning(f"⚠️ Failed to forward audio frame: {e}")

    async def stop_monitoring(self) -> None:
        """Close the transcription stream and the monitoring session."""
        if self._state is not OrchestratorState.MONITORING:
            logger.debug("stop_monitoring ignored: not monitoring")
            return

        logger.info("🛑 Stopping monitoring")
        await self._teardown_monitoring()
        await self._notify(InfoMessage(message="Monitoring stopped"))

    async def emergency_stop(self) -> None:
        """Engage the process-wide emergency stop and tear down monitoring.

        The connection itself stays open; transcription and fact-checking can
        be restarted, actuation cannot.
        """
        logger.warning("🚨 Emergency stop requested")
        try:
            await self._governor.emergency_stop()
        except GovernorFaultError as e:
            await self._error(f"Emergency stop could not be persisted: {e}")

        if self._state is OrchestratorState.MONITORING:
            await self._teardown_monitoring()

        await self._notify(InfoMessage(message="Emergency stop activated - all actuation disabled"))
        await self.send_safety_status(can_actuate=False)

    async def check_claim(
        self,
        text: str,
        base_intensity: Optional[float] = None,
        source_filter: Optional[SourceFilter] = None,
    ) -> Optional[FactCheckRecord]:
        """Fact-check one claim inside its own transient session.

        Args:
            text: Claim text
            base_intensity: Optional base intensity for this claim only
            source_filter: Optional family of sources to restrict evidence to

        Returns:
            The stored fact-check, or None if the check or the write failed

        Raises:
            InvalidCommandError: If the claim text is empty or too long
        """
        claim = self._validate_claim(text)
        base = (
            clamp_base_intensity(base_intensity)
            if base_intensity is not None
            else self._base_intensity
        )

        try:
            session = await self._ledger_op(self._ledger.create_session(self._clock()))
        except LedgerError as e:
            logger.error(f"❌ Could not open session: {e}")
            await self._error(f"Failed to open session: {e}")
            return None

        try:
            return await self._evaluate(session.id, claim, base, source_filter)
        finally:
            await self._close_session(session)

    async def send_safety_status(self, can_actuate: Optional[bool] = None) -> None:
        """Report the actuation count and whether actuation is currently allowed."""
        try:
            count = await self._governor.actuation_count()
            if can_actuate is None:
                can_actuate = await self._governor.can_actuate()
        except GovernorFaultError as e:
            await self._error(f"Safety status unavailable: {e}")
            return
        await self._notify(SafetyStatus(actuation_count=count, can_actuate=can_actuate))

    async def close(self) -> None:
        """Tear down after the connection terminated."""
        if self._state is OrchestratorState.CLOSED:
            return
        if self._state is OrchestratorState.MONITORING:
            await self._teardown_monitoring()
        self._state = OrchestratorState.CLOSED
        await self.drain()
        logger.info("🔌 Connection closed")

    # ------------------------------------------------------------------
    # Monitoring internals
    # ------------------------------------------------------------------

    async def _consume(self, stream: TranscriptionStream, session: SessionRecord) -> None:
        try:
            async for event in stream.events():
                if not event.is_final:
                    await self._notify(TranscriptInterim(text=event.text, timestamp=event.timestamp))
                    continue

                await self._notify(TranscriptFinal(text=event.text, timestamp=event.timestamp))
                claim = event.text.strip()
                if not claim:
                    continue
                if len(claim) > self._config.max_claim_length:
                    claim = claim[:self._config.max_claim_length]

                task = self._spawn(self._evaluate(session.id, claim, self._base_intensity))
                session_tasks = self._session_tasks
                session_tasks.add(task)
                task.add_done_callback(session_tasks.discard)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Transcription stream error: {e}")
            await self._error(f"Transcription error: {e}")
        else:
            logger.info("Transcription stream ended")

        if self._stream is stream:
            await self._teardown_monitoring(from_consumer=True)

    async def _teardown_monitoring(self, from_consumer: bool = False) -> None:
        stream, consumer, session = self._stream, self._consumer, self._session
        pending = set(self._session_tasks)
        self._stream = None
        self._consumer = None
        self._session = None
        self._session_tasks = set()
        if self._state is OrchestratorState.MONITORING:
            self._state = OrchestratorState.IDLE

        if consumer is not None and not from_consumer and not consumer.done():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass

        if stream is not None:
            try:
                await asyncio.wait_for(stream.close(), timeout=self._config.transcription_timeout)
            except Exception as e:
                logger.warning(f"⚠️ Error closing transcription stream: {e}")

        if session is not None:
            # In-flight evaluations still write their records before the close.
            self._spawn(self._finalize_session(session, pending))

    async def _finalize_session(self, session: SessionRecord, pending: Set[asyncio.Task]) -> None:
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._close_session(session)

    async def _close_session(self, session: SessionRecord) -> Optional[SessionRecord]:
        try:
            closed = await self._ledger_op(
                self._ledger.close_session(session.id, max(self._clock(), session.started_at))
            )
        except LedgerError as e:
            logger.error(f"❌ Failed to close session {session.id}: {e}")
            await self._error(f"Failed to close session: {e}")
            return None

        logger.info(
            f"📊 Session {closed.id} closed: claims={closed.total_claims}, "
            f"actuations={closed.total_actuations}, truth_rate={closed.truth_rate:.2f}"
        )
        return closed

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def _evaluate(
        self,
        session_id: str,
        claim: str,
        base_intensity: float,
        source_filter: Optional[SourceFilter] = None,
    ) -> Optional[FactCheckRecord]:
        await self._notify(FactCheckStarted(claim=claim))

        try:
            result = await asyncio.wait_for(
                self._fact_checker.check(claim, source_filter),
                timeout=self._config.fact_check_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"❌ Fact-check timed out for: {claim[:80]}")
            await self._error(f"Fact-checking error: timed out after {self._config.fact_check_timeout}s")
            return None
        except Exception as e:
            logger.error(f"❌ Fact-check failed for '{claim[:80]}': {e}")
            await self._error(f"Fact-checking error: {e}")
            return None

        logger.info(f"🧾 Verdict for '{claim[:80]}': {result.verdict.value} ({result.confidence:.0%})")
        await self._notify(FactCheckResultMessage(
            claim=claim,
            verdict=result.verdict,
            confidence=result.confidence,
            evidence=result.evidence,
        ))

        delivered = False
        intensity = None
        if result.verdict is Verdict.FALSE:
            intensity = calculate_intensity(base_intensity, result.confidence)
            delivered = await self._actuate(claim, intensity)

        stored = await self._append(FactCheckRecord(
            session_id=session_id,
            created_at=self._clock(),
            claim=claim,
            verdict=result.verdict,
            confidence=result.confidence,
            evidence=result.evidence_blob(),
            actuation_triggered=delivered,
            actuation_intensity=intensity if delivered else None,
        ))

        if delivered:
            await self._notify(ActuationDelivered(
                intensity=intensity,
                reason=f"False claim detected ({round(result.confidence * 100)}% confidence)",
            ))
            await self.send_safety_status()

        return stored

    async def _actuate(self, claim: str, intensity: int) -> bool:
        async def deliver() -> None:
            await asyncio.wait_for(
                self._actuator.deliver(self._config.stimulus_kind, intensity, f"False claim: {claim[:200]}"),
                timeout=self._config.actuation_timeout,
            )

        try:
            outcome = await self._governor.guarded_actuation(intensity, claim, deliver)
        except GovernorFaultError as e:
            logger.critical(f"❌ Safety governor fault while actuating: {e}")
            await self._error(f"Safety system fault - actuation halted: {e}")
            return e.delivered

        if outcome.status is OutcomeStatus.DENIED:
            logger.info(f"🚫 No actuation for '{claim[:80]}': {outcome.reason}")
        elif outcome.status is OutcomeStatus.FAILED:
            detail = str(outcome.error) or type(outcome.error).__name__
            await self._error(f"Actuation failed: {detail}")
        else:
            logger.info(f"⚡ Delivered {self._config.stimulus_kind.value} at intensity {intensity}")
        return outcome.delivered

    async def _append(self, record: FactCheckRecord) -> Optional[FactCheckRecord]:
        try:
            return await self._ledger_op(self._ledger.append_fact_check(record))
        except LedgerError as e:
            logger.error(f"❌ Failed to record fact-check: {e}")
            await self._error(f"Failed to record fact-check: {e}")
            return None
