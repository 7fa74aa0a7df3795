"""Test configuration and common fixtures."""

import asyncio
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple, Union

import pytest
import pytest_asyncio

from realibuddy.domain.errors import LedgerError
from realibuddy.domain.models.messages import ServerMessage
from realibuddy.domain.models.verification import SourceFilter, StimulusKind, Verdict
from realibuddy.domain.ports.actuation_provider import ActuationProvider
from realibuddy.domain.ports.fact_check_provider import FactCheckProvider, FactCheckVerdict
from realibuddy.domain.ports.stt_provider import (
    AudioFormat,
    STTProvider,
    TranscriptEvent,
    TranscriptionStream,
)
from realibuddy.domain.services.safety_governor import GovernorConfig, SafetyGovernor
from realibuddy.domain.services.session_orchestrator import OrchestratorConfig, SessionOrchestrator
from realibuddy.infrastructure.persistence.memory_ledger import InMemoryClaimLedger

T0 = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FlakyLedger(InMemoryClaimLedger):
    """In-memory ledger whose named operations can be made to fail.

    Set ``flag_gate`` to hold emergency-stop writes until the event is set.
    """

    def __init__(self):
        super().__init__()
        self.failing: Set[str] = set()
        self.flag_gate: Optional[asyncio.Event] = None

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise LedgerError(f"{name} unavailable")

    async def append_actuation_record(self, record):
        self._check("append_actuation_record")
        return await super().append_actuation_record(record)

    async def count_actuations_in_window(self, start, end):
        self._check("count_actuations_in_window")
        return await super().count_actuations_in_window(start, end)

    async def get_emergency_stop_flag(self):
        self._check("get_emergency_stop_flag")
        return await super().get_emergency_stop_flag()

    async def set_emergency_stop_flag(self, active):
        self._check("set_emergency_stop_flag")
        if self.flag_gate is not None:
            await self.flag_gate.wait()
        return await super().set_emergency_stop_flag(active)

    async def append_fact_check(self, record):
        self._check("append_fact_check")
        return await super().append_fact_check(record)


_END = object()


class FakeStream(TranscriptionStream):
    """Transcription stream fed by the test."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._queue: asyncio.Queue = asyncio.Queue()
        self.frames: List[bytes] = []
        self.closed = False

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def send(self, frame: bytes) -> None:
        self.frames.append(frame)

    def push(self, text: str, is_final: bool = True) -> None:
        self._queue.put_nowait(TranscriptEvent(text=text, is_final=is_final, timestamp=self._clock()))

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    def end(self) -> None:
        self._queue.put_nowait(_END)

    async def consumed(self) -> None:
        """Wait until every pushed item has been handled by the consumer."""
        await self._queue.join()

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        while True:
            item = await self._queue.get()
            try:
                if item is _END:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
            finally:
                self._queue.task_done()

    async def close(self) -> None:
        self.closed = True


class FakeSTTProvider(STTProvider):
    """STT provider handing out FakeStreams."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.streams: List[FakeStream] = []
        self.open_error: Optional[Exception] = None

    async def initialize(self) -> None:
        pass

    async def open(self, audio_format: AudioFormat) -> TranscriptionStream:
        if self.open_error is not None:
            raise self.open_error
        stream = FakeStream(self._clock)
        self.streams.append(stream)
        return stream

    async def shutdown(self) -> None:
        pass

    @property
    def stream(self) -> FakeStream:
        return self.streams[-1]

    @property
    def provider_name(self) -> str:
        return "fake-stt"

    @property
    def is_available(self) -> bool:
        return True


class FakeFactChecker(FactCheckProvider):
    """Fact checker with scripted verdicts and optional gates per claim."""

    def __init__(self):
        self.verdicts: Dict[str, Union[FactCheckVerdict, Exception]] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[Tuple[str, Optional[SourceFilter]]] = []
        self.default = FactCheckVerdict(verdict=Verdict.TRUE, confidence=0.9, evidence="Checked")

    def script(self, claim: str, verdict: Verdict, confidence: float, evidence: str = "Because") -> None:
        self.verdicts[claim] = FactCheckVerdict(verdict=verdict, confidence=confidence, evidence=evidence)

    def hold(self, claim: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[claim] = gate
        return gate

    async def initialize(self) -> None:
        pass

    async def check(self, claim: str, source_filter: Optional[SourceFilter] = None) -> FactCheckVerdict:
        self.calls.append((claim, source_filter))
        if claim in self.gates:
            await self.gates[claim].wait()
        result = self.verdicts.get(claim, self.default)
        if isinstance(result, Exception):
            raise result
        return result

    async def shutdown(self) -> None:
        pass

    @property
    def provider_name(self) -> str:
        return "fake-fact-check"

    @property
    def is_available(self) -> bool:
        return True


class FakeActuator(ActuationProvider):
    """Actuator recording deliveries; set ``error`` to make it fail."""

    def __init__(self):
        self.deliveries: List[Tuple[StimulusKind, int, str]] = []
        self.error: Optional[Exception] = None

    async def initialize(self) -> None:
        pass

    async def deliver(self, kind: StimulusKind, intensity: int, reason: str) -> None:
        if self.error is not None:
            raise self.error
        self.deliveries.append((kind, intensity, reason))

    async def shutdown(self) -> None:
        pass

    @property
    def provider_name(self) -> str:
        return "fake-actuator"

    @property
    def is_available(self) -> bool:
        return True


class Recorder:
    """Notification sink collecting every outbound message."""

    def __init__(self):
        self.messages: List[ServerMessage] = []

    async def __call__(self, message: ServerMessage) -> None:
        self.messages.append(message)

    @property
    def types(self) -> List[str]:
        return [m.type for m in self.messages]

    def of_type(self, message_type: str) -> List[ServerMessage]:
        return [m for m in self.messages if m.type == message_type]

    def clear(self) -> None:
        self.messages.clear()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def ledger() -> FlakyLedger:
    """Provide an in-memory ledger with failure injection."""
    return FlakyLedger()


@pytest_asyncio.fixture
async def governor(ledger: FlakyLedger, clock: FakeClock) -> SafetyGovernor:
    """Provide a governor loaded from the test ledger."""
    return await SafetyGovernor.load(ledger, GovernorConfig(), clock=clock)


@pytest.fixture
def stt_provider(clock: FakeClock) -> FakeSTTProvider:
    return FakeSTTProvider(clock)


@pytest.fixture
def fact_checker() -> FakeFactChecker:
    return FakeFactChecker()


@pytest.fixture
def actuator() -> FakeActuator:
    return FakeActuator()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest_asyncio.fixture
async def orchestrator(
    governor: SafetyGovernor,
    ledger: FlakyLedger,
    stt_provider: FakeSTTProvider,
    fact_checker: FakeFactChecker,
    actuator: FakeActuator,
    recorder: Recorder,
    clock: FakeClock,
) -> SessionOrchestrator:
    """Provide an orchestrator wired to fakes."""
    orchestrator = SessionOrchestrator(
        governor=governor,
        ledger=ledger,
        stt_provider=stt_provider,
        fact_checker=fact_checker,
        actuator=actuator,
        notify=recorder,
        config=OrchestratorConfig(fact_check_timeout=1.0, actuation_timeout=1.0),
        clock=clock,
    )
    yield orchestrator
    await orchestrator.close()
