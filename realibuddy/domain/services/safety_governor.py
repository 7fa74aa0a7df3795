"""Safety governor: the single authority on whether a stimulus may be delivered."""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from ..errors import GovernorFaultError, LedgerError
from ..models.session import ActuationRecord
from ..ports.claim_ledger import ClaimLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class GovernorConfig(BaseModel):
    """Configuration for the safety governor."""

    max_actuations_per_hour: int = Field(default=10, ge=1, description="Hourly actuation ceiling")
    actuation_cooldown_ms: int = Field(default=5000, ge=0, description="Minimum spacing between actuations")
    window_ms: int = Field(default=HOUR_MS, gt=0, description="Trailing window for the ceiling")
    retention_ms: int = Field(default=DAY_MS, gt=0, description="Age after which actuation history is purged")
    ledger_timeout: float = Field(default=5.0, gt=0, description="Ledger call timeout in seconds")


class OutcomeStatus(str, Enum):
    """Result of one guarded actuation attempt."""

    DELIVERED = "delivered"
    DENIED = "denied"
    FAILED = "failed"


@dataclass(frozen=True)
class ActuationOutcome:
    """What happened to one actuation attempt."""

    status: OutcomeStatus
    intensity: int
    reason: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def delivered(self) -> bool:
        return self.status is OutcomeStatus.DELIVERED


class SafetyGovernor:
    """Process-wide gate in front of every actuation.

    All orchestrators share one governor. The decide-deliver-record sequence
    runs under a single lock, so two connections can never both pass the
    checks and then both record past the hourly ceiling.

    Any ledger failure faults the governor: from then on every actuation is
    denied until the process restarts, and the failure is raised as
    ``GovernorFaultError``.
    """

    def __init__(
        self,
        ledger: ClaimLedger,
        config: Optional[GovernorConfig] = None,
        clock: Callable[[], int] = now_ms,
        emergency_stop_active: bool = False,
        last_actuation_time: Optional[int] = None,
    ):
        """Initialize the governor with already-loaded state.

        Prefer ``SafetyGovernor.load`` which reads that state from the ledger.
        """
        self._ledger = ledger
        self._config = config or GovernorConfig()
        self._clock = clock
        self._emergency_stop_active = emergency_stop_active
        self._last_actuation_time = last_actuation_time
        self._fault: Optional[str] = None
        self._stop_pending = False
        self._stop_epoch = 0
        self._lock = asyncio.Lock()

    @classmethod
    async def load(
        cls,
        ledger: ClaimLedger,
        config: Optional[GovernorConfig] = None,
        clock: Callable[[], int] = now_ms,
    ) -> "SafetyGovernor":
        """Construct a governor from the ledger's durable state.

        Raises:
            GovernorFaultError: If the durable state cannot be read
        """
        governor = cls(ledger, config, clock)
        governor._emergency_stop_active = await governor._ledger_call(
            ledger.get_emergency_stop_flag(), "load emergency stop flag"
        )
        governor._last_actuation_time = await governor._ledger_call(
            ledger.get_last_actuation_timestamp(), "load last actuation"
        )

        last = governor._last_actuation_time
        logger.info("🛡️ SafetyGovernor initialized:")
        logger.info(f"- Emergency stop: {governor._emergency_stop_active}")
        logger.info(f"- Last actuation: {last if last is not None else 'never'}")
        return governor

    @property
    def config(self) -> GovernorConfig:
        return self._config

    @property
    def emergency_stop_active(self) -> bool:
        """Check if the emergency stop is engaged."""
        return self._emergency_stop_active

    @property
    def is_faulted(self) -> bool:
        """Check if a persistence failure has halted actuation."""
        return self._fault is not None

    @property
    def last_actuation_time(self) -> Optional[int]:
        return self._last_actuation_time

    async def _ledger_call(self, call: Awaitable[T], action: str) -> T:
        """Await a ledger call, faulting the governor if it fails or times out."""
        try:
            return await asyncio.wait_for(call, timeout=self._config.ledger_timeout)
        except (LedgerError, asyncio.TimeoutError) as e:
            self._fault = f"{action}: {str(e) or type(e).__name__}"
            logger.critical(f"❌ Safety governor faulted during '{action}' - actuation halted until restart: {e}")
            raise GovernorFaultError(f"Safety governor fault ({action})") from e

    async def denial_reason(self) -> Optional[str]:
        """Explain why an actuation would be refused right now.

        Checks run cheapest first: emergency stop, fault, cooldown, hourly ceiling.

        Returns:
            A diagnostic string, or None if actuation is permitted

        Raises:
            GovernorFaultError: If durable state cannot be read
        """
        if self._fault is None:
            # The ledger may have been changed out-of-band (administrative reset).
            # A stop requested before or during the read wins over the stored value.
            epoch = self._stop_epoch
            durable = await self._ledger_call(
                self._ledger.get_emergency_stop_flag(), "read emergency stop flag"
            )
            self._emergency_stop_active = (
                durable or self._stop_pending or epoch != self._stop_epoch
            )
        if self._emergency_stop_active:
            return "Emergency stop is active"
        if self._fault is not None:
            return f"Safety governor faulted ({self._fault})"

        durable_last = await self._ledger_call(
            self._ledger.get_last_actuation_timestamp(), "read last actuation"
        )
        if durable_last is not None and (
            self._last_actuation_time is None or durable_last > self._last_actuation_time
        ):
            self._last_actuation_time = durable_last

        remaining = self.cooldown_remaining()
        if remaining > 0:
            return f"Cooldown active ({math.ceil(remaining / 1000)}s remaining)"

        now = self._clock()
        recent = await self._ledger_call(
            self._ledger.count_actuations_in_window(now - self._config.window_ms, now),
            "count recent actuations",
        )
        if recent >= self._config.max_actuations_per_hour:
            return f"Hourly limit reached ({recent}/{self._config.max_actuations_per_hour})"

        return None

    async def can_actuate(self) -> bool:
        """Check whether an actuation may be delivered right now."""
        reason = await self.denial_reason()
        if reason:
            logger.info(f"🚫 Actuation blocked: {reason}")
        return reason is None

    def cooldown_remaining(self) -> int:
        """Milliseconds until the cooldown elapses (0 when not cooling down)."""
        if self._last_actuation_time is None:
            return 0
        elapsed = self._clock() - self._last_actuation_time
        return max(0, self._config.actuation_cooldown_ms - elapsed)

    async def actuation_count(self) -> int:
        """Total number of delivered actuations still on record."""
        return await self._ledger_call(
            self._ledger.count_actuations_in_window(0, self._clock()), "count actuations"
        )

    async def _commit(self, intensity: int, claim: str) -> None:
        now = self._clock()
        await self._ledger_call(
            self._ledger.append_actuation_record(
                ActuationRecord(timestamp=now, intensity=intensity, claim=claim)
            ),
            "record actuation",
        )
        self._last_actuation_time = now
        logger.info(f"⚡ Actuation recorded: intensity={intensity}")

    async def record_actuation(self, intensity: int, claim: str) -> None:
        """Record a stimulus that was just delivered.

        Call only after a confirmed successful delivery, never before; a record
        without a real delivery corrupts rate accounting.

        Raises:
            GovernorFaultError: If the record cannot be persisted
        """
        async with self._lock:
            await self._commit(intensity, claim)

    async def guarded_actuation(
        self,
        intensity: int,
        claim: str,
        deliver: Callable[[], Awaitable[None]],
    ) -> ActuationOutcome:
        """Decide, deliver and record one actuation as a single critical section.

        Args:
            intensity: Stimulus intensity (1-100)
            claim: Claim text that triggered the actuation
            deliver: Coroutine factory performing the device call

        Returns:
            DELIVERED, DENIED (with the diagnostic) or FAILED (with the error)

        Raises:
            GovernorFaultError: If durable state cannot be read or written
        """
        async with self._lock:
            reason = await self.denial_reason()
            if reason:
                logger.info(f"🚫 Actuation blocked: {reason}")
                return ActuationOutcome(OutcomeStatus.DENIED, intensity, reason=reason)

            try:
                await deliver()
            except Exception as e:
                logger.error(f"❌ Actuation delivery failed: {e}")
                return ActuationOutcome(OutcomeStatus.FAILED, intensity, error=e)

            try:
                await self._commit(intensity, claim)
            except GovernorFaultError as e:
                raise GovernorFaultError(str(e), delivered=True) from e.__cause__

            return ActuationOutcome(OutcomeStatus.DELIVERED, intensity)

    async def emergency_stop(self) -> None:
        """Disable all future actuation, in memory and durably.

        Takes effect immediately: actuations decided while the flag is still
        being persisted are denied. Only ``reset_emergency_stop`` clears it.

        Raises:
            GovernorFaultError: If the flag cannot be persisted (it stays set in memory)
        """
        self._emergency_stop_active = True
        self._stop_pending = True
        self._stop_epoch += 1
        logger.warning("🚨 EMERGENCY STOP ACTIVATED - all actuation disabled")
        try:
            await self._ledger_call(self._ledger.set_emergency_stop_flag(True), "persist emergency stop")
        finally:
            self._stop_pending = False

    async def reset_emergency_stop(self) -> None:
        """Re-enable actuation. Administrative use only; not reachable from clients."""
        await self._ledger_call(self._ledger.set_emergency_stop_flag(False), "reset emergency stop")
        self._emergency_stop_active = False
        logger.warning("🔓 Emergency stop RESET - actuation re-enabled")

    async def cleanup_old_records(self) -> int:
        """Purge actuation history older than the retention period."""
        cutoff = self._clock() - self._config.retention_ms
        removed = await self._ledger_call(
            self._ledger.delete_actuations_before(cutoff), "purge actuation history"
        )
        logger.info(f"🧹 Removed {removed} actuation records older than {self._config.retention_ms}ms")
        return removed
