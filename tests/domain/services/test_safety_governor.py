"""Tests for the safety governor."""

import asyncio

import pytest

from realibuddy.domain.errors import GovernorFaultError
from realibuddy.domain.services.safety_governor import (
    DAY_MS,
    HOUR_MS,
    GovernorConfig,
    OutcomeStatus,
    SafetyGovernor,
)


async def _noop() -> None:
    pass


@pytest.mark.asyncio
async def test_fresh_governor_allows_actuation(governor):
    """A governor with no history allows actuation."""
    assert await governor.can_actuate()
    assert await governor.denial_reason() is None
    assert governor.cooldown_remaining() == 0
    assert await governor.actuation_count() == 0


@pytest.mark.asyncio
async def test_cooldown_blocks_until_elapsed(governor, clock):
    """Actuations closer than the cooldown are denied."""
    await governor.record_actuation(20, "claim")

    clock.advance(4999)
    assert governor.cooldown_remaining() == 1
    reason = await governor.denial_reason()
    assert reason.startswith("Cooldown active")
    assert not await governor.can_actuate()

    clock.advance(1)
    assert await governor.can_actuate()


@pytest.mark.asyncio
async def test_hourly_ceiling_and_aging_out(governor, clock):
    """The hourly ceiling blocks the 11th actuation until the oldest ages out."""
    first = clock()
    for i in range(10):
        await governor.record_actuation(10, f"claim {i}")
        clock.advance(6000)

    assert await governor.actuation_count() == 10
    reason = await governor.denial_reason()
    assert reason == "Hourly limit reached (10/10)"

    # The window is inclusive at its lower edge.
    clock.now = first + HOUR_MS
    assert not await governor.can_actuate()

    clock.now = first + HOUR_MS + 1
    assert await governor.can_actuate()


@pytest.mark.asyncio
async def test_emergency_stop_survives_reload(governor, ledger, clock):
    """The emergency stop is durable across a governor reload."""
    await governor.emergency_stop()
    assert governor.emergency_stop_active
    assert await governor.denial_reason() == "Emergency stop is active"

    reloaded = await SafetyGovernor.load(ledger, GovernorConfig(), clock=clock)
    assert reloaded.emergency_stop_active
    assert not await reloaded.can_actuate()

    await reloaded.reset_emergency_stop()
    assert await reloaded.can_actuate()
    assert not await ledger.get_emergency_stop_flag()


@pytest.mark.asyncio
async def test_emergency_stop_blocks_actuation_while_persisting(governor, ledger):
    """An actuation decided while the stop is being written is denied."""
    ledger.flag_gate = asyncio.Event()
    calls = []

    async def deliver():
        calls.append(True)

    stopping = asyncio.create_task(governor.emergency_stop())
    await asyncio.sleep(0)
    assert governor.emergency_stop_active
    assert not await ledger.get_emergency_stop_flag()

    outcome = await governor.guarded_actuation(50, "claim", deliver)

    assert outcome.status is OutcomeStatus.DENIED
    assert outcome.reason == "Emergency stop is active"
    assert calls == []

    ledger.flag_gate.set()
    await stopping
    assert await ledger.get_emergency_stop_flag()
    assert not await governor.can_actuate()


@pytest.mark.asyncio
async def test_out_of_band_reset_is_honored(governor, ledger):
    """Clearing the durable flag directly re-enables actuation."""
    await governor.emergency_stop()
    await ledger.set_emergency_stop_flag(False)

    assert await governor.can_actuate()
    assert not governor.emergency_stop_active


@pytest.mark.asyncio
async def test_cooldown_survives_reload(governor, ledger, clock):
    """A fresh governor inherits the last actuation time from the ledger."""
    await governor.record_actuation(30, "claim")
    clock.advance(1000)

    reloaded = await SafetyGovernor.load(ledger, GovernorConfig(), clock=clock)
    assert reloaded.last_actuation_time == governor.last_actuation_time
    assert reloaded.cooldown_remaining() == 4000
    assert not await reloaded.can_actuate()


@pytest.mark.asyncio
async def test_guarded_actuation_delivers_and_records(governor, ledger):
    """An approved actuation is delivered, then recorded."""
    delivered = []

    async def deliver():
        delivered.append(True)

    outcome = await governor.guarded_actuation(15, "claim", deliver)

    assert outcome.status is OutcomeStatus.DELIVERED
    assert outcome.delivered
    assert delivered == [True]
    assert await ledger.count_actuations_in_window(0, 2**62) == 1


@pytest.mark.asyncio
async def test_guarded_actuation_is_exclusive(governor):
    """Two concurrent attempts cannot both pass the cooldown check."""
    outcomes = await asyncio.gather(
        governor.guarded_actuation(10, "first", _noop),
        governor.guarded_actuation(10, "second", _noop),
    )

    statuses = sorted(o.status.value for o in outcomes)
    assert statuses == ["delivered", "denied"]
    denied = next(o for o in outcomes if o.status is OutcomeStatus.DENIED)
    assert denied.reason.startswith("Cooldown active")


@pytest.mark.asyncio
async def test_failed_delivery_is_not_recorded(governor, ledger):
    """A device failure leaves no actuation record and no cooldown."""
    async def deliver():
        raise RuntimeError("device offline")

    outcome = await governor.guarded_actuation(10, "claim", deliver)

    assert outcome.status is OutcomeStatus.FAILED
    assert str(outcome.error) == "device offline"
    assert await ledger.get_last_actuation_timestamp() is None
    assert await governor.can_actuate()


@pytest.mark.asyncio
async def test_denied_actuation_never_delivers(governor):
    """Nothing reaches the device while the emergency stop is active."""
    await governor.emergency_stop()
    calls = []

    async def deliver():
        calls.append(True)

    outcome = await governor.guarded_actuation(10, "claim", deliver)

    assert outcome.status is OutcomeStatus.DENIED
    assert calls == []


@pytest.mark.asyncio
async def test_ledger_failure_faults_governor(governor, ledger):
    """A failed read faults the governor until restart."""
    ledger.failing.add("count_actuations_in_window")

    with pytest.raises(GovernorFaultError):
        await governor.can_actuate()
    assert governor.is_faulted

    ledger.failing.clear()
    reason = await governor.denial_reason()
    assert reason.startswith("Safety governor faulted")
    assert not await governor.can_actuate()


@pytest.mark.asyncio
async def test_record_failure_after_delivery_reports_delivered(governor, ledger):
    """A failed write after delivery raises with ``delivered`` set."""
    ledger.failing.add("append_actuation_record")

    with pytest.raises(GovernorFaultError) as exc_info:
        await governor.guarded_actuation(10, "claim", _noop)

    assert exc_info.value.delivered
    assert governor.is_faulted


@pytest.mark.asyncio
async def test_emergency_stop_held_in_memory_when_persist_fails(governor, ledger):
    """The stop engages in memory even if it cannot be persisted."""
    ledger.failing.add("set_emergency_stop_flag")

    with pytest.raises(GovernorFaultError):
        await governor.emergency_stop()

    assert governor.emergency_stop_active
    assert not await governor.can_actuate()


@pytest.mark.asyncio
async def test_ledger_timeout_faults_governor(ledger, clock):
    """A ledger call that hangs past the timeout faults the governor."""
    governor = await SafetyGovernor.load(ledger, GovernorConfig(ledger_timeout=0.01), clock=clock)

    async def hang(start, end):
        await asyncio.sleep(1)
        return 0

    ledger.count_actuations_in_window = hang

    with pytest.raises(GovernorFaultError):
        await governor.denial_reason()
    assert governor.is_faulted


@pytest.mark.asyncio
async def test_cleanup_removes_old_records(governor, ledger, clock):
    """Records older than the retention period are purged."""
    await governor.record_actuation(10, "old")
    clock.advance(DAY_MS + 1)
    await governor.record_actuation(10, "new")

    removed = await governor.cleanup_old_records()

    assert removed == 1
    assert await governor.actuation_count() == 1
