"""Tests for the SQLAlchemy claim ledger."""

import pytest
import pytest_asyncio

from realibuddy.domain.errors import LedgerError
from realibuddy.domain.models.session import ActuationRecord, FactCheckRecord
from realibuddy.domain.models.verification import Verdict
from realibuddy.domain.services.safety_governor import GovernorConfig, SafetyGovernor
from realibuddy.infrastructure.persistence.sql_ledger import SqlClaimLedger


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest_asyncio.fixture
async def sql_ledger(database_url, clock) -> SqlClaimLedger:
    ledger = SqlClaimLedger(database_url, clock=clock)
    await ledger.initialize()
    yield ledger
    await ledger.shutdown()


def _fact_check(session_id, claim, verdict, triggered=False, intensity=None, created_at=1):
    return FactCheckRecord(
        session_id=session_id,
        created_at=created_at,
        claim=claim,
        verdict=verdict,
        confidence=0.8,
        evidence='{"evidence": "e"}',
        actuation_triggered=triggered,
        actuation_intensity=intensity,
    )


@pytest.mark.asyncio
async def test_session_roundtrip_with_aggregates(sql_ledger):
    session = await sql_ledger.create_session(100)
    assert session.is_open

    await sql_ledger.append_fact_check(_fact_check(session.id, "a", Verdict.TRUE, created_at=110))
    await sql_ledger.append_fact_check(
        _fact_check(session.id, "b", Verdict.FALSE, triggered=True, intensity=24, created_at=120)
    )
    await sql_ledger.append_fact_check(_fact_check(session.id, "c", Verdict.UNVERIFIABLE, created_at=130))

    closed = await sql_ledger.close_session(session.id, 200)

    assert closed.ended_at == 200
    assert closed.total_claims == 3
    assert closed.total_actuations == 1
    assert closed.truth_rate == pytest.approx(1 / 3)
    assert await sql_ledger.get_session(session.id) == closed

    records = await sql_ledger.list_fact_checks(session.id)
    assert [r.claim for r in records] == ["a", "b", "c"]
    assert records[1].actuation_intensity == 24
    assert all(r.id is not None for r in records)


@pytest.mark.asyncio
async def test_empty_session_closes_with_zero_truth_rate(sql_ledger):
    session = await sql_ledger.create_session(100)
    closed = await sql_ledger.close_session(session.id, 100)

    assert closed.total_claims == 0
    assert closed.truth_rate == 0.0


@pytest.mark.asyncio
async def test_close_errors(sql_ledger):
    with pytest.raises(LedgerError):
        await sql_ledger.close_session("missing", 100)

    session = await sql_ledger.create_session(100)
    with pytest.raises(LedgerError):
        await sql_ledger.close_session(session.id, 50)
    assert (await sql_ledger.get_session(session.id)).is_open


@pytest.mark.asyncio
async def test_fact_check_requires_existing_session(sql_ledger):
    with pytest.raises(LedgerError):
        await sql_ledger.append_fact_check(_fact_check("missing", "a", Verdict.TRUE))


@pytest.mark.asyncio
async def test_actuation_window_is_inclusive(sql_ledger):
    for timestamp in (1000, 2000, 3000):
        await sql_ledger.append_actuation_record(ActuationRecord(timestamp=timestamp, intensity=10, claim="x"))

    assert await sql_ledger.count_actuations_in_window(1000, 3000) == 3
    assert await sql_ledger.count_actuations_in_window(1001, 2999) == 1
    assert await sql_ledger.get_last_actuation_timestamp() == 3000

    assert await sql_ledger.delete_actuations_before(2000) == 1
    assert await sql_ledger.count_actuations_in_window(0, 10_000) == 2


@pytest.mark.asyncio
async def test_state_survives_restart(database_url, clock):
    """Emergency stop and rate-limit history persist across process restarts."""
    ledger = SqlClaimLedger(database_url, clock=clock)
    await ledger.initialize()
    governor = await SafetyGovernor.load(ledger, GovernorConfig(), clock=clock)
    await governor.record_actuation(40, "claim")
    await governor.emergency_stop()
    await ledger.shutdown()

    reopened = SqlClaimLedger(database_url, clock=clock)
    await reopened.initialize()
    try:
        reloaded = await SafetyGovernor.load(reopened, GovernorConfig(), clock=clock)
        assert reloaded.emergency_stop_active
        assert reloaded.last_actuation_time == clock()
        assert await reloaded.actuation_count() == 1
    finally:
        await reopened.shutdown()


@pytest.mark.asyncio
async def test_in_memory_database(clock):
    ledger = SqlClaimLedger("sqlite:///:memory:", clock=clock)
    await ledger.initialize()
    try:
        assert not await ledger.get_emergency_stop_flag()
        await ledger.set_emergency_stop_flag(True)
        assert await ledger.get_emergency_stop_flag()
    finally:
        await ledger.shutdown()


@pytest.mark.asyncio
async def test_uninitialized_ledger_raises():
    with pytest.raises(LedgerError):
        await SqlClaimLedger("sqlite:///:memory:").get_emergency_stop_flag()
