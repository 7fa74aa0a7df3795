"""In-memory claim ledger for tests and ephemeral runs."""

import uuid
from dataclasses import replace
from typing import Dict, List, Optional

from ...domain.errors import LedgerError
from ...domain.models.session import (
    ActuationRecord,
    FactCheckRecord,
    SessionAggregates,
    SessionRecord,
)
from ...domain.ports.claim_ledger import ClaimLedger


class InMemoryClaimLedger(ClaimLedger):
    """Claim ledger kept in process memory. Nothing survives a restart."""

    def __init__(self):
        self._sessions: Dict[str, SessionRecord] = {}
        self._fact_checks: List[FactCheckRecord] = []
        self._actuations: List[ActuationRecord] = []
        self._emergency_stop = False
        self._next_id = 1

    async def initialize(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    def _assign_id(self) -> int:
        assigned = self._next_id
        self._next_id += 1
        return assigned

    async def create_session(self, started_at: int) -> SessionRecord:
        session = SessionRecord(id=str(uuid.uuid4()), started_at=started_at)
        self._sessions[session.id] = session
        return session

    async def close_session(self, session_id: str, ended_at: int) -> SessionRecord:
        session = self._sessions.get(session_id)
        if session is None:
            raise LedgerError(f"Session {session_id} not found")
        aggregates = SessionAggregates.from_fact_checks(await self.list_fact_checks(session_id))
        try:
            closed = session.closed(ended_at, aggregates)
        except ValueError as e:
            raise LedgerError(str(e)) from e
        self._sessions[session_id] = closed
        return closed

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    async def append_fact_check(self, record: FactCheckRecord) -> FactCheckRecord:
        if record.session_id not in self._sessions:
            raise LedgerError(f"Session {record.session_id} not found")
        stored = replace(record, id=self._assign_id())
        self._fact_checks.append(stored)
        return stored

    async def list_fact_checks(self, session_id: str) -> List[FactCheckRecord]:
        return sorted(
            (r for r in self._fact_checks if r.session_id == session_id),
            key=lambda r: (r.created_at, r.id),
        )

    async def append_actuation_record(self, record: ActuationRecord) -> ActuationRecord:
        stored = replace(record, id=self._assign_id())
        self._actuations.append(stored)
        return stored

    async def count_actuations_in_window(self, start: int, end: int) -> int:
        return sum(1 for r in self._actuations if start <= r.timestamp <= end)

    async def get_last_actuation_timestamp(self) -> Optional[int]:
        return max((r.timestamp for r in self._actuations), default=None)

    async def delete_actuations_before(self, timestamp: int) -> int:
        kept = [r for r in self._actuations if r.timestamp >= timestamp]
        removed = len(self._actuations) - len(kept)
        self._actuations = kept
        return removed

    async def get_emergency_stop_flag(self) -> bool:
        return self._emergency_stop

    async def set_emergency_stop_flag(self, active: bool) -> None:
        self._emergency_stop = active
