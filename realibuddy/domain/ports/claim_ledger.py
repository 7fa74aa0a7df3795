"""Port interface for the durable claim ledger."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models.session import ActuationRecord, FactCheckRecord, SessionRecord


class ClaimLedger(ABC):
    """Durable record of sessions, fact-checks, actuations and safety state.

    The ledger is the only writer of durable state. Every method raises
    ``LedgerError`` when the underlying store fails.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the schema and open connections."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release connections."""
        pass

    # Sessions

    @abstractmethod
    async def create_session(self, started_at: int) -> SessionRecord:
        """Open a new session and assign its identifier."""
        pass

    @abstractmethod
    async def close_session(self, session_id: str, ended_at: int) -> SessionRecord:
        """Close a session, recomputing aggregates from its fact-checks.

        Raises:
            LedgerError: If the session does not exist or the write fails
        """
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Get a session by identifier."""
        pass

    # Fact-checks

    @abstractmethod
    async def append_fact_check(self, record: FactCheckRecord) -> FactCheckRecord:
        """Append a fact-check and return it with its assigned id."""
        pass

    @abstractmethod
    async def list_fact_checks(self, session_id: str) -> List[FactCheckRecord]:
        """List a session's fact-checks in creation order."""
        pass

    # Actuations

    @abstractmethod
    async def append_actuation_record(self, record: ActuationRecord) -> ActuationRecord:
        """Append a delivered actuation."""
        pass

    @abstractmethod
    async def count_actuations_in_window(self, start: int, end: int) -> int:
        """Count actuations with ``start <= timestamp <= end``."""
        pass

    @abstractmethod
    async def get_last_actuation_timestamp(self) -> Optional[int]:
        """Get the timestamp of the most recent actuation, if any."""
        pass

    @abstractmethod
    async def delete_actuations_before(self, timestamp: int) -> int:
        """Delete actuations older than ``timestamp``; return the number removed."""
        pass

    # Safety state

    @abstractmethod
    async def get_emergency_stop_flag(self) -> bool:
        """Read the persistent emergency-stop flag."""
        pass

    @abstractmethod
    async def set_emergency_stop_flag(self, active: bool) -> None:
        """Write the persistent emergency-stop flag."""
        pass
