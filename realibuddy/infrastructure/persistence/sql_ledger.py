"""SQLAlchemy implementation of the claim ledger (SQLite by default)."""

import asyncio
import logging
import threading
import uuid
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ...domain.errors import LedgerError
from ...domain.models.session import (
    ActuationRecord,
    FactCheckRecord,
    SessionAggregates,
    SessionRecord,
)
from ...domain.models.verification import Verdict
from ...domain.ports.claim_ledger import ClaimLedger
from ...domain.services.safety_governor import now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

Base = declarative_base()

SAFETY_STATE_ID = 1


class SessionRow(Base):
    """A monitoring episode or one ad-hoc claim check."""

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True)
    started_at = Column(BigInteger, nullable=False)
    ended_at = Column(BigInteger, nullable=True)
    total_claims = Column(Integer, nullable=False, default=0)
    total_actuations = Column(Integer, nullable=False, default=0)
    truth_rate = Column(Float, nullable=False, default=0.0)

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            id=self.id,
            started_at=self.started_at,
            ended_at=self.ended_at,
            aggregates=SessionAggregates(
                total_claims=self.total_claims,
                total_actuations=self.total_actuations,
                truth_rate=self.truth_rate,
            ),
        )


class FactCheckRow(Base):
    """One verified claim, append-only."""

    __tablename__ = "fact_checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    created_at = Column(BigInteger, nullable=False, index=True)
    claim = Column(Text, nullable=False)
    verdict = Column(String(20), nullable=False)  # true, false, unverifiable, misleading
    confidence = Column(Float, nullable=False)  # 0.0 to 1.0
    evidence = Column(Text, nullable=False, default="")
    actuation_triggered = Column(Boolean, nullable=False, default=False)
    actuation_intensity = Column(Integer, nullable=True)

    def to_record(self) -> FactCheckRecord:
        return FactCheckRecord(
            id=self.id,
            session_id=self.session_id,
            created_at=self.created_at,
            claim=self.claim,
            verdict=Verdict(self.verdict),
            confidence=self.confidence,
            evidence=self.evidence,
            actuation_triggered=self.actuation_triggered,
            actuation_intensity=self.actuation_intensity,
        )


class ActuationRow(Base):
    """Durable log of delivered stimuli; the basis of rate limiting."""

    __tablename__ = "actuation_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(BigInteger, nullable=False, index=True)
    intensity = Column(Integer, nullable=False)
    claim = Column(Text, nullable=False)


class SafetyStateRow(Base):
    """Singleton row holding the persistent emergency-stop flag."""

    __tablename__ = "safety_state"

    id = Column(Integer, primary_key=True)
    emergency_stop = Column(Boolean, nullable=False, default=False)
    updated_at = Column(BigInteger, nullable=False)


def _is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


class SqlClaimLedger(ClaimLedger):
    """Claim ledger backed by a relational database through SQLAlchemy.

    SQLAlchemy's ORM is synchronous; every call runs in a worker thread
    behind a lock, so the event loop never blocks on disk I/O and writes
    are serialized.
    """

    def __init__(self, database_url: str = "sqlite:///realibuddy.db", clock: Callable[[], int] = now_ms):
        self._database_url = database_url
        self._clock = clock
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None
        self._lock = threading.Lock()

    @property
    def database_url(self) -> str:
        return self._database_url

    async def initialize(self) -> None:
        if self._engine is not None:
            return
        try:
            await asyncio.to_thread(self._setup)
        except SQLAlchemyError as e:
            logger.error(f"❌ Could not open ledger at {self._database_url}: {e}")
            raise LedgerError(f"Could not open ledger: {e}") from e
        logger.info(f"✅ Claim ledger ready: {self._database_url}")

    def _setup(self) -> None:
        is_sqlite = self._database_url.startswith("sqlite")
        kwargs = {}
        if is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_url(self._database_url):
                kwargs["poolclass"] = StaticPool

        engine = create_engine(self._database_url, **kwargs)

        if is_sqlite:
            use_wal = not _is_memory_url(self._database_url)

            @event.listens_for(engine, "connect")
            def _set_sqlite_pragmas(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                if use_wal:
                    cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        Base.metadata.create_all(engine)
        self._engine = engine
        self._sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)

        with self._sessionmaker() as db:
            if db.get(SafetyStateRow, SAFETY_STATE_ID) is None:
                db.add(SafetyStateRow(id=SAFETY_STATE_ID, emergency_stop=False, updated_at=self._clock()))
                db.commit()

    async def shutdown(self) -> None:
        if self._engine is not None:
            engine, self._engine = self._engine, None
            self._sessionmaker = None
            await asyncio.to_thread(engine.dispose)
            logger.info("Claim ledger closed")

    def _transaction(self, work: Callable[[Session], T]) -> T:
        if self._sessionmaker is None:
            raise LedgerError("Ledger not initialized")
        with self._lock:
            with self._sessionmaker() as db:
                try:
                    result = work(db)
                    db.commit()
                    return result
                except SQLAlchemyError as e:
                    db.rollback()
                    raise LedgerError(f"Ledger operation failed: {e}") from e

    async def _run(self, work: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._transaction, work)

    # Sessions

    async def create_session(self, started_at: int) -> SessionRecord:
        def work(db: Session) -> SessionRecord:
            row = SessionRow(id=str(uuid.uuid4()), started_at=started_at)
            db.add(row)
            db.flush()
            return row.to_record()

        return await self._run(work)

    async def close_session(self, session_id: str, ended_at: int) -> SessionRecord:
        def work(db: Session) -> SessionRecord:
            row = db.get(SessionRow, session_id)
            if row is None:
                raise LedgerError(f"Session {session_id} not found")

            fact_checks = db.scalars(
                select(FactCheckRow).where(FactCheckRow.session_id == session_id)
            ).all()
            aggregates = SessionAggregates.from_fact_checks(r.to_record() for r in fact_checks)
            try:
                closed = row.to_record().closed(ended_at, aggregates)
            except ValueError as e:
                raise LedgerError(str(e)) from e

            row.ended_at = closed.ended_at
            row.total_claims = aggregates.total_claims
            row.total_actuations = aggregates.total_actuations
            row.truth_rate = aggregates.truth_rate
            return closed

        return await self._run(work)

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        def work(db: Session) -> Optional[SessionRecord]:
            row = db.get(SessionRow, session_id)
            return row.to_record() if row is not None else None

        return await self._run(work)

    # Fact-checks

    async def append_fact_check(self, record: FactCheckRecord) -> FactCheckRecord:
        def work(db: Session) -> FactCheckRecord:
            row = FactCheckRow(
                session_id=record.session_id,
                created_at=record.created_at,
                claim=record.claim,
                verdict=record.verdict.value,
                confidence=record.confidence,
                evidence=record.evidence,
                actuation_triggered=record.actuation_triggered,
                actuation_intensity=record.actuation_intensity,
            )
            db.add(row)
            db.flush()
            return row.to_record()

        return await self._run(work)

    async def list_fact_checks(self, session_id: str) -> List[FactCheckRecord]:
        def work(db: Session) -> List[FactCheckRecord]:
            rows = db.scalars(
                select(FactCheckRow)
                .where(FactCheckRow.session_id == session_id)
                .order_by(FactCheckRow.created_at, FactCheckRow.id)
            ).all()
            return [row.to_record() for row in rows]

        return await self._run(work)

    # Actuations

    async def append_actuation_record(self, record: ActuationRecord) -> ActuationRecord:
        def work(db: Session) -> ActuationRecord:
            row = ActuationRow(timestamp=record.timestamp, intensity=record.intensity, claim=record.claim)
            db.add(row)
            db.flush()
            return ActuationRecord(timestamp=row.timestamp, intensity=row.intensity, claim=row.claim, id=row.id)

        return await self._run(work)

    async def count_actuations_in_window(self, start: int, end: int) -> int:
        def work(db: Session) -> int:
            return db.scalar(
                select(func.count(ActuationRow.id))
                .where(ActuationRow.timestamp >= start)
                .where(ActuationRow.timestamp <= end)
            ) or 0

        return await self._run(work)

    async def get_last_actuation_timestamp(self) -> Optional[int]:
        return await self._run(lambda db: db.scalar(select(func.max(ActuationRow.timestamp))))

    async def delete_actuations_before(self, timestamp: int) -> int:
        def work(db: Session) -> int:
            result = db.execute(delete(ActuationRow).where(ActuationRow.timestamp < timestamp))
            return result.rowcount or 0

        return await self._run(work)

    # Safety state

    async def get_emergency_stop_flag(self) -> bool:
        def work(db: Session) -> bool:
            row = db.get(SafetyStateRow, SAFETY_STATE_ID)
            return bool(row.emergency_stop) if row is not None else False

        return await self._run(work)

    async def set_emergency_stop_flag(self, active: bool) -> None:
        def work(db: Session) -> None:
            row = db.get(SafetyStateRow, SAFETY_STATE_ID)
            if row is None:
                row = SafetyStateRow(id=SAFETY_STATE_ID)
                db.add(row)
            row.emergency_stop = active
            row.updated_at = self._clock()

        await self._run(work)
