"""Domain records persisted by the claim ledger.

All timestamps are integer epoch milliseconds.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional

from .verification import Verdict

MIN_INTENSITY = 1
MAX_INTENSITY = 100


@dataclass(frozen=True)
class FactCheckRecord:
    """One verified claim. Append-only, never updated."""

    session_id: str
    created_at: int
    claim: str
    verdict: Verdict
    confidence: float
    evidence: str = ""  # Serialized JSON payload (explanation, citations, sources)
    actuation_triggered: bool = False
    actuation_intensity: Optional[int] = None
    id: Optional[int] = None

    def __post_init__(self):
        """Validate the record invariants."""
        if not 0 <= self.confidence <= 1:
            raise ValueError("Confidence must be between 0 and 1")

        if self.actuation_triggered:
            if self.verdict is not Verdict.FALSE:
                raise ValueError("Only FALSE verdicts can trigger an actuation")
            if self.actuation_intensity is None:
                raise ValueError("Triggered actuation requires an intensity")
            if not MIN_INTENSITY <= self.actuation_intensity <= MAX_INTENSITY:
                raise ValueError(
                    f"Actuation intensity must be between {MIN_INTENSITY} and {MAX_INTENSITY}"
                )
        elif self.actuation_intensity is not None:
            raise ValueError("Intensity is only recorded for triggered actuations")

    def to_dict(self) -> Dict[str, Any]:
        """Convert the record to a dictionary."""
        return {
            'id': self.id,
            'session_id': self.session_id,
            'created_at': self.created_at,
            'claim': self.claim,
            'verdict': self.verdict.value,
            'confidence': self.confidence,
            'evidence': self.evidence,
            'actuation_triggered': self.actuation_triggered,
            'actuation_intensity': self.actuation_intensity,
        }


@dataclass(frozen=True)
class ActuationRecord:
    """Durable log entry for one delivered stimulus."""

    timestamp: int
    intensity: int
    claim: str
    id: Optional[int] = None


@dataclass(frozen=True)
class SessionAggregates:
    """Counters derived from a session's fact-check set."""

    total_claims: int = 0
    total_actuations: int = 0
    truth_rate: float = 0.0

    @classmethod
    def from_fact_checks(cls, fact_checks: Iterable[FactCheckRecord]) -> "SessionAggregates":
        """Recompute aggregates from scratch; an empty set has a truth rate of 0."""
        total = 0
        true_count = 0
        actuations = 0
        for record in fact_checks:
            total += 1
            if record.verdict is Verdict.TRUE:
                true_count += 1
            if record.actuation_triggered:
                actuations += 1

        return cls(
            total_claims=total,
            total_actuations=actuations,
            truth_rate=true_count / total if total else 0.0,
        )


@dataclass
class SessionRecord:
    """One monitoring episode or one ad-hoc claim check."""

    id: str
    started_at: int
    ended_at: Optional[int] = None
    aggregates: SessionAggregates = field(default_factory=SessionAggregates)

    @property
    def is_open(self) -> bool:
        """Check whether the session is still open."""
        return self.ended_at is None

    @property
    def total_claims(self) -> int:
        return self.aggregates.total_claims

    @property
    def total_actuations(self) -> int:
        return self.aggregates.total_actuations

    @property
    def truth_rate(self) -> float:
        return self.aggregates.truth_rate

    def closed(self, ended_at: int, aggregates: SessionAggregates) -> "SessionRecord":
        """Return a closed copy of this session."""
        if ended_at < self.started_at:
            raise ValueError("Session cannot end before it started")
        return replace(self, ended_at=ended_at, aggregates=aggregates)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the session to a dictionary."""
        return {
            'id': self.id,
            'started_at': self.started_at,
            'ended_at': self.ended_at,
            'total_claims': self.total_claims,
            'total_actuations': self.total_actuations,
            'truth_rate': self.truth_rate,
        }
