"""Port interface for claim-verification providers."""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from ..models.verification import SourceFilter, Verdict

logger = logging.getLogger(__name__)


class EvidenceSource(BaseModel):
    """A search result the provider consulted."""

    title: str = "Untitled"
    url: str = ""
    date: Optional[str] = None


class FactCheckVerdict(BaseModel):
    """Normalized result of a claim verification."""

    verdict: Verdict = Field(..., description="Verification outcome")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence in the verdict")
    evidence: str = Field(default="", description="Brief explanation with sources")
    citations: List[str] = Field(default_factory=list, description="Cited URLs")
    sources: List[EvidenceSource] = Field(default_factory=list, description="Search results used")

    @classmethod
    def from_raw(
        cls,
        payload: Mapping[str, Any],
        citations: Optional[List[Any]] = None,
        sources: Optional[List[Mapping[str, Any]]] = None,
    ) -> "FactCheckVerdict":
        """Build a verdict from a loosely-shaped provider payload.

        Missing or unknown verdicts become UNVERIFIABLE and confidence is
        clamped to [0, 1]; an unreadable confidence counts as 0.

        Args:
            payload: Decoded provider response
            citations: Optional list of citation URLs
            sources: Optional list of search-result dicts

        Returns:
            Normalized verdict
        """
        raw_verdict = payload.get("verdict")
        verdict = Verdict.parse(raw_verdict)
        if verdict is Verdict.UNVERIFIABLE and str(raw_verdict).strip().lower() != Verdict.UNVERIFIABLE.value:
            logger.warning(f"⚠️ Unexpected verdict {raw_verdict!r}, defaulting to unverifiable")

        try:
            confidence = float(payload.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        if confidence != confidence:  # NaN
            confidence = 0.0
        confidence = max(0.0, min(1.0, confidence))

        evidence = payload.get("evidence") or ""
        if not isinstance(evidence, str):
            evidence = json.dumps(evidence)

        return cls(
            verdict=verdict,
            confidence=confidence,
            evidence=evidence,
            citations=[str(c) for c in (citations or []) if c],
            sources=[
                EvidenceSource(
                    title=s.get("title") or "Untitled",
                    url=s.get("url") or "",
                    date=s.get("date"),
                )
                for s in (sources or [])
                if isinstance(s, Mapping)
            ],
        )

    def evidence_blob(self) -> str:
        """Serialize evidence, citations and sources for the ledger."""
        return json.dumps({
            "evidence": self.evidence,
            "citations": self.citations,
            "sources": [s.model_dump() for s in self.sources],
        })


class FactCheckProvider(ABC):
    """Abstract interface for claim-verification providers.

    Implementations must not raise for ambiguous claims; those resolve to
    UNVERIFIABLE with low confidence. Only transport or parse failures raise.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the provider."""
        pass

    @abstractmethod
    async def check(
        self,
        claim: str,
        source_filter: Optional[SourceFilter] = None,
    ) -> FactCheckVerdict:
        """Verify a single claim.

        Args:
            claim: Claim text
            source_filter: Optional family of sources to restrict evidence to

        Returns:
            Normalized verdict
        """
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Clean up resources."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is available."""
        pass
