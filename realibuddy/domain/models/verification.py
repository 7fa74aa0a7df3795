"""Domain vocabulary for verification outcomes."""

from enum import Enum


class Verdict(str, Enum):
    """Possible fact-check outcomes."""

    TRUE = "true"  # Claim is verified as true
    FALSE = "false"  # Claim is verified as false
    UNVERIFIABLE = "unverifiable"  # Opinion, question, or not checkable
    MISLEADING = "misleading"  # Technically true but lacks context

    @classmethod
    def parse(cls, value) -> "Verdict":
        """Parse a collaborator-supplied verdict, defaulting to UNVERIFIABLE."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNVERIFIABLE


class SourceFilter(str, Enum):
    """Source families the fact-checker may be restricted to."""

    ALL = "all"
    AUTHORITATIVE = "authoritative"
    NEWS = "news"
    SOCIAL = "social"
    ACADEMIC = "academic"


class StimulusKind(str, Enum):
    """Stimulus types the actuation device understands."""

    ZAP = "zap"
    BEEP = "beep"
