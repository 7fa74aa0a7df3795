"""Boundary messages exchanged with the client.

Commands arrive as JSON objects tagged by ``type``; notifications leave as
JSON objects with camelCase keys, matching the browser client's protocol.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import InvalidCommandError
from .verification import SourceFilter, Verdict


# ---------------------------------------------------------------------------
# Commands (client -> server)
# ---------------------------------------------------------------------------

class ClientCommand(BaseModel):
    """Fields shared by every client command."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    base_intensity: Optional[float] = Field(
        None,
        alias="baseIntensity",
        allow_inf_nan=False,
        description="Connection-wide base intensity override (clamped to 10-80)",
    )


class StartMonitoring(ClientCommand):
    """Open a transcription stream and a monitoring session."""

    type: Literal["start_monitoring"]


class StopMonitoring(ClientCommand):
    """Close the transcription stream and the monitoring session."""

    type: Literal["stop_monitoring"]


class EmergencyStop(ClientCommand):
    """Disable all future actuation, process-wide."""

    type: Literal["emergency_stop"]


class CheckClaim(ClientCommand):
    """Fact-check a single typed claim without streaming."""

    type: Literal["check_claim", "text_input"]
    text: str = Field(..., min_length=1, description="Claim text to verify")
    source_filter: Optional[SourceFilter] = Field(
        None,
        alias="sourceFilter",
        description="Restrict evidence to a family of sources",
    )


Command = Annotated[
    Union[StartMonitoring, StopMonitoring, EmergencyStop, CheckClaim],
    Field(discriminator="type"),
]

COMMAND_TYPES = frozenset(
    {"start_monitoring", "stop_monitoring", "emergency_stop", "check_claim", "text_input"}
)

_command_adapter = TypeAdapter(Command)


def parse_command(payload: Any) -> ClientCommand:
    """Validate a decoded JSON payload into a typed command.

    Raises:
        InvalidCommandError: If the payload is not a recognised, well-formed command
    """
    if not isinstance(payload, dict):
        raise InvalidCommandError("Command must be a JSON object")

    command_type = payload.get("type")
    if command_type not in COMMAND_TYPES:
        raise InvalidCommandError(f"Unknown message type: {command_type}")

    try:
        return _command_adapter.validate_python(payload)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != command_type)
        detail = f"{location}: {first['msg']}" if location else first["msg"]
        raise InvalidCommandError(f"Invalid {command_type} command ({detail})") from e


# ---------------------------------------------------------------------------
# Notifications (server -> client)
# ---------------------------------------------------------------------------

class ServerMessage(BaseModel):
    """Base class for outbound notifications."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        """Serialize with the client's camelCase field names."""
        return self.model_dump(by_alias=True, mode="json")


class TranscriptInterim(ServerMessage):
    type: Literal["transcript_interim"] = "transcript_interim"
    text: str
    timestamp: int


class TranscriptFinal(ServerMessage):
    type: Literal["transcript_final"] = "transcript_final"
    text: str
    timestamp: int


class FactCheckStarted(ServerMessage):
    type: Literal["fact_check_started"] = "fact_check_started"
    claim: str


class FactCheckResultMessage(ServerMessage):
    type: Literal["fact_check_result"] = "fact_check_result"
    claim: str
    verdict: Verdict
    confidence: float
    evidence: str


class ActuationDelivered(ServerMessage):
    type: Literal["actuation_delivered"] = "actuation_delivered"
    intensity: int
    reason: str


class SafetyStatus(ServerMessage):
    type: Literal["safety_status"] = "safety_status"
    actuation_count: int = Field(..., alias="actuationCount")
    can_actuate: bool = Field(..., alias="canActuate")


class ErrorMessage(ServerMessage):
    type: Literal["error"] = "error"
    message: str


class InfoMessage(ServerMessage):
    type: Literal["info"] = "info"
    message: str
