"""Pydantic message schemas for the client protocol.

Both directions are closed tagged unions discriminated on ``type``.
Field names are snake_case in Python and camelCase on the wire.
"""

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from truth_engine.errors import ProtocolError


class WireModel(BaseModel):
    """Base for everything that crosses the connection."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class VerificationOptions(WireModel):
    """Per-session knobs a client may set."""

    extraction_confidence: float = Field(
        default=1.0, ge=0.0, le=1.0,
        description="Confidence of upstream extraction for pasted text",
    )
    ask_follow_up: bool = Field(default=True, description="Allow a follow-up question round")
    timeout_seconds: Optional[float] = Field(
        default=None, gt=0, le=120, description="Override of the global verification timeout"
    )


# ── Inbound ──────────────────────────────────────────────────────────


class StartTextVerification(WireModel):
    type: Literal["start_text_verification"] = "start_text_verification"
    text: str = Field(..., min_length=1, max_length=20_000)
    options: VerificationOptions = Field(default_factory=VerificationOptions)


class StartImageVerification(WireModel):
    type: Literal["start_image_verification"] = "start_image_verification"
    image_buffer: str = Field(..., min_length=1, description="Base64 image or data URL")
    filename: Optional[str] = None
    options: VerificationOptions = Field(default_factory=VerificationOptions)


class SubmitFollowUpAnswers(WireModel):
    type: Literal["submit_follow_up_answers"] = "submit_follow_up_answers"
    session_id: str
    answers: dict[str, str]


class ResumeSession(WireModel):
    type: Literal["resume_session"] = "resume_session"
    session_id: str


class GetSessionStatus(WireModel):
    type: Literal["get_session_status"] = "get_session_status"
    session_id: str


class CancelVerification(WireModel):
    type: Literal["cancel_verification"] = "cancel_verification"
    session_id: str


class Ping(WireModel):
    type: Literal["ping"] = "ping"


InboundMessage = Annotated[
    Union[
        StartTextVerification,
        StartImageVerification,
        SubmitFollowUpAnswers,
        ResumeSession,
        GetSessionStatus,
        CancelVerification,
        Ping,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)


def parse_inbound(raw: Union[str, bytes, dict[str, Any]]) -> Any:
    """
    Parse one inbound frame into its message model.

    Raises:
        ProtocolError: On invalid JSON, an unknown ``type``, or invalid fields.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON: {e.msg}") from None
    else:
        data = raw

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")
    message_type = data.get("type")
    if not isinstance(message_type, str):
        raise ProtocolError("Message is missing a 'type' field")

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        errors = e.errors()
        if any(err.get("type") == "union_tag_invalid" for err in errors):
            raise ProtocolError(f"Unknown message type: {message_type}", message_type) from None
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'message'}: {err['msg']}"
            for err in errors
        )
        raise ProtocolError(f"Invalid {message_type} message: {detail}", message_type) from None


# ── Outbound ─────────────────────────────────────────────────────────


class OutboundBase(WireModel):
    session_id: Optional[str] = None
    sequence: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionEstablished(OutboundBase):
    type: Literal["connection_established"] = "connection_established"
    client_id: str
    capabilities: list[str]
    server_version: str


class VerificationStarted(OutboundBase):
    type: Literal["verification_started"] = "verification_started"
    source_type: str


class StatusUpdate(OutboundBase):
    type: Literal["status_update"] = "status_update"
    stage: str
    progress: int = Field(..., ge=0, le=100)
    message: Optional[str] = None


class ContextDetected(OutboundBase):
    type: Literal["context_detected"] = "context_detected"
    claim_types: list[str]
    entities: list[dict[str, str]]
    recency: str
    strategy: str
    extraction_confidence: float


class VerificationPlanMessage(OutboundBase):
    type: Literal["verification_plan"] = "verification_plan"
    sources: list[dict[str, Any]]
    capability_tasks: list[dict[str, Any]]
    estimated_duration: float


class SourceStarted(OutboundBase):
    type: Literal["source_started"] = "source_started"
    task_id: str
    source: str
    tier: int


class SourceCompleted(OutboundBase):
    type: Literal["source_completed"] = "source_completed"
    task_id: str
    source: str
    tier: int
    confidence: float
    live_confidence: float
    evidence: dict[str, Any] = Field(default_factory=dict)


class SourceFailed(OutboundBase):
    type: Literal["source_failed"] = "source_failed"
    task_id: str
    source: str
    tier: int
    error: str
    live_confidence: float


class CapabilityStarted(OutboundBase):
    type: Literal["capability_started"] = "capability_started"
    task_id: str
    capability: str
    providers: list[str]


class CapabilitySourceCompleted(OutboundBase):
    type: Literal["capability_source_completed"] = "capability_source_completed"
    task_id: str
    capability: str
    provider: str
    confidence: float


class CapabilitySourceFailed(OutboundBase):
    type: Literal["capability_source_failed"] = "capability_source_failed"
    task_id: str
    capability: str
    provider: str
    error: str


class CapabilityCompleted(OutboundBase):
    type: Literal["capability_completed"] = "capability_completed"
    task_id: str
    capability: str
    confidence: float
    live_confidence: float
    successful: int
    failed: int


class CapabilityFailed(OutboundBase):
    type: Literal["capability_failed"] = "capability_failed"
    task_id: str
    capability: str
    error: str
    live_confidence: float


class FollowUpQuestions(OutboundBase):
    type: Literal["follow_up_questions"] = "follow_up_questions"
    questions: list[dict[str, Any]]
    uncertainty_level: str
    explanation: str
    preliminary: dict[str, Any]
    answer_window_seconds: float


class FollowUpProcessed(OutboundBase):
    type: Literal["follow_up_processed"] = "follow_up_processed"
    confidence_adjustment: float
    insights: list[str]


class EnhancedResult(OutboundBase):
    type: Literal["enhanced_result"] = "enhanced_result"
    verdict: str
    confidence: float
    explanation: str
    recommendations: list[str]
    risk_level: str


class FinalResult(OutboundBase):
    type: Literal["final_result"] = "final_result"
    verdict: str
    confidence: float
    explanation: str
    sources: list[dict[str, Any]]
    recommendations: list[str] = Field(default_factory=list)
    evidence_summary: list[str] = Field(default_factory=list)
    risk_level: str = "UNKNOWN"
    method: str = "tiered_resolution"
    tier: Optional[int] = None


class VerificationError(OutboundBase):
    type: Literal["verification_error"] = "verification_error"
    error: str
    code: str = "engine_error"


class SessionSnapshot(OutboundBase):
    type: Literal["session_snapshot"] = "session_snapshot"
    stage: str
    progress: int
    live_confidence: float
    results: list[dict[str, Any]]
    total_tasks: int
    pending_questions: Optional[list[dict[str, Any]]] = None


class SessionStatus(OutboundBase):
    type: Literal["session_status"] = "session_status"
    stage: str
    progress: int
    live_confidence: float
    completed_tasks: int
    total_tasks: int


class Pong(OutboundBase):
    type: Literal["pong"] = "pong"


class ProtocolErrorMessage(OutboundBase):
    type: Literal["protocol_error"] = "protocol_error"
    error: str
    message_type: Optional[str] = None


class ServerShutdown(OutboundBase):
    type: Literal["server_shutdown"] = "server_shutdown"
    message: str = "Server is shutting down"


OutboundMessage = Annotated[
    Union[
        ConnectionEstablished,
        VerificationStarted,
        StatusUpdate,
        ContextDetected,
        VerificationPlanMessage,
        SourceStarted,
        SourceCompleted,
        SourceFailed,
        CapabilityStarted,
        CapabilitySourceCompleted,
        CapabilitySourceFailed,
        CapabilityCompleted,
        CapabilityFailed,
        FollowUpQuestions,
        FollowUpProcessed,
        EnhancedResult,
        FinalResult,
        VerificationError,
        SessionSnapshot,
        SessionStatus,
        Pong,
        ProtocolErrorMessage,
        ServerShutdown,
    ],
    Field(discriminator="type"),
]

_outbound_adapter: TypeAdapter = TypeAdapter(OutboundMessage)


def parse_outbound(raw: Union[str, bytes, dict[str, Any]]) -> Any:
    """Parse a server frame (client side). Raises ProtocolError like parse_inbound."""
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        return _outbound_adapter.validate_python(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ProtocolError(f"Invalid server message: {e}") from None


TERMINAL_MESSAGE_TYPES = frozenset({"final_result", "verification_error"})
