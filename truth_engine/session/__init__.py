"""Streaming sessions: protocol, state machine, storage and the manager."""

from truth_engine.session.manager import EventChannel, SessionManager, new_session_id
from truth_engine.session.protocol import (
    TERMINAL_MESSAGE_TYPES,
    CancelVerification,
    FinalResult,
    InboundMessage,
    OutboundBase,
    OutboundMessage,
    VerificationError,
    VerificationOptions,
    parse_inbound,
    parse_outbound,
)
from truth_engine.session.state import (
    InvalidTransition,
    Session,
    SessionStage,
    can_transition,
    verification_progress,
)
from truth_engine.session.store import InMemorySessionStore, SessionStore

__all__ = [
    "EventChannel",
    "SessionManager",
    "new_session_id",
    "TERMINAL_MESSAGE_TYPES",
    "CancelVerification",
    "FinalResult",
    "InboundMessage",
    "OutboundBase",
    "OutboundMessage",
    "VerificationError",
    "VerificationOptions",
    "parse_inbound",
    "parse_outbound",
    "InvalidTransition",
    "Session",
    "SessionStage",
    "can_transition",
    "verification_progress",
    "InMemorySessionStore",
    "SessionStore",
]
