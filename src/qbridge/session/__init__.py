"""Session layer — registry, output wire, manager and supervisor."""

from qbridge.session.manager import SessionError, SessionManager, SpawnError
from qbridge.session.registry import Session, SessionRegistry, SessionStatus
from qbridge.session.supervisor import LifecycleSupervisor
from qbridge.session.wire import EventType, OutputChunk, Wire, WireEvent

__all__ = [
    "EventType",
    "LifecycleSupervisor",
    "OutputChunk",
    "Session",
    "SessionError",
    "SessionManager",
    "SessionRegistry",
    "SessionStatus",
    "SpawnError",
    "Wire",
    "WireEvent",
]
