"""Session registry — the only mutable shared state of the session layer."""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from qbridge.pty.adapter import Backend, ProcessAdapter

logger = logging.getLogger(__name__)


class SessionStatus(enum.Enum):
    """Lifecycle states for a session."""

    READY = "ready"
    EXITED = "exited"


@dataclass
class Session:
    """One live conversation with the chat CLI.

    Owns exactly one adapter. Only the exit callback and an explicit kill
    change ``status``.
    """

    id: str
    adapter: ProcessAdapter
    status: SessionStatus = SessionStatus.READY
    last_exit_code: int | None = None
    last_exit_signal: str | None = None

    @property
    def backend(self) -> Backend:
        return self.adapter.backend

    @property
    def alive(self) -> bool:
        return self.status == SessionStatus.READY


class SessionRegistry:
    """Lock-guarded map from session id to :class:`Session`.

    Ids come from a nanosecond clock bumped past the last issued value, so
    they never repeat within a registry even when two creates land in the
    same clock tick.
    """

    def __init__(self, clock: Callable[[], int] = time.time_ns) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._last_id = 0

    def _next_id(self) -> str:
        value = max(self._clock(), self._last_id + 1)
        self._last_id = value
        return str(value)

    def create(self, adapter: ProcessAdapter) -> str:
        """Register a new session owning ``adapter`` and return its id."""
        with self._lock:
            session_id = self._next_id()
            self._sessions[session_id] = Session(id=session_id, adapter=adapter)
        logger.debug("Registered session %s (%s)", session_id, adapter.backend.value)
        return session_id

    def get(self, session_id: str) -> Session | None:
        """Get a session by ID."""
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        """Remove and return a session. Absent ids are a no-op."""
        with self._lock:
            return self._sessions.pop(session_id, None)

    def for_each(self, fn: Callable[[Session], None]) -> None:
        """Call ``fn`` on every session while holding the registry lock.

        ``fn`` must not call back into the registry.
        """
        with self._lock:
            for session in list(self._sessions.values()):
                fn(session)

    def drain(self, fn: Callable[[Session], None]) -> list[Session]:
        """Call ``fn`` on every session, then clear, as one atomic step."""
        with self._lock:
            sessions = list(self._sessions.values())
            for session in sessions:
                fn(session)
            self._sessions.clear()
        return sessions

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
