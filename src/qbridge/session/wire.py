"""Wire protocol — decouples the session layer from whatever renders it.

Output and lifecycle events flow from the sessions to at most one attached
consumer. With no consumer attached, events are dropped on the spot rather
than queued, and a newly attached consumer starts from the next event.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    OUTPUT = "output"
    SESSION_CLOSED = "session_closed"
    DOCKER_WARNING = "docker_warning"


@dataclass(frozen=True)
class OutputChunk:
    """One read event from a session's child, payload untouched."""

    session_id: str
    payload: bytes
    is_prompt: bool = False
    is_error: bool = False

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: sessions -> a single consumer.

    ``send`` never blocks and never raises. A consumer may pass an
    ``is_alive`` probe when attaching (e.g. "is the window still open");
    once it reports False the consumer counts as gone.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._maxsize = maxsize
        self._queue: asyncio.Queue[WireEvent | None] | None = None
        self._is_alive: Callable[[], bool] | None = None
        self._closed: bool = False

    @property
    def has_consumer(self) -> bool:
        if self._queue is None:
            return False
        if self._is_alive is None:
            return True
        try:
            return bool(self._is_alive())
        except Exception:
            logger.exception("Consumer liveness probe failed")
            return False

    def send(self, event: WireEvent) -> bool:
        """Deliver ``event`` to the attached consumer.

        Returns False when the event was dropped (closed wire, no consumer,
        or a full bounded queue).
        """
        if self._closed or not self.has_consumer:
            return False
        assert self._queue is not None
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug("Consumer queue full, dropping %s event", event.type.value)
            return False
        return True

    def send_output(self, chunk: OutputChunk) -> bool:
        return self.send(
            WireEvent(
                type=EventType.OUTPUT,
                data={
                    "session_id": chunk.session_id,
                    "data": chunk.payload,
                    "is_prompt": chunk.is_prompt,
                    "is_error": chunk.is_error,
                },
            )
        )

    def send_session_closed(
        self,
        session_id: str,
        exit_code: int | None,
        exit_signal: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Notify the consumer that a session's process is gone."""
        data: dict[str, Any] = {"session_id": session_id, "exit_code": exit_code}
        if exit_signal is not None:
            data["exit_signal"] = exit_signal
        if error is not None:
            data["error"] = error
        delivered = self.send(WireEvent(type=EventType.SESSION_CLOSED, data=data))
        if not delivered:
            logger.info(
                "Session %s closed with no consumer attached (code=%s)",
                session_id,
                exit_code,
            )
        return delivered

    def send_docker_warning(self, error: str) -> bool:
        return self.send(WireEvent(type=EventType.DOCKER_WARNING, data={"error": error}))

    def attach(
        self, is_alive: Callable[[], bool] | None = None
    ) -> asyncio.Queue[WireEvent | None]:
        """Attach the consumer, replacing any previous one.

        The previous consumer's queue receives a ``None`` sentinel.
        """
        self.detach()
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue(maxsize=self._maxsize)
        self._queue = q
        self._is_alive = is_alive
        self._closed = False
        return q

    def detach(self, q: asyncio.Queue | None = None) -> None:
        """Detach the consumer (only if it is ``q``, when given)."""
        if self._queue is None or (q is not None and q is not self._queue):
            return
        old = self._queue
        self._queue = None
        self._is_alive = None
        if old.full():
            # Make room for the sentinel so the consumer loop can finish
            old.get_nowait()
        old.put_nowait(None)

    def close(self) -> None:
        """Detach the consumer and drop everything sent afterwards."""
        self.detach()
        self._closed = True

    async def events(self, q: asyncio.Queue[WireEvent | None]) -> AsyncIterator[WireEvent]:
        """Iterate a consumer queue until it is detached."""
        while True:
            event = await q.get()
            if event is None:
                return
            yield event
