"""Lifecycle supervisor — tear every session down on the way out."""

from __future__ import annotations

import asyncio
import atexit
import logging
import signal

from qbridge.session.registry import Session, SessionRegistry, SessionStatus
from qbridge.session.wire import Wire

logger = logging.getLogger(__name__)


class LifecycleSupervisor:
    """Funnels every shutdown trigger into :meth:`shutdown_all`.

    Triggers:
        - ``request_close()``: the application asked to quit.
        - ``surface_closed(remaining)``: a UI surface went away.
        - ``install_exit_hooks()``: interpreter exit and SIGTERM/SIGHUP.
    """

    def __init__(self, registry: SessionRegistry, wire: Wire | None = None) -> None:
        self._registry = registry
        self._wire = wire
        self._hooks_installed = False

    def shutdown_all(self) -> list[Session]:
        """SIGTERM every live session, then clear the registry.

        Does not wait for the processes to exit. Returns the signalled
        sessions; an empty registry makes this a no-op.
        """

        def _terminate(session: Session) -> None:
            session.status = SessionStatus.EXITED
            try:
                session.adapter.kill()
            except Exception:
                logger.exception("Error killing session %s", session.id)

        sessions = self._registry.drain(_terminate)
        if sessions:
            logger.info("Sent SIGTERM to %d session(s)", len(sessions))
        return sessions

    async def shutdown_and_wait(self, grace: float = 2.0) -> None:
        """Like :meth:`shutdown_all`, escalating to SIGKILL after ``grace`` seconds."""
        sessions = self.shutdown_all()
        if not sessions:
            return
        results = await asyncio.gather(
            *(s.adapter.wait_closed(timeout=grace) for s in sessions)
        )
        for session, closed in zip(sessions, results):
            if not closed:
                logger.warning("Session %s ignored SIGTERM, sending SIGKILL", session.id)
                session.adapter.kill(signal.SIGKILL)

    def request_close(self) -> None:
        """Application-level close request."""
        logger.info("Close requested, cleaning up sessions")
        self.shutdown_all()
        if self._wire is not None:
            self._wire.close()

    def surface_closed(self, remaining: int = 0) -> None:
        """A UI surface closed; tear down once none are left."""
        if remaining > 0:
            return
        logger.info("Last surface closed, cleaning up sessions")
        self.shutdown_all()
        if self._wire is not None:
            self._wire.detach()

    def install_exit_hooks(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Run :meth:`shutdown_all` on interpreter exit and termination signals."""
        if self._hooks_installed:
            return
        self._hooks_installed = True
        atexit.register(self.shutdown_all)
        if loop is None:
            return
        for signame in ("SIGTERM", "SIGHUP"):
            sig = getattr(signal, signame, None)
            if sig is None:
                continue
            try:
                loop.add_signal_handler(sig, self._on_signal, signame)
            except (NotImplementedError, RuntimeError, ValueError):
                logger.debug("Cannot install %s handler on this platform", signame)

    def uninstall_exit_hooks(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if not self._hooks_installed:
            return
        self._hooks_installed = False
        atexit.unregister(self.shutdown_all)
        if loop is None:
            return
        for signame in ("SIGTERM", "SIGHUP"):
            sig = getattr(signal, signame, None)
            if sig is not None:
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError, ValueError):
                    pass

    def _on_signal(self, signame: str) -> None:
        logger.info("Received %s, cleaning up sessions", signame)
        self.shutdown_all()
        if self._wire is not None:
            self._wire.close()
