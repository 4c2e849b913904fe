"""Session manager — create, drive and kill chat CLI sessions.

This is the surface the embedding application talks to. It wires each
adapter's output through the prompt detector onto the :class:`Wire` and
keeps the :class:`SessionRegistry` in step with process lifetimes.
"""

from __future__ import annotations

import logging
from typing import Callable

from qbridge.config import CLIConfig
from qbridge.pty import environment, locator
from qbridge.pty.adapter import ProcessAdapter, open_adapter
from qbridge.pty.environment import EnvironmentSpec
from qbridge.pty.prompt import classify
from qbridge.session.registry import SessionRegistry, SessionStatus
from qbridge.session.wire import OutputChunk, Wire

logger = logging.getLogger(__name__)

SPAWN_FAILED_EXIT_CODE = -1

_EXIT_HINTS = (
    "chat CLI not installed or not in PATH",
    "missing AWS credentials",
    "MCP server configuration issues",
    "MCP servers not found in PATH",
)


class SessionError(Exception):
    """Base class for session layer errors."""


class SpawnError(SessionError):
    """The OS refused to start the chat CLI process."""

    def __init__(self, session_id: str, message: str) -> None:
        super().__init__(f"Failed to start session {session_id}: {message}")
        self.session_id = session_id


class SessionManager:
    """Owns the registry and the wire for one embedding application.

    Args:
        config: How to locate and launch the chat CLI.
        wire: Where output and close events go.
        registry: Injected registry; a fresh one by default.
        adapter_factory: Builds an unspawned adapter per session.
        locate: Resolves ``config.command`` to a path.
        build_env: Builds the :class:`EnvironmentSpec` per session.
    """

    def __init__(
        self,
        config: CLIConfig | None = None,
        wire: Wire | None = None,
        registry: SessionRegistry | None = None,
        adapter_factory: Callable[[], ProcessAdapter] | None = None,
        locate: Callable[[str], str] = locator.locate,
        build_env: Callable[[], EnvironmentSpec] | None = None,
        extra_search_paths: list[str] | None = None,
    ) -> None:
        self.config = config or CLIConfig()
        self.wire = wire or Wire()
        self.registry = registry or SessionRegistry()
        self._adapter_factory = adapter_factory or self._default_adapter
        self._locate = locate
        self._build_env = build_env or (
            lambda: environment.build(extra=extra_search_paths, cwd=self.config.cwd)
        )

    def _default_adapter(self) -> ProcessAdapter:
        return open_adapter(
            self.config.backend,
            term=self.config.term,
            cols=self.config.cols,
            rows=self.config.rows,
        )

    async def create_session(self) -> str:
        """Start a chat CLI process and return its session id.

        Raises:
            SpawnError: the process could not be created. A SESSION_CLOSED
                event with exit code -1 has already been sent by then.
        """
        executable = self._locate(self.config.command)
        env_spec = self._build_env()
        adapter = self._adapter_factory()

        session_id = self.registry.create(adapter)
        adapter.set_on_data(
            lambda chunk, is_error: self._handle_data(session_id, chunk, is_error)
        )
        adapter.set_on_exit(
            lambda code, sig: self._handle_exit(session_id, code, sig)
        )

        logger.info(
            "Creating session %s: %s %s (backend=%s)",
            session_id,
            executable,
            " ".join(self.config.args),
            adapter.backend.value,
        )
        logger.debug("Working directory: %s", env_spec.working_directory)
        logger.debug("Search path: %s", env_spec.search_path)

        try:
            await adapter.spawn(executable, list(self.config.args), env_spec)
        except OSError as e:
            self.registry.remove(session_id)
            logger.error("Failed to start %s for session %s: %s", executable, session_id, e)
            self.wire.send_session_closed(
                session_id, SPAWN_FAILED_EXIT_CODE, error=str(e)
            )
            raise SpawnError(session_id, str(e)) from e

        logger.info("Session created: %s", session_id)
        return session_id

    def send_input(self, session_id: str, text: str) -> bool:
        """Write a line of input. False if the session is unknown or the write failed."""
        session = self.registry.get(session_id)
        if session is None or not session.alive:
            return False
        return session.adapter.write(text)

    def kill_session(self, session_id: str) -> bool:
        """Signal the session's process and forget it. False if unknown."""
        session = self.registry.remove(session_id)
        if session is None:
            return False
        session.status = SessionStatus.EXITED
        session.adapter.kill()
        return True

    def _handle_data(self, session_id: str, chunk: bytes, is_error: bool) -> None:
        prompt = False if is_error else classify(chunk)
        self.wire.send_output(
            OutputChunk(
                session_id=session_id,
                payload=chunk,
                is_prompt=prompt,
                is_error=is_error,
            )
        )

    def _handle_exit(
        self, session_id: str, exit_code: int | None, exit_signal: str | None
    ) -> None:
        session = self.registry.remove(session_id)
        if session is not None:
            session.status = SessionStatus.EXITED
            session.last_exit_code = exit_code
            session.last_exit_signal = exit_signal

        if exit_code not in (0, None):
            logger.error(
                "Session %s exited with code %s. Possible causes: %s",
                session_id,
                exit_code,
                "; ".join(_EXIT_HINTS),
            )
        self.wire.send_session_closed(session_id, exit_code, exit_signal)
