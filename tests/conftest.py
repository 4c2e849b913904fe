"""Shared fixtures: an in-memory adapter that never starts a process."""

from __future__ import annotations

import signal

import pytest

from qbridge.pty.adapter import Backend, ProcessAdapter
from qbridge.pty.environment import EnvironmentSpec


class FakeAdapter(ProcessAdapter):
    """Records calls; tests drive output and exit by hand."""

    backend = Backend.PIPE

    def __init__(
        self,
        fail: OSError | None = None,
        exit_on_kill: bool = False,
    ) -> None:
        super().__init__()
        self.fail = fail
        self.exit_on_kill = exit_on_kill
        self.spawned: tuple[str, list[str], EnvironmentSpec] | None = None
        self.writes: list[str] = []
        self.kills: list[int] = []

    @property
    def pid(self) -> int | None:
        return 4242 if self.spawned else None

    async def spawn(
        self, executable: str, args: list[str], env_spec: EnvironmentSpec
    ) -> None:
        if self.fail is not None:
            raise self.fail
        self.spawned = (executable, args, env_spec)

    def write(self, text: str) -> bool:
        if self.exited:
            return False
        self.writes.append(text)
        return True

    def kill(self, sig: int = signal.SIGTERM) -> None:
        self.kills.append(sig)
        if self.exit_on_kill:
            self.finish(-sig)

    def emit(self, chunk: bytes, is_error: bool = False) -> None:
        self._emit_data(chunk, is_error)

    def finish(self, returncode: int | None) -> None:
        self._emit_exit(returncode)


@pytest.fixture
def env_spec(tmp_path) -> EnvironmentSpec:
    return EnvironmentSpec(
        working_directory=str(tmp_path),
        home=str(tmp_path),
        search_path_entries=("/usr/bin", "/bin"),
    )
