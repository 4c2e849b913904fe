"""Environment builder — working directory and extended PATH for the child."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


def extra_search_paths(home: str) -> list[str]:
    """Directories where MCP servers and their tools (docker, node) usually live."""
    return [
        "/usr/local/bin",
        "/opt/homebrew/bin",
        "/Applications/Docker.app/Contents/Resources/bin",
        "/usr/bin",
        os.path.join(home, "bin"),
        os.path.join(home, ".local", "bin"),
        os.path.join(home, ".npm-global", "bin"),
        "/usr/local/lib/node_modules/.bin",
        "/opt/homebrew/lib/node_modules/.bin",
    ]


@dataclass(frozen=True)
class EnvironmentSpec:
    """Execution environment for one session. Immutable once built."""

    working_directory: str
    home: str
    search_path_entries: tuple[str, ...]
    base_env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def search_path(self) -> str:
        return os.pathsep.join(self.search_path_entries)

    def to_env(self, overrides: Mapping[str, str] | None = None) -> dict[str, str]:
        """Materialize a full environment dict for ``subprocess``."""
        env = dict(self.base_env)
        env["HOME"] = self.home
        env["USERPROFILE"] = self.home
        env["PATH"] = self.search_path
        if overrides:
            env.update(overrides)
        return env


def resolve_home() -> str:
    """Home directory from the account database, ignoring an inherited $HOME."""
    try:
        import pwd

        return pwd.getpwuid(os.getuid()).pw_dir
    except (ImportError, KeyError, AttributeError):
        return os.path.expanduser("~")


def build(
    base_env: Mapping[str, str] | None = None,
    extra: list[str] | None = None,
    home: str | None = None,
    cwd: str | None = None,
) -> EnvironmentSpec:
    """Build the environment for a new session.

    Existing PATH entries keep their order; the extra directories are
    appended after them. HOME/USERPROFILE are pinned to the resolved home
    directory, which is also the default working directory.
    """
    env = dict(os.environ if base_env is None else base_env)
    home = home or resolve_home()

    inherited = env.get("PATH", "")
    entries = [p for p in inherited.split(os.pathsep) if p]
    entries.extend(extra_search_paths(home))
    if extra:
        entries.extend(extra)

    return EnvironmentSpec(
        working_directory=os.path.expanduser(cwd) if cwd else home,
        home=home,
        search_path_entries=tuple(entries),
        base_env=MappingProxyType(env),
    )
