"""Executable locator — find the chat CLI binary on this machine."""

from __future__ import annotations

import logging
import os
import subprocess
import sys

from qbridge.pty.environment import resolve_home

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "q"


def _native_lookup(command: str) -> str | None:
    """Ask the platform's ``which``/``where`` for ``command``."""
    tool = "where" if sys.platform == "win32" else "which"
    try:
        result = subprocess.run(
            [tool, command],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("%s %s failed: %s", tool, command, e)
        return None

    if result.returncode != 0:
        return None
    # `where` prints every match, one per line
    lines = result.stdout.strip().splitlines()
    if not lines:
        return None
    candidate = lines[0].strip()
    if candidate and os.path.exists(candidate):
        return candidate
    return None


def well_known_paths(command: str, platform: str | None = None) -> list[str]:
    """Ordered install locations probed when the native lookup fails."""
    platform = platform or sys.platform
    home = resolve_home()

    if platform == "win32":
        exe = command if command.lower().endswith(".exe") else f"{command}.exe"
        program_files = os.environ.get("PROGRAMFILES", r"C:\Program Files")
        user_profile = os.environ.get("USERPROFILE", home)
        return [
            os.path.join(program_files, "Amazon", "AWSCLIV2", exe),
            os.path.join(user_profile, "AppData", "Local", "Programs", command, exe),
            os.path.join(program_files, command, exe),
            os.path.join(r"C:\Program Files", "Amazon", "AWSCLIV2", exe),
        ]

    return [
        f"/usr/local/bin/{command}",
        f"/opt/homebrew/bin/{command}",
        os.path.join(home, "bin", command),
        os.path.join(home, ".local", "bin", command),
        f"/usr/bin/{command}",
    ]


def locate(command: str = DEFAULT_COMMAND) -> str:
    """Resolve ``command`` to an executable path.

    Tries the native lookup, then the well-known install paths, and finally
    returns ``command`` unchanged so the child's PATH gets a chance. Never
    raises and never caches.
    """
    if not command.strip():
        command = DEFAULT_COMMAND
    found = _native_lookup(command)
    if found:
        logger.info("Found %s via native lookup: %s", command, found)
        return found

    for path in well_known_paths(command):
        try:
            if os.path.isfile(path):
                logger.info("Found %s at: %s", command, path)
                return path
        except OSError:
            continue

    logger.info("%s not found in common locations, using bare name", command)
    return command
