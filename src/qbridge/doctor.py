"""Environment diagnostics — is Docker reachable for MCP servers?"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DOCKER_CANDIDATES = (
    "docker",
    "/usr/local/bin/docker",
    "/opt/homebrew/bin/docker",
    "/Applications/Docker.app/Contents/Resources/bin/docker",
)


@dataclass(frozen=True)
class DockerStatus:
    running: bool
    error: str | None = None
    path: str | None = None


def check_docker_status(timeout: float = 3.0) -> DockerStatus:
    """Run ``docker ps`` through each candidate path; first success wins."""
    for docker in DOCKER_CANDIDATES:
        try:
            subprocess.run(
                [docker, "ps"],
                capture_output=True,
                timeout=timeout,
                check=True,
            )
        except (OSError, subprocess.SubprocessError):
            continue
        logger.info("Docker check: running via %s", docker)
        return DockerStatus(running=True, path=docker)

    logger.info("Docker check: not found in any path")
    return DockerStatus(running=False, error="Docker not found")
