"""Process layer — locate, environment, spawn and classify.

The chat CLI runs behind a pseudo-terminal when the runtime supports one
and behind plain pipes otherwise; both present the same adapter contract.
"""

from qbridge.pty.adapter import (
    Backend,
    PipeAdapter,
    ProcessAdapter,
    PTYAdapter,
    open_adapter,
    pty_supported,
    select_backend,
)
from qbridge.pty.environment import EnvironmentSpec
from qbridge.pty.locator import locate
from qbridge.pty.prompt import classify

__all__ = [
    "Backend",
    "EnvironmentSpec",
    "PipeAdapter",
    "ProcessAdapter",
    "PTYAdapter",
    "classify",
    "locate",
    "open_adapter",
    "pty_supported",
    "select_backend",
]
