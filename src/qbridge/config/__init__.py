"""Configuration — Pydantic models for qbridge settings."""

from __future__ import annotations

import os
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class CLIConfig(BaseModel):
    """How the chat CLI is found and launched."""

    command: str = Field(
        default="q", min_length=1, description="Executable name to locate"
    )
    args: list[str] = Field(default_factory=lambda: ["chat"])
    backend: Literal["auto", "pty", "pipe"] = Field(
        default="auto",
        description="'auto' prefers a pseudo-terminal and falls back to pipes",
    )
    cwd: str | None = Field(
        default=None, description="Working directory (defaults to the home directory)"
    )
    term: str = Field(default="xterm-256color")
    cols: int = Field(default=120, gt=0)
    rows: int = Field(default=30, gt=0)


class ShutdownConfig(BaseModel):
    """Teardown behavior."""

    grace_period: float = Field(
        default=2.0,
        ge=0,
        description="Seconds to wait after SIGTERM before escalating to SIGKILL",
    )


class QBridgeConfig(BaseModel):
    """Top-level qbridge configuration."""

    cli: CLIConfig = Field(default_factory=CLIConfig)
    shutdown: ShutdownConfig = Field(default_factory=ShutdownConfig)
    check_docker: bool = Field(
        default=True, description="Warn when Docker is not running (MCP servers)"
    )
    extra_search_paths: list[str] = Field(
        default_factory=list,
        description="Additional PATH entries appended for the child process",
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> QBridgeConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            QBRIDGE_COMMAND     - Executable name of the chat CLI
            QBRIDGE_ARGS        - Arguments, whitespace separated
            QBRIDGE_BACKEND     - auto / pty / pipe
            QBRIDGE_CWD         - Working directory for the child
            QBRIDGE_KILL_GRACE  - Seconds before SIGKILL escalation
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        cli = config_data.get("cli", {})

        env_command = os.environ.get("QBRIDGE_COMMAND")
        if env_command:
            cli["command"] = env_command

        env_args = os.environ.get("QBRIDGE_ARGS")
        if env_args is not None:
            cli["args"] = env_args.split()

        env_backend = os.environ.get("QBRIDGE_BACKEND")
        if env_backend:
            cli["backend"] = env_backend.lower()

        env_cwd = os.environ.get("QBRIDGE_CWD")
        if env_cwd:
            cli["cwd"] = env_cwd

        if cli:
            config_data["cli"] = cli

        env_grace = os.environ.get("QBRIDGE_KILL_GRACE")
        if env_grace:
            shutdown = config_data.get("shutdown", {})
            shutdown["grace_period"] = float(env_grace)
            config_data["shutdown"] = shutdown

        return cls.model_validate(config_data)
