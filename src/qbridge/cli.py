"""CLI entry point for qbridge."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator

import typer
from rich.console import Console
from rich.table import Table

from qbridge.config import CLIConfig, QBridgeConfig
from qbridge.doctor import check_docker_status
from qbridge.pty import environment, locator
from qbridge.pty.adapter import select_backend
from qbridge.session.manager import SessionManager, SpawnError
from qbridge.session.supervisor import LifecycleSupervisor
from qbridge.session.wire import EventType, Wire, WireEvent

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="qbridge",
    help="Run the Amazon Q chat CLI behind a managed pseudo-terminal.",
    no_args_is_help=True,
)

PROMPT_HINT = "[y/n/t] the CLI is waiting for a confirmation"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(config_file: str | None, backend: str | None) -> QBridgeConfig:
    config = QBridgeConfig.load(config_file)
    if backend:
        config.cli = CLIConfig.model_validate(
            {**config.cli.model_dump(), "backend": backend.lower()}
        )
    return config


@app.command()
def chat(
    backend: str | None = typer.Option(
        None, "--backend", "-b", help="auto, pty or pipe (default: from env/config)."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Start an interactive chat session in this terminal."""
    setup_logging(verbose)
    config = _load_config(config_file, backend)

    try:
        code = asyncio.run(_run_chat(config))
    except KeyboardInterrupt:
        raise typer.Exit(130)
    raise typer.Exit(code)


async def _run_chat(config: QBridgeConfig) -> int:
    """Run one session until it closes or stdin ends."""
    wire = Wire()
    manager = SessionManager(
        config.cli, wire=wire, extra_search_paths=config.extra_search_paths
    )
    supervisor = LifecycleSupervisor(manager.registry, wire)
    loop = asyncio.get_running_loop()
    supervisor.install_exit_hooks(loop)

    queue = wire.attach()

    if config.check_docker:
        status = await loop.run_in_executor(None, check_docker_status)
        if not status.running:
            wire.send_docker_warning(status.error or "Docker not running")

    try:
        session_id = await manager.create_session()
    except SpawnError as e:
        typer.echo(f"Error: {e}", err=True)
        supervisor.request_close()
        supervisor.uninstall_exit_hooks(loop)
        return 1

    input_task = asyncio.create_task(_forward_stdin(manager, session_id))
    exit_code = 0
    try:
        async for event in wire.events(queue):
            if _render_event(event, session_id):
                exit_code = _closed_exit_code(event)
                break
    finally:
        input_task.cancel()
        await supervisor.shutdown_and_wait(config.shutdown.grace_period)
        supervisor.request_close()
        supervisor.uninstall_exit_hooks(loop)
    return exit_code


def _render_event(event: WireEvent, session_id: str) -> bool:
    """Write one event to the terminal. Returns True when our session closed."""
    if event.type == EventType.OUTPUT:
        out = sys.stderr if event.data.get("is_error") else sys.stdout
        out.buffer.write(event.data["data"])
        out.flush()
        if event.data.get("is_prompt"):
            typer.echo(f"\n{PROMPT_HINT}", err=True)
    elif event.type == EventType.DOCKER_WARNING:
        typer.echo(
            f"WARNING: {event.data['error']}. MCP servers that need Docker will fail.",
            err=True,
        )
    elif event.type == EventType.SESSION_CLOSED:
        if event.data["session_id"] != session_id:
            return False
        error = event.data.get("error")
        if error:
            typer.echo(f"Session failed: {error}", err=True)
        else:
            typer.echo(
                f"\nSession closed (code={event.data['exit_code']}"
                f" signal={event.data.get('exit_signal')})",
                err=True,
            )
        return True
    return False


def _closed_exit_code(event: WireEvent) -> int:
    code = event.data.get("exit_code")
    if code is None:
        return 1 if event.data.get("exit_signal") else 0
    return code if code >= 0 else 1


async def _stdin_lines() -> AsyncIterator[bytes]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    try:
        await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
        )
    except (ValueError, OSError) as e:
        # Redirected from a regular file: no pipe transport, read on a thread
        logger.debug("stdin is not a pipe (%s), reading lines in executor", e)
        while True:
            line = await loop.run_in_executor(None, sys.stdin.buffer.readline)
            if not line:
                return
            yield line

    while True:
        line = await reader.readline()
        if not line:
            return
        yield line


async def _forward_stdin(manager: SessionManager, session_id: str) -> None:
    """Send each stdin line to the session; EOF ends the chat."""
    try:
        async for line in _stdin_lines():
            text = line.decode("utf-8", errors="replace").rstrip("\r\n")
            if not manager.send_input(session_id, text):
                typer.echo("Input not delivered: session is gone", err=True)
                break
    finally:
        manager.wire.close()


@app.command()
def locate(
    command: str | None = typer.Argument(None, help="Executable to look for."),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Print the resolved path of the chat CLI."""
    config = _load_config(config_file, None)
    typer.echo(locator.locate(command or config.cli.command))


@app.command()
def doctor(
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Show how a session would be launched on this machine."""
    config = _load_config(config_file, None)
    env_spec = environment.build(
        extra=config.extra_search_paths, cwd=config.cli.cwd
    )
    docker = check_docker_status()

    table = Table(title="qbridge", show_header=False)
    table.add_column("key", style="bold")
    table.add_column("value")
    table.add_row("Executable", locator.locate(config.cli.command))
    table.add_row("Arguments", " ".join(config.cli.args))
    table.add_row("Backend", select_backend(config.cli.backend).value)
    table.add_row("Working directory", env_spec.working_directory)
    table.add_row(
        "Docker",
        f"running ({docker.path})" if docker.running else f"[red]{docker.error}[/red]",
    )
    table.add_row("Search path", "\n".join(env_spec.search_path_entries))
    Console().print(table)


if __name__ == "__main__":
    app()
