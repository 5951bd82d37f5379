"""CLI command: opsconsole shell <SERVER> <SESSION> — attach an interactive terminal."""

from __future__ import annotations

import asyncio
import signal
import sys

import click
from rich.console import Console
from rich.text import Text

from opsconsole.config import ConsoleConfig
from opsconsole.connection import Connection, ConnectionState, ReconnectPhase
from opsconsole.console import ServerConsole
from opsconsole.errors import AgentConnectionError
from opsconsole.session.models import Dimensions, Session, SessionEvent, SessionEventKind
from opsconsole.tui.input import RawInput, terminal_size

console = Console(stderr=True)


@click.command()
@click.argument("server_id")
@click.argument("session_id")
@click.option("--create", is_flag=True, help="Ask the agent to create the shell.")
@click.option(
    "--container",
    "container_id",
    default=None,
    help="Open the shell inside this container instead of on the host.",
)
@click.pass_context
def shell(
    ctx: click.Context,
    server_id: str,
    session_id: str,
    create: bool,
    container_id: str | None,
) -> None:
    """Attach to a terminal session. Press Ctrl+] to detach."""
    config: ConsoleConfig = ctx.obj["config"]
    code = asyncio.run(_run_shell(config, server_id, session_id, create, container_id))
    sys.exit(code)


async def _run_shell(
    config: ConsoleConfig,
    server_id: str,
    session_id: str,
    create: bool,
    container_id: str | None,
) -> int:
    loop = asyncio.get_running_loop()
    srv = ServerConsole(server_id, config, session_id=session_id)
    done = asyncio.Event()
    exit_code = 0
    reconnecting = False

    try:
        await srv.connect()
    except AgentConnectionError as e:
        console.print(f"[red]{e}[/red]")
        await srv.close()
        return 1

    def on_event(event: SessionEvent) -> None:
        if event.kind is SessionEventKind.OUTPUT:
            sys.stdout.write(event.text)
            sys.stdout.flush()
        elif event.kind is SessionEventKind.ERROR:
            console.print(Text(event.text, style="bold red"), end="\r\n")
        elif event.kind is SessionEventKind.CLOSED:
            if event.text:
                console.print(Text(event.text, style="dim"), end="\r\n")
            done.set()

    def on_connection(conn: Connection, error: Exception | None) -> None:
        nonlocal exit_code, reconnecting
        if error is not None:
            console.print(Text(str(error), style="bold red"), end="\r\n")
            exit_code = 1
            done.set()
        elif conn.reconnecting:
            if conn.phase is ReconnectPhase.BACKOFF:
                console.print(
                    Text(f"Reconnecting (attempt {conn.reconnect_attempt})...", style="yellow"),
                    end="\r\n",
                )
            reconnecting = True
        elif reconnecting and conn.state is ConnectionState.OPEN:
            console.print(Text("Reconnected.", style="green"), end="\r\n")
            reconnecting = False

    cols, rows = terminal_size()
    session = Session(
        id=session_id,
        container_id=container_id,
        last_known_dimensions=Dimensions(cols=cols, rows=rows),
    )
    srv.sessions.open(session, create=create)
    srv.sessions.subscribe(session_id, on_event)
    srv.sessions.resize(session_id, cols, rows)
    srv.connection.add_listener(on_connection)

    def on_winch() -> None:
        srv.sessions.resize(session_id, *terminal_size())

    loop.add_signal_handler(signal.SIGWINCH, on_winch)
    console.print(f"[dim]Attached to {session_id} — Ctrl+] to detach[/dim]")
    try:
        with RawInput(
            loop,
            on_keys=lambda keys: srv.sessions.write(session_id, keys),
            on_detach=done.set,
        ):
            await done.wait()
    finally:
        loop.remove_signal_handler(signal.SIGWINCH)
        await srv.close()
    console.print("\n[dim]Detached.[/dim]")
    return exit_code
