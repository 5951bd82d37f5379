"""CLI command: opsconsole status <SERVER> — show what the server reports."""

from __future__ import annotations

import asyncio
import sys

import click
from rich.console import Console
from rich.table import Table

from opsconsole.config import ConsoleConfig
from opsconsole.console import ServerConsole
from opsconsole.errors import AgentConnectionError
from opsconsole.server_info import ServerInfo

console = Console(stderr=True)

# How long to wait for the welcome frame after the socket opens
_WELCOME_TIMEOUT = 5.0


@click.command()
@click.argument("server_id")
@click.pass_context
def status(ctx: click.Context, server_id: str) -> None:
    """Connect to a server and print its status and latest metrics."""
    config: ConsoleConfig = ctx.obj["config"]
    info = asyncio.run(_fetch_info(config, server_id))
    if info is None:
        sys.exit(1)
    _print_info(info)
    if not info.online:
        sys.exit(2)


async def _fetch_info(config: ConsoleConfig, server_id: str) -> ServerInfo | None:
    srv = ServerConsole(server_id, config)
    try:
        await srv.connect()
    except AgentConnectionError as e:
        console.print(f"[red]{e}[/red]")
        await srv.close()
        return None

    loop = asyncio.get_running_loop()
    deadline = loop.time() + _WELCOME_TIMEOUT
    try:
        while srv.server_info.last_update == 0 and loop.time() < deadline:
            await asyncio.sleep(0.05)
    finally:
        await srv.close()
    if srv.server_info.last_update == 0:
        console.print("[yellow]No welcome frame received[/yellow]")
    return srv.server_info


def _print_info(info: ServerInfo) -> None:
    color = "green" if info.online else "red"
    console.print(
        f"\n[bold]{info.name or 'Server ' + info.server_id}[/bold]  "
        f"[{color}]{info.status}[/{color}]"
    )
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()

    table.add_row("Server ID", info.server_id)
    if info.hostname:
        table.add_row("Hostname", info.hostname)
    if info.ip:
        table.add_row("IP", info.ip)
    if info.os or info.arch:
        table.add_row("Platform", f"{info.os}/{info.arch}".strip("/"))
    if info.cpu_cores:
        table.add_row("CPU", f"{info.cpu_cores} x {info.cpu_model or 'unknown'}")
    if info.region:
        table.add_row("Region", info.region)
    for key, value in sorted(info.monitor.items()):
        table.add_row(key, f"{value:g}" if isinstance(value, float) else str(value))
    if not info.has_monitor_data:
        table.add_row("Metrics", "[dim]no data[/dim]")
    if info.last_error:
        table.add_row("Last error", f"[red]{info.last_error}[/red]")
    console.print(table)
