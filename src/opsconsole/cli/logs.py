"""CLI command: opsconsole logs <SERVER> <CONTAINER> — tail container logs."""

from __future__ import annotations

import asyncio
import signal
import sys

import click
from rich.console import Console
from rich.live import Live

from opsconsole.config import ConsoleConfig
from opsconsole.console import ServerConsole
from opsconsole.errors import StreamStartError
from opsconsole.streams.models import Line, Stream, StreamState
from opsconsole.tui.input import RawInput, terminal_size
from opsconsole.tui.log_view import LogView, render_line

console = Console(stderr=True)
out = Console()

# Keys understood by the interactive view
_SCROLL_KEYS = {
    "k": -1,
    "\x1b[A": -1,
    "j": 1,
    "\x1b[B": 1,
    "\x1b[5~": -10,
    "\x1b[6~": 10,
}


@click.command()
@click.argument("server_id")
@click.argument("container_id")
@click.option(
    "--tail",
    "-n",
    type=click.IntRange(min=0),
    default=None,
    help="Number of past lines to fetch (default: 200).",
)
@click.option("--timestamps", "-t", is_flag=True, help="Show Docker timestamps.")
@click.option("--view", is_flag=True, help="Interactive scrollable view.")
@click.pass_context
def logs(
    ctx: click.Context,
    server_id: str,
    container_id: str,
    tail: int | None,
    timestamps: bool,
    view: bool,
) -> None:
    """Follow the logs of a container on a managed server."""
    config: ConsoleConfig = ctx.obj["config"]
    tail = config.default_tail if tail is None else tail

    runner = _run_view if view else _run_follow
    code = asyncio.run(runner(config, server_id, container_id, tail, timestamps))
    sys.exit(code)


async def _start(
    srv: ServerConsole, container_id: str, tail: int
) -> Stream | None:
    try:
        stream_id = await srv.streams.start(container_id, tail)
    except StreamStartError as e:
        console.print(f"[red]{e}[/red]")
        return None
    return srv.streams.get(stream_id)


def _exit_code(stream: Stream) -> int:
    if stream.error is not None:
        console.print(f"[red]{stream.error}[/red]")
        return 1
    return 0


async def _run_follow(
    config: ConsoleConfig,
    server_id: str,
    container_id: str,
    tail: int,
    timestamps: bool,
) -> int:
    loop = asyncio.get_running_loop()
    srv = ServerConsole(server_id, config)
    done = asyncio.Event()

    def on_lines(stream_id: str, lines: list[Line]) -> None:
        for line in lines:
            out.print(render_line(line, timestamps), soft_wrap=True)

    def on_state(stream: Stream) -> None:
        if stream.state is StreamState.ENDED:
            done.set()

    srv.streams.on_lines(on_lines)
    srv.streams.on_state(on_state)
    srv.connection.add_listener(lambda _conn, error: error and done.set())

    loop.add_signal_handler(signal.SIGINT, done.set)
    loop.add_signal_handler(signal.SIGTERM, done.set)
    try:
        stream = await _start(srv, container_id, tail)
        if stream is None:
            return 1
        await done.wait()
        if stream.state is not StreamState.ENDED:
            console.print("\n[dim]Stopping...[/dim]")
            return 0
        return _exit_code(stream)
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        await srv.close()


async def _run_view(
    config: ConsoleConfig,
    server_id: str,
    container_id: str,
    tail: int,
    timestamps: bool,
) -> int:
    loop = asyncio.get_running_loop()
    srv = ServerConsole(server_id, config)
    quit_event = asyncio.Event()
    redraw = asyncio.Event()
    _cols, rows = terminal_size()
    view = LogView(height=max(1, rows - 4), show_timestamps=timestamps)
    # Any keyboard scroll away from the bottom should pause following
    row_height = config.autoscroll_threshold + 1

    stream = await _start(srv, container_id, tail)
    if stream is None:
        await srv.close()
        return 1

    srv.streams.on_scroll_to_bottom(lambda _sid: redraw.set())
    srv.streams.on_state(lambda _s: redraw.set())

    def on_keys(keys: str) -> None:
        if keys in ("q", "\x03"):
            quit_event.set()
            return
        if keys == "G":
            view.to_bottom()
            srv.streams.set_auto_scroll(stream.id, True)
        elif keys in _SCROLL_KEYS:
            delta = _SCROLL_KEYS[keys]
            if delta < 0:
                view.scroll_up(-delta)
            else:
                view.scroll_down(delta)
            geometry = view.geometry(len(stream.buffer), row_height)
            srv.streams.on_scroll(stream.id, *geometry)
        redraw.set()

    try:
        with RawInput(loop, on_keys=on_keys, on_detach=quit_event.set):
            with Live(console=console, screen=True, auto_refresh=False) as live:
                while not quit_event.is_set():
                    live.update(view.render(stream), refresh=True)
                    redraw.clear()
                    waiters = {
                        asyncio.ensure_future(redraw.wait()),
                        asyncio.ensure_future(quit_event.wait()),
                    }
                    _done, pending = await asyncio.wait(
                        waiters,
                        timeout=1.0,
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    for waiter in pending:
                        waiter.cancel()
    finally:
        await srv.close()
    return _exit_code(stream) if stream.state is StreamState.ENDED else 0
