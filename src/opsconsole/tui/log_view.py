"""Log view — builds Rich renderables from a stream's lines."""

from __future__ import annotations

from rich.panel import Panel
from rich.text import Text

from opsconsole.streams.levels import level_style, split_timestamp
from opsconsole.streams.models import Line, Stream, StreamState


def render_line(line: Line, show_timestamps: bool = False) -> Text:
    """Style one line by its detected level; markers are italic."""
    ts, message = split_timestamp(line.text)
    text = Text()
    if ts and show_timestamps:
        text.append(ts + " ", style="dim")
    style = level_style(line.level)
    if line.marker:
        style = f"{style} italic".strip()
    text.append(message, style=style)
    return text


class LogView:
    """Viewport over a stream's buffer, pinned to the bottom while following.

    Scrolling is measured in rows; one row maps onto ``row_height`` units of
    the stream registry's auto-scroll threshold.
    """

    def __init__(self, height: int = 20, show_timestamps: bool = False) -> None:
        self.height = max(1, height)
        self.show_timestamps = show_timestamps
        self.offset = 0  # rows scrolled up from the bottom

    def scroll_up(self, rows: int = 1) -> None:
        self.offset += rows

    def scroll_down(self, rows: int = 1) -> None:
        self.offset = max(0, self.offset - rows)

    def to_bottom(self) -> None:
        self.offset = 0

    def geometry(self, total: int, row_height: int = 1) -> tuple[int, int, int]:
        """Return ``(scroll_top, scroll_height, client_height)`` for on_scroll()."""
        self.offset = max(0, min(self.offset, max(0, total - self.height)))
        top = max(0, total - self.height - self.offset)
        return top * row_height, total * row_height, self.height * row_height

    def render(self, stream: Stream) -> Panel:
        lines = stream.lines()
        total = len(lines)
        if stream.auto_scroll:
            self.offset = 0
        self.offset = max(0, min(self.offset, max(0, total - self.height)))
        end = total - self.offset
        start = max(0, end - self.height)

        body = Text()
        for i, line in enumerate(lines[start:end]):
            if i:
                body.append("\n")
            body.append_text(render_line(line, self.show_timestamps))
        if not lines:
            body = Text("Waiting for log output...", style="dim italic")

        follow = "[green]following[/green]" if stream.auto_scroll else "[yellow]paused[/yellow]"
        state = stream.state.value
        if stream.state is StreamState.ENDED and stream.error is not None:
            state = f"[red]{state}[/red]"
        return Panel(
            body,
            title=f"{stream.container_id}  ({state})",
            subtitle=f"{total} lines  {follow}",
            border_style="blue",
        )
