"""Terminal front end pieces: raw keyboard input and the log view."""

from opsconsole.tui.input import RawInput, terminal_size
from opsconsole.tui.log_view import LogView, render_line

__all__ = ["LogView", "RawInput", "render_line", "terminal_size"]
