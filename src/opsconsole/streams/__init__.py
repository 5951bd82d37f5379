"""Container log streams: ring buffer, level enrichment, and the registry."""

from opsconsole.streams.buffer import RingBuffer
from opsconsole.streams.levels import LogLevel, detect_log_level, render_log_line
from opsconsole.streams.models import Line, Stream, StreamState
from opsconsole.streams.registry import LogBatcher, StreamRegistry

__all__ = [
    "Line",
    "LogBatcher",
    "LogLevel",
    "RingBuffer",
    "Stream",
    "StreamRegistry",
    "StreamState",
    "detect_log_level",
    "render_log_line",
]
