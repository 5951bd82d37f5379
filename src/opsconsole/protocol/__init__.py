"""Agent WebSocket protocol: frame models and the JSON codec."""

from opsconsole.protocol.codec import (
    decode_frame,
    encode_frame,
    heartbeat_frame,
    logs_stream_start_frame,
    logs_stream_stop_frame,
    resize_frame,
    shell_command_frame,
)
from opsconsole.protocol.models import Frame, FrameKind, ShellCommand, StreamAction

__all__ = [
    "Frame",
    "FrameKind",
    "ShellCommand",
    "StreamAction",
    "decode_frame",
    "encode_frame",
    "heartbeat_frame",
    "logs_stream_start_frame",
    "logs_stream_stop_frame",
    "resize_frame",
    "shell_command_frame",
]
