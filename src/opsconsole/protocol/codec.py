"""JSON envelope codec — decoding with legacy-shape normalization, and builders."""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from typing import Any

from opsconsole.errors import ProtocolError
from opsconsole.protocol.models import (
    SHELL_KINDS,
    STREAM_KINDS,
    Frame,
    FrameKind,
    ShellCommand,
    StreamAction,
)


def decode_frame(raw: str | bytes) -> Frame:
    """Parse one WebSocket message into a canonical Frame.

    Raises ProtocolError for anything that is not a JSON object with a
    string ``type``.  Unrecognized types decode to ``FrameKind.UNKNOWN``.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not valid UTF-8: {e}") from e
    try:
        data = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        raise ProtocolError(f"Unparseable frame: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Frame must be a JSON object")
    frame_type = data.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise ProtocolError("Frame has no 'type'")

    kind = FrameKind.from_type(frame_type)
    if kind in SHELL_KINDS:
        target_id, payload = _normalize_shell(data)
    elif kind in STREAM_KINDS:
        target_id, payload = _normalize_stream(data)
    else:
        target_id, payload = None, _pick_payload(data, "payload", "data")

    return Frame(
        kind=kind,
        type=frame_type,
        payload=payload,
        target_id=target_id,
        raw=data,
    )


def _legacy_fields(data: Mapping[str, Any], *exclude: str) -> dict[str, Any]:
    skip = {"type", *exclude}
    return {k: v for k, v in data.items() if k not in skip}


def _pick_payload(data: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, dict):
            return dict(value)
    return _legacy_fields(data)


def _as_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)
    return None


def _normalize_shell(data: Mapping[str, Any]) -> tuple[str | None, dict[str, Any]]:
    # Newer servers nest everything under "payload"; older ones put the
    # session id and data at the top level.  Neither is authoritative.
    nested = data.get("payload")
    if isinstance(nested, dict):
        payload = dict(nested)
        session = _as_id(nested.get("session"))
        if session is None:
            session = _as_id(data.get("session"))
        return session, payload
    return _as_id(data.get("session")), _legacy_fields(data, "session", "payload")


def _normalize_stream(data: Mapping[str, Any]) -> tuple[str | None, dict[str, Any]]:
    nested = data.get("payload")
    stream_id = _as_id(data.get("stream_id"))
    if stream_id is None and isinstance(nested, dict):
        stream_id = _as_id(nested.get("stream_id"))
    if isinstance(nested, dict):
        return stream_id, dict(nested)
    agent_data = data.get("data")
    if isinstance(agent_data, dict):
        return stream_id, dict(agent_data)
    return stream_id, _legacy_fields(data, "stream_id", "payload", "data")


def encode_frame(frame: Mapping[str, Any]) -> str:
    """Serialize an outbound frame to compact JSON."""
    if not isinstance(frame.get("type"), str):
        raise ValueError("Outbound frame needs a string 'type'")
    return json.dumps(frame, ensure_ascii=False, separators=(",", ":"))


# --- Outbound frame builders ---


def heartbeat_frame(timestamp: int | None = None) -> dict[str, Any]:
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    return {"type": FrameKind.HEARTBEAT.value, "timestamp": timestamp}


def shell_command_frame(
    command: ShellCommand,
    session_id: str,
    data: str = "",
    container_id: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": command.value,
        "data": data,
        "session": session_id,
    }
    if container_id:
        payload["container_id"] = container_id
    return {"type": FrameKind.SHELL_COMMAND.value, "payload": payload}


def resize_frame(
    session_id: str,
    cols: int,
    rows: int,
    container_id: str | None = None,
) -> dict[str, Any]:
    # The agent expects the dimensions as a JSON string in "data"
    data = json.dumps({"cols": cols, "rows": rows}, separators=(",", ":"))
    return shell_command_frame(ShellCommand.RESIZE, session_id, data, container_id)


def logs_stream_start_frame(
    stream_id: str,
    container_id: str,
    tail: int,
    timestamps: bool = True,
) -> dict[str, Any]:
    return {
        "type": FrameKind.LOGS_STREAM.value,
        "payload": {
            "action": StreamAction.START.value,
            "stream_id": stream_id,
            "container_id": container_id,
            "tail": tail,
            "timestamps": timestamps,
        },
    }


def logs_stream_stop_frame(stream_id: str) -> dict[str, Any]:
    return {
        "type": FrameKind.LOGS_STREAM.value,
        "payload": {"action": StreamAction.STOP.value, "stream_id": stream_id},
    }
