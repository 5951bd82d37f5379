"""Server info state — merged from welcome, status and monitor frames."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

# Welcome/status fields copied verbatim onto ServerInfo
_INFO_FIELDS = (
    "name",
    "hostname",
    "ip",
    "os",
    "arch",
    "cpu_model",
    "region",
    "status",
)

# Metrics a monitor or heartbeat frame may carry
MONITOR_FIELDS = frozenset(
    {
        "cpu_usage",
        "memory_used",
        "memory_total",
        "disk_used",
        "disk_total",
        "network_in",
        "network_out",
        "load_avg_1",
        "load_avg_5",
        "load_avg_15",
        "uptime",
        "process_count",
    }
)


@dataclass
class ServerInfo:
    """What the console knows about one managed server."""

    server_id: str
    name: str = ""
    hostname: str = ""
    ip: str = ""
    os: str = ""
    arch: str = ""
    cpu_cores: int = 0
    cpu_model: str = ""
    region: str = ""
    status: str = "offline"
    message: str = ""
    system_info: dict[str, Any] = field(default_factory=dict)
    monitor: dict[str, Any] = field(default_factory=dict)
    has_monitor_data: bool = False
    last_error: str = ""
    last_update: float = 0.0

    @property
    def online(self) -> bool:
        return self.status.lower() == "online"

    def merge_welcome(self, payload: dict[str, Any]) -> None:
        for name in _INFO_FIELDS:
            value = payload.get(name)
            if isinstance(value, str) and value:
                setattr(self, name, value)
        cores = payload.get("cpu_cores")
        if isinstance(cores, int) and not isinstance(cores, bool):
            self.cpu_cores = cores
        message = payload.get("message")
        if isinstance(message, str):
            self.message = message
        system_info = payload.get("system_info")
        if isinstance(system_info, dict):
            self.system_info = dict(system_info)
        self._touch()

    def merge_status(self, payload: dict[str, Any]) -> None:
        status = payload.get("status")
        if isinstance(status, str) and status:
            self.status = status
        self._touch()

    def merge_monitor(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Merge recognized metrics; returns the subset that was applied."""
        metrics = monitor_fields(payload)
        if metrics:
            self.monitor.update(metrics)
            self.has_monitor_data = True
            self._touch()
        return metrics

    def mark_no_data(self, message: str = "") -> None:
        self.has_monitor_data = False
        self.monitor.clear()
        if message:
            self.message = message
        self._touch()

    def record_error(self, message: str) -> None:
        self.last_error = message
        self._touch()

    def _touch(self) -> None:
        self.last_update = time.time()


def monitor_fields(payload: dict[str, Any]) -> dict[str, Any]:
    """Extract the numeric monitoring metrics carried by a frame payload."""
    return {
        k: v
        for k, v in payload.items()
        if k in MONITOR_FIELDS
        and isinstance(v, (int, float))
        and not isinstance(v, bool)
    }
