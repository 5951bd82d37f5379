"""Global configuration — XDG paths, YAML file, env vars, defaults."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from urllib.parse import urlencode

import yaml

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

# Fields that hold durations in seconds
_DURATION_FIELDS = frozenset(
    {
        "connect_timeout",
        "heartbeat_interval",
        "reconnect_base_delay",
        "reconnect_max_delay",
        "guard_poll_interval",
        "flush_interval",
        "resize_debounce",
        "stream_start_timeout",
    }
)


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "opsconsole"
    return Path.home() / ".config" / "opsconsole"


def parse_duration(value: str | int | float) -> float:
    """Parse seconds given as a number or a string like ``"10s"``/``"500ms"``."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        m = _DURATION_RE.match(str(value))
        if m is None:
            raise ValueError(f"Invalid duration: {value!r}")
        seconds = float(m.group(1)) * _DURATION_UNITS[m.group(2) or "s"]
    if seconds < 0:
        raise ValueError(f"Duration must be >= 0: {value!r}")
    return seconds


def _parse_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ConsoleConfig:
    """Application-wide configuration."""

    config_dir: Path = field(default_factory=_default_config_dir)
    host: str = "127.0.0.1:8080"
    use_tls: bool = False
    token: str = ""

    # Connection
    connect_timeout: float = 10.0
    heartbeat_interval: float = 30.0
    heartbeat_failure_threshold: int = 3
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int = 5
    pending_limit: int = 100
    guard_poll_interval: float = 0.2

    # Sessions and streams
    resize_debounce: float = 0.016
    flush_interval: float = 0.1
    log_max_lines: int = 5000
    stream_start_timeout: float = 5.0
    autoscroll_threshold: int = 50
    default_tail: int = 200

    verbose: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        for name in _DURATION_FIELDS:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.heartbeat_interval == 0:
            raise ValueError("heartbeat_interval must be > 0")
        if self.heartbeat_failure_threshold < 1:
            raise ValueError("heartbeat_failure_threshold must be >= 1")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")
        if self.pending_limit < 1:
            raise ValueError("pending_limit must be >= 1")
        if self.log_max_lines < 1:
            raise ValueError("log_max_lines must be >= 1")
        if self.flush_interval == 0:
            raise ValueError("flush_interval must be > 0")

    @classmethod
    def load(cls, path: str | Path | None = None) -> ConsoleConfig:
        """Load config: defaults, then the YAML file, then env vars.

        ``path`` defaults to ``<config_dir>/config.yaml``; a missing default
        file is not an error, a missing explicit one is.
        """
        config = cls()

        if path is not None:
            config.apply(_read_yaml(Path(path)))
        else:
            default_file = config.config_dir / "config.yaml"
            if default_file.is_file():
                config.apply(_read_yaml(default_file))

        env_host = os.environ.get("OPSCONSOLE_HOST")
        if env_host:
            config.host = env_host

        env_token = os.environ.get("OPSCONSOLE_TOKEN")
        if env_token:
            config.token = env_token

        env_tls = os.environ.get("OPSCONSOLE_TLS")
        if env_tls:
            config.use_tls = _parse_bool(env_tls)

        env_heartbeat = os.environ.get("OPSCONSOLE_HEARTBEAT_INTERVAL")
        if env_heartbeat:
            config.heartbeat_interval = parse_duration(env_heartbeat)

        env_max_lines = os.environ.get("OPSCONSOLE_LOG_MAX_LINES")
        if env_max_lines:
            config.log_max_lines = int(env_max_lines)

        env_flush = os.environ.get("OPSCONSOLE_FLUSH_INTERVAL")
        if env_flush:
            config.flush_interval = parse_duration(env_flush)

        config.validate()
        return config

    def apply(self, data: dict) -> None:
        """Overlay values from a parsed mapping (unknown keys are rejected)."""
        known = {f.name: f for f in fields(self)}
        for key, value in data.items():
            if key not in known or key == "config_dir":
                raise ValueError(f"Unknown config key: {key}")
            if key in _DURATION_FIELDS:
                value = parse_duration(value)
            elif key in ("use_tls", "verbose"):
                value = _parse_bool(value)
            elif isinstance(getattr(self, key), int):
                value = int(value)
            else:
                value = str(value)
            setattr(self, key, value)
        self.validate()

    def websocket_url(
        self,
        server_id: str | int,
        token: str | None = None,
        session: str | None = None,
    ) -> str:
        """Build ``ws(s)://<host>/api/servers/{id}/ws?token=...[&session=...]``."""
        scheme = "wss" if self.use_tls else "ws"
        params = {"token": token if token is not None else self.token}
        if session:
            params["session"] = session
        return f"{scheme}://{self.host}/api/servers/{server_id}/ws?{urlencode(params)}"


def _read_yaml(path: Path) -> dict:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data
