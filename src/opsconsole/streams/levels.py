"""Log line enrichment — level detection and rendering helpers.

Every function here is a pure function of the line text, so recomputing
an enrichment always yields the same result.
"""

from __future__ import annotations

import enum
import re


class LogLevel(enum.Enum):
    """Severity detected in a log line."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b[@-Z\\-_]")

# Docker prefixes each line with an RFC3339Nano timestamp when timestamps=true
_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2}))\s"
)

# Checked in order: the most severe match wins
_LEVEL_PATTERNS: tuple[tuple[LogLevel, re.Pattern[str]], ...] = (
    (
        LogLevel.ERROR,
        re.compile(
            r"\b(?:ERROR|ERR|FATAL|CRIT(?:ICAL)?|PANIC|EMERG)\b|\bexception\b"
            r"|\btraceback\b",
            re.IGNORECASE,
        ),
    ),
    (LogLevel.WARN, re.compile(r"\b(?:WARN(?:ING)?)\b", re.IGNORECASE)),
    (LogLevel.INFO, re.compile(r"\b(?:INFO|NOTICE)\b", re.IGNORECASE)),
    (LogLevel.DEBUG, re.compile(r"\b(?:DEBUG|TRACE)\b", re.IGNORECASE)),
)

# Structured logs: level=error, "level":"warn", lvl=info
_KV_LEVEL_RE = re.compile(
    r"""["']?(?:level|lvl|severity)["']?\s*[=:]\s*["']?(\w+)""", re.IGNORECASE
)

_KV_ALIASES = {
    "trace": LogLevel.DEBUG,
    "debug": LogLevel.DEBUG,
    "info": LogLevel.INFO,
    "notice": LogLevel.INFO,
    "warn": LogLevel.WARN,
    "warning": LogLevel.WARN,
    "error": LogLevel.ERROR,
    "err": LogLevel.ERROR,
    "fatal": LogLevel.ERROR,
    "critical": LogLevel.ERROR,
    "panic": LogLevel.ERROR,
}

_LEVEL_STYLES = {
    LogLevel.ERROR: "bold red",
    LogLevel.WARN: "yellow",
    LogLevel.INFO: "green",
    LogLevel.DEBUG: "dim",
}


def render_log_line(raw: str) -> str:
    """Strip ANSI escapes and stray carriage returns from a raw line."""
    return _ANSI_RE.sub("", raw).replace("\r", "")


def split_timestamp(text: str) -> tuple[str, str]:
    """Split a leading Docker timestamp off a line.

    Returns ``(timestamp, message)``; the timestamp is ``""`` when absent.
    """
    m = _TIMESTAMP_RE.match(text)
    if m is None:
        return "", text
    return m.group(1), text[m.end() :]


def detect_log_level(text: str) -> LogLevel | None:
    """Classify a line by severity, or None when no level is recognizable."""
    _ts, message = split_timestamp(render_log_line(text))

    kv = _KV_LEVEL_RE.search(message)
    if kv is not None:
        level = _KV_ALIASES.get(kv.group(1).lower())
        if level is not None:
            return level

    for level, pattern in _LEVEL_PATTERNS:
        if pattern.search(message):
            return level
    return None


def level_style(level: LogLevel | None) -> str:
    """Rich style name for a level ('' for unclassified lines)."""
    if level is None:
        return ""
    return _LEVEL_STYLES[level]
