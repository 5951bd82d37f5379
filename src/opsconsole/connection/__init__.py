"""Agent WebSocket ownership: connection state, reconnect policy, manager."""

from opsconsole.connection.guard import FileOperationGuard
from opsconsole.connection.manager import ConnectionManager
from opsconsole.connection.models import Connection, ConnectionState, ReconnectPhase
from opsconsole.connection.policy import ReconnectPolicy

__all__ = [
    "Connection",
    "ConnectionManager",
    "ConnectionState",
    "FileOperationGuard",
    "ReconnectPhase",
    "ReconnectPolicy",
]
