"""Interactive terminal sessions multiplexed over the server connection."""

from opsconsole.session.models import Dimensions, Session, SessionEvent, SessionEventKind
from opsconsole.session.registry import SessionRegistry

__all__ = ["Dimensions", "Session", "SessionEvent", "SessionEventKind", "SessionRegistry"]
