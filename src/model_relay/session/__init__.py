"""Per-session context."""

from model_relay.session.manager import SessionContext, SessionManager, ToolCallRecord

__all__ = [
    "SessionContext",
    "SessionManager",
    "ToolCallRecord",
]
