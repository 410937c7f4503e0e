"""WebSocket protocol and procedure result schemas."""
from .messages import (
    ClientMessage,
    ServerMessage,
    ErrorMessage,
    ChangeMessage,
    ProcedureResult,
    PurchaseResult,
    parse_client_message,
)
from .handlers import MessageHandler, change_message_for

__all__ = [
    "ClientMessage",
    "ServerMessage",
    "ErrorMessage",
    "ChangeMessage",
    "ProcedureResult",
    "PurchaseResult",
    "parse_client_message",
    "MessageHandler",
    "change_message_for",
]
