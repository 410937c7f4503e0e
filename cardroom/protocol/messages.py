"""Pydantic message schemas for the WebSocket feed and procedure results."""
from typing import Any, Literal, Optional, Union
from pydantic import BaseModel, Field


# ============= Client -> Server Messages =============

class AuthMessage(BaseModel):
    """Authentication message."""
    type: Literal["auth"] = "auth"
    token: str


class RefreshTokenMessage(BaseModel):
    """Refresh token message."""
    type: Literal["refresh_token"] = "refresh_token"
    refresh_token: str


class PingMessage(BaseModel):
    """Keep-alive ping from client."""
    type: Literal["ping"] = "ping"


# Union of all client messages
ClientMessage = Union[
    AuthMessage,
    RefreshTokenMessage,
    PingMessage,
]


# ============= Server -> Client Messages =============

class ErrorMessage(BaseModel):
    """Error response."""
    type: Literal["error"] = "error"
    message: str
    code: Optional[str] = None


class AuthSuccessMessage(BaseModel):
    """Authentication success."""
    type: Literal["auth_success"] = "auth_success"
    user_id: str
    poker_name: str
    role: str


class TokenRefreshedMessage(BaseModel):
    type: Literal["token_refreshed"] = "token_refreshed"
    access_token: str


class ChangeMessage(BaseModel):
    """A committed record change relayed from the change feed."""
    type: Literal["change"] = "change"
    collection: str
    id: str
    patron_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    published_at: Optional[str] = None


class PongMessage(BaseModel):
    """Keep-alive pong response."""
    type: Literal["pong"] = "pong"


# Union of all server messages
ServerMessage = Union[
    ErrorMessage,
    AuthSuccessMessage,
    TokenRefreshedMessage,
    ChangeMessage,
    PongMessage,
]


# ============= Procedure results =============

class ProcedureResult(BaseModel):
    """Outcome of a privileged procedure."""
    status: Literal["success"] = "success"
    message: str


class PurchaseResult(BaseModel):
    """Outcome of a chip purchase; ``new_bill`` is serialized as ``newBill``."""
    success: bool = True
    message: str
    new_bill: int = Field(serialization_alias="newBill")


def parse_client_message(data: dict) -> ClientMessage:
    """Parse a client message from JSON dict.

    Raises:
        ValueError: If message type is unknown or invalid.
    """
    msg_type = data.get("type")

    type_map = {
        "auth": AuthMessage,
        "refresh_token": RefreshTokenMessage,
        "ping": PingMessage,
    }

    if msg_type not in type_map:
        raise ValueError(f"Unknown message type: {msg_type}")

    return type_map[msg_type](**data)
