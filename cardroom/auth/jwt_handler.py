"""JWT token handling."""
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional
from dataclasses import dataclass

from cardroom.config import config
from cardroom.auth.roles import Role


@dataclass
class TokenPayload:
    """Decoded token payload."""
    user_id: str
    poker_name: str
    role: Role
    token_type: str  # "access" or "refresh"
    exp: datetime
    iat: datetime


class TokenError(Exception):
    """Token validation error."""
    pass


def _encode(user_id: str, poker_name: str, role: Role, token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "name": poker_name,
        "role": role.value,
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def create_access_token(user_id: str, poker_name: str, role: Role) -> str:
    """Create a short-lived access token.
    
    Args:
        user_id: Patron or staff identifier.
        poker_name: Display name shown on the floor.
        role: Role claim (patron/staff/admin).
        
    Returns:
        Encoded JWT access token.
    """
    return _encode(
        user_id, poker_name, role, "access",
        timedelta(minutes=config.jwt_access_expiry_minutes),
    )


def create_refresh_token(user_id: str, poker_name: str, role: Role) -> str:
    """Create a long-lived refresh token."""
    return _encode(
        user_id, poker_name, role, "refresh",
        timedelta(days=config.jwt_refresh_expiry_days),
    )


def verify_token(token: str, expected_type: Optional[str] = None) -> TokenPayload:
    """Verify and decode a JWT token.
    
    Args:
        token: The JWT token to verify.
        expected_type: If provided, verify token is of this type ("access" or "refresh").
        
    Returns:
        Decoded token payload.
        
    Raises:
        TokenError: If token is invalid, expired, or wrong type.
    """
    try:
        payload = jwt.decode(
            token, 
            config.jwt_secret, 
            algorithms=[config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    
    token_type = payload.get("type")
    if expected_type and token_type != expected_type:
        raise TokenError(f"Expected {expected_type} token, got {token_type}")
    
    try:
        role = Role(payload["role"])
    except (KeyError, ValueError):
        raise TokenError("Token carries no valid role claim")
    
    return TokenPayload(
        user_id=payload["sub"],
        poker_name=payload.get("name", ""),
        role=role,
        token_type=token_type,
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
    )


def refresh_access_token(refresh_token: str) -> str:
    """Create a new access token using a refresh token.
    
    Raises:
        TokenError: If refresh token is invalid.
    """
    payload = verify_token(refresh_token, expected_type="refresh")
    return create_access_token(payload.user_id, payload.poker_name, payload.role)
