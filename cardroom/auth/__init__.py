"""Authentication module."""
from .jwt_handler import (
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
    refresh_access_token,
)
from .password import hash_password, verify_password
from .roles import Role, require_role, ensure_role

__all__ = [
    "TokenError",
    "create_access_token",
    "create_refresh_token",
    "verify_token",
    "refresh_access_token",
    "hash_password",
    "verify_password",
    "Role",
    "require_role",
    "ensure_role",
]
