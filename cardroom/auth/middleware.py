"""Bearer-token authentication for HTTP and WebSocket callers."""
from typing import Optional
from dataclasses import dataclass

from cardroom.auth.jwt_handler import verify_token, TokenError
from cardroom.auth.roles import Role
from cardroom.state.redis_client import redis_client
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AuthenticatedUser:
    """Acting user passed into every workflow operation."""
    user_id: str
    poker_name: str
    role: Role
    token: str = ""

    @property
    def is_staff(self) -> bool:
        return self.role.satisfies(Role.STAFF)


class AuthMiddleware:
    """Resolves access tokens into acting users.

    Revocation keys live in Redis; ``check_revocation`` is switched off when
    the server runs without a Redis connection.
    """

    def __init__(self, check_revocation: bool = True):
        self.check_revocation = check_revocation

    async def authenticate(self, token: str) -> AuthenticatedUser:
        """Authenticate a caller using a JWT access token.

        Raises:
            TokenError: If authentication fails.
        """
        payload = verify_token(token, expected_type="access")

        if self.check_revocation and await redis_client.exists(self._revoked_key(token)):
            raise TokenError("Token has been revoked")

        logger.debug(f"User {payload.poker_name} authenticated")
        return AuthenticatedUser(
            user_id=payload.user_id,
            poker_name=payload.poker_name,
            role=payload.role,
            token=token,
        )

    async def authenticate_header(self, authorization: Optional[str]) -> AuthenticatedUser:
        """Authenticate from an ``Authorization: Bearer <token>`` header value.

        Raises:
            TokenError: If the header is missing, malformed or the token is invalid.
        """
        if not authorization or not authorization.startswith("Bearer "):
            raise TokenError("Missing authorization header")
        return await self.authenticate(authorization.split(" ", 1)[1])

    async def revoke_token(self, token: str) -> None:
        """Revoke a token (logout) until it would have expired anyway."""
        if not self.check_revocation:
            return
        try:
            payload = verify_token(token)
        except TokenError:
            # Already expired
            return
        ttl = max(1, int((payload.exp - payload.iat).total_seconds()))
        await redis_client.set(self._revoked_key(token), "1", ex=ttl)
        logger.info(f"Token revoked for {payload.poker_name}")

    @staticmethod
    def _revoked_key(token: str) -> str:
        return f"revoked:{token[-32:]}"


auth_middleware = AuthMiddleware()
