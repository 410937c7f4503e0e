"""Message handlers for the WebSocket change feed."""
import json
from typing import Any, Awaitable, Callable, Optional

from cardroom.auth.jwt_handler import TokenError, refresh_access_token
from cardroom.auth.middleware import AuthMiddleware, AuthenticatedUser, auth_middleware
from cardroom.protocol.messages import (
    AuthMessage,
    AuthSuccessMessage,
    ChangeMessage,
    ErrorMessage,
    PingMessage,
    PongMessage,
    RefreshTokenMessage,
    TokenRefreshedMessage,
    parse_client_message,
)
from cardroom.state.change_feed import is_visible_to
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


class MessageHandler:
    """Handles incoming WebSocket messages.

    The socket is read-only apart from authentication: every write goes
    through the HTTP procedures.
    """

    def __init__(
        self,
        auth: Optional[AuthMiddleware] = None,
        refresh: Optional[Callable[[str], Awaitable[str]]] = None,
    ):
        """Initialize the handler.

        Args:
            auth: Token checker; defaults to the shared middleware.
            refresh: Coroutine turning a refresh token into an access token.
                Without one, the role claim of the refresh token is reused.
        """
        self.auth = auth or auth_middleware
        self.refresh = refresh

    async def handle_message(
        self,
        raw_message: str,
        user: Optional[AuthenticatedUser] = None,
    ) -> tuple[dict, Optional[AuthenticatedUser]]:
        """Handle an incoming message.

        Args:
            raw_message: Raw JSON message string.
            user: Currently authenticated user (if any).

        Returns:
            Tuple of (response dict, updated user or None).
        """
        try:
            data = json.loads(raw_message)
            message = parse_client_message(data)
        except json.JSONDecodeError as e:
            return ErrorMessage(message=f"Invalid JSON: {e}").model_dump(), user
        except (ValueError, AttributeError) as e:
            return ErrorMessage(message=str(e)).model_dump(), user

        if isinstance(message, AuthMessage):
            return await self._handle_auth(message)

        if isinstance(message, RefreshTokenMessage):
            return await self._handle_refresh(message), user

        if user is None:
            return ErrorMessage(
                message="Not authenticated. Send auth message first.",
                code="AUTH_REQUIRED"
            ).model_dump(), None

        if isinstance(message, PingMessage):
            return PongMessage().model_dump(), user

        return ErrorMessage(message="Unhandled message type").model_dump(), user

    async def _handle_auth(self, message: AuthMessage) -> tuple[dict, Optional[AuthenticatedUser]]:
        try:
            user = await self.auth.authenticate(message.token)
        except TokenError as e:
            return ErrorMessage(message=str(e), code="AUTH_FAILED").model_dump(), None

        logger.info(f"{user.poker_name} subscribed to change feed")
        return AuthSuccessMessage(
            user_id=user.user_id,
            poker_name=user.poker_name,
            role=user.role.value,
        ).model_dump(), user

    async def _handle_refresh(self, message: RefreshTokenMessage) -> dict:
        try:
            if self.refresh is not None:
                new_token = await self.refresh(message.refresh_token)
            else:
                new_token = refresh_access_token(message.refresh_token)
        except TokenError as e:
            return ErrorMessage(message=str(e), code="REFRESH_FAILED").model_dump()
        return TokenRefreshedMessage(access_token=new_token).model_dump()


def change_message_for(event: dict[str, Any], user: Optional[AuthenticatedUser]) -> Optional[dict]:
    """The change message to send ``user``, or None if they may not see it."""
    if user is None or not is_visible_to(event, user.user_id, user.is_staff):
        return None
    return ChangeMessage(**event).model_dump()
