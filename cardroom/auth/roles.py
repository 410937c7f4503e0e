"""Role definitions and authorization."""
from enum import Enum
from functools import wraps
from typing import Callable, Any

from cardroom.errors import AuthorizationError
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    """User roles, lowest privilege first."""
    PATRON = "patron"
    STAFF = "staff"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return list(Role).index(self)

    def satisfies(self, required: "Role") -> bool:
        """Check whether this role meets or exceeds the required one."""
        return self.rank >= required.rank


def ensure_role(actor: Any, required_role: Role, action: str = "this operation") -> None:
    """Raise AuthorizationError unless the actor holds the required role.

    Args:
        actor: Authenticated caller with ``user_id`` and ``role``.
        required_role: The minimum role required.
        action: Description used in the error message and log line.
    """
    if not actor.role.satisfies(required_role):
        logger.warning(
            f"Rejected {action} by {actor.user_id} (role {actor.role.value}, "
            f"requires {required_role.value})"
        )
        raise AuthorizationError(f"{action} requires {required_role.value} role")


def require_role(required_role: Role) -> Callable:
    """Decorator to require a specific role for a manager method.

    The wrapped coroutine must take the acting user as its first argument
    after ``self``.

    Args:
        required_role: The minimum role required.

    Returns:
        Decorator function.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self, actor: Any, *args: Any, **kwargs: Any) -> Any:
            ensure_role(actor, required_role, func.__name__)
            return await func(self, actor, *args, **kwargs)
        return wrapper
    return decorator
