"""Shared plumbing for the workflow managers."""
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from cardroom.auth.middleware import AuthenticatedUser
from cardroom.errors import AuthorizationError
from cardroom.state.change_feed import ChangeFeed
from cardroom.state.store import Store
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def ensure_self_or_staff(actor: AuthenticatedUser, patron_id: str, action: str) -> None:
    """Patrons may act only on their own records; staff on anyone's.

    Raises:
        AuthorizationError: If a patron targets another patron's record.
    """
    if actor.user_id != patron_id and not actor.is_staff:
        logger.warning(f"Rejected {action} by {actor.user_id} on records of {patron_id}")
        raise AuthorizationError(f"Cannot {action} for another patron")


def ensure_self(actor: AuthenticatedUser, patron_id: str, action: str) -> None:
    """Only the patron themself may perform this step.

    Raises:
        AuthorizationError: If anyone else attempts it, staff included.
    """
    if actor.user_id != patron_id:
        logger.warning(f"Rejected {action} by {actor.user_id} on records of {patron_id}")
        raise AuthorizationError(f"Only the patron can {action}")


class Manager:
    """Base class holding the store, change feed and clock."""

    def __init__(self, store: Store, feed: Optional[ChangeFeed] = None, clock: Optional[Clock] = None):
        self.store = store
        self.feed = feed
        self.clock = clock or utc_now

    async def _notify(self, collection: str, record_id: str, patron_id: Optional[str], data: dict[str, Any]) -> None:
        """Publish a committed change; no-op without a feed."""
        if self.feed is not None:
            await self.feed.publish(collection, record_id, patron_id, data)
