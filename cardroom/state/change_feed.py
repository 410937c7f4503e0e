"""Change notifications published after a commit.

Events carry the latest committed state of one record. They are a read-side
convenience for dashboards; no write path ever waits on or sequences by them.
"""
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import RedisError

from cardroom.config import config
from cardroom.state.redis_client import RedisClient, redis_client
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[dict[str, Any]], Awaitable[None]]


class ChangeFeed:
    """Publishes record changes on a Redis pub/sub channel."""

    def __init__(self, client: Optional[RedisClient] = None, channel: Optional[str] = None):
        self.client = client or redis_client
        self.channel = channel or config.change_channel

    async def publish(
        self,
        collection: str,
        record_id: str,
        patron_id: Optional[str],
        data: dict[str, Any],
    ) -> None:
        """Publish one change event.

        Failures are logged and dropped: the change is already committed.
        """
        event = {
            "collection": collection,
            "id": record_id,
            "patron_id": patron_id,
            "data": data,
            "published_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._send(event)
        except (RedisError, RuntimeError, OSError) as e:
            logger.warning(f"Change event for {collection}/{record_id} not published: {e}")

    async def _send(self, event: dict[str, Any]) -> None:
        await self.client.publish_json(self.channel, event)


class LocalChangeFeed(ChangeFeed):
    """Delivers events to in-process listeners; used without Redis."""

    def __init__(self):
        self.client = None
        self.channel = None
        self.listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    async def _send(self, event: dict[str, Any]) -> None:
        for listener in self.listeners:
            await listener(event)


def is_visible_to(event: dict[str, Any], user_id: str, is_staff: bool) -> bool:
    """Staff see every event; patrons only events about their own records."""
    return is_staff or event.get("patron_id") == user_id
