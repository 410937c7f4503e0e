"""Persistence and change notification."""
from .store import Store, UnitOfWork, PATCHABLE_FIELDS
from .memory_store import MemoryStore
from .change_feed import ChangeFeed, LocalChangeFeed, is_visible_to
from .redis_client import redis_client

__all__ = [
    "Store",
    "UnitOfWork",
    "PATCHABLE_FIELDS",
    "MemoryStore",
    "ChangeFeed",
    "LocalChangeFeed",
    "is_visible_to",
    "redis_client",
]
