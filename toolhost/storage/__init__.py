"""
Storage Module

Persistence for server definitions, tool descriptors, permissions and
the execution log.
"""

from toolhost.config.settings import StorageSettings
from toolhost.storage.base import ToolHostStore
from toolhost.storage.memory import InMemoryStore
from toolhost.storage.sqlite import SQLiteStore


async def create_store(settings: StorageSettings) -> ToolHostStore:
    """Build and initialize the configured backend."""
    if settings.backend == "memory":
        return InMemoryStore()

    store = SQLiteStore(settings.database_path)
    await store.initialize()
    return store


__all__ = [
    "InMemoryStore",
    "SQLiteStore",
    "ToolHostStore",
    "create_store",
]
