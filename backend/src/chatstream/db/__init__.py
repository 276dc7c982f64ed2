"""Storage backends."""

from chatstream.config import settings
from chatstream.db.base import DocumentStore
from chatstream.db.memory import InMemoryStore
from chatstream.db.postgres import Database


def create_store() -> DocumentStore:
    """Build the store selected by ``settings.store_backend``."""
    if settings.store_backend == "memory":
        return InMemoryStore()
    return Database()


# Global store instance
db = create_store()

__all__ = ["Database", "DocumentStore", "InMemoryStore", "create_store", "db"]
