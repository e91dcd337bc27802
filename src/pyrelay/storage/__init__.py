"""Storage backends for execution and job documents.

Provides multiple storage implementations behind a common interface:
    - DocumentStore: Abstract interface
    - SqliteDocumentStore: SQLite-backed storage
    - RedisDocumentStore: Redis-backed shared storage
    - InMemoryDocumentStore: In-memory storage for testing

Design: Adapter Pattern + Dependency Inversion
    The coordinator depends on DocumentStore, not on a backend.
"""

from pyrelay.storage.base import (
    ConcurrencyError,
    DocumentStore,
    DuplicateJobError,
    StorageError,
)

# Backends are imported lazily so optional drivers are only needed when used


def __getattr__(name: str):
    """Lazy import storage implementations."""
    if name == "InMemoryDocumentStore":
        from pyrelay.storage.memory import InMemoryDocumentStore

        return InMemoryDocumentStore
    elif name == "RedisDocumentStore":
        from pyrelay.storage.redis import RedisDocumentStore

        return RedisDocumentStore
    elif name == "SqliteDocumentStore":
        from pyrelay.storage.sqlite import SqliteDocumentStore

        return SqliteDocumentStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ConcurrencyError",
    "DocumentStore",
    "DuplicateJobError",
    "StorageError",
    "SqliteDocumentStore",
    "RedisDocumentStore",
    "InMemoryDocumentStore",
]
