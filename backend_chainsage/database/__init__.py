"""
Durable storage — append-only object store for event logs and registry snapshots.

SQLite by default; PostgreSQL (or any SQLAlchemy URL) through DATABASE_URL.
"""

from backend_chainsage.database.object_store import (
    ObjectStore,
    RetrieveResult,
    SQLAlchemyObjectStore,
    StoredObject,
    StoredObjectRef,
)

__all__ = [
    "ObjectStore",
    "RetrieveResult",
    "SQLAlchemyObjectStore",
    "StoredObject",
    "StoredObjectRef",
]
