"""
Durable object store — SQLAlchemy-backed append-only JSON blobs tagged by type.

Used for the event log (wallet events, unusual-activity alerts, AI
classifications) and for whole-registry snapshots (type `monitored_wallets`).
Uses DATABASE_URL for PostgreSQL when set; otherwise SQLite. Rows are never
updated; the autoincrement id gives a total order of appends, so ties on
created_at are broken by insertion order. Only superseded snapshot rows are
ever deleted (prune), event-log rows are kept.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from eth_utils import keccak
from sqlalchemy import Column, Float, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.core.exceptions import PersistenceDegraded

logger = get_logger(__name__)

Base = declarative_base()

MAX_PAGE_SIZE = 1000


class StoredObjectRow(Base):
    """One stored blob. payload is JSON text; filter columns are copied out of it."""

    __tablename__ = "stored_objects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    object_id = Column(String(66), unique=True, nullable=False, index=True)
    content_hash = Column(String(66), nullable=False)
    data_type = Column(String(64), nullable=False, index=True)
    event_type = Column(String(32), nullable=True, index=True)
    address = Column(String(64), nullable=True, index=True)
    severity = Column(String(16), nullable=True, index=True)
    payload = Column(Text, nullable=False)
    created_at = Column(Float, nullable=False, index=True)  # Unix seconds


@dataclass(frozen=True)
class StoredObjectRef:
    """Receipt returned by store()."""

    id: int
    object_id: str
    content_hash: str
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "log_id": self.object_id,
            "hash": self.content_hash,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class StoredObject:
    id: int
    object_id: str
    data_type: str
    payload: Any
    created_at: float
    event_type: str | None = None
    address: str | None = None
    severity: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.object_id,
            "type": self.data_type,
            "event_type": self.event_type,
            "address": self.address,
            "severity": self.severity,
            "timestamp": self.created_at,
            "data": self.payload,
        }


@dataclass
class RetrieveResult:
    items: list[StoredObject] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "logs": [i.to_dict() for i in self.items],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
        }


class ObjectStore(ABC):
    """Abstract durable store; implement for SQLAlchemy or a remote storage network."""

    def init_db(self) -> None:
        """Prepare storage (create tables etc.). Default: nothing to do."""

    @abstractmethod
    def store(
        self,
        data_type: str,
        payload: Any,
        *,
        address: str | None = None,
        severity: str | None = None,
        event_type: str | None = None,
    ) -> StoredObjectRef:
        """Append one JSON-serializable payload. Raises on failure."""
        ...

    @abstractmethod
    def retrieve(
        self,
        data_type: str | None = None,
        *,
        limit: int = 100,
        page: int = 1,
        address: str | None = None,
        severity: str | None = None,
        event_type: str | None = None,
        start_time: float | None = None,
        end_time: float | None = None,
        newest_first: bool = True,
    ) -> RetrieveResult:
        """Return one page of stored objects matching the filters. Raises on failure."""
        ...

    def latest(self, data_type: str) -> StoredObject | None:
        """Most recently appended object of a type, or None."""
        result = self.retrieve(data_type, limit=1)
        return result.items[0] if result.items else None

    def prune(self, data_type: str, keep: int) -> int:
        """Delete all but the newest `keep` objects of a type. Default: keep everything."""
        return 0


def _hash_hex(data: bytes) -> str:
    return "0x" + keccak(data).hex()


class SQLAlchemyObjectStore(ObjectStore):
    """ObjectStore over any SQLAlchemy URL (sqlite:///path or postgresql://...)."""

    def __init__(self, database_url: str) -> None:
        self._url = database_url
        connect_args: dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self._engine = create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        self._seq = 0

    @property
    def url_for_log(self) -> str:
        return self._url.split("?")[0].split("//")[-1]

    def init_db(self) -> None:
        """Create tables if they do not exist. Safe to call on every startup."""
        try:
            Base.metadata.create_all(bind=self._engine)
            logger.info("object_store_init_db", url=self.url_for_log)
        except Exception as e:
            logger.exception("object_store_init_db_failed", error=str(e))
            raise PersistenceDegraded("durable", str(e)) from e

    def dispose(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """One session; commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def store(
        self,
        data_type: str,
        payload: Any,
        *,
        address: str | None = None,
        severity: str | None = None,
        event_type: str | None = None,
    ) -> StoredObjectRef:
        body = json.dumps(payload, sort_keys=True, default=str)
        now = time.time()
        self._seq += 1
        content_hash = _hash_hex(body.encode("utf-8"))
        object_id = _hash_hex(f"{data_type}:{now}:{self._seq}:{body}".encode("utf-8"))
        try:
            with self._session_scope() as session:
                row = StoredObjectRow(
                    object_id=object_id,
                    content_hash=content_hash,
                    data_type=data_type,
                    event_type=event_type,
                    address=address.lower() if address else None,
                    severity=severity,
                    payload=body,
                    created_at=now,
                )
                session.add(row)
                session.flush()
                row_id = row.id
        except Exception as e:
            logger.exception("object_store_write_failed", data_type=data_type, error=str(e))
            raise
        logger.debug("object_stored", data_type=data_type, log_id=object_id[:18], size=len(body))
        return StoredObjectRef(id=row_id, object_id=object_id, content_hash=content_hash, timestamp=now)

    def retrieve(
        self,
        data_type: str | None = None,
        *,
        limit: int = 100,
        page: int = 1,
        address: str | None = None,
        severity: str | None = None,
        event_type: str | None = None,
        start_time: float | None = None,
        end_time: float | None = None,
        newest_first: bool = True,
    ) -> RetrieveResult:
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        page = max(1, int(page))
        try:
            with self._session_scope() as session:
                q = session.query(StoredObjectRow)
                if data_type:
                    q = q.filter(StoredObjectRow.data_type == data_type)
                if address:
                    q = q.filter(StoredObjectRow.address == address.lower())
                if severity:
                    q = q.filter(StoredObjectRow.severity == severity)
                if event_type:
                    q = q.filter(StoredObjectRow.event_type == event_type)
                if start_time is not None:
                    q = q.filter(StoredObjectRow.created_at >= start_time)
                if end_time is not None:
                    q = q.filter(StoredObjectRow.created_at <= end_time)
                total = q.count()
                order = StoredObjectRow.id.desc() if newest_first else StoredObjectRow.id.asc()
                rows = q.order_by(order).offset((page - 1) * limit).limit(limit).all()
                items = [
                    StoredObject(
                        id=r.id,
                        object_id=r.object_id,
                        data_type=r.data_type,
                        payload=json.loads(r.payload),
                        created_at=r.created_at,
                        event_type=r.event_type,
                        address=r.address,
                        severity=r.severity,
                    )
                    for r in rows
                ]
        except Exception as e:
            logger.exception("object_store_read_failed", data_type=data_type, error=str(e))
            raise
        return RetrieveResult(items=items, total=total, page=page, limit=limit)

    def prune(self, data_type: str, keep: int) -> int:
        keep = max(1, int(keep))
        try:
            with self._session_scope() as session:
                newest = (
                    session.query(StoredObjectRow.id)
                    .filter(StoredObjectRow.data_type == data_type)
                    .order_by(StoredObjectRow.id.desc())
                    .offset(keep - 1)
                    .limit(1)
                    .scalar()
                )
                if newest is None:
                    return 0
                deleted = (
                    session.query(StoredObjectRow)
                    .filter(StoredObjectRow.data_type == data_type, StoredObjectRow.id < newest)
                    .delete(synchronize_session=False)
                )
        except Exception as e:
            logger.exception("object_store_prune_failed", data_type=data_type, error=str(e))
            raise
        if deleted:
            logger.debug("object_store_pruned", data_type=data_type, deleted=deleted, kept=keep)
        return deleted
