"""
Registry snapshot providers.

A provider persists and restores the whole entity list. The registry tries
providers in priority order at cold start; each provider raises
PersistenceDegraded on failure and leaves the choice of fallback to the caller.
All methods are blocking; the registry runs them in an executor.
"""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.core.exceptions import PersistenceDegraded
from backend_chainsage.database.object_store import ObjectStore
from backend_chainsage.registry.models import MonitoredEntity

logger = get_logger(__name__)

SNAPSHOT_DATA_TYPE = "monitored_wallets"
# Older snapshot rows beyond this many are deleted after each durable save.
SNAPSHOT_RETENTION = 5


class SnapshotProvider(ABC):
    """Abstract snapshot tier."""

    name: str = "snapshot"
    # Local tiers are also written after every single-entity risk update.
    local: bool = False

    @abstractmethod
    def load(self) -> list[MonitoredEntity]:
        """Return the last saved list (possibly empty). Raise PersistenceDegraded on failure."""
        ...

    @abstractmethod
    def save(self, entities: list[MonitoredEntity]) -> None:
        """Replace the saved list. Raise PersistenceDegraded on failure."""
        ...


def _parse_entities(rows: object, tier: str) -> list[MonitoredEntity]:
    if not isinstance(rows, list):
        raise PersistenceDegraded(tier, f"snapshot is {type(rows).__name__}, expected list")
    entities: list[MonitoredEntity] = []
    for row in rows:
        try:
            entities.append(MonitoredEntity.from_dict(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("snapshot_row_skipped", tier=tier, error=str(e))
    return entities


class DurableSnapshotProvider(SnapshotProvider):
    """Whole list stored as one object tagged monitored_wallets; latest wins."""

    name = "durable"

    def __init__(self, object_store: ObjectStore, retention: int = SNAPSHOT_RETENTION) -> None:
        self._store = object_store
        self._retention = max(1, retention)

    def load(self) -> list[MonitoredEntity]:
        try:
            latest = self._store.latest(SNAPSHOT_DATA_TYPE)
        except Exception as e:
            raise PersistenceDegraded(self.name, str(e)) from e
        if latest is None:
            return []
        return _parse_entities(latest.payload, self.name)

    def save(self, entities: list[MonitoredEntity]) -> None:
        # An empty list is still written so a full removal survives a restart.
        try:
            self._store.store(SNAPSHOT_DATA_TYPE, [e.to_dict() for e in entities])
        except Exception as e:
            raise PersistenceDegraded(self.name, str(e)) from e
        try:
            self._store.prune(SNAPSHOT_DATA_TYPE, self._retention)
        except Exception as e:
            logger.warning("snapshot_prune_failed", tier=self.name, error=str(e))


class BackupFileSnapshotProvider(SnapshotProvider):
    """JSON array on local disk, replaced atomically."""

    name = "backup_file"
    local = True

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[MonitoredEntity]:
        if not self._path.exists():
            return []
        try:
            rows = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceDegraded(self.name, str(e)) from e
        return _parse_entities(rows, self.name)

    def save(self, entities: list[MonitoredEntity]) -> None:
        body = json.dumps([e.to_dict() for e in entities], indent=2, default=str)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=self._path.name, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(body)
                os.replace(tmp, self._path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise PersistenceDegraded(self.name, str(e)) from e
