"""
Registry — live map of monitored entities with dual-tier persistence.
"""

from backend_chainsage.registry.models import (
    EntityKind,
    EntityStatus,
    MonitoredEntity,
    RegistryEvent,
    RegistryEventType,
)
from backend_chainsage.registry.registry import Registry
from backend_chainsage.registry.snapshot import (
    BackupFileSnapshotProvider,
    DurableSnapshotProvider,
    SnapshotProvider,
)

__all__ = [
    "BackupFileSnapshotProvider",
    "DurableSnapshotProvider",
    "EntityKind",
    "EntityStatus",
    "MonitoredEntity",
    "Registry",
    "RegistryEvent",
    "RegistryEventType",
    "SnapshotProvider",
]
