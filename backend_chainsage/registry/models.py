"""
Registry data model: monitored entities and registry events.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from backend_chainsage.analysis_engine.models import RiskLevel
from backend_chainsage.config.settings import DEFAULT_ALERT_THRESHOLD, DEFAULT_CHAIN_ID


class EntityKind(str, Enum):
    WALLET = "wallet"
    TOKEN = "token"
    CONTRACT = "contract"
    PROJECT = "project"


class EntityStatus(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"


class RegistryEventType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


@dataclass
class MonitoredEntity:
    """
    One monitored address. address is the unique key (lower-case).
    risk_score always follows risk_level.
    """

    address: str
    kind: EntityKind = EntityKind.WALLET
    chain_id: str = DEFAULT_CHAIN_ID
    alert_threshold: float = DEFAULT_ALERT_THRESHOLD
    status: EntityStatus = EntityStatus.ACTIVE
    risk_level: RiskLevel = RiskLevel.LOW
    risk_score: int = RiskLevel.LOW.score
    has_alerts: bool = False
    alert_count: int = 0
    added_at: float = field(default_factory=time.time)
    last_checked_at: float | None = None
    risk_analysis: dict[str, Any] | None = None

    @property
    def is_active(self) -> bool:
        return self.status == EntityStatus.ACTIVE

    def copy(self) -> MonitoredEntity:
        return MonitoredEntity.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        data["risk_level"] = self.risk_level.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonitoredEntity:
        """Rebuild from a snapshot row. Unknown enum values fall back to defaults."""
        address = str(data["address"]).strip().lower()
        try:
            kind = EntityKind(str(data.get("kind") or "wallet").lower())
        except ValueError:
            kind = EntityKind.WALLET
        try:
            status = EntityStatus(str(data.get("status") or "active").lower())
        except ValueError:
            status = EntityStatus.ACTIVE
        level = RiskLevel.parse(data.get("risk_level") or "low", default=RiskLevel.LOW)
        last_checked = data.get("last_checked_at")
        return cls(
            address=address,
            kind=kind,
            chain_id=str(data.get("chain_id") or DEFAULT_CHAIN_ID),
            alert_threshold=float(data.get("alert_threshold", DEFAULT_ALERT_THRESHOLD)),
            status=status,
            risk_level=level,
            risk_score=level.score,
            has_alerts=bool(data.get("has_alerts", False)),
            alert_count=int(data.get("alert_count", 0)),
            added_at=float(data.get("added_at") or time.time()),
            last_checked_at=float(last_checked) if last_checked is not None else None,
            risk_analysis=data.get("risk_analysis"),
        )


_event_sequence = itertools.count(1)


@dataclass(frozen=True)
class RegistryEvent:
    """Write-once record of an add or remove. sequence breaks timestamp ties."""

    event_type: RegistryEventType
    address: str
    threshold: float
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    sequence: int = field(default_factory=lambda: next(_event_sequence))

    log_type = "wallet_event"

    @property
    def severity(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.log_type,
            "event_type": self.event_type.value,
            "address": self.address,
            "threshold": self.threshold,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
        }

    def to_message(self) -> dict[str, Any]:
        """Live-subscriber message shape."""
        return {
            "type": "wallet_monitoring_update",
            "data": {
                "action": self.event_type.value,
                "address": self.address,
                "threshold": self.threshold,
                "metadata": self.metadata,
            },
            "timestamp": self.timestamp,
        }
