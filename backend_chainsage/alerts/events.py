"""
Risk events emitted by the aggregation pipeline when a verdict is unusual.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from backend_chainsage.analysis_engine.models import ActivitySummary, RiskVerdict


class BroadcastEvent(Protocol):
    """Anything the broadcaster can log and fan out."""

    log_type: str
    address: str
    timestamp: float

    @property
    def severity(self) -> str | None: ...

    def to_dict(self) -> dict[str, Any]: ...

    def to_message(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class RiskEvent:
    address: str
    verdict: RiskVerdict
    daily_tx_count: int = 0
    daily_volume_eth: str = "0"
    alert_count: int = 0
    timestamp: float = field(default_factory=time.time)

    log_type = "unusual_activity"

    @classmethod
    def from_analysis(
        cls,
        address: str,
        verdict: RiskVerdict,
        summary: ActivitySummary,
        alert_count: int = 0,
    ) -> RiskEvent:
        return cls(
            address=address,
            verdict=verdict,
            daily_tx_count=summary.daily_tx_count,
            daily_volume_eth=str(summary.daily_volume_eth.normalize()),
            alert_count=alert_count,
        )

    @property
    def severity(self) -> str:
        return self.verdict.risk_level.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.log_type,
            "address": self.address,
            "severity": self.severity,
            "analysis": self.verdict.to_dict(),
            "daily_tx_count": self.daily_tx_count,
            "daily_volume_eth": self.daily_volume_eth,
            "alert_count": self.alert_count,
            "timestamp": self.timestamp,
        }

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "unusual_activity_detected",
            "data": {
                "address": self.address,
                "analysis": self.verdict.to_dict(),
                "daily_tx_count": self.daily_tx_count,
                "daily_volume_eth": self.daily_volume_eth,
            },
            "timestamp": self.timestamp,
        }
