"""
Risk analysis models: risk levels, verdicts, activity summaries.

A RiskVerdict is produced fresh on every analysis call and never mutated;
the registry only keeps the latest one. ActivitySummary is the normalized
input to both the AI backend and the deterministic rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from backend_chainsage.activity.models import WEI_PER_ETH


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @property
    def score(self) -> int:
        """Numeric risk score 0-100 derived from the level."""
        return RISK_SCORES[self]

    @classmethod
    def parse(cls, value: Any, default: RiskLevel | None = None) -> RiskLevel:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            if default is None:
                raise
            return default


_RISK_ORDER = (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)

RISK_SCORES: dict[RiskLevel, int] = {
    RiskLevel.CRITICAL: 90,
    RiskLevel.HIGH: 75,
    RiskLevel.MEDIUM: 50,
    RiskLevel.LOW: 25,
}


def escalate(current: RiskLevel, target: RiskLevel) -> RiskLevel:
    """Return the higher of two levels; a level never goes down within one evaluation."""
    return target if target.rank > current.rank else current


class VerdictSource(str, Enum):
    AI = "ai"
    RULE_BASED = "rule-based"


@dataclass(frozen=True)
class RiskVerdict:
    """Outcome of one wallet analysis."""

    is_unusual: bool
    risk_level: RiskLevel
    confidence: float
    anomalies: frozenset[str]
    source: VerdictSource
    recommendations: tuple[str, ...] = ()

    @property
    def risk_score(self) -> int:
        return self.risk_level.score

    @property
    def ai_used(self) -> bool:
        return self.source == VerdictSource.AI

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_unusual": self.is_unusual,
            "risk_level": self.risk_level.value,
            "risk_score": self.risk_score,
            "confidence": round(self.confidence, 4),
            "anomalies": sorted(self.anomalies),
            "recommendations": list(self.recommendations),
            "source": self.source.value,
        }


@dataclass(frozen=True)
class ActivitySummary:
    """
    Normalized wallet activity used for scoring.

    Window aggregates cover the last window_sec seconds (24h by default);
    lifetime figures are what the indexer returned for the account.
    """

    address: str
    recent_transactions: list[dict[str, Any]] = field(default_factory=list)
    """Capped sample of recent transactions (newest first)."""
    recent_token_transfers: list[dict[str, Any]] = field(default_factory=list)
    daily_tx_count: int = 0
    daily_volume_wei: int = 0
    daily_failed_count: int = 0
    daily_token_transfer_count: int = 0
    daily_nft_transfer_count: int = 0
    lifetime_tx_count: int = 0
    balance_wei: str | None = None
    window_sec: int = 86400

    @classmethod
    def empty(cls, address: str) -> ActivitySummary:
        """Zeroed activity, used for the cold-start analysis of a new entity."""
        return cls(address=address)

    @property
    def daily_volume_eth(self) -> Decimal:
        return Decimal(self.daily_volume_wei) / Decimal(WEI_PER_ETH)

    @property
    def avg_amount_wei(self) -> int:
        if self.daily_tx_count <= 0:
            return 0
        return self.daily_volume_wei // self.daily_tx_count

    @property
    def failed_ratio(self) -> float:
        if self.daily_tx_count <= 0:
            return 0.0
        return self.daily_failed_count / self.daily_tx_count

    @property
    def token_transfers_present(self) -> bool:
        return bool(self.recent_token_transfers) or self.daily_token_transfer_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "recent_transactions": self.recent_transactions,
            "recent_token_transfers": self.recent_token_transfers,
            "daily_tx_count": self.daily_tx_count,
            "daily_volume_wei": str(self.daily_volume_wei),
            "daily_volume_eth": str(self.daily_volume_eth.normalize()),
            "avg_amount_wei": str(self.avg_amount_wei),
            "daily_failed_count": self.daily_failed_count,
            "daily_token_transfer_count": self.daily_token_transfer_count,
            "daily_nft_transfer_count": self.daily_nft_transfer_count,
            "lifetime_tx_count": self.lifetime_tx_count,
            "balance_wei": self.balance_wei,
            "window_sec": self.window_sec,
        }


class TransactionLabel(str, Enum):
    NORMAL = "Normal"
    SUSPICIOUS = "Suspicious"
    RISKY = "Risky"


@dataclass(frozen=True)
class TransactionClassification:
    """Single-transaction classification (AI or rule-based)."""

    transaction_hash: str
    classification: TransactionLabel
    confidence: float
    reasons: tuple[str, ...]
    risk_score: float
    """0-1."""
    source: VerdictSource

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_hash": self.transaction_hash,
            "classification": self.classification.value,
            "confidence": round(self.confidence, 4),
            "reasons": list(self.reasons),
            "risk_score": round(self.risk_score, 4),
            "source": self.source.value,
        }
