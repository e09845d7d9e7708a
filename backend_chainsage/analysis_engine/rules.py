"""
Deterministic fallback rules for wallet risk and transaction classification.

Used when the AI backend is unavailable or returns something unparseable.
Every rule is explainable: it adds a named anomaly and can only raise the
risk level, never lower it. Thresholds live in RuleConfig.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from backend_chainsage.activity.models import wei_to_eth
from backend_chainsage.analysis_engine.models import (
    ActivitySummary,
    RiskLevel,
    RiskVerdict,
    TransactionClassification,
    TransactionLabel,
    VerdictSource,
    escalate,
)
from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.chainsage_logging.logger import short_address

logger = get_logger(__name__)

ANOMALY_HIGH_FREQUENCY = "high_frequency_transactions"
ANOMALY_MODERATE_FREQUENCY = "moderate_frequency_transactions"
ANOMALY_LARGE_VOLUME = "large_volume_spike"
ANOMALY_ELEVATED_VOLUME = "elevated_volume"
ANOMALY_HIGH_FAILURE_RATE = "high_failure_rate"
ANOMALY_HIGH_TOKEN_ACTIVITY = "high_token_activity"


@dataclass
class RuleConfig:
    """Thresholds for the fallback rules. Volumes are in native units (ETH)."""

    high_tx_count: int = 100
    moderate_tx_count: int = 50
    large_volume_eth: Decimal = Decimal(100)
    elevated_volume_eth: Decimal = Decimal(10)
    failure_ratio: float = 0.30
    token_transfer_count: int = 20

    base_confidence: float = 0.6
    confidence_step: float = 0.1
    max_confidence: float = 0.9
    lifetime_tx_confident: int = 100

    # Transaction classification
    risky_tx_value_eth: Decimal = Decimal(100)
    suspicious_tx_value_eth: Decimal = Decimal(10)
    suspicious_gas_used: int = 1_000_000


def evaluate_wallet_rules(
    summary: ActivitySummary,
    config: RuleConfig | None = None,
) -> RiskVerdict:
    """
    Score a wallet summary with the fallback rules.

    Rules run in a fixed order; each one escalates the level and adds an
    anomaly, so the result is the same whichever rules fire.
    """
    cfg = config or RuleConfig()
    risk = RiskLevel.LOW
    unusual = False
    anomalies: set[str] = set()

    tx_count = summary.daily_tx_count
    if tx_count > cfg.high_tx_count:
        risk = escalate(risk, RiskLevel.HIGH)
        unusual = True
        anomalies.add(ANOMALY_HIGH_FREQUENCY)
    elif tx_count > cfg.moderate_tx_count:
        risk = escalate(risk, RiskLevel.MEDIUM)
        anomalies.add(ANOMALY_MODERATE_FREQUENCY)

    volume = summary.daily_volume_eth
    if volume > cfg.large_volume_eth:
        risk = escalate(risk, RiskLevel.HIGH)
        unusual = True
        anomalies.add(ANOMALY_LARGE_VOLUME)
    elif volume > cfg.elevated_volume_eth:
        risk = escalate(risk, RiskLevel.MEDIUM)
        anomalies.add(ANOMALY_ELEVATED_VOLUME)

    if tx_count > 0 and summary.failed_ratio > cfg.failure_ratio:
        risk = escalate(risk, RiskLevel.MEDIUM)
        anomalies.add(ANOMALY_HIGH_FAILURE_RATE)

    if summary.daily_token_transfer_count > cfg.token_transfer_count:
        risk = escalate(risk, RiskLevel.MEDIUM)
        anomalies.add(ANOMALY_HIGH_TOKEN_ACTIVITY)

    if risk.rank >= RiskLevel.HIGH.rank:
        unusual = True

    confidence = cfg.base_confidence
    if summary.lifetime_tx_count > cfg.lifetime_tx_confident:
        confidence += cfg.confidence_step
    if tx_count > 0:
        confidence += cfg.confidence_step
    if summary.token_transfers_present:
        confidence += cfg.confidence_step
    confidence = round(min(confidence, cfg.max_confidence), 4)

    recommendations: tuple[str, ...] = ()
    if unusual:
        recommendations = ("monitor_closely", "flag_for_review")
    elif anomalies:
        recommendations = ("monitor_closely",)

    verdict = RiskVerdict(
        is_unusual=unusual,
        risk_level=risk,
        confidence=confidence,
        anomalies=frozenset(anomalies),
        source=VerdictSource.RULE_BASED,
        recommendations=recommendations,
    )
    logger.debug(
        "rule_verdict",
        wallet_id=short_address(summary.address),
        risk_level=risk.value,
        is_unusual=unusual,
        anomalies=sorted(anomalies),
        confidence=confidence,
    )
    return verdict


def classify_transaction_rules(
    transaction: dict[str, Any],
    config: RuleConfig | None = None,
) -> TransactionClassification:
    """Rule-based label for one transaction: value size, failure and gas usage."""
    cfg = config or RuleConfig()
    reasons: list[str] = []
    label = TransactionLabel.NORMAL

    value_eth = wei_to_eth(transaction.get("value") or transaction.get("amount"))
    if value_eth > cfg.risky_tx_value_eth:
        label = TransactionLabel.RISKY
        reasons.append("very_large_amount")
    elif value_eth > cfg.suspicious_tx_value_eth:
        label = TransactionLabel.SUSPICIOUS
        reasons.append("large_amount")

    is_error = transaction.get("is_error", transaction.get("isError"))
    if is_error in (True, "1", 1):
        if label == TransactionLabel.NORMAL:
            label = TransactionLabel.SUSPICIOUS
        reasons.append("failed_transaction")

    try:
        gas_used = int(str(transaction.get("gas_used") or transaction.get("gasUsed") or 0))
    except ValueError:
        gas_used = 0
    if gas_used > cfg.suspicious_gas_used:
        if label == TransactionLabel.NORMAL:
            label = TransactionLabel.SUSPICIOUS
        reasons.append("unusual_gas_usage")

    risk_score = {
        TransactionLabel.NORMAL: 0.2,
        TransactionLabel.SUSPICIOUS: 0.5,
        TransactionLabel.RISKY: 0.85,
    }[label]
    return TransactionClassification(
        transaction_hash=str(transaction.get("hash") or ""),
        classification=label,
        confidence=cfg.base_confidence,
        reasons=tuple(reasons) or ("typical_pattern",),
        risk_score=risk_score,
        source=VerdictSource.RULE_BASED,
    )
