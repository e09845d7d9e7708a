"""
Tests for the deterministic fallback rules (wallet verdicts and transaction labels).
"""

from __future__ import annotations

from backend_chainsage.analysis_engine.models import ActivitySummary, RiskLevel, TransactionLabel, VerdictSource
from backend_chainsage.analysis_engine.rules import (
    ANOMALY_ELEVATED_VOLUME,
    ANOMALY_HIGH_FAILURE_RATE,
    ANOMALY_HIGH_FREQUENCY,
    ANOMALY_HIGH_TOKEN_ACTIVITY,
    ANOMALY_LARGE_VOLUME,
    ANOMALY_MODERATE_FREQUENCY,
    classify_transaction_rules,
    evaluate_wallet_rules,
)

from helpers import ADDR_A, WEI


def _summary(**kwargs) -> ActivitySummary:
    return ActivitySummary(address=ADDR_A, **kwargs)


def test_high_frequency_low_volume_is_high_and_unusual():
    """150 txs / 5 ETH in 24h -> high, unusual, high_frequency_transactions."""
    verdict = evaluate_wallet_rules(_summary(daily_tx_count=150, daily_volume_wei=5 * WEI))
    assert verdict.risk_level == RiskLevel.HIGH
    assert verdict.is_unusual is True
    assert ANOMALY_HIGH_FREQUENCY in verdict.anomalies
    assert ANOMALY_LARGE_VOLUME not in verdict.anomalies
    assert verdict.source == VerdictSource.RULE_BASED
    assert verdict.risk_score == 75


def test_large_volume_few_txs_is_high_and_unusual():
    """5 txs / 150 ETH in 24h -> high, unusual, large_volume_spike."""
    verdict = evaluate_wallet_rules(_summary(daily_tx_count=5, daily_volume_wei=150 * WEI))
    assert verdict.risk_level == RiskLevel.HIGH
    assert verdict.is_unusual is True
    assert ANOMALY_LARGE_VOLUME in verdict.anomalies
    assert ANOMALY_HIGH_FREQUENCY not in verdict.anomalies


def test_all_below_thresholds_is_low():
    verdict = evaluate_wallet_rules(_summary(daily_tx_count=3, daily_volume_wei=WEI))
    assert verdict.risk_level == RiskLevel.LOW
    assert verdict.is_unusual is False
    assert verdict.anomalies == frozenset()
    assert verdict.recommendations == ()


def test_moderate_signals_escalate_to_medium_only():
    verdict = evaluate_wallet_rules(_summary(daily_tx_count=60, daily_volume_wei=20 * WEI))
    assert verdict.risk_level == RiskLevel.MEDIUM
    assert verdict.is_unusual is False
    assert verdict.anomalies == {ANOMALY_MODERATE_FREQUENCY, ANOMALY_ELEVATED_VOLUME}


def test_failure_ratio_and_token_activity():
    verdict = evaluate_wallet_rules(
        _summary(daily_tx_count=10, daily_failed_count=4, daily_token_transfer_count=25)
    )
    assert verdict.risk_level == RiskLevel.MEDIUM
    assert {ANOMALY_HIGH_FAILURE_RATE, ANOMALY_HIGH_TOKEN_ACTIVITY} <= verdict.anomalies


def test_risk_never_lowered_by_later_rules():
    """A medium rule firing after a high rule leaves the level at high."""
    verdict = evaluate_wallet_rules(
        _summary(daily_tx_count=150, daily_volume_wei=20 * WEI, daily_token_transfer_count=30)
    )
    assert verdict.risk_level == RiskLevel.HIGH
    assert {ANOMALY_HIGH_FREQUENCY, ANOMALY_ELEVATED_VOLUME, ANOMALY_HIGH_TOKEN_ACTIVITY} <= verdict.anomalies


def test_confidence_base_and_cap():
    assert evaluate_wallet_rules(_summary()).confidence == 0.6
    rich = _summary(
        daily_tx_count=5,
        lifetime_tx_count=500,
        recent_token_transfers=[{"hash": "0x1"}],
        daily_token_transfer_count=1,
    )
    assert evaluate_wallet_rules(rich).confidence == 0.9


def test_empty_summary_is_low_risk():
    verdict = evaluate_wallet_rules(ActivitySummary.empty(ADDR_A))
    assert verdict.risk_level == RiskLevel.LOW
    assert verdict.is_unusual is False


def test_classify_transaction_by_value():
    assert classify_transaction_rules({"hash": "0x1", "value": str(150 * WEI)}).classification == TransactionLabel.RISKY
    assert classify_transaction_rules({"hash": "0x2", "value": str(15 * WEI)}).classification == TransactionLabel.SUSPICIOUS
    normal = classify_transaction_rules({"hash": "0x3", "value": str(WEI)})
    assert normal.classification == TransactionLabel.NORMAL
    assert normal.reasons == ("typical_pattern",)
    assert normal.risk_score == 0.2


def test_classify_transaction_failed_or_heavy_gas_is_suspicious():
    failed = classify_transaction_rules({"hash": "0x4", "value": "0", "isError": "1"})
    assert failed.classification == TransactionLabel.SUSPICIOUS
    assert "failed_transaction" in failed.reasons
    heavy = classify_transaction_rules({"hash": "0x5", "value": "0", "gasUsed": "2000000"})
    assert heavy.classification == TransactionLabel.SUSPICIOUS
    assert "unusual_gas_usage" in heavy.reasons
