"""
Analysis engine — wallet risk verdicts and transaction classification.

AI backend first; deterministic, explainable rules when it is unavailable.
"""

from backend_chainsage.analysis_engine.ai_backend import AIBackend, AnthropicBackend
from backend_chainsage.analysis_engine.classifier import RiskClassifier
from backend_chainsage.analysis_engine.features import build_activity_summary
from backend_chainsage.analysis_engine.models import (
    ActivitySummary,
    RiskLevel,
    RiskVerdict,
    TransactionClassification,
    VerdictSource,
)
from backend_chainsage.analysis_engine.rules import RuleConfig, evaluate_wallet_rules

__all__ = [
    "AIBackend",
    "ActivitySummary",
    "AnthropicBackend",
    "RiskClassifier",
    "RiskLevel",
    "RiskVerdict",
    "RuleConfig",
    "TransactionClassification",
    "VerdictSource",
    "build_activity_summary",
    "evaluate_wallet_rules",
]
