"""
Risk classifier: AI first, deterministic rules as fallback.

The AI backend receives a structured prompt and must reply with strict JSON
matching the verdict shape (validated with pydantic). A service error, a
timeout or an unparseable reply switches to the rules immediately; there is no
retry. Without a configured backend the rules are used directly.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from backend_chainsage.analysis_engine.ai_backend import AIBackend
from backend_chainsage.analysis_engine.models import (
    ActivitySummary,
    RiskLevel,
    RiskVerdict,
    TransactionClassification,
    TransactionLabel,
    VerdictSource,
)
from backend_chainsage.analysis_engine.rules import (
    RuleConfig,
    classify_transaction_rules,
    evaluate_wallet_rules,
)
from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.chainsage_logging.logger import short_address

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

WALLET_SYSTEM_PROMPT = """\
You are a blockchain risk analyst. Analyse the wallet activity you are given \
and identify unusual behaviour: sudden activity spikes, large or suspicious \
amounts, failed-transaction bursts and patterns consistent with money laundering.

Respond with a single JSON object and nothing else, with exactly these fields:
{
  "isUnusual": <true | false>,
  "riskLevel": <"low" | "medium" | "high" | "critical">,
  "confidence": <number between 0 and 1>,
  "anomalies": [<snake_case anomaly names>],
  "recommendations": [<snake_case actions, e.g. "monitor_closely", "flag_for_review">]
}
Only reference data that is explicitly provided.\
"""

TRANSACTION_SYSTEM_PROMPT = """\
You are a blockchain transaction analyst. Classify the transaction as Normal, \
Suspicious or Risky.
- Normal: regular transaction with typical patterns.
- Suspicious: unusual amount, gas usage or timing that warrants monitoring.
- Risky: potential malicious activity, huge amounts or known bad actors.

Respond with a single JSON object and nothing else:
{
  "classification": <"Normal" | "Suspicious" | "Risky">,
  "confidence": <number between 0 and 1>,
  "reasons": [<short reasons>],
  "riskScore": <number between 0 and 1>
}\
"""


class AIWalletVerdict(BaseModel):
    """Strict shape of the AI wallet reply."""

    model_config = ConfigDict(strict=True, populate_by_name=True, extra="ignore")

    is_unusual: bool = Field(alias="isUnusual")
    risk_level: Literal["low", "medium", "high", "critical"] = Field(alias="riskLevel")
    confidence: float = Field(ge=0, le=1)
    anomalies: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class AITransactionVerdict(BaseModel):
    """Strict shape of the AI transaction reply."""

    model_config = ConfigDict(strict=True, populate_by_name=True, extra="ignore")

    classification: Literal["Normal", "Suspicious", "Risky"]
    confidence: float = Field(ge=0, le=1)
    reasons: list[str] = Field(default_factory=list)
    risk_score: float = Field(alias="riskScore", ge=0, le=1)


def strip_code_fence(raw: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    return _FENCE_RE.sub("", raw.strip()).strip()


def build_wallet_prompt(summary: ActivitySummary) -> str:
    data = summary.to_dict()
    return (
        "Wallet data:\n"
        f"- Address: {summary.address}\n"
        f"- Transactions in last {summary.window_sec // 3600}h: {summary.daily_tx_count}\n"
        f"- Volume in last {summary.window_sec // 3600}h (ETH): {data['daily_volume_eth']}\n"
        f"- Average transaction amount (wei): {data['avg_amount_wei']}\n"
        f"- Failed transactions in window: {summary.daily_failed_count}\n"
        f"- Token transfers in window: {summary.daily_token_transfer_count}\n"
        f"- NFT transfers in window: {summary.daily_nft_transfer_count}\n"
        f"- Lifetime transaction count: {summary.lifetime_tx_count}\n"
        f"- Balance (wei): {summary.balance_wei if summary.balance_wei is not None else 'unknown'}\n"
        f"- Recent transactions: {json.dumps(summary.recent_transactions, default=str)}\n"
        f"- Recent token transfers: {json.dumps(summary.recent_token_transfers, default=str)}\n"
    )


def build_transaction_prompt(transaction: dict[str, Any]) -> str:
    fields = ("from", "to", "value", "amount", "gasUsed", "gas_used", "hash", "blockNumber", "block_number", "timestamp")
    lines = [f"- {key}: {transaction[key]}" for key in fields if transaction.get(key) is not None]
    return "Transaction data:\n" + "\n".join(lines)


class RiskClassifier:
    """Produces a RiskVerdict for a wallet summary; never raises on upstream failure."""

    def __init__(
        self,
        ai_backend: AIBackend | None = None,
        *,
        rule_config: RuleConfig | None = None,
        ai_timeout_sec: float = 30.0,
    ) -> None:
        self._ai = ai_backend
        self._rules = rule_config or RuleConfig()
        self._ai_timeout = ai_timeout_sec
        self.ai_verdicts = 0
        self.fallback_verdicts = 0

    @property
    def ai_configured(self) -> bool:
        return self._ai is not None

    async def analyze(self, summary: ActivitySummary) -> RiskVerdict:
        if self._ai is not None:
            try:
                verdict = await self._analyze_with_ai(summary)
                self.ai_verdicts += 1
                logger.info(
                    "wallet_activity_analyzed",
                    wallet_id=short_address(summary.address),
                    source=verdict.source.value,
                    risk_level=verdict.risk_level.value,
                    is_unusual=verdict.is_unusual,
                )
                return verdict
            except Exception as e:
                logger.warning(
                    "ai_analysis_failed_using_rules",
                    wallet_id=short_address(summary.address),
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                )
        self.fallback_verdicts += 1
        return evaluate_wallet_rules(summary, self._rules)

    async def _analyze_with_ai(self, summary: ActivitySummary) -> RiskVerdict:
        raw = await asyncio.wait_for(
            self._ai.complete(WALLET_SYSTEM_PROMPT, build_wallet_prompt(summary)),
            timeout=self._ai_timeout,
        )
        payload = AIWalletVerdict.model_validate_json(strip_code_fence(raw))
        level = RiskLevel(payload.risk_level)
        return RiskVerdict(
            # high and critical are unusual by definition, whatever the model says
            is_unusual=payload.is_unusual or level.rank >= RiskLevel.HIGH.rank,
            risk_level=level,
            confidence=float(payload.confidence),
            anomalies=frozenset(payload.anomalies),
            source=VerdictSource.AI,
            recommendations=tuple(payload.recommendations),
        )

    async def classify_transaction(self, transaction: dict[str, Any]) -> TransactionClassification:
        """Label one transaction Normal / Suspicious / Risky."""
        tx_hash = str(transaction.get("hash") or "")
        if self._ai is not None:
            try:
                raw = await asyncio.wait_for(
                    self._ai.complete(TRANSACTION_SYSTEM_PROMPT, build_transaction_prompt(transaction)),
                    timeout=self._ai_timeout,
                )
                payload = AITransactionVerdict.model_validate_json(strip_code_fence(raw))
                self.ai_verdicts += 1
                return TransactionClassification(
                    transaction_hash=tx_hash,
                    classification=TransactionLabel(payload.classification),
                    confidence=float(payload.confidence),
                    reasons=tuple(payload.reasons),
                    risk_score=float(payload.risk_score),
                    source=VerdictSource.AI,
                )
            except Exception as e:
                logger.warning(
                    "ai_classification_failed_using_rules",
                    transaction_hash=tx_hash[:16],
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                )
        self.fallback_verdicts += 1
        return classify_transaction_rules(transaction, self._rules)

    def stats(self) -> dict[str, Any]:
        return {
            "ai_configured": self.ai_configured,
            "ai_verdicts": self.ai_verdicts,
            "fallback_verdicts": self.fallback_verdicts,
        }
