"""
Build ActivitySummary from normalized activity records.

Window aggregates (count, volume, failures, token transfers) cover records
with timestamp >= now - window_sec. Lifetime count is the number of
transactions the indexer returned for the account.
"""

from __future__ import annotations

import time

from backend_chainsage.activity.models import ActivityRecord, Balance
from backend_chainsage.analysis_engine.models import ActivitySummary

DEFAULT_WINDOW_SEC = 86400
DEFAULT_SAMPLE_SIZE = 10


def build_activity_summary(
    address: str,
    transactions: list[ActivityRecord],
    token_transfers: list[ActivityRecord],
    *,
    internal_transactions: list[ActivityRecord] | None = None,
    nft_transfers: list[ActivityRecord] | None = None,
    balance: Balance | None = None,
    now_ts: float | None = None,
    window_sec: int = DEFAULT_WINDOW_SEC,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> ActivitySummary:
    """
    Aggregate one address's activity. Internal transactions add to volume
    (value moved by contracts on the wallet's behalf) but not to the tx count.
    """
    now = now_ts if now_ts is not None else time.time()
    since = now - window_sec

    daily_txs = [tx for tx in transactions if tx.timestamp >= since]
    daily_internal = [tx for tx in (internal_transactions or []) if tx.timestamp >= since and not tx.is_error]
    daily_tokens = [t for t in token_transfers if t.timestamp >= since]
    daily_nfts = [t for t in (nft_transfers or []) if t.timestamp >= since]

    volume = sum(tx.value_int for tx in daily_txs if not tx.is_error)
    volume += sum(tx.value_int for tx in daily_internal)

    return ActivitySummary(
        address=address,
        recent_transactions=[tx.to_dict() for tx in transactions[:sample_size]],
        recent_token_transfers=[t.to_dict() for t in token_transfers[:sample_size]],
        daily_tx_count=len(daily_txs),
        daily_volume_wei=volume,
        daily_failed_count=sum(1 for tx in daily_txs if tx.is_error),
        daily_token_transfer_count=len(daily_tokens),
        daily_nft_transfer_count=len(daily_nfts),
        lifetime_tx_count=len(transactions),
        balance_wei=balance.wei if balance is not None else None,
        window_sec=window_sec,
    )
