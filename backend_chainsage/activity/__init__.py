"""
Activity package — chain indexer client and normalized activity records.

Fetches transactions, token transfers, NFT transfers and internal transactions
per address under one shared rate limit, normalizing them into ActivityRecord.
"""

from backend_chainsage.activity.fetcher import ActivityFetcher, RateLimiter
from backend_chainsage.activity.models import (
    ActivityKind,
    ActivityRecord,
    ActivitySource,
    Balance,
    FetchResult,
)

__all__ = [
    "ActivityFetcher",
    "ActivityKind",
    "ActivityRecord",
    "ActivitySource",
    "Balance",
    "FetchResult",
    "RateLimiter",
]
