"""
Activity fetcher: rate-limited Etherscan v2 client with response normalization.

One fetcher instance represents one upstream source and owns one rate limiter,
so every caller (aggregation cycle, one-shot analysis, activity feed) shares the
same request budget. Upstream failures (HTTP errors, timeouts, error payloads,
malformed JSON) never propagate: list lookups return an empty sequence and a
False availability flag, balance lookups return None. Callers must read an
empty result as "unknown", not "no activity".
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from backend_chainsage.activity.models import (
    SOURCE_ACTIONS,
    ActivitySource,
    ActivityRecord,
    Balance,
    FetchResult,
)
from backend_chainsage.activity.normalizer import normalize_rows, sort_newest_first
from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.chainsage_logging.logger import short_address
from backend_chainsage.config.settings import (
    DEFAULT_CHAIN_ID,
    DEFAULT_ETHERSCAN_BASE_URL,
    DEFAULT_REQUEST_DELAY_SEC,
    DEFAULT_REQUEST_TIMEOUT_SEC,
    Settings,
)
from backend_chainsage.core.exceptions import UpstreamUnavailable

logger = get_logger(__name__)

DEFAULT_LIMIT = 50
# Placeholder key accepted by Etherscan at the keyless rate
FREE_TIER_API_KEY = "YourApiKeyToken"
_EMPTY_RESULT_PREFIX = "No "
_MAX_BLOCK = 99999999


class RateLimiter:
    """Minimum interval between acquires, shared by every caller of one source."""

    def __init__(self, min_interval_sec: float) -> None:
        self._interval = max(0.0, min_interval_sec)
        self._last_acquire = 0.0
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_acquire
            if elapsed < self._interval:
                await asyncio.sleep(self._interval - elapsed)
            self._last_acquire = time.monotonic()


class ActivityFetcher:
    """
    Per-address, per-feed lookups against the chain indexer.

    transport is for tests (httpx.MockTransport); production uses the default.
    """

    def __init__(
        self,
        *,
        api_key: str = "",
        base_url: str = DEFAULT_ETHERSCAN_BASE_URL,
        chain_id: str = DEFAULT_CHAIN_ID,
        request_delay_sec: float = DEFAULT_REQUEST_DELAY_SEC,
        timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or FREE_TIER_API_KEY
        self._base_url = base_url
        self._chain_id = str(chain_id)
        self._timeout = timeout_sec
        self._transport = transport
        self._rate_limiter = RateLimiter(request_delay_sec)
        self.request_count = 0
        self.error_count = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ActivityFetcher:
        return cls(
            api_key=settings.etherscan_api_key,
            base_url=settings.etherscan_base_url,
            chain_id=settings.etherscan_chain_id,
            request_delay_sec=settings.request_delay_sec,
            timeout_sec=settings.request_timeout_sec,
            transport=transport,
        )

    @property
    def chain_id(self) -> str:
        return self._chain_id

    async def _request(self, params: dict[str, Any]) -> Any:
        """
        One rate-limited GET. Returns the payload's result field.
        Raises UpstreamUnavailable on any transport, status or payload error.
        """
        query = {"apikey": self._api_key, "chainid": self._chain_id, **params}
        await self._rate_limiter.acquire()
        self.request_count += 1
        logger.debug(
            "indexer_request",
            module=params.get("module"),
            action=params.get("action"),
            chain_id=self._chain_id,
            wallet_id=short_address(params.get("address") or params.get("contractaddress")),
        )
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await asyncio.wait_for(
                    client.get(self._base_url, params=query),
                    timeout=self._timeout,
                )
                resp.raise_for_status()
                data = resp.json()
        except asyncio.TimeoutError as e:
            self.error_count += 1
            raise UpstreamUnavailable("indexer", "timeout") from e
        except (httpx.HTTPError, ValueError) as e:
            self.error_count += 1
            raise UpstreamUnavailable("indexer", str(e)) from e

        if not isinstance(data, dict):
            self.error_count += 1
            raise UpstreamUnavailable("indexer", "malformed response")
        result = data.get("result")
        if str(data.get("status")) == "0":
            message = str(data.get("message") or "")
            if isinstance(result, list) and message.startswith(_EMPTY_RESULT_PREFIX):
                return []
            self.error_count += 1
            raise UpstreamUnavailable("indexer", str(result or message or "error status"))
        return result

    async def fetch_with_status(
        self,
        address: str,
        source: ActivitySource | str,
        limit: int = DEFAULT_LIMIT,
    ) -> FetchResult:
        """Fetch one feed; available=False when the upstream failed."""
        source = ActivitySource(source)
        limit = max(0, int(limit))
        if limit == 0:
            return FetchResult(source=source, records=[], available=True)
        params = {
            "module": "account",
            "action": SOURCE_ACTIONS[source],
            "address": address,
            "startblock": 0,
            "endblock": _MAX_BLOCK,
            "page": 1,
            "offset": limit,
            "sort": "desc",
        }
        try:
            rows = await self._request(params)
        except UpstreamUnavailable as e:
            logger.warning(
                "indexer_fetch_failed",
                wallet_id=short_address(address),
                source=source.value,
                error=e.reason,
            )
            return FetchResult(source=source, records=[], available=False)
        if not isinstance(rows, list):
            logger.warning(
                "indexer_fetch_malformed",
                wallet_id=short_address(address),
                source=source.value,
                result_type=type(rows).__name__,
            )
            return FetchResult(source=source, records=[], available=False)
        records = sort_newest_first(normalize_rows(source, rows))[:limit]
        return FetchResult(source=source, records=records, available=True)

    async def fetch(
        self,
        address: str,
        source: ActivitySource | str,
        limit: int = DEFAULT_LIMIT,
    ) -> list[ActivityRecord]:
        return (await self.fetch_with_status(address, source, limit)).records

    async def get_transactions(self, address: str, limit: int = DEFAULT_LIMIT) -> list[ActivityRecord]:
        return await self.fetch(address, ActivitySource.TRANSACTIONS, limit)

    async def get_token_transfers(self, address: str, limit: int = DEFAULT_LIMIT) -> list[ActivityRecord]:
        return await self.fetch(address, ActivitySource.TOKEN_TRANSFERS, limit)

    async def get_nft_transfers(self, address: str, limit: int = DEFAULT_LIMIT) -> list[ActivityRecord]:
        return await self.fetch(address, ActivitySource.NFT_TRANSFERS, limit)

    async def get_internal_transactions(self, address: str, limit: int = DEFAULT_LIMIT) -> list[ActivityRecord]:
        return await self.fetch(address, ActivitySource.INTERNAL_TRANSACTIONS, limit)

    async def get_aggregated_activity_with_status(
        self,
        address: str,
        limit: int = 20,
    ) -> tuple[list[ActivityRecord], dict[str, bool]]:
        """All four feeds concurrently; merged newest first, truncated to limit."""
        results = await asyncio.gather(
            *(self.fetch_with_status(address, source, limit) for source in ActivitySource)
        )
        merged: list[ActivityRecord] = []
        availability: dict[str, bool] = {}
        for result in results:
            merged.extend(result.records)
            availability[result.source.value] = result.available
        return sort_newest_first(merged)[: max(0, int(limit))], availability

    async def get_aggregated_activity(self, address: str, limit: int = 20) -> list[ActivityRecord]:
        records, _ = await self.get_aggregated_activity_with_status(address, limit)
        return records

    async def get_token_contract_activity(
        self,
        contract_address: str,
        limit: int = DEFAULT_LIMIT,
    ) -> FetchResult:
        """Recent transfers of a token contract (all holders), newest first."""
        limit = max(0, int(limit))
        source = ActivitySource.TOKEN_TRANSFERS
        if limit == 0:
            return FetchResult(source=source, records=[], available=True)
        params = {
            "module": "account",
            "action": SOURCE_ACTIONS[ActivitySource.TOKEN_TRANSFERS],
            "contractaddress": contract_address,
            "page": 1,
            "offset": limit,
            "sort": "desc",
        }
        try:
            rows = await self._request(params)
        except UpstreamUnavailable as e:
            logger.warning(
                "indexer_token_contract_failed",
                wallet_id=short_address(contract_address),
                error=e.reason,
            )
            return FetchResult(source=source, records=[], available=False)
        if not isinstance(rows, list):
            return FetchResult(source=source, records=[], available=False)
        records = sort_newest_first(normalize_rows(source, rows))[:limit]
        return FetchResult(source=source, records=records, available=True)

    async def get_balance(self, address: str) -> Balance | None:
        """Latest native balance; None when the lookup failed (distinct from zero)."""
        try:
            result = await self._request(
                {"module": "account", "action": "balance", "address": address, "tag": "latest"}
            )
            wei = str(int(str(result)))
        except UpstreamUnavailable as e:
            logger.warning("indexer_balance_failed", wallet_id=short_address(address), error=e.reason)
            return None
        except (TypeError, ValueError):
            logger.warning("indexer_balance_malformed", wallet_id=short_address(address))
            return None
        return Balance(address=address, wei=wei, timestamp=int(time.time()))
