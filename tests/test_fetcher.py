"""
Tests for ActivityFetcher against a mocked Etherscan API (httpx.MockTransport).
"""

from __future__ import annotations

import asyncio
import time

import httpx

from backend_chainsage.activity.fetcher import ActivityFetcher, RateLimiter
from backend_chainsage.activity.models import ActivityKind, ActivitySource

from helpers import ADDR_A, ADDR_B, ADDR_D, WEI, token_row, tx_row


def _fetcher(indexer, **kwargs) -> ActivityFetcher:
    return ActivityFetcher(api_key="k", request_delay_sec=0.0, transport=indexer.transport(), **kwargs)


def test_transactions_normalized_newest_first(indexer, now_ts):
    indexer.set_rows(
        "txlist",
        ADDR_A,
        [
            tx_row("0x01", ADDR_B, ADDR_A, 2 * WEI, now_ts - 100, block=10),
            tx_row("0x02", ADDR_A, ADDR_B, WEI, now_ts - 10, block=11, is_error=True),
        ],
    )
    result = asyncio.run(_fetcher(indexer).fetch_with_status(ADDR_A, ActivitySource.TRANSACTIONS, 10))
    assert result.available is True
    assert [r.hash for r in result.records] == ["0x02", "0x01"]
    first = result.records[0]
    assert first.kind == ActivityKind.TRANSACTION
    assert first.is_error is True
    assert first.value == str(WEI)
    assert result.records[1].value_display == "2"
    params = indexer.requests[0]
    assert params["action"] == "txlist"
    assert params["chainid"] == "1"
    assert params["apikey"] == "k"


def test_no_transactions_found_is_available_and_empty(indexer):
    result = asyncio.run(_fetcher(indexer).fetch_with_status(ADDR_A, ActivitySource.NFT_TRANSFERS))
    assert result.available is True
    assert result.records == []


def test_http_error_is_unavailable_and_never_raises(indexer):
    indexer.failing_actions.add("tokentx")
    fetcher = _fetcher(indexer)
    result = asyncio.run(fetcher.fetch_with_status(ADDR_A, ActivitySource.TOKEN_TRANSFERS))
    assert result.available is False
    assert result.records == []
    assert fetcher.error_count == 1


def test_error_status_payload_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})

    fetcher = ActivityFetcher(request_delay_sec=0.0, transport=httpx.MockTransport(handler))
    result = asyncio.run(fetcher.fetch_with_status(ADDR_A, ActivitySource.TRANSACTIONS))
    assert result.available is False


def test_malformed_json_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    fetcher = ActivityFetcher(request_delay_sec=0.0, transport=httpx.MockTransport(handler))
    assert asyncio.run(fetcher.get_transactions(ADDR_A)) == []
    assert asyncio.run(fetcher.get_balance(ADDR_A)) is None


def test_aggregated_activity_merges_sources(indexer, now_ts):
    indexer.set_rows("txlist", ADDR_A, [tx_row("0xa1", ADDR_A, ADDR_B, WEI, now_ts - 30)])
    indexer.set_rows("tokentx", ADDR_A, [token_row("0xa2", ADDR_B, ADDR_A, 5_000_000, now_ts - 20)])
    indexer.set_rows(
        "txlistinternal",
        ADDR_A,
        [{"hash": "0xa3", "from": ADDR_B, "to": ADDR_A, "value": "7", "timeStamp": str(now_ts - 10), "blockNumber": "3", "isError": "0"}],
    )
    records, available = asyncio.run(_fetcher(indexer).get_aggregated_activity_with_status(ADDR_A, 2))
    assert [r.hash for r in records] == ["0xa3", "0xa2"]
    assert all(available.values())
    assert set(available) == {s.value for s in ActivitySource}
    assert records[1].value_display == "5"


def test_token_contract_activity_uses_contract_param(indexer, now_ts):
    indexer.set_rows("tokentx", ADDR_D, [token_row("0xc1", ADDR_A, ADDR_B, 1, now_ts)])
    result = asyncio.run(_fetcher(indexer).get_token_contract_activity(ADDR_D, 5))
    assert result.available is True
    assert [r.hash for r in result.records] == ["0xc1"]
    assert indexer.requests[0]["contractaddress"] == ADDR_D
    assert "address" not in indexer.requests[0]


def test_balance_zero_is_explicit(indexer):
    indexer.balances[ADDR_B] = 3 * WEI
    fetcher = _fetcher(indexer)
    zero = asyncio.run(fetcher.get_balance(ADDR_A))
    assert zero is not None
    assert zero.wei == "0"
    assert asyncio.run(fetcher.get_balance(ADDR_B)).eth == "3"


def test_rate_limiter_spaces_concurrent_callers():
    limiter = RateLimiter(0.05)

    async def run() -> float:
        start = time.monotonic()
        await asyncio.gather(*(limiter.acquire() for _ in range(4)))
        return time.monotonic() - start

    # first acquire is immediate, the other three wait one interval each
    assert asyncio.run(run()) >= 0.14


def test_hanging_upstream_times_out_as_unavailable():
    async def hanging(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={"status": "1", "message": "OK", "result": []})

    fetcher = ActivityFetcher(request_delay_sec=0.0, timeout_sec=0.1, transport=httpx.MockTransport(hanging))

    async def run():
        started = time.monotonic()
        result = await fetcher.fetch_with_status(ADDR_A, ActivitySource.TRANSACTIONS, 10)
        balance = await fetcher.get_balance(ADDR_A)
        return result, balance, time.monotonic() - started

    result, balance, elapsed = asyncio.run(run())
    assert result.available is False
    assert result.records == []
    assert balance is None
    assert elapsed < 2.0
    assert fetcher.error_count == 2


def test_zero_limit_returns_nothing_without_request(indexer, now_ts):
    indexer.set_rows("txlist", ADDR_A, [tx_row("0x01", ADDR_A, ADDR_B, WEI, now_ts)])
    fetcher = _fetcher(indexer)

    async def run():
        return (
            await fetcher.fetch_with_status(ADDR_A, ActivitySource.TRANSACTIONS, 0),
            await fetcher.get_token_contract_activity(ADDR_D, 0),
            await fetcher.get_aggregated_activity(ADDR_A, 0),
        )

    single, contract, aggregated = asyncio.run(run())
    assert single.records == [] and single.available is True
    assert contract.records == []
    assert aggregated == []
    assert indexer.requests == []
