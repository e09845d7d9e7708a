"""
Shared test data and fakes: addresses, Etherscan row builders, a scripted
indexer behind httpx.MockTransport, scripted AI backends, a failing store.
"""

from __future__ import annotations

from typing import Any

import httpx

from backend_chainsage.analysis_engine.ai_backend import AIBackend
from backend_chainsage.core.exceptions import UpstreamUnavailable
from backend_chainsage.database.object_store import ObjectStore

WEI = 10**18

# Lower-case EVM addresses (no checksum involved)
ADDR_A = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
ADDR_B = "0xfb6916095ca1df60bb79ce92ce3ea74c37c5d359"
ADDR_C = "0xdbf03b407c01e7cd3cbea99509d93f8dddc8c6fb"
ADDR_D = "0xd1220a0cf47c7b9be7a2e6ba89f429762e7b9adb"
# Valid EIP-55 checksummed form of ADDR_A
ADDR_A_CHECKSUM = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


def tx_row(
    tx_hash: str,
    sender: str,
    receiver: str,
    value_wei: int,
    timestamp: int,
    *,
    is_error: bool = False,
    block: int = 1,
    gas_used: int = 21000,
) -> dict[str, Any]:
    """One Etherscan txlist row."""
    return {
        "hash": tx_hash,
        "from": sender,
        "to": receiver,
        "value": str(value_wei),
        "timeStamp": str(timestamp),
        "blockNumber": str(block),
        "isError": "1" if is_error else "0",
        "gasUsed": str(gas_used),
        "gasPrice": "1000000000",
    }


def token_row(tx_hash: str, sender: str, receiver: str, value: int, timestamp: int, *, contract: str = ADDR_D) -> dict[str, Any]:
    """One Etherscan tokentx row."""
    return {
        "hash": tx_hash,
        "from": sender,
        "to": receiver,
        "value": str(value),
        "timeStamp": str(timestamp),
        "blockNumber": "1",
        "tokenName": "Test Token",
        "tokenSymbol": "TST",
        "tokenDecimal": "6",
        "contractAddress": contract,
    }


class FakeIndexer:
    """Scripted Etherscan v2 API: rows per (action, address), balances, failing actions."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.balances: dict[str, int] = {}
        self.failing_actions: set[str] = set()
        self.requests: list[dict[str, str]] = []

    def set_rows(self, action: str, address: str, rows: list[dict[str, Any]]) -> None:
        self.rows[(action, address.lower())] = rows

    def handler(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.requests.append(params)
        action = params.get("action", "")
        if action in self.failing_actions:
            return httpx.Response(502, text="bad gateway")
        address = (params.get("address") or params.get("contractaddress") or "").lower()
        if action == "balance":
            return httpx.Response(
                200, json={"status": "1", "message": "OK", "result": str(self.balances.get(address, 0))}
            )
        rows = self.rows.get((action, address), [])
        if not rows:
            return httpx.Response(200, json={"status": "0", "message": "No transactions found", "result": []})
        offset = int(params.get("offset") or len(rows))
        return httpx.Response(200, json={"status": "1", "message": "OK", "result": rows[:offset]})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class ScriptedAI(AIBackend):
    """Returns a fixed reply and records prompts."""

    name = "scripted"

    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts: list[str] = []

    async def complete(self, system: str, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.reply


class FailingAI(AIBackend):
    name = "failing"

    def __init__(self) -> None:
        self.calls = 0

    async def complete(self, system: str, prompt: str) -> str:
        self.calls += 1
        raise UpstreamUnavailable("ai", "quota exceeded")


class FailingObjectStore(ObjectStore):
    """Durable store that is down."""

    def store(self, data_type, payload, *, address=None, severity=None, event_type=None):
        raise ConnectionError("object store unreachable")

    def retrieve(self, data_type=None, **kwargs):
        raise ConnectionError("object store unreachable")
