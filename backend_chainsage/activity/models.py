"""
Normalized on-chain activity records.

Every upstream feed (transactions, token transfers, NFT transfers, internal
transactions) is normalized into ActivityRecord. Values are exact integer
strings in the smallest unit (wei or token base units); decimal rendering is
only for display.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

WEI_PER_ETH = 10**18


class ActivityKind(str, Enum):
    """Record kind as stored on each ActivityRecord."""

    TRANSACTION = "transaction"
    TOKEN_TRANSFER = "token_transfer"
    NFT_TRANSFER = "nft_transfer"
    INTERNAL_TRANSACTION = "internal_transaction"


class ActivitySource(str, Enum):
    """Fetchable activity feeds (one upstream action each)."""

    TRANSACTIONS = "transactions"
    TOKEN_TRANSFERS = "token_transfers"
    NFT_TRANSFERS = "nft_transfers"
    INTERNAL_TRANSACTIONS = "internal_transactions"


# Etherscan account-module action per feed
SOURCE_ACTIONS: dict[ActivitySource, str] = {
    ActivitySource.TRANSACTIONS: "txlist",
    ActivitySource.TOKEN_TRANSFERS: "tokentx",
    ActivitySource.NFT_TRANSFERS: "tokennfttx",
    ActivitySource.INTERNAL_TRANSACTIONS: "txlistinternal",
}


def format_units(value: str | int | None, decimals: int = 18, places: int = 6) -> str:
    """
    Render an integer amount in base units as a decimal string, trailing zeros trimmed.
    Returns the raw value unchanged if it is not an integer.
    """
    if value is None:
        return "0"
    try:
        amount = Decimal(int(str(value))) / (Decimal(10) ** max(0, decimals))
    except (ValueError, InvalidOperation):
        return str(value)
    rendered = f"{amount:.{places}f}".rstrip("0").rstrip(".")
    return rendered or "0"


def wei_to_eth(value: str | int | None) -> Decimal:
    """Exact conversion of a wei amount to native units; 0 for malformed input."""
    try:
        return Decimal(int(str(value or 0))) / Decimal(WEI_PER_ETH)
    except (ValueError, InvalidOperation):
        return Decimal(0)


@dataclass(frozen=True)
class ActivityRecord:
    """
    One source-tagged unit of on-chain activity.

    Identity is (hash, kind); ordering key is timestamp (Unix seconds), newest first.
    """

    kind: ActivityKind
    hash: str
    from_address: str
    to_address: str
    value: str
    """Exact integer string in base units."""
    timestamp: int
    block_number: int
    is_error: bool = False
    token_name: str | None = None
    token_symbol: str | None = None
    token_decimal: int | None = None
    contract_address: str | None = None
    token_id: str | None = None
    gas_used: str | None = None
    gas_price: str | None = None
    function_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def identity(self) -> tuple[str, str]:
        return (self.hash, self.kind.value)

    @property
    def value_int(self) -> int:
        try:
            return int(self.value)
        except (TypeError, ValueError):
            return 0

    @property
    def value_display(self) -> str:
        """Human-readable amount (ETH for native value, token units for ERC-20)."""
        if self.kind == ActivityKind.NFT_TRANSFER:
            return "1"
        if self.kind == ActivityKind.TOKEN_TRANSFER:
            return format_units(self.value, self.token_decimal or 0)
        return format_units(self.value, 18)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.kind.value,
            "hash": self.hash,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "value_display": self.value_display,
            "timestamp": self.timestamp,
            "block_number": self.block_number,
            "is_error": self.is_error,
        }
        for key in (
            "token_name",
            "token_symbol",
            "token_decimal",
            "contract_address",
            "token_id",
            "gas_used",
            "gas_price",
            "function_name",
        ):
            val = getattr(self, key)
            if val is not None:
                out[key] = val
        if self.extra:
            out.update(self.extra)
        return out


@dataclass(frozen=True)
class FetchResult:
    """Records from one feed plus whether the upstream answered at all."""

    source: ActivitySource
    records: list[ActivityRecord]
    available: bool


@dataclass(frozen=True)
class Balance:
    """Native balance at the latest block. Zero is an explicit '0', never None."""

    address: str
    wei: str
    timestamp: int

    @property
    def eth(self) -> str:
        return format_units(self.wei, 18)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "balance": self.wei,
            "balance_eth": self.eth,
            "timestamp": self.timestamp,
        }
