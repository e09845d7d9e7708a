"""
Indexer response normalizer — raw Etherscan rows to ActivityRecord.

Converts the account-module row shapes (txlist, tokentx, tokennfttx,
txlistinternal) into the stable ActivityRecord schema. Purely structural;
no scoring. Rows that cannot be parsed are skipped and logged, never raised.
"""

from __future__ import annotations

from typing import Any, Callable

from backend_chainsage.activity.models import ActivityKind, ActivityRecord, ActivitySource
from backend_chainsage.chainsage_logging import get_logger

logger = get_logger(__name__)


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return default


def _int_string(value: Any) -> str:
    """Keep an amount as an exact integer string; '0' for missing/malformed."""
    if value is None or value == "":
        return "0"
    s = str(value).strip()
    try:
        return str(int(s))
    except ValueError:
        return "0"


def _addr(value: Any) -> str:
    return str(value or "").strip().lower()


def _opt_str(value: Any) -> str | None:
    s = str(value).strip() if value is not None else ""
    return s or None


def normalize_transaction(row: dict[str, Any]) -> ActivityRecord:
    return ActivityRecord(
        kind=ActivityKind.TRANSACTION,
        hash=str(row["hash"]),
        from_address=_addr(row.get("from")),
        to_address=_addr(row.get("to")),
        value=_int_string(row.get("value")),
        timestamp=_int(row.get("timeStamp")),
        block_number=_int(row.get("blockNumber")),
        is_error=str(row.get("isError", "0")) == "1",
        gas_used=_opt_str(row.get("gasUsed")),
        gas_price=_opt_str(row.get("gasPrice")),
        function_name=_opt_str(row.get("functionName")) or "Transfer",
        extra={"method_id": row["methodId"]} if row.get("methodId") else {},
    )


def normalize_token_transfer(row: dict[str, Any]) -> ActivityRecord:
    return ActivityRecord(
        kind=ActivityKind.TOKEN_TRANSFER,
        hash=str(row["hash"]),
        from_address=_addr(row.get("from")),
        to_address=_addr(row.get("to")),
        value=_int_string(row.get("value")),
        timestamp=_int(row.get("timeStamp")),
        block_number=_int(row.get("blockNumber")),
        token_name=_opt_str(row.get("tokenName")),
        token_symbol=_opt_str(row.get("tokenSymbol")),
        token_decimal=_int(row.get("tokenDecimal"), 0),
        contract_address=_addr(row.get("contractAddress")) or None,
    )


def normalize_nft_transfer(row: dict[str, Any]) -> ActivityRecord:
    return ActivityRecord(
        kind=ActivityKind.NFT_TRANSFER,
        hash=str(row["hash"]),
        from_address=_addr(row.get("from")),
        to_address=_addr(row.get("to")),
        value="1",
        timestamp=_int(row.get("timeStamp")),
        block_number=_int(row.get("blockNumber")),
        token_name=_opt_str(row.get("tokenName")),
        token_symbol=_opt_str(row.get("tokenSymbol")),
        contract_address=_addr(row.get("contractAddress")) or None,
        token_id=_opt_str(row.get("tokenID")),
    )


def normalize_internal_transaction(row: dict[str, Any]) -> ActivityRecord:
    return ActivityRecord(
        kind=ActivityKind.INTERNAL_TRANSACTION,
        hash=str(row["hash"]),
        from_address=_addr(row.get("from")),
        to_address=_addr(row.get("to")),
        value=_int_string(row.get("value")),
        timestamp=_int(row.get("timeStamp")),
        block_number=_int(row.get("blockNumber")),
        is_error=str(row.get("isError", "0")) == "1",
        extra={"call_type": row["type"]} if row.get("type") else {},
    )


_NORMALIZERS: dict[ActivitySource, Callable[[dict[str, Any]], ActivityRecord]] = {
    ActivitySource.TRANSACTIONS: normalize_transaction,
    ActivitySource.TOKEN_TRANSFERS: normalize_token_transfer,
    ActivitySource.NFT_TRANSFERS: normalize_nft_transfer,
    ActivitySource.INTERNAL_TRANSACTIONS: normalize_internal_transaction,
}


def normalize_rows(source: ActivitySource, rows: list[Any]) -> list[ActivityRecord]:
    """
    Normalize a list of upstream rows for one feed. Malformed rows (non-dict,
    missing hash) are skipped with a debug log.
    """
    normalize = _NORMALIZERS[source]
    out: list[ActivityRecord] = []
    skipped = 0
    for row in rows:
        if not isinstance(row, dict) or not row.get("hash"):
            skipped += 1
            continue
        try:
            out.append(normalize(row))
        except (KeyError, TypeError, ValueError) as e:
            skipped += 1
            logger.debug("normalize_row_skipped", source=source.value, error=str(e))
    if skipped:
        logger.debug("normalize_rows_skipped", source=source.value, skipped=skipped, kept=len(out))
    return out


def sort_newest_first(records: list[ActivityRecord]) -> list[ActivityRecord]:
    """Sort by timestamp descending; ties keep block order (higher block first)."""
    return sorted(records, key=lambda r: (r.timestamp, r.block_number), reverse=True)
