"""
Activity feed aggregator — one aggregation cycle over all active entities.

Per entity: fetch (transactions, token transfers, NFT transfers, internal
transactions and balance, each independently) -> build ActivitySummary -> classify -> update
the registry -> emit a RiskEvent if unusual. Entities run concurrently under a
semaphore; the fetcher's shared rate limiter is the real request ceiling. A
failure in one entity is logged and the cycle continues. The snapshot is
persisted once at the end of the cycle.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from backend_chainsage.activity.fetcher import ActivityFetcher
from backend_chainsage.activity.models import ActivityRecord, ActivitySource, FetchResult
from backend_chainsage.activity.normalizer import sort_newest_first
from backend_chainsage.alerts.events import RiskEvent
from backend_chainsage.analysis_engine.classifier import RiskClassifier
from backend_chainsage.analysis_engine.features import build_activity_summary
from backend_chainsage.analysis_engine.models import ActivitySummary, RiskVerdict
from backend_chainsage.chainsage_logging import bind_entity, get_logger
from backend_chainsage.chainsage_logging.logger import short_address
from backend_chainsage.config.settings import DEFAULT_MAX_CONCURRENCY, DEFAULT_SUMMARY_FETCH_LIMIT
from backend_chainsage.registry.models import EntityKind, MonitoredEntity
from backend_chainsage.registry.registry import Registry
from backend_chainsage.utils.address import normalize_address

logger = get_logger(__name__)

FEED_EXTRA_PER_ENTITY = 5
FEED_EXTRA_PER_TOKEN = 10

ACTIVITY_TYPES: dict[str, tuple[ActivitySource, ...]] = {
    "all": tuple(ActivitySource),
    "transactions": (ActivitySource.TRANSACTIONS,),
    "tokens": (ActivitySource.TOKEN_TRANSFERS,),
    "nfts": (ActivitySource.NFT_TRANSFERS,),
    "internal": (ActivitySource.INTERNAL_TRANSACTIONS,),
}


class EntityState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SCORING = "scoring"
    UPDATED = "updated"


@dataclass
class AnalysisResult:
    """Outcome of analysing one address, with availability flags for each upstream."""

    address: str
    verdict: RiskVerdict
    summary: ActivitySummary
    transactions_available: bool = True
    token_transfers_available: bool = True
    nft_transfers_available: bool = True
    internal_transactions_available: bool = True
    balance_available: bool = True
    monitored: bool = False
    balance_wei: str | None = None

    @property
    def ai_analysis_used(self) -> bool:
        return self.verdict.ai_used

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "analysis": self.verdict.to_dict(),
            "summary": {
                "daily_tx_count": self.summary.daily_tx_count,
                "daily_volume_eth": str(self.summary.daily_volume_eth.normalize()),
                "daily_failed_count": self.summary.daily_failed_count,
                "daily_token_transfer_count": self.summary.daily_token_transfer_count,
                "daily_nft_transfer_count": self.summary.daily_nft_transfer_count,
                "lifetime_tx_count": self.summary.lifetime_tx_count,
            },
            "balance_wei": self.balance_wei,
            "monitored": self.monitored,
            "ai_analysis_used": self.ai_analysis_used,
            "transactions_available": self.transactions_available,
            "token_transfers_available": self.token_transfers_available,
            "nft_transfers_available": self.nft_transfers_available,
            "internal_transactions_available": self.internal_transactions_available,
            "balance_available": self.balance_available,
        }


@dataclass
class CycleReport:
    started_at: float
    duration_sec: float = 0.0
    processed: int = 0
    unusual: int = 0
    errors: int = 0
    skipped_removed: int = 0
    persisted: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "duration_sec": round(self.duration_sec, 3),
            "processed": self.processed,
            "unusual": self.unusual,
            "errors": self.errors,
            "skipped_removed": self.skipped_removed,
            "persisted": self.persisted,
        }


class ActivityFeedAggregator:
    def __init__(
        self,
        fetcher: ActivityFetcher,
        classifier: RiskClassifier,
        registry: Registry,
        event_channel: asyncio.Queue | None = None,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        summary_fetch_limit: int = DEFAULT_SUMMARY_FETCH_LIMIT,
    ) -> None:
        self._fetcher = fetcher
        self._classifier = classifier
        self._registry = registry
        self._channel = event_channel
        self._max_concurrency = max(1, max_concurrency)
        self._fetch_limit = max(1, summary_fetch_limit)
        self._states: dict[str, EntityState] = {}
        self._cycle_lock = asyncio.Lock()
        self.cycles_run = 0
        self.last_report: CycleReport | None = None

    @property
    def running(self) -> bool:
        return self._cycle_lock.locked()

    def entity_states(self) -> dict[str, str]:
        return {addr: state.value for addr, state in self._states.items()}

    async def wait_idle(self) -> None:
        """Return once no cycle is in flight."""
        async with self._cycle_lock:
            pass

    # ---- one-address pipeline ----

    async def _collect(self, address: str) -> AnalysisResult:
        """Fetch all inputs for one address and score it. Does not touch the registry."""
        self._states[address] = EntityState.FETCHING
        txs, tokens, nfts, internal, balance = await asyncio.gather(
            self._fetcher.fetch_with_status(address, ActivitySource.TRANSACTIONS, self._fetch_limit),
            self._fetcher.fetch_with_status(address, ActivitySource.TOKEN_TRANSFERS, self._fetch_limit),
            self._fetcher.fetch_with_status(address, ActivitySource.NFT_TRANSFERS, self._fetch_limit),
            self._fetcher.fetch_with_status(address, ActivitySource.INTERNAL_TRANSACTIONS, self._fetch_limit),
            self._fetcher.get_balance(address),
        )
        summary = build_activity_summary(
            address,
            txs.records,
            tokens.records,
            internal_transactions=internal.records,
            nft_transfers=nfts.records,
            balance=balance,
        )
        self._states[address] = EntityState.SCORING
        verdict = await self._classifier.analyze(summary)
        return AnalysisResult(
            address=address,
            verdict=verdict,
            summary=summary,
            transactions_available=txs.available,
            token_transfers_available=tokens.available,
            nft_transfers_available=nfts.available,
            internal_transactions_available=internal.available,
            balance_available=balance is not None,
            balance_wei=balance.wei if balance is not None else None,
        )

    async def _record(self, result: AnalysisResult) -> MonitoredEntity | None:
        """Apply a result to the registry and emit a risk event when unusual."""
        entity = await self._registry.update_after_analysis(result.address, result.verdict, result.summary)
        result.monitored = entity is not None
        if result.verdict.is_unusual:
            alert_count = entity.alert_count if entity is not None else 0
            self._emit(RiskEvent.from_analysis(result.address, result.verdict, result.summary, alert_count))
            bind_entity(logger, result.address, alert_count=alert_count).warning(
                "unusual_activity_detected",
                risk_level=result.verdict.risk_level.value,
                anomalies=sorted(result.verdict.anomalies),
                source=result.verdict.source.value,
            )
        self._states[result.address] = EntityState.UPDATED
        return entity

    async def analyze_address(self, address: str) -> AnalysisResult:
        """
        One-shot analysis of any valid address; monitoring is not required.
        Updates the registry if the address is monitored. Raises InvalidAddress.
        """
        addr = normalize_address(address)
        try:
            result = await self._collect(addr)
            await self._record(result)
        finally:
            if addr not in self._registry:
                self._states.pop(addr, None)
        bind_entity(logger, addr).info(
            "wallet_analysis_complete",
            risk_level=result.verdict.risk_level.value,
            ai_analysis_used=result.ai_analysis_used,
            monitored=result.monitored,
        )
        return result

    # ---- cycle ----

    async def _process_entity(self, entity: MonitoredEntity, sem: asyncio.Semaphore, report: CycleReport) -> None:
        log = bind_entity(logger, entity.address, kind=entity.kind.value)
        async with sem:
            try:
                result = await self._collect(entity.address)
                updated = await self._record(result)
            except Exception as e:
                report.errors += 1
                self._states[entity.address] = EntityState.IDLE
                log.exception("aggregation_entity_failed", error=str(e)[:200])
                return
        log.debug(
            "aggregation_entity_done",
            risk_level=result.verdict.risk_level.value,
            source=result.verdict.source.value,
        )
        report.processed += 1
        if result.verdict.is_unusual:
            report.unusual += 1
        if updated is None:
            # removed while in flight
            report.skipped_removed += 1
            self._states.pop(entity.address, None)

    async def run_cycle(self) -> CycleReport:
        """Analyse every active entity once, then persist the snapshot. Cycles never overlap."""
        async with self._cycle_lock:
            report = CycleReport(started_at=time.time())
            entities = self._registry.list_active()
            live = {e.address for e in entities}
            for addr in list(self._states):
                if addr not in live:
                    self._states.pop(addr, None)
            for e in entities:
                self._states.setdefault(e.address, EntityState.IDLE)
            logger.info("aggregation_cycle_start", entity_count=len(entities))

            sem = asyncio.Semaphore(self._max_concurrency)
            await asyncio.gather(*(self._process_entity(e, sem, report) for e in entities))

            report.persisted = await self._registry.persist()
            report.duration_sec = time.time() - report.started_at
            self.cycles_run += 1
            self.last_report = report
            logger.info(
                "aggregation_cycle_end",
                processed=report.processed,
                unusual=report.unusual,
                errors=report.errors,
                duration_sec=round(report.duration_sec, 3),
            )
            return report

    # ---- feeds ----

    @staticmethod
    def per_entity_limit(limit: int, entity_count: int, kind: EntityKind) -> int:
        base = limit // max(1, entity_count)
        return base + (FEED_EXTRA_PER_TOKEN if kind == EntityKind.TOKEN else FEED_EXTRA_PER_ENTITY)

    async def _entity_feed(self, entity: MonitoredEntity, per_limit: int) -> list[dict[str, Any]]:
        if entity.kind == EntityKind.TOKEN:
            result: FetchResult = await self._fetcher.get_token_contract_activity(entity.address, per_limit)
            records = result.records
        else:
            records = await self._fetcher.get_aggregated_activity(entity.address, per_limit)
        rows = []
        for record in records:
            row = record.to_dict()
            row["monitored_address"] = entity.address
            row["entity_kind"] = entity.kind.value
            row["chain_id"] = entity.chain_id
            row["risk_level"] = entity.risk_level.value
            row["direction"] = self._direction(record, entity.address)
            rows.append(row)
        return rows

    @staticmethod
    def _direction(record: ActivityRecord, address: str) -> str:
        if record.from_address == address:
            return "outgoing"
        if record.to_address == address:
            return "incoming"
        return "related"

    async def get_activity_feed(self, limit: int = 50, chain_id: str | None = None) -> list[dict[str, Any]]:
        """
        Merged recent activity across active entities. Each entity contributes at
        most floor(limit / n) + 5 records (+ 10 for tokens); the merge is sorted
        newest first and truncated to limit.
        """
        limit = max(0, int(limit))
        if limit == 0:
            return []
        entities = self._registry.list_active()
        if chain_id is not None:
            entities = [e for e in entities if e.chain_id == str(chain_id)]
        if not entities:
            return []
        feeds = await asyncio.gather(
            *(self._entity_feed(e, self.per_entity_limit(limit, len(entities), e.kind)) for e in entities)
        )
        merged = [row for feed in feeds for row in feed]
        merged.sort(key=lambda r: (r.get("timestamp") or 0, r.get("block_number") or 0), reverse=True)
        return merged[:limit]

    async def get_activity(self, address: str, activity_type: str = "all", limit: int = 20) -> dict[str, Any]:
        """Single-address activity of one type (all, transactions, tokens, nfts, internal)."""
        addr = normalize_address(address)
        sources = ACTIVITY_TYPES.get(activity_type)
        if sources is None:
            raise ValueError(f"Unknown activity type: {activity_type!r}")
        limit = max(0, int(limit))
        results = await asyncio.gather(*(self._fetcher.fetch_with_status(addr, s, limit) for s in sources))
        records: list[ActivityRecord] = []
        for r in results:
            records.extend(r.records)
        records = sort_newest_first(records)[:limit]
        return {
            "address": addr,
            "type": activity_type,
            "activities": [r.to_dict() for r in records],
            "available": {r.source.value: r.available for r in results},
        }

    def _emit(self, event: RiskEvent) -> None:
        if self._channel is None:
            return
        try:
            self._channel.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("risk_event_dropped", wallet_id=short_address(event.address))
