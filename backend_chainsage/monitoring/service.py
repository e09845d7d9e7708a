"""
Monitoring service — the operations exposed to callers.

Wires the fetcher, classifier, registry, aggregator, broadcaster and durable
store together and owns their lifecycle. The HTTP and WebSocket surface in
api_server is a thin layer over this class. Validation errors (InvalidAddress,
NotFound) propagate to the caller; upstream and persistence failures are
already absorbed by the components and show up as availability flags.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import Counter
from typing import Any, Callable

import httpx

from backend_chainsage.activity.fetcher import ActivityFetcher
from backend_chainsage.agent_worker.aggregator import ActivityFeedAggregator
from backend_chainsage.agent_worker.runner import AggregationRunner
from backend_chainsage.alerts.broadcaster import EventBroadcaster, Subscriber
from backend_chainsage.alerts.events import RiskEvent
from backend_chainsage.analysis_engine.ai_backend import AIBackend, AnthropicBackend
from backend_chainsage.analysis_engine.classifier import RiskClassifier
from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.config.settings import Settings, get_settings
from backend_chainsage.core.exceptions import NotFound, PersistenceDegraded, UpstreamUnavailable
from backend_chainsage.database.object_store import MAX_PAGE_SIZE, ObjectStore, SQLAlchemyObjectStore
from backend_chainsage.registry.models import EntityKind, RegistryEvent
from backend_chainsage.registry.registry import Registry
from backend_chainsage.registry.snapshot import BackupFileSnapshotProvider, DurableSnapshotProvider
from backend_chainsage.utils.address import normalize_address

logger = get_logger(__name__)

CLASSIFICATION_DATA_TYPE = "ai_classification"


class MonitoringService:
    def __init__(
        self,
        *,
        settings: Settings,
        fetcher: ActivityFetcher,
        classifier: RiskClassifier,
        object_store: ObjectStore,
        registry: Registry,
        aggregator: ActivityFeedAggregator,
        broadcaster: EventBroadcaster,
        event_channel: asyncio.Queue,
        runner: AggregationRunner | None = None,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.classifier = classifier
        self.store = object_store
        self.registry = registry
        self.aggregator = aggregator
        self.broadcaster = broadcaster
        self.runner = runner
        self._channel = event_channel
        self._pump: asyncio.Task | None = None
        self.started_at: float | None = None

    # ---- lifecycle ----

    async def start(self, *, schedule: bool = True) -> None:
        """Create tables, cold-start the registry, start the event pump and the periodic driver."""
        try:
            await self._blocking(self.store.init_db)
        except PersistenceDegraded as e:
            # the backup file can still restore the registry
            logger.warning("durable_store_unavailable_at_start", tier=e.tier, error=e.reason)
        count = await self.registry.load()
        self._pump = asyncio.create_task(self.broadcaster.run(self._channel), name="event-broadcaster")
        if schedule and self.runner is not None:
            self.runner.start()
        self.started_at = time.time()
        logger.info(
            "monitoring_service_started",
            entities=count,
            loaded_from=self.registry.loaded_from,
            ai_enabled=self.classifier.ai_configured,
        )

    async def stop(self) -> None:
        """Stop the driver and pump, publish what is still queued, write a final snapshot."""
        if self.runner is not None:
            self.runner.stop()
        # a cycle already in flight finishes before the final snapshot
        await self.aggregator.wait_idle()
        if self._pump is not None:
            self.broadcaster.stop()
            self._pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump
            self._pump = None
        await self.broadcaster.drain(self._channel)
        await self.registry.persist()
        logger.info("monitoring_service_stopped")

    async def flush_events(self) -> int:
        """Publish queued events now (used when no pump is running)."""
        return await self.broadcaster.drain(self._channel)

    @staticmethod
    async def _blocking(fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    # ---- registry operations ----

    async def monitor(
        self,
        address: str,
        kind: EntityKind | str = EntityKind.WALLET,
        chain_id: str | None = None,
        threshold: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        entity = await self.registry.add(address, kind, chain_id, threshold, metadata)
        return entity.to_dict()

    async def unmonitor(self, address: str) -> dict[str, Any]:
        addr = (address or "").strip().lower()
        if not await self.registry.remove(addr):
            raise NotFound(addr)
        return {"address": addr, "removed": True}

    def list_monitored(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.registry.list()]

    def get_status(self) -> dict[str, Any]:
        entities = self.registry.list()
        last = self.aggregator.last_report
        return {
            "total_wallets": len(entities),
            "active_wallets": sum(1 for e in entities if e.is_active),
            "wallets_with_alerts": sum(1 for e in entities if e.has_alerts),
            "entity_states": self.aggregator.entity_states(),
            "cycle_running": self.aggregator.running,
            "cycles_run": self.aggregator.cycles_run,
            "last_cycle": last.to_dict() if last is not None else None,
            "scheduler_running": self.runner.running if self.runner is not None else False,
            "interval_sec": self.runner.interval_sec if self.runner is not None else None,
            "loaded_from": self.registry.loaded_from,
            "persistence": dict(self.registry.last_persist),
            "last_persist_at": self.registry.last_persist_at,
            "ai_analysis_enabled": self.classifier.ai_configured,
            "classifier": self.classifier.stats(),
            "indexer_requests": self.fetcher.request_count,
            "indexer_errors": self.fetcher.error_count,
            "subscribers": self.broadcaster.subscriber_count,
            "events_published": self.broadcaster.published,
            "started_at": self.started_at,
        }

    async def force_sync(self) -> dict[str, Any]:
        results = await self.registry.persist()
        return {"wallets": len(self.registry), "tiers": results, "success": all(results.values())}

    async def reload_from_durable_store(self) -> dict[str, Any]:
        count = await self.registry.reload()
        return {"wallets": count, "loaded_from": self.registry.loaded_from}

    # ---- analysis and activity ----

    async def analyze(self, address: str) -> dict[str, Any]:
        result = await self.aggregator.analyze_address(address)
        return result.to_dict()

    async def get_activity_feed(self, limit: int = 50, chain_id: str | None = None) -> dict[str, Any]:
        activities = await self.aggregator.get_activity_feed(limit, chain_id)
        return {
            "activities": activities,
            "total_wallets": len(self.registry.list_active()),
            "limit": limit,
            "chain_id": chain_id,
        }

    async def get_activity(self, address: str, activity_type: str = "all", limit: int = 20) -> dict[str, Any]:
        return await self.aggregator.get_activity(address, activity_type, limit)

    async def get_balance(self, address: str) -> dict[str, Any]:
        addr = normalize_address(address)
        balance = await self.fetcher.get_balance(addr)
        if balance is None:
            raise UpstreamUnavailable("indexer", "balance lookup failed")
        return balance.to_dict()

    async def run_cycle(self) -> dict[str, Any]:
        report = await self.aggregator.run_cycle()
        return report.to_dict()

    # ---- event log ----

    async def _retrieve(self, data_type: str | None, **filters: Any) -> dict[str, Any]:
        try:
            result = await self._blocking(lambda: self.store.retrieve(data_type, **filters))
        except Exception as e:
            raise PersistenceDegraded("durable", str(e)) from e
        return result.to_dict()

    async def get_alerts(
        self,
        limit: int = 50,
        severity: str | None = None,
        address: str | None = None,
    ) -> list[dict[str, Any]]:
        page = await self._retrieve(RiskEvent.log_type, limit=limit, severity=severity, address=address)
        return page["logs"]

    async def get_events(
        self,
        limit: int = 50,
        event_type: str | None = None,
        address: str | None = None,
    ) -> list[dict[str, Any]]:
        page = await self._retrieve(RegistryEvent.log_type, limit=limit, event_type=event_type, address=address)
        return page["logs"]

    async def store_data(self, data: Any, data_type: str = "generic") -> dict[str, Any]:
        try:
            ref = await self._blocking(lambda: self.store.store(data_type, data))
        except Exception as e:
            raise PersistenceDegraded("durable", str(e)) from e
        return ref.to_dict()

    async def retrieve_data(
        self,
        data_type: str | None = None,
        *,
        limit: int = 100,
        page: int = 1,
        address: str | None = None,
        severity: str | None = None,
        start_time: float | None = None,
        end_time: float | None = None,
    ) -> dict[str, Any]:
        return await self._retrieve(
            data_type,
            limit=limit,
            page=page,
            address=address,
            severity=severity,
            start_time=start_time,
            end_time=end_time,
        )

    # ---- transaction classification ----

    async def classify_transaction(self, transaction: dict[str, Any]) -> dict[str, Any]:
        classification = await self.classifier.classify_transaction(transaction)
        result = classification.to_dict()
        record = {"transaction": transaction, **result}
        try:
            await self._blocking(
                lambda: self.store.store(
                    CLASSIFICATION_DATA_TYPE,
                    record,
                    address=str(transaction.get("from") or "") or None,
                    severity=classification.classification.value,
                )
            )
        except Exception as e:
            logger.warning(
                "classification_log_failed",
                transaction_hash=classification.transaction_hash[:16],
                error=str(e)[:200],
            )
        return result

    async def classify_transactions(self, transactions: list[dict[str, Any]]) -> list[dict[str, Any]]:
        # Sequential: each AI call is already rate-bound upstream.
        return [await self.classify_transaction(tx) for tx in transactions]

    async def get_classification_history(self, transaction_hash: str) -> list[dict[str, Any]]:
        page = await self._retrieve(CLASSIFICATION_DATA_TYPE, limit=MAX_PAGE_SIZE)
        wanted = transaction_hash.strip().lower()
        return [
            log["data"]
            for log in page["logs"]
            if str(log["data"].get("transaction_hash", "")).lower() == wanted
        ]

    async def get_classification_stats(self) -> dict[str, Any]:
        page = await self._retrieve(CLASSIFICATION_DATA_TYPE, limit=MAX_PAGE_SIZE)
        rows = [log["data"] for log in page["logs"]]
        labels = Counter(r.get("classification") for r in rows)
        sources = Counter(r.get("source") for r in rows)
        confidences = [float(r.get("confidence") or 0) for r in rows]
        risk_scores = [float(r.get("risk_score") or 0) for r in rows]
        return {
            "total_classifications": page["total"],
            "sampled": len(rows),
            "classifications": {
                "Normal": labels.get("Normal", 0),
                "Suspicious": labels.get("Suspicious", 0),
                "Risky": labels.get("Risky", 0),
            },
            "sources": dict(sources),
            "average_confidence": round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
            "average_risk_score": round(sum(risk_scores) / len(risk_scores), 4) if risk_scores else 0.0,
            "ai_enabled": self.classifier.ai_configured,
        }

    # ---- live subscribers ----

    def subscribe(self, addresses: list[str] | None = None) -> Subscriber:
        return self.broadcaster.subscribe(addresses)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self.broadcaster.unsubscribe(subscriber)


def create_service(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    ai_backend: AIBackend | None = None,
    object_store: ObjectStore | None = None,
) -> MonitoringService:
    """
    Build the full component graph from settings. Without an explicit
    ai_backend, Anthropic is used when ANTHROPIC_API_KEY is set and the
    rules otherwise.
    """
    settings = settings or get_settings()
    if ai_backend is None and settings.ai_enabled:
        ai_backend = AnthropicBackend.from_settings(settings)
    store = object_store or SQLAlchemyObjectStore(settings.database_url)
    channel: asyncio.Queue = asyncio.Queue()

    fetcher = ActivityFetcher.from_settings(settings, transport=transport)
    classifier = RiskClassifier(ai_backend, ai_timeout_sec=settings.ai_timeout_sec)
    registry = Registry(
        classifier,
        [DurableSnapshotProvider(store), BackupFileSnapshotProvider(settings.backup_file_path)],
        channel,
        default_threshold=settings.default_alert_threshold,
        default_chain_id=settings.etherscan_chain_id,
    )
    aggregator = ActivityFeedAggregator(
        fetcher,
        classifier,
        registry,
        channel,
        max_concurrency=settings.max_concurrency,
        summary_fetch_limit=settings.summary_fetch_limit,
    )
    broadcaster = EventBroadcaster(store, queue_size=settings.subscriber_queue_size)
    runner = AggregationRunner(aggregator, settings.aggregation_interval_sec)
    logger.info(
        "monitoring_service_built",
        chain_id=settings.etherscan_chain_id,
        ai_enabled=ai_backend is not None,
        backup_file=settings.backup_file_path,
    )
    return MonitoringService(
        settings=settings,
        fetcher=fetcher,
        classifier=classifier,
        object_store=store,
        registry=registry,
        aggregator=aggregator,
        broadcaster=broadcaster,
        event_channel=channel,
        runner=runner,
    )
