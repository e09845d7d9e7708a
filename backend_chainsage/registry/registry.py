"""
Monitored-entity registry.

The registry owns the live address -> MonitoredEntity map and is its only
writer. Map mutations are serialized with an asyncio.Lock; snapshots are
written under a separate lock so the last write always carries the latest
state. Persistence tiers are written independently: a failing tier is logged
and skipped, never fatal. Cold start tries tiers in priority order and takes
the first non-empty list.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from backend_chainsage.analysis_engine.classifier import RiskClassifier
from backend_chainsage.analysis_engine.models import ActivitySummary, RiskVerdict
from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.chainsage_logging.logger import short_address
from backend_chainsage.config.settings import DEFAULT_ALERT_THRESHOLD, DEFAULT_CHAIN_ID
from backend_chainsage.core.exceptions import PersistenceDegraded
from backend_chainsage.registry.models import (
    EntityKind,
    EntityStatus,
    MonitoredEntity,
    RegistryEvent,
    RegistryEventType,
)
from backend_chainsage.registry.snapshot import SnapshotProvider
from backend_chainsage.utils.address import normalize_address

logger = get_logger(__name__)


class Registry:
    def __init__(
        self,
        classifier: RiskClassifier,
        providers: list[SnapshotProvider],
        event_channel: asyncio.Queue | None = None,
        *,
        default_threshold: float = DEFAULT_ALERT_THRESHOLD,
        default_chain_id: str = DEFAULT_CHAIN_ID,
    ) -> None:
        self._classifier = classifier
        self._providers = list(providers)
        self._channel = event_channel
        self._default_threshold = default_threshold
        self._default_chain_id = default_chain_id
        self._entities: dict[str, MonitoredEntity] = {}
        self._lock = asyncio.Lock()
        self._persist_lock = asyncio.Lock()
        self.loaded_from: str | None = None
        self.last_persist: dict[str, bool] = {}
        self.last_persist_at: float | None = None

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.strip().lower() in self._entities

    # ---- reads ----

    def list(self) -> list[MonitoredEntity]:
        """Copies of all entities, in insertion order."""
        return [e.copy() for e in self._entities.values()]

    def list_active(self) -> list[MonitoredEntity]:
        return [e.copy() for e in self._entities.values() if e.is_active]

    def get(self, address: str) -> MonitoredEntity | None:
        entity = self._entities.get((address or "").strip().lower())
        return entity.copy() if entity is not None else None

    # ---- mutations ----

    async def add(
        self,
        address: str,
        kind: EntityKind | str = EntityKind.WALLET,
        chain_id: str | None = None,
        threshold: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MonitoredEntity:
        """
        Start monitoring an address. Any existing entry at that address is
        replaced by a fresh entity with a new cold-start verdict.
        Raises InvalidAddress before any state changes.
        """
        addr = normalize_address(address)
        kind = EntityKind(kind)
        chain_id = str(chain_id or self._default_chain_id)
        threshold = float(threshold) if threshold is not None else self._default_threshold

        verdict = await self._classifier.analyze(ActivitySummary.empty(addr))
        now = time.time()
        entity = MonitoredEntity(
            address=addr,
            kind=kind,
            chain_id=chain_id,
            alert_threshold=threshold,
            added_at=now,
            last_checked_at=now,
        )
        self._apply_verdict(entity, verdict)

        async with self._lock:
            created = addr not in self._entities
            self._entities[addr] = entity
            result = entity.copy()

        await self.persist()

        meta = dict(metadata or {})
        meta.setdefault("source", "api")
        meta.setdefault("user_agent", "unknown")
        meta.update({"kind": kind.value, "chain_id": chain_id, "created": created})
        self._emit(RegistryEvent(RegistryEventType.ADDED, addr, threshold, metadata=meta))
        logger.info(
            "wallet_monitoring_started" if created else "wallet_monitoring_replaced",
            wallet_id=short_address(addr),
            kind=kind.value,
            chain_id=chain_id,
            threshold=threshold,
            risk_level=result.risk_level.value,
        )
        return result

    async def remove(self, address: str) -> bool:
        """Stop monitoring. Returns False (and changes nothing) when the address is absent."""
        addr = (address or "").strip().lower()
        async with self._lock:
            entity = self._entities.pop(addr, None)
        if entity is None:
            return False

        stopped = entity.copy()
        stopped.status = EntityStatus.STOPPED
        duration = max(0.0, time.time() - entity.added_at)

        await self.persist()

        self._emit(
            RegistryEvent(
                RegistryEventType.REMOVED,
                addr,
                entity.alert_threshold,
                metadata={
                    "monitored_duration": round(duration, 3),
                    "alert_count": entity.alert_count,
                    "entity": stopped.to_dict(),
                },
            )
        )
        logger.info("wallet_monitoring_stopped", wallet_id=short_address(addr), monitored_duration=round(duration, 1))
        return True

    async def update_after_analysis(
        self,
        address: str,
        verdict: RiskVerdict,
        summary: ActivitySummary | None = None,
    ) -> MonitoredEntity | None:
        """
        Record the latest verdict. No-op (returns None) if the entity was removed
        in the meantime. Only local tiers are written here; the durable snapshot
        follows at the end of the aggregation cycle.
        """
        addr = (address or "").strip().lower()
        async with self._lock:
            entity = self._entities.get(addr)
            if entity is None:
                return None
            was_alerting = entity.has_alerts
            self._apply_verdict(entity, verdict, summary)
            if verdict.is_unusual and not was_alerting:
                entity.alert_count += 1
            result = entity.copy()

        await self.persist(local_only=True)
        return result

    @staticmethod
    def _apply_verdict(
        entity: MonitoredEntity,
        verdict: RiskVerdict,
        summary: ActivitySummary | None = None,
    ) -> None:
        entity.risk_level = verdict.risk_level
        entity.risk_score = verdict.risk_score
        entity.has_alerts = verdict.is_unusual
        entity.last_checked_at = time.time()
        analysis = verdict.to_dict()
        if summary is not None:
            analysis["daily_tx_count"] = summary.daily_tx_count
            analysis["daily_volume_eth"] = str(summary.daily_volume_eth.normalize())
        entity.risk_analysis = analysis

    # ---- persistence ----

    async def persist(self, *, local_only: bool = False) -> dict[str, bool]:
        """Write the current list to every tier (or local tiers only). Returns per-tier success."""
        loop = asyncio.get_running_loop()
        results: dict[str, bool] = {}
        async with self._persist_lock:
            snapshot = [e.copy() for e in self._entities.values()]
            for provider in self._providers:
                if local_only and not provider.local:
                    continue
                try:
                    await loop.run_in_executor(None, provider.save, snapshot)
                    results[provider.name] = True
                except PersistenceDegraded as e:
                    results[provider.name] = False
                    logger.warning("registry_persist_failed", tier=provider.name, error=e.reason, count=len(snapshot))
            self.last_persist.update(results)
            self.last_persist_at = time.time()
        logger.debug("registry_persisted", tiers=results, count=len(snapshot))
        return results

    async def load(self) -> int:
        """
        Cold start: take the first non-empty list from the tiers in priority order.
        Errors and empty results fall through; if every tier fails the live map is
        left as it is. Never raises.
        """
        loop = asyncio.get_running_loop()
        for provider in self._providers:
            try:
                entities = await loop.run_in_executor(None, provider.load)
            except PersistenceDegraded as e:
                logger.warning("registry_load_failed", tier=provider.name, error=e.reason)
                continue
            if not entities:
                logger.info("registry_tier_empty", tier=provider.name)
                continue
            async with self._lock:
                self._entities = {e.address: e for e in entities}
            self.loaded_from = provider.name
            logger.info("registry_loaded", tier=provider.name, count=len(entities))
            return len(entities)
        self.loaded_from = None
        logger.warning("registry_cold_start_empty", tiers=[p.name for p in self._providers])
        return 0

    async def reload(self) -> int:
        """Replace the live map from the tiers (durable store first)."""
        count = await self.load()
        logger.info("registry_reloaded", count=count, tier=self.loaded_from)
        return count

    def _emit(self, event: RegistryEvent) -> None:
        if self._channel is None:
            return
        try:
            self._channel.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("registry_event_dropped", event_type=event.event_type.value, wallet_id=short_address(event.address))
