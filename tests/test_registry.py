"""
Tests for the monitored-entity registry: add and overwrite, removal, dual-tier persistence
and cold-start recovery.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from backend_chainsage.analysis_engine.classifier import RiskClassifier
from backend_chainsage.analysis_engine.models import ActivitySummary, RiskLevel, RiskVerdict, VerdictSource
from backend_chainsage.core.exceptions import InvalidAddress
from backend_chainsage.registry import (
    BackupFileSnapshotProvider,
    DurableSnapshotProvider,
    EntityKind,
    EntityStatus,
    MonitoredEntity,
    Registry,
    RegistryEventType,
)
from backend_chainsage.registry.snapshot import SNAPSHOT_DATA_TYPE

from helpers import ADDR_A, ADDR_A_CHECKSUM, ADDR_B, ADDR_C, FailingObjectStore


def _registry(object_store, backup_path, channel=None) -> Registry:
    return Registry(
        RiskClassifier(),
        [DurableSnapshotProvider(object_store), BackupFileSnapshotProvider(backup_path)],
        channel,
    )


def _verdict(level: RiskLevel, unusual: bool) -> RiskVerdict:
    return RiskVerdict(
        is_unusual=unusual,
        risk_level=level,
        confidence=0.7,
        anomalies=frozenset({"large_volume_spike"} if unusual else set()),
        source=VerdictSource.RULE_BASED,
    )


def test_monitor_same_address_twice_replaces_entity(object_store, backup_path):
    channel: asyncio.Queue = asyncio.Queue()

    async def run():
        reg = _registry(object_store, backup_path, channel)
        first = await reg.add(ADDR_A_CHECKSUM, threshold=500)
        await reg.update_after_analysis(ADDR_A, _verdict(RiskLevel.HIGH, True))
        second = await reg.add(ADDR_A, EntityKind.CONTRACT, threshold=700)
        return reg, first, second

    reg, first, second = asyncio.run(run())
    entities = reg.list()
    assert len(entities) == 1
    assert entities[0].address == ADDR_A
    # fresh entity with a new cold-start verdict, prior risk state dropped
    assert second.kind == EntityKind.CONTRACT
    assert second.alert_threshold == 700
    assert second.risk_level == RiskLevel.LOW
    assert second.has_alerts is False
    assert second.alert_count == 0
    assert second.added_at >= first.added_at
    events = [channel.get_nowait() for _ in range(2)]
    assert [e.metadata["created"] for e in events] == [True, False]


def test_add_runs_cold_start_analysis_and_persists_both_tiers(object_store, backup_path):
    channel: asyncio.Queue = asyncio.Queue()

    async def run():
        reg = _registry(object_store, backup_path, channel)
        return await reg.add(ADDR_B, EntityKind.TOKEN, "137", 10, {"source": "test"})

    entity = asyncio.run(run())
    assert entity.kind == EntityKind.TOKEN
    assert entity.chain_id == "137"
    assert entity.risk_level == RiskLevel.LOW
    assert entity.risk_score == 25
    assert entity.risk_analysis["source"] == "rule-based"

    durable = object_store.latest(SNAPSHOT_DATA_TYPE)
    assert [row["address"] for row in durable.payload] == [ADDR_B]
    assert [row["address"] for row in json.loads(backup_path.read_text())] == [ADDR_B]

    event = channel.get_nowait()
    assert event.event_type == RegistryEventType.ADDED
    assert event.metadata["source"] == "test"
    assert event.metadata["kind"] == "token"


def test_invalid_address_rejected_without_state_change(object_store, backup_path):
    async def run():
        reg = _registry(object_store, backup_path)
        for bad in ("0x123", "not-an-address", "", "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAeD"):
            with pytest.raises(InvalidAddress):
                await reg.add(bad)
        return reg

    reg = asyncio.run(run())
    assert reg.list() == []
    assert not backup_path.exists()


def test_remove_absent_returns_false(object_store, backup_path):
    channel: asyncio.Queue = asyncio.Queue()

    async def run():
        reg = _registry(object_store, backup_path, channel)
        return await reg.remove(ADDR_C)

    assert asyncio.run(run()) is False
    assert channel.empty()
    assert object_store.latest(SNAPSHOT_DATA_TYPE) is None


def test_remove_emits_event_with_duration(object_store, backup_path):
    channel: asyncio.Queue = asyncio.Queue()

    async def run():
        reg = _registry(object_store, backup_path, channel)
        await reg.add(ADDR_A)
        removed = await reg.remove(ADDR_A.upper().replace("0X", "0x"))
        return reg, removed

    reg, removed = asyncio.run(run())
    assert removed is True
    assert reg.list() == []
    channel.get_nowait()  # added
    event = channel.get_nowait()
    assert event.event_type == RegistryEventType.REMOVED
    assert event.metadata["monitored_duration"] >= 0
    assert event.metadata["entity"]["status"] == EntityStatus.STOPPED.value
    assert object_store.latest(SNAPSHOT_DATA_TYPE).payload == []


def test_durable_failure_still_writes_backup(backup_path):
    async def run():
        reg = _registry(FailingObjectStore(), backup_path)
        await reg.add(ADDR_A)
        return reg

    reg = asyncio.run(run())
    assert len(reg.list()) == 1
    assert reg.last_persist == {"durable": False, "backup_file": True}
    assert json.loads(backup_path.read_text())[0]["address"] == ADDR_A


def test_cold_start_from_backup_when_durable_unreachable(backup_path):
    rows = [MonitoredEntity(address=a).to_dict() for a in (ADDR_A, ADDR_B, ADDR_C)]
    backup_path.write_text(json.dumps(rows))

    async def run():
        reg = _registry(FailingObjectStore(), backup_path)
        count = await reg.load()
        return reg, count

    reg, count = asyncio.run(run())
    assert count == 3
    assert reg.loaded_from == "backup_file"
    assert {e.address for e in reg.list()} == {ADDR_A, ADDR_B, ADDR_C}


def test_cold_start_prefers_durable_store(object_store, backup_path):
    object_store.store(SNAPSHOT_DATA_TYPE, [MonitoredEntity(address=ADDR_A).to_dict()])
    backup_path.write_text(json.dumps([MonitoredEntity(address=ADDR_B).to_dict()]))

    async def run():
        reg = _registry(object_store, backup_path)
        await reg.load()
        return reg

    reg = asyncio.run(run())
    assert reg.loaded_from == "durable"
    assert [e.address for e in reg.list()] == [ADDR_A]


def test_cold_start_with_both_tiers_down_is_empty(tmp_path):
    bad_backup = tmp_path / "backup.json"
    bad_backup.write_text("{not json")

    async def run():
        reg = _registry(FailingObjectStore(), bad_backup)
        count = await reg.load()
        return reg, count

    reg, count = asyncio.run(run())
    assert count == 0
    assert reg.list() == []
    assert reg.loaded_from is None


def test_add_remove_reload_round_trip(object_store, backup_path):
    async def run():
        reg = _registry(object_store, backup_path)
        await reg.add(ADDR_A)
        await reg.add(ADDR_B)
        await reg.remove(ADDR_A)
        fresh = _registry(object_store, backup_path)
        await fresh.reload()
        return fresh

    fresh = asyncio.run(run())
    assert [e.address for e in fresh.list()] == [ADDR_B]


def test_update_after_analysis_counts_alert_transitions(object_store, backup_path):
    summary = ActivitySummary(address=ADDR_A)

    async def run():
        reg = _registry(object_store, backup_path)
        await reg.add(ADDR_A)
        await reg.update_after_analysis(ADDR_A, _verdict(RiskLevel.HIGH, True), summary)
        await reg.update_after_analysis(ADDR_A, _verdict(RiskLevel.HIGH, True), summary)
        await reg.update_after_analysis(ADDR_A, _verdict(RiskLevel.LOW, False), summary)
        await reg.update_after_analysis(ADDR_A, _verdict(RiskLevel.CRITICAL, True), summary)
        missing = await reg.update_after_analysis(ADDR_C, _verdict(RiskLevel.HIGH, True), summary)
        return reg, missing

    reg, missing = asyncio.run(run())
    entity = reg.get(ADDR_A)
    assert missing is None
    assert entity.alert_count == 2
    assert entity.has_alerts is True
    assert entity.risk_level == RiskLevel.CRITICAL
    assert entity.risk_score == 90
    assert reg.get(ADDR_C) is None
    assert json.loads(backup_path.read_text())[0]["risk_level"] == "critical"


def test_list_returns_copies(object_store, backup_path):
    async def run():
        reg = _registry(object_store, backup_path)
        await reg.add(ADDR_A)
        return reg

    reg = asyncio.run(run())
    reg.list()[0].alert_count = 99
    assert reg.get(ADDR_A).alert_count == 0


def test_durable_snapshots_are_pruned(object_store, backup_path):
    async def run():
        reg = Registry(
            RiskClassifier(),
            [DurableSnapshotProvider(object_store, retention=2), BackupFileSnapshotProvider(backup_path)],
        )
        for addr in (ADDR_A, ADDR_B, ADDR_C):
            await reg.add(addr)
        await reg.persist()
        return reg

    asyncio.run(run())
    snapshots = object_store.retrieve(SNAPSHOT_DATA_TYPE)
    assert snapshots.total == 2
    assert [row["address"] for row in snapshots.items[0].payload] == [ADDR_A, ADDR_B, ADDR_C]
