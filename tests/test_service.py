"""
Tests for MonitoringService: facade operations and lifecycle without the HTTP layer.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from backend_chainsage.core.exceptions import NotFound
from backend_chainsage.database.object_store import SQLAlchemyObjectStore
from backend_chainsage.monitoring.service import create_service

from helpers import ADDR_A, ADDR_B, ADDR_C, WEI, ScriptedAI, tx_row


def test_alerts_and_events_logged(service, indexer, now_ts):
    indexer.set_rows(
        "txlist",
        ADDR_A,
        [tx_row(f"0xa{i}", ADDR_A, ADDR_C, 60 * WEI, now_ts - i) for i in range(2)],
    )

    async def run():
        await service.monitor(ADDR_A, metadata={"source": "test"})
        await service.monitor(ADDR_B)
        await service.unmonitor(ADDR_B)
        await service.run_cycle()
        await service.flush_events()
        return (
            await service.get_alerts(limit=10),
            await service.get_alerts(severity="low"),
            await service.get_events(event_type="removed"),
            await service.get_events(address=ADDR_A),
        )

    alerts, low_alerts, removed, a_events = asyncio.run(run())
    assert len(alerts) == 1
    assert alerts[0]["address"] == ADDR_A
    assert alerts[0]["severity"] == "high"
    assert low_alerts == []
    assert len(removed) == 1
    assert removed[0]["data"]["metadata"]["monitored_duration"] >= 0
    assert [e["data"]["event_type"] for e in a_events] == ["added"]


def test_unmonitor_absent_raises_not_found(service):
    with pytest.raises(NotFound):
        asyncio.run(service.unmonitor(ADDR_C))


def test_start_cold_starts_from_backup_and_stop_persists(settings, indexer, object_store, backup_path):
    backup_path.write_text(json.dumps([{"address": ADDR_A, "kind": "wallet"}, {"address": ADDR_B}]))
    svc = create_service(settings, transport=indexer.transport(), object_store=object_store)

    async def run():
        await svc.start(schedule=False)
        status = svc.get_status()
        await svc.stop()
        return status

    status = asyncio.run(run())
    assert status["total_wallets"] == 2
    assert status["loaded_from"] == "backup_file"
    assert status["scheduler_running"] is False
    # the final snapshot on stop reaches the durable store
    assert len(object_store.latest("monitored_wallets").payload) == 2


def test_start_schedules_periodic_job(service):
    async def run():
        await service.start()
        running = service.runner.running
        await service.stop()
        return running, service.runner.running

    assert asyncio.run(run()) == (True, False)


def test_ai_backend_verdict_reported(settings, indexer, object_store):
    reply = json.dumps(
        {"isUnusual": True, "riskLevel": "high", "confidence": 0.85, "anomalies": ["mixer_interaction"], "recommendations": []}
    )
    svc = create_service(settings, transport=indexer.transport(), object_store=object_store, ai_backend=ScriptedAI(reply))
    result = asyncio.run(svc.analyze(ADDR_C))
    assert result["ai_analysis_used"] is True
    assert result["analysis"]["source"] == "ai"
    assert result["analysis"]["anomalies"] == ["mixer_interaction"]
    assert svc.get_status()["ai_analysis_enabled"] is True


def test_start_with_unreachable_durable_store_restores_from_backup(settings, indexer, backup_path, tmp_path):
    backup_path.write_text(json.dumps([{"address": a} for a in (ADDR_A, ADDR_B, ADDR_C)]))
    broken = SQLAlchemyObjectStore(f"sqlite:///{tmp_path / 'missing_dir' / 'chainsage.db'}")
    svc = create_service(settings, transport=indexer.transport(), object_store=broken)

    async def run():
        await svc.start(schedule=False)
        status = svc.get_status()
        await svc.stop()
        return status

    status = asyncio.run(run())
    assert status["total_wallets"] == 3
    assert status["loaded_from"] == "backup_file"
    assert svc.registry.last_persist == {"durable": False, "backup_file": True}
    broken.dispose()


def test_stop_waits_for_cycle_in_flight(settings, indexer, object_store, now_ts):
    indexer.set_rows(
        "txlist",
        ADDR_A,
        [tx_row(f"0xa{i}", ADDR_A, ADDR_C, 60 * WEI, now_ts - i) for i in range(2)],
    )

    async def slow_handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.05)
        return indexer.handler(request)

    svc = create_service(settings, transport=httpx.MockTransport(slow_handler), object_store=object_store)

    async def run():
        await svc.start(schedule=False)
        await svc.monitor(ADDR_A)
        cycle = asyncio.create_task(svc.run_cycle())
        await asyncio.sleep(0.01)
        assert svc.aggregator.running
        await svc.stop()
        return cycle.done(), svc.aggregator.cycles_run

    done, cycles_run = asyncio.run(run())
    assert done is True
    assert cycles_run == 1
    # the final snapshot carries the verdict from the cycle that was running
    assert object_store.latest("monitored_wallets").payload[0]["risk_level"] == "high"
