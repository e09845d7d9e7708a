"""
Tests for EventBroadcaster: event log append, per-address filtering, bounded queues.
"""

from __future__ import annotations

import asyncio

from backend_chainsage.alerts.broadcaster import EventBroadcaster
from backend_chainsage.alerts.events import RiskEvent
from backend_chainsage.analysis_engine.models import RiskLevel, RiskVerdict, VerdictSource
from backend_chainsage.registry.models import RegistryEvent, RegistryEventType

from helpers import ADDR_A, ADDR_B, FailingObjectStore


def _risk_event(address: str, level: RiskLevel = RiskLevel.HIGH) -> RiskEvent:
    verdict = RiskVerdict(
        is_unusual=True,
        risk_level=level,
        confidence=0.8,
        anomalies=frozenset({"large_volume_spike"}),
        source=VerdictSource.RULE_BASED,
    )
    return RiskEvent(address=address, verdict=verdict, daily_tx_count=5, daily_volume_eth="150")


def test_publish_appends_to_event_log(object_store):
    broadcaster = EventBroadcaster(object_store)
    asyncio.run(broadcaster.publish(_risk_event(ADDR_A, RiskLevel.CRITICAL)))
    asyncio.run(broadcaster.publish(RegistryEvent(RegistryEventType.ADDED, ADDR_B, 1000.0)))

    alerts = object_store.retrieve("unusual_activity")
    assert alerts.total == 1
    assert alerts.items[0].severity == "critical"
    assert alerts.items[0].address == ADDR_A
    assert alerts.items[0].payload["analysis"]["risk_level"] == "critical"

    events = object_store.retrieve("wallet_event", event_type="added")
    assert events.items[0].address == ADDR_B


def test_subscriber_filtering():
    async def run():
        broadcaster = EventBroadcaster()
        everyone = broadcaster.subscribe()
        only_a = broadcaster.subscribe([ADDR_A])
        only_b = broadcaster.subscribe()
        only_b.follow(ADDR_B.upper().replace("0X", "0x"))
        reached = await broadcaster.publish(_risk_event(ADDR_A))
        return reached, everyone, only_a, only_b

    reached, everyone, only_a, only_b = asyncio.run(run())
    assert reached == 2
    assert everyone.queue.qsize() == 1
    assert only_a.queue.qsize() == 1
    assert only_b.queue.qsize() == 0
    message = only_a.queue.get_nowait()
    assert message["type"] == "unusual_activity_detected"
    assert message["data"]["address"] == ADDR_A


def test_unfollow_restores_everything():
    async def run():
        broadcaster = EventBroadcaster()
        sub = broadcaster.subscribe([ADDR_B])
        sub.unfollow(ADDR_B)
        await broadcaster.publish(_risk_event(ADDR_A))
        return sub

    assert asyncio.run(run()).queue.qsize() == 1


def test_full_queue_drops_for_that_subscriber_only():
    async def run():
        broadcaster = EventBroadcaster(queue_size=2)
        slow = broadcaster.subscribe()
        fast = broadcaster.subscribe()
        for i in range(3):
            await broadcaster.publish(_risk_event(ADDR_A))
            if i < 2:
                fast.queue.get_nowait()
        return slow, fast

    slow, fast = asyncio.run(run())
    assert slow.queue.qsize() == 2
    assert slow.dropped == 1
    assert fast.dropped == 0
    assert fast.queue.qsize() == 1


def test_order_preserved_per_subscriber():
    async def run():
        broadcaster = EventBroadcaster()
        sub = broadcaster.subscribe()
        await broadcaster.publish(RegistryEvent(RegistryEventType.ADDED, ADDR_A, 1000.0))
        await broadcaster.publish(_risk_event(ADDR_A))
        await broadcaster.publish(RegistryEvent(RegistryEventType.REMOVED, ADDR_A, 1000.0))
        return [sub.queue.get_nowait() for _ in range(3)]

    messages = asyncio.run(run())
    assert [m["type"] for m in messages] == [
        "wallet_monitoring_update",
        "unusual_activity_detected",
        "wallet_monitoring_update",
    ]
    assert messages[0]["data"]["action"] == "added"
    assert messages[2]["data"]["action"] == "removed"


def test_log_failure_does_not_block_push():
    async def run():
        broadcaster = EventBroadcaster(FailingObjectStore())
        sub = broadcaster.subscribe()
        reached = await broadcaster.publish(_risk_event(ADDR_A))
        return broadcaster, sub, reached

    broadcaster, sub, reached = asyncio.run(run())
    assert reached == 1
    assert sub.queue.qsize() == 1
    assert broadcaster.log_failures == 1


def test_drain_publishes_queued_events(object_store):
    async def run():
        channel: asyncio.Queue = asyncio.Queue()
        broadcaster = EventBroadcaster(object_store)
        channel.put_nowait(_risk_event(ADDR_A))
        channel.put_nowait(_risk_event(ADDR_B))
        return await broadcaster.drain(channel), channel

    count, channel = asyncio.run(run())
    assert count == 2
    assert channel.empty()
    assert object_store.retrieve("unusual_activity").total == 2
