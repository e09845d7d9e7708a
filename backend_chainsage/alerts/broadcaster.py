"""
Event broadcaster: append-only event log plus live subscriber fan-out.

Each event is appended to the durable object store (best-effort; a failed
append is logged and the push still happens) and then offered to every
subscriber whose filter matches. Delivery is fire-and-forget through a bounded
queue per subscriber: a full queue drops that message for that subscriber
only. Per-subscriber order is publish order.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Iterable

from backend_chainsage.alerts.events import BroadcastEvent
from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.chainsage_logging.logger import short_address
from backend_chainsage.config.settings import DEFAULT_SUBSCRIBER_QUEUE_SIZE
from backend_chainsage.database.object_store import ObjectStore

logger = get_logger(__name__)

_subscriber_ids = itertools.count(1)


class Subscriber:
    """
    One live consumer. An empty follow set means "everything"; events with no
    address go to every subscriber.
    """

    def __init__(self, addresses: Iterable[str] | None = None, queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE) -> None:
        self.id = next(_subscriber_ids)
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max(1, queue_size))
        self.addresses: set[str] = {a.strip().lower() for a in (addresses or []) if a}
        self.dropped = 0

    def follow(self, address: str) -> None:
        self.addresses.add(address.strip().lower())

    def unfollow(self, address: str) -> None:
        self.addresses.discard(address.strip().lower())

    def wants(self, address: str | None) -> bool:
        if not self.addresses or not address:
            return True
        return address.lower() in self.addresses

    def offer(self, message: dict[str, Any]) -> bool:
        try:
            self.queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False


class EventBroadcaster:
    def __init__(
        self,
        object_store: ObjectStore | None = None,
        *,
        queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE,
    ) -> None:
        self._store = object_store
        self._queue_size = queue_size
        self._subscribers: dict[int, Subscriber] = {}
        self._stopping = False
        self.published = 0
        self.log_failures = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, addresses: Iterable[str] | None = None) -> Subscriber:
        sub = Subscriber(addresses, self._queue_size)
        self._subscribers[sub.id] = sub
        logger.info("subscriber_connected", subscriber_id=sub.id, follows=len(sub.addresses))
        return sub

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if self._subscribers.pop(subscriber.id, None) is not None:
            logger.info("subscriber_disconnected", subscriber_id=subscriber.id, dropped=subscriber.dropped)

    async def publish(self, event: BroadcastEvent) -> int:
        """Log then fan out one event. Returns the number of subscribers it reached."""
        await self._append_to_log(event)
        self.published += 1
        message = event.to_message()
        delivered = 0
        for sub in list(self._subscribers.values()):
            if not sub.wants(event.address):
                continue
            if sub.offer(message):
                delivered += 1
            else:
                logger.warning(
                    "subscriber_queue_full_dropped",
                    subscriber_id=sub.id,
                    event_type=event.log_type,
                    wallet_id=short_address(event.address),
                )
        return delivered

    async def _append_to_log(self, event: BroadcastEvent) -> None:
        if self._store is None:
            return
        payload = event.to_dict()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self._store.store(
                    event.log_type,
                    payload,
                    address=event.address,
                    severity=event.severity,
                    event_type=payload.get("event_type"),
                ),
            )
        except Exception as e:
            self.log_failures += 1
            logger.warning(
                "event_log_append_failed",
                event_type=event.log_type,
                wallet_id=short_address(event.address),
                error=str(e)[:200],
            )

    async def drain(self, channel: asyncio.Queue) -> int:
        """Publish everything currently queued on the channel."""
        count = 0
        while True:
            try:
                event = channel.get_nowait()
            except asyncio.QueueEmpty:
                return count
            try:
                await self.publish(event)
                count += 1
            finally:
                channel.task_done()

    async def run(self, channel: asyncio.Queue) -> None:
        """Pump the channel until stop() or cancellation."""
        self._stopping = False
        logger.info("broadcaster_started")
        try:
            while not self._stopping:
                event = await channel.get()
                try:
                    await self.publish(event)
                except Exception as e:
                    logger.exception("broadcaster_publish_failed", error=str(e))
                finally:
                    channel.task_done()
        finally:
            logger.info("broadcaster_stopped", published=self.published)

    def stop(self) -> None:
        self._stopping = True
