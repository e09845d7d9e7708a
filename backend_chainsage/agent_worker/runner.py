"""
Periodic aggregation driver — APScheduler interval job on the running event loop.

One job, max_instances=1 and coalesce=True: a tick that fires while the
previous cycle is still running is skipped, never stacked.
"""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from backend_chainsage.agent_worker.aggregator import ActivityFeedAggregator
from backend_chainsage.chainsage_logging import get_logger
from backend_chainsage.config.settings import DEFAULT_AGGREGATION_INTERVAL_SEC

logger = get_logger(__name__)

JOB_ID = "activity_aggregation_cycle"


class AggregationRunner:
    def __init__(
        self,
        aggregator: ActivityFeedAggregator,
        interval_sec: float = DEFAULT_AGGREGATION_INTERVAL_SEC,
    ) -> None:
        self._aggregator = aggregator
        self._interval = max(1.0, float(interval_sec))
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def interval_sec(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def job_cycle(self) -> None:
        """Scheduled job: run one cycle; errors are logged so the schedule survives."""
        try:
            await self._aggregator.run_cycle()
        except Exception as e:
            logger.exception("aggregation_job_error", error=str(e))

    def start(self) -> None:
        """Start the scheduler. Must be called from inside the running event loop."""
        if self.running:
            return
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.job_cycle,
            "interval",
            seconds=self._interval,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("aggregation_runner_started", interval_sec=self._interval)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("aggregation_runner_stopped")
