"""
Agent worker — aggregation cycles, activity feeds and the periodic driver.
"""

from backend_chainsage.agent_worker.aggregator import (
    ActivityFeedAggregator,
    AnalysisResult,
    CycleReport,
    EntityState,
)
from backend_chainsage.agent_worker.runner import AggregationRunner

__all__ = [
    "ActivityFeedAggregator",
    "AggregationRunner",
    "AnalysisResult",
    "CycleReport",
    "EntityState",
]
