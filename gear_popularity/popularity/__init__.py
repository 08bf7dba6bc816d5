"""
Popularity Module

Event recording, the daily rollup and trending reads for gear items.
"""

from gear_popularity.popularity.scoring import (
    EventType,
    Timeframe,
    WeightTable,
    blend_live_scores,
)
from gear_popularity.popularity.recorder import record_event, RecordResult
from gear_popularity.popularity.ledger import RunRecord, record_run, list_runs
from gear_popularity.popularity.rollup import DailyRollupJob, RollupResult
from gear_popularity.popularity.trending import (
    TrendingPage,
    get_item_stats,
    get_trending_page,
)
from gear_popularity.popularity.compare import increment_compare_pair, top_compare_pairs

__all__ = [
    "EventType",
    "Timeframe",
    "WeightTable",
    "blend_live_scores",
    "record_event",
    "RecordResult",
    "RunRecord",
    "record_run",
    "list_runs",
    "DailyRollupJob",
    "RollupResult",
    "TrendingPage",
    "get_item_stats",
    "get_trending_page",
    "increment_compare_pair",
    "top_compare_pairs",
]
