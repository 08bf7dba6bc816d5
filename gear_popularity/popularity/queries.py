"""
Popularity Aggregate Queries

Read helpers shared by the rollup and the trending service. Event counts
are grouped per (item, event type) in SQL and pivoted into one counter
row per item.
"""

from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, Optional

import polars as pl
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from gear_popularity.database.models import Gear, PopularityDaily, PopularityEvent
from gear_popularity.popularity.scoring import (
    COUNTERS,
    LIVE_SCHEMA,
    counters_from_type_counts,
)


async def count_events_by_item(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    gear_conditions: Optional[Iterable[ColumnElement]] = None,
) -> pl.DataFrame:
    """
    Count events in [start, end) per item.

    Args:
        gear_conditions: Optional filters on Gear columns; when given the
            events are joined to the gear table

    Returns:
        LIVE_SCHEMA frame, one row per item with at least one event
    """
    query = (
        select(
            PopularityEvent.item_id,
            PopularityEvent.event_type,
            func.count().label("n"),
        )
        .where(
            PopularityEvent.created_at >= start,
            PopularityEvent.created_at < end,
        )
        .group_by(PopularityEvent.item_id, PopularityEvent.event_type)
    )
    conditions = list(gear_conditions or [])
    if conditions:
        query = query.join(Gear, Gear.id == PopularityEvent.item_id).where(*conditions)

    result = await db.execute(query)

    by_item: Dict[str, Dict[str, int]] = defaultdict(dict)
    for item_id, event_type, n in result.all():
        by_item[item_id][event_type] = n

    rows = [
        {"item_id": item_id, **counters_from_type_counts(type_counts)}
        for item_id, type_counts in sorted(by_item.items())
    ]
    return pl.DataFrame(rows, schema=LIVE_SCHEMA)


async def daily_counters_for_day(db: AsyncSession, day: date) -> Dict[str, Dict[str, int]]:
    """Stored daily counters for one day, keyed by item id"""
    result = await db.execute(
        select(PopularityDaily).where(PopularityDaily.date == day)
    )
    return {
        row.item_id: {c: getattr(row, c) for c in COUNTERS}
        for row in result.scalars().all()
    }
