"""
Trending Read Service

Ranks gear by the latest committed window snapshot, optionally blended
with a live boost computed from today's raw events so that fresh
activity shows up before the next rollup.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import polars as pl
import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gear_popularity.config import get_settings
from gear_popularity.database.models import (
    Brand,
    Gear,
    GearType,
    Mount,
    PopularityDaily,
    PopularityLifetime,
    PopularityWindow,
)
from gear_popularity.errors import NotFoundError, StorageError, ValidationError
from gear_popularity.popularity.ledger import last_success_at
from gear_popularity.popularity.queries import count_events_by_item
from gear_popularity.popularity.recorder import resolve_item
from gear_popularity.popularity.scoring import (
    COUNTERS,
    LIVE_SCHEMA,
    WINDOW_SCHEMA,
    Timeframe,
    WeightTable,
    blend_live_scores,
    parse_timeframe,
    to_naive_utc,
    utc_day_bounds,
    utcnow,
)
from gear_popularity.serving.cache import trending_cache

logger = structlog.get_logger(__name__)
settings = get_settings()


@dataclass
class TrendingEntry:
    """One ranked item"""
    item_id: str
    slug: str
    name: str
    brand_name: Optional[str]
    gear_type: str
    score: float
    windowed_score: float
    live_boost: float
    live_only: bool
    as_of_date: Optional[date]
    stats: Dict[str, int] = field(default_factory=dict)


@dataclass
class TrendingPage:
    """A page of trending items plus paging metadata"""
    items: List[TrendingEntry]
    total: int
    page: int
    per_page: int
    timeframe: str
    filters: Dict[str, Optional[str]]
    include_live: bool
    generated_at: datetime


@dataclass
class ItemStats:
    """Popularity summary for a single item"""
    item_id: str
    slug: str
    name: str
    lifetime: Dict[str, int]
    lifetime_score: float
    views_7d: int
    views_30d: int
    latest_as_of: Optional[date]


# =============================================================================
# FILTERS
# =============================================================================

async def _gear_conditions(
    db: AsyncSession,
    brand_id: Optional[str],
    mount_id: Optional[str],
    gear_type: Optional[str],
) -> list:
    conditions = []

    if gear_type:
        try:
            kind = GearType(gear_type.upper())
        except ValueError:
            allowed = ", ".join(t.value for t in GearType)
            raise ValidationError(f"gearType must be one of: {allowed}")
        conditions.append(Gear.gear_type == kind)

    if brand_id:
        if await db.get(Brand, brand_id) is None:
            raise NotFoundError(f"Brand not found: {brand_id}")
        conditions.append(Gear.brand_id == brand_id)

    if mount_id:
        if await db.get(Mount, mount_id) is None:
            raise NotFoundError(f"Mount not found: {mount_id}")
        conditions.append(Gear.mount_id == mount_id)

    return conditions


# =============================================================================
# WINDOWED BASELINE
# =============================================================================

async def latest_snapshot_date(db: AsyncSession, timeframe: Timeframe) -> Optional[date]:
    """Most recent as-of date with a window snapshot for the timeframe"""
    result = await db.execute(
        select(func.max(PopularityWindow.as_of_date))
        .where(PopularityWindow.timeframe == timeframe.value)
    )
    return result.scalar()


async def _load_window_rows(
    db: AsyncSession,
    timeframe: Timeframe,
    as_of: date,
    conditions: list,
) -> List[Dict[str, Any]]:
    query = (
        select(
            PopularityWindow.item_id,
            PopularityWindow.score.label("windowed_score"),
            *[getattr(PopularityWindow, f"{c}_sum").label(c) for c in COUNTERS],
        )
        .join(Gear, Gear.id == PopularityWindow.item_id)
        .where(
            PopularityWindow.timeframe == timeframe.value,
            PopularityWindow.as_of_date == as_of,
            *conditions,
        )
    )
    result = await db.execute(query)
    return [dict(r._mapping) for r in result.all()]


async def load_windowed_baseline(
    db: AsyncSession,
    timeframe: Timeframe,
    conditions: list,
    cache_key: str,
) -> pl.DataFrame:
    """
    Rows of the latest snapshot for the timeframe as a WINDOW_SCHEMA frame.

    The snapshot date is part of the cache key, so a new rollup never
    serves stale cached rows even before the namespace is invalidated.
    """
    as_of = await latest_snapshot_date(db, timeframe)
    if as_of is None:
        return pl.DataFrame(schema=WINDOW_SCHEMA)

    key = f"{cache_key}:{as_of.isoformat()}"
    rows = await trending_cache.get_or_set(
        key, lambda: _load_window_rows(db, timeframe, as_of, conditions)
    )

    frame = pl.DataFrame(
        rows,
        schema={k: v for k, v in WINDOW_SCHEMA.items() if k != "as_of_date"},
    )
    return frame.with_columns(pl.lit(as_of).alias("as_of_date")).select(list(WINDOW_SCHEMA))


async def _live_start(db: AsyncSession, as_of: date, day_start: datetime, day_end: datetime) -> datetime:
    """
    First instant of today not yet folded into the snapshot.

    A snapshot as of an earlier day leaves all of today live. A snapshot as
    of today, from a manual same-day rollup, covers events up to the start
    of the run that wrote it; until that run reaches the ledger nothing of
    today is live.
    """
    if as_of < day_start.date():
        return day_start
    if as_of > day_start.date():
        return day_end
    written = await last_success_at(db, as_of)
    if written is None:
        return day_end
    return min(max(day_start, written), day_end)


# =============================================================================
# READS
# =============================================================================

async def get_trending_page(
    db: AsyncSession,
    timeframe: str = "30d",
    page: int = 1,
    per_page: Optional[int] = None,
    brand_id: Optional[str] = None,
    mount_id: Optional[str] = None,
    gear_type: Optional[str] = None,
    include_live: bool = True,
    weights: Optional[WeightTable] = None,
    now: Optional[datetime] = None,
) -> TrendingPage:
    """
    Get one page of trending gear.

    Args:
        db: Session
        timeframe: "7d" or "30d"
        page: 1-based page number
        per_page: Page size, 1..max_per_page
        brand_id / mount_id / gear_type: Optional catalog filters
        include_live: Blend today's events into the committed snapshot
        weights: Weight table for the live boost
        now: Clock override

    Raises:
        ValidationError: bad timeframe, page, per_page or gear type
        NotFoundError: unknown brand or mount
        StorageError: database failure
    """
    popularity = settings.popularity
    per_page = popularity.default_per_page if per_page is None else per_page
    tf = parse_timeframe(timeframe)
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= per_page <= popularity.max_per_page:
        raise ValidationError(f"perPage must be between 1 and {popularity.max_per_page}")

    weights = weights or WeightTable.from_settings(popularity)
    now = to_naive_utc(now) if now else utcnow()

    try:
        conditions = await _gear_conditions(db, brand_id, mount_id, gear_type)
        cache_key = f"{tf.value}:{brand_id or '*'}:{mount_id or '*'}:{(gear_type or '*').upper()}"
        windowed = await load_windowed_baseline(db, tf, conditions, cache_key)

        if include_live:
            start, end = utc_day_bounds(now.date())
            if windowed.height:
                start = await _live_start(db, windowed["as_of_date"][0], start, end)
            live = await count_events_by_item(db, start, max(start, end), gear_conditions=conditions)
        else:
            live = pl.DataFrame(schema=LIVE_SCHEMA)

        ranked = blend_live_scores(windowed, live, weights)
        total = ranked.height
        window = ranked.slice((page - 1) * per_page, per_page)

        items = await _hydrate(db, window)
    except SQLAlchemyError as e:
        logger.error("Trending read failed", timeframe=tf.value, error=str(e))
        raise StorageError("trending read failed") from e

    logger.debug(
        "Trending page served",
        timeframe=tf.value,
        page=page,
        per_page=per_page,
        total=total,
        live_rows=live.height,
    )

    return TrendingPage(
        items=items,
        total=total,
        page=page,
        per_page=per_page,
        timeframe=tf.value,
        filters={"brand_id": brand_id, "mount_id": mount_id, "gear_type": gear_type},
        include_live=include_live,
        generated_at=now,
    )


async def _hydrate(db: AsyncSession, ranked: pl.DataFrame) -> List[TrendingEntry]:
    """Attach catalog details to ranked rows, preserving order"""
    if ranked.is_empty():
        return []

    result = await db.execute(
        select(Gear.id, Gear.slug, Gear.name, Gear.gear_type, Brand.name.label("brand_name"))
        .outerjoin(Brand, Brand.id == Gear.brand_id)
        .where(Gear.id.in_(ranked["item_id"].to_list()))
    )
    catalog = {r.id: r for r in result.all()}

    items = []
    for row in ranked.iter_rows(named=True):
        gear = catalog.get(row["item_id"])
        if gear is None:
            continue
        items.append(TrendingEntry(
            item_id=row["item_id"],
            slug=gear.slug,
            name=gear.name,
            brand_name=gear.brand_name,
            gear_type=GearType(gear.gear_type).value,
            score=round(row["score"], 4),
            windowed_score=round(row["windowed_score"], 4),
            live_boost=round(row["live_boost"], 4),
            live_only=row["live_only"],
            as_of_date=row["as_of_date"],
            stats={c: row[c] for c in COUNTERS},
        ))
    return items


async def _window_views(
    db: AsyncSession,
    item_id: str,
    timeframe: Timeframe,
    fallback_end: date,
) -> int:
    as_of = await latest_snapshot_date(db, timeframe)
    if as_of is not None:
        result = await db.execute(
            select(PopularityWindow.views_sum).where(
                PopularityWindow.item_id == item_id,
                PopularityWindow.timeframe == timeframe.value,
                PopularityWindow.as_of_date == as_of,
            )
        )
        return int(result.scalar() or 0)

    start = fallback_end - timedelta(days=timeframe.days - 1)
    result = await db.execute(
        select(func.sum(PopularityDaily.views)).where(
            PopularityDaily.item_id == item_id,
            PopularityDaily.date >= start,
            PopularityDaily.date <= fallback_end,
        )
    )
    return int(result.scalar() or 0)


async def get_item_stats(
    db: AsyncSession,
    item_ref: str,
    now: Optional[datetime] = None,
) -> ItemStats:
    """Lifetime totals and trailing view counts of one item"""
    gear = await resolve_item(db, item_ref)
    now = to_naive_utc(now) if now else utcnow()
    yesterday = now.date() - timedelta(days=1)

    try:
        lifetime = await db.get(PopularityLifetime, gear.id)
        views_7d = await _window_views(db, gear.id, Timeframe.SEVEN_DAYS, yesterday)
        views_30d = await _window_views(db, gear.id, Timeframe.THIRTY_DAYS, yesterday)
        result = await db.execute(
            select(func.max(PopularityWindow.as_of_date))
            .where(PopularityWindow.item_id == gear.id)
        )
        latest_as_of = result.scalar()
    except SQLAlchemyError as e:
        logger.error("Item stats read failed", item_id=gear.id, error=str(e))
        raise StorageError("item stats read failed") from e

    return ItemStats(
        item_id=gear.id,
        slug=gear.slug,
        name=gear.name,
        lifetime={
            c: getattr(lifetime, f"{c}_lifetime") if lifetime else 0
            for c in COUNTERS
        },
        lifetime_score=lifetime.score if lifetime else 0.0,
        views_7d=views_7d,
        views_30d=views_30d,
        latest_as_of=latest_as_of,
    )
