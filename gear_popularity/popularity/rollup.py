"""
Daily Popularity Rollup

Batch job turning raw popularity events into daily, windowed and
lifetime aggregates for an as-of date (yesterday in UTC by default).

Stages:
1. late_scan  - find earlier days whose stored counters lag the raw events
2. daily      - upsert per-item counters for every day from the corrected
                date through the as-of date
3. windows    - replace the 7d/30d snapshots as of the as-of date
4. lifetime   - recompute all-time totals from the daily table

Stages share one transaction. Every run, successful or not, is appended
to the run ledger; failures are returned as a structured result.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import time
from typing import AsyncContextManager, Callable, Dict, List, Optional

import polars as pl
import structlog
from prometheus_client import Counter, Histogram
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gear_popularity.config import get_settings
from gear_popularity.database.connection import dialect_insert, get_db
from gear_popularity.database.models import (
    PopularityDaily,
    PopularityLifetime,
    PopularityWindow,
)
from gear_popularity.errors import RollupPartialFailure
from gear_popularity.popularity.ledger import RunRecord, record_run, rolled_up_dates
from gear_popularity.popularity.queries import count_events_by_item, daily_counters_for_day
from gear_popularity.popularity.scoring import (
    COUNTERS,
    Timeframe,
    WeightTable,
    to_naive_utc,
    utc_day_bounds,
    utcnow,
    yesterday_utc,
)
from gear_popularity.quality.validators import (
    FrameValidator,
    ValidationStatus,
    create_daily_aggregate_validator,
    create_window_validator,
)
from gear_popularity.serving.cache import CacheManager, trending_cache

logger = structlog.get_logger(__name__)
settings = get_settings()

UPSERT_CHUNK_SIZE = 500


ROLLUP_RUNS = Counter(
    "popularity_rollup_runs_total",
    "Popularity rollup executions",
    ["outcome"],
)

ROLLUP_DURATION = Histogram(
    "popularity_rollup_duration_seconds",
    "Wall-clock duration of popularity rollups",
    buckets=(0.5, 1, 5, 15, 30, 60, 120, 300),
)


class DataQualityError(Exception):
    """An aggregate frame failed an ERROR-severity quality check"""


@dataclass
class LateArrivalScan:
    """Days before the as-of date whose daily rows lag the raw events"""
    corrected_date: date
    late_arrivals: int = 0
    stale_dates: List[date] = field(default_factory=list)


@dataclass
class RollupResult:
    """Structured outcome returned to the trigger endpoint and the flow"""
    ok: bool
    as_of_date: date
    corrected_date: date
    daily_rows: int = 0
    late_arrivals: int = 0
    windows_rows: int = 0
    lifetime_total_rows: int = 0
    duration_ms: int = 0
    recomputed_dates: List[date] = field(default_factory=list)
    error: Optional[str] = None
    failed_stage: Optional[str] = None
    run_id: Optional[str] = None


def _ensure_valid(validator: FrameValidator, frame: pl.DataFrame, label: str) -> None:
    result = validator.validate(frame)
    if result.status == ValidationStatus.FAILED:
        raise DataQualityError(f"{label}: " + "; ".join(result.failure_messages))


async def _upsert_rows(
    db: AsyncSession,
    model,
    rows: List[Dict],
    index_elements: List[str],
    update_columns: List[str],
) -> None:
    for i in range(0, len(rows), UPSERT_CHUNK_SIZE):
        chunk = rows[i:i + UPSERT_CHUNK_SIZE]
        stmt = dialect_insert(db, model).values(chunk)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={
                **{c: stmt.excluded[c] for c in update_columns},
                "updated_at": func.now(),
            },
        )
        await db.execute(stmt)


# =============================================================================
# STAGES
# =============================================================================

async def scan_late_arrivals(
    db: AsyncSession,
    as_of_date: date,
    lookback_days: int,
) -> LateArrivalScan:
    """
    Compare raw event counts with stored daily rows for the lookback days.

    A day is stale when any item's counters differ from its events (or the
    row is missing) and is recomputed. Only days a previous successful run
    already rolled up contribute to late_arrivals; a day that was never
    processed is caught up without counting its events as late.
    """
    scan = LateArrivalScan(corrected_date=as_of_date)
    if lookback_days < 1:
        return scan

    covered = await rolled_up_dates(
        db, as_of_date - timedelta(days=lookback_days), as_of_date - timedelta(days=1)
    )

    for offset in range(lookback_days, 0, -1):
        day = as_of_date - timedelta(days=offset)
        events = await count_events_by_item(db, *utc_day_bounds(day))
        stored = await daily_counters_for_day(db, day)

        missing = 0
        stale = set(stored) - set(events["item_id"].to_list())
        for row in events.iter_rows(named=True):
            item_counters = stored.get(row["item_id"], {})
            for column in COUNTERS:
                diff = row[column] - item_counters.get(column, 0)
                if diff:
                    stale.add(row["item_id"])
                if diff > 0:
                    missing += diff

        if stale:
            scan.stale_dates.append(day)
            if day in covered:
                scan.late_arrivals += missing
            logger.info(
                "Stale daily aggregate detected",
                date=day.isoformat(),
                items=len(stale),
                events=missing,
                previously_rolled_up=day in covered,
            )

    if scan.stale_dates:
        scan.corrected_date = min(scan.stale_dates)
    return scan


async def rollup_daily(
    db: AsyncSession,
    day: date,
    weights: WeightTable,
    validator: Optional[FrameValidator] = None,
) -> int:
    """
    Upsert the daily aggregate of one UTC day.

    Counters are overwritten, so re-running a day is idempotent. Rows for
    items with no events that day are removed.

    Returns:
        Number of item rows written
    """
    frame = await count_events_by_item(db, *utc_day_bounds(day))
    frame = frame.with_columns(weights.score_expr().alias("score"))
    _ensure_valid(validator or create_daily_aggregate_validator(COUNTERS), frame, f"daily {day}")

    item_ids = frame["item_id"].to_list()
    await db.execute(
        delete(PopularityDaily).where(
            PopularityDaily.date == day,
            PopularityDaily.item_id.not_in(item_ids),
        )
    )

    rows = frame.with_columns(pl.lit(day).alias("date")).to_dicts()
    await _upsert_rows(
        db,
        PopularityDaily,
        rows,
        index_elements=["item_id", "date"],
        update_columns=[*COUNTERS, "score"],
    )
    return len(rows)


async def rollup_windows(
    db: AsyncSession,
    as_of_date: date,
    weights: WeightTable,
    validator: Optional[FrameValidator] = None,
) -> int:
    """
    Replace the 7d and 30d snapshots ending at as_of_date (inclusive).

    Returns:
        Number of window rows written across timeframes
    """
    frames = []
    for timeframe in Timeframe:
        start = as_of_date - timedelta(days=timeframe.days - 1)
        result = await db.execute(
            select(
                PopularityDaily.item_id,
                *[func.sum(getattr(PopularityDaily, c)).label(f"{c}_sum") for c in COUNTERS],
            )
            .where(PopularityDaily.date >= start, PopularityDaily.date <= as_of_date)
            .group_by(PopularityDaily.item_id)
            .order_by(PopularityDaily.item_id)
        )
        frame = pl.DataFrame(
            [dict(r._mapping) for r in result.all()],
            schema={"item_id": pl.Utf8, **{f"{c}_sum": pl.Int64 for c in COUNTERS}},
        )
        frames.append(frame.with_columns(
            pl.lit(timeframe.value).alias("timeframe"),
            pl.lit(as_of_date).alias("as_of_date"),
            weights.score_expr(suffix="_sum").alias("score"),
        ))

    windows = pl.concat(frames)
    _ensure_valid(validator or create_window_validator(COUNTERS), windows, f"windows {as_of_date}")

    await db.execute(
        delete(PopularityWindow).where(PopularityWindow.as_of_date == as_of_date)
    )
    rows = windows.to_dicts()
    # Upsert rather than insert so a concurrent run on the same snapshot converges
    await _upsert_rows(
        db,
        PopularityWindow,
        rows,
        index_elements=["item_id", "timeframe", "as_of_date"],
        update_columns=[*[f"{c}_sum" for c in COUNTERS], "score"],
    )
    return len(rows)


async def rollup_lifetime(db: AsyncSession, weights: WeightTable) -> int:
    """
    Recompute lifetime totals as a full sum over the daily table.

    Returns:
        Total number of lifetime rows after the recompute
    """
    result = await db.execute(
        select(
            PopularityDaily.item_id,
            *[func.sum(getattr(PopularityDaily, c)).label(f"{c}_lifetime") for c in COUNTERS],
        ).group_by(PopularityDaily.item_id)
    )
    rows = []
    for r in result.all():
        row = dict(r._mapping)
        row["score"] = weights.score(row, suffix="_lifetime")
        rows.append(row)

    await _upsert_rows(
        db,
        PopularityLifetime,
        rows,
        index_elements=["item_id"],
        update_columns=[*[f"{c}_lifetime" for c in COUNTERS], "score"],
    )

    total = await db.execute(select(func.count()).select_from(PopularityLifetime))
    return int(total.scalar() or 0)


# =============================================================================
# JOB
# =============================================================================

@asynccontextmanager
async def _stage(name: str, **context):
    started = time.perf_counter()
    try:
        yield
    except RollupPartialFailure:
        raise
    except Exception as e:
        raise RollupPartialFailure(name, e) from e
    logger.info(
        "Rollup stage complete",
        stage=name,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
        **context,
    )


class DailyRollupJob:
    """
    Idempotent daily rollup.

    Safe to retry or run concurrently for the same date: daily rows are
    upserted by (item, date), window snapshots are replaced by as-of date,
    and lifetime totals are a full recompute.

    Example:
        job = DailyRollupJob()
        result = await job.run()              # yesterday (UTC)
        result = await job.run(date(2025, 1, 31))
    """

    def __init__(
        self,
        weights: Optional[WeightTable] = None,
        lookback_days: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        session_scope: Callable[[], AsyncContextManager[AsyncSession]] = get_db,
        cache: CacheManager = trending_cache,
    ):
        popularity = settings.popularity
        self.weights = weights or WeightTable.from_settings(popularity)
        self.lookback_days = popularity.late_arrival_lookback_days if lookback_days is None else lookback_days
        self.timeout_seconds = timeout_seconds or popularity.rollup_timeout_seconds
        self.session_scope = session_scope
        self.cache = cache

    async def run(
        self,
        as_of_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> RollupResult:
        """
        Run the rollup for as_of_date (default: yesterday UTC).

        Never raises for rollup failures; inspect RollupResult.ok.
        """
        now = to_naive_utc(now) if now else utcnow()
        as_of = as_of_date or yesterday_utc(now)
        result = RollupResult(ok=False, as_of_date=as_of, corrected_date=as_of)
        log = logger.bind(as_of_date=as_of.isoformat())

        log.info("Popularity rollup started", lookback_days=self.lookback_days)
        started = time.perf_counter()

        try:
            await asyncio.wait_for(self._execute(as_of, result), timeout=self.timeout_seconds)
            result.ok = True
        except asyncio.TimeoutError:
            result.error = f"rollup exceeded its {self.timeout_seconds:g}s budget"
            log.error("Popularity rollup timed out", timeout_seconds=self.timeout_seconds)
        except RollupPartialFailure as e:
            result.error = e.message
            result.failed_stage = e.stage
            log.error("Popularity rollup failed", stage=e.stage, error=str(e.cause))
        except Exception as e:
            result.error = str(e) or type(e).__name__
            log.exception("Popularity rollup failed")

        if not result.ok:
            # Aggregates were rolled back
            result.daily_rows = result.windows_rows = result.lifetime_total_rows = 0

        elapsed = time.perf_counter() - started
        result.duration_ms = int(elapsed * 1000)
        ROLLUP_DURATION.observe(elapsed)
        ROLLUP_RUNS.labels(outcome="success" if result.ok else "failure").inc()

        await self._record(result, now)

        if result.ok:
            await self.cache.invalidate_all()
            log.info(
                "Popularity rollup complete",
                corrected_date=result.corrected_date.isoformat(),
                daily_rows=result.daily_rows,
                late_arrivals=result.late_arrivals,
                windows_rows=result.windows_rows,
                lifetime_total_rows=result.lifetime_total_rows,
                duration_ms=result.duration_ms,
            )
        return result

    async def _execute(self, as_of: date, result: RollupResult) -> None:
        try:
            async with self.session_scope() as db:
                async with _stage("late_scan"):
                    scan = await scan_late_arrivals(db, as_of, self.lookback_days)
                result.corrected_date = scan.corrected_date
                result.late_arrivals = scan.late_arrivals

                day = scan.corrected_date
                while day <= as_of:
                    async with _stage("daily", date=day.isoformat()):
                        rows = await rollup_daily(db, day, self.weights)
                    result.recomputed_dates.append(day)
                    if day == as_of:
                        result.daily_rows = rows
                    day += timedelta(days=1)

                async with _stage("windows"):
                    result.windows_rows = await rollup_windows(db, as_of, self.weights)

                async with _stage("lifetime"):
                    result.lifetime_total_rows = await rollup_lifetime(db, self.weights)
        except SQLAlchemyError as e:
            raise RollupPartialFailure("commit", e) from e

    async def _record(self, result: RollupResult, now: datetime) -> None:
        record = RunRecord(
            as_of_date=result.as_of_date,
            corrected_date=result.corrected_date,
            daily_rows=result.daily_rows,
            late_arrivals=result.late_arrivals,
            windows_rows=result.windows_rows,
            lifetime_total_rows=result.lifetime_total_rows,
            duration_ms=result.duration_ms,
            success=result.ok,
            error=result.error,
        )
        try:
            async with self.session_scope() as db:
                run = await record_run(db, record, created_at=now)
            result.run_id = run.id
        except Exception:
            logger.exception("Failed to persist rollup run", as_of_date=result.as_of_date.isoformat())
