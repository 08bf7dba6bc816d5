"""
Unit Tests - Daily Rollup Job
"""
import asyncio
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select

from gear_popularity.database import get_db
from gear_popularity.database.models import (
    PopularityDaily,
    PopularityLifetime,
    PopularityWindow,
    RollupRun,
)
from gear_popularity.popularity import rollup as rollup_module
from gear_popularity.popularity.rollup import DailyRollupJob

AS_OF = date(2025, 1, 10)
RUN_AT = datetime(2025, 1, 11, 0, 5)


def at(day: date, hour: int = 12) -> datetime:
    return datetime(day.year, day.month, day.day, hour)


async def _rows(model, *conditions):
    async with get_db() as db:
        result = await db.execute(select(model).where(*conditions))
        return list(result.scalars().all())


def _snapshot(rows, *columns):
    return sorted(tuple(getattr(r, c) for c in columns) for r in rows)


@pytest.fixture
def job(weights):
    return DailyRollupJob(weights=weights, lookback_days=7, timeout_seconds=30)


class TestDailyAggregate:
    """Daily stage"""

    async def test_weight_correctness(self, catalog, add_events, job):
        r5 = catalog["canon-eos-r5"]
        await add_events(r5, [
            ("view", at(AS_OF), 3),
            ("wishlist_add", at(AS_OF), 2),
            ("review_submit", at(AS_OF), 1),
        ])

        result = await job.run(AS_OF, now=RUN_AT)

        assert result.ok
        assert result.daily_rows == 1
        [row] = await _rows(PopularityDaily, PopularityDaily.date == AS_OF)
        assert row.item_id == r5
        assert (row.views, row.wishlist_adds, row.review_submits) == (3, 2, 1)
        assert row.score == pytest.approx(3 * 0.1 + 2 * 2.0 + 1 * 2.5)

    async def test_utc_day_boundaries(self, catalog, add_events, job):
        r5 = catalog["canon-eos-r5"]
        await add_events(r5, [
            ("view", datetime(2025, 1, 9, 23, 59, 59), 1),
            ("view", datetime(2025, 1, 10, 0, 0, 0), 1),
            ("view", datetime(2025, 1, 10, 23, 59, 59), 1),
            ("view", datetime(2025, 1, 11, 0, 0, 0), 1),
        ])

        await job.run(AS_OF, now=RUN_AT)

        [row] = await _rows(PopularityDaily, PopularityDaily.date == AS_OF)
        assert row.views == 2

    async def test_defaults_to_yesterday(self, catalog, add_events, job):
        await add_events(catalog["canon-eos-r5"], [("view", at(AS_OF), 1)])

        result = await job.run(now=RUN_AT)

        assert result.as_of_date == AS_OF
        assert result.corrected_date == AS_OF

    async def test_empty_day(self, catalog, job):
        result = await job.run(AS_OF, now=RUN_AT)

        assert result.ok
        assert result.daily_rows == 0
        assert result.windows_rows == 0
        assert result.lifetime_total_rows == 0


class TestIdempotence:
    """Re-running the same as-of date"""

    async def test_rerun_produces_identical_aggregates(self, catalog, add_events, job):
        for offset in range(3):
            day = AS_OF - timedelta(days=offset)
            await add_events(catalog["canon-eos-r5"], [("view", at(day), 2 + offset)])
            await add_events(catalog["sony-a7-iv"], [("owner_add", at(day), 1)])

        first = await job.run(AS_OF, now=RUN_AT)
        daily = _snapshot(await _rows(PopularityDaily), "item_id", "date", "views", "owner_adds", "score")
        windows = _snapshot(await _rows(PopularityWindow), "item_id", "timeframe", "as_of_date", "views_sum", "score")
        lifetime = _snapshot(await _rows(PopularityLifetime), "item_id", "views_lifetime", "owner_adds_lifetime", "score")

        second = await job.run(AS_OF, now=RUN_AT + timedelta(minutes=5))

        assert first.ok and second.ok
        assert second.late_arrivals == 0
        assert second.corrected_date == AS_OF
        assert _snapshot(await _rows(PopularityDaily), "item_id", "date", "views", "owner_adds", "score") == daily
        assert _snapshot(await _rows(PopularityWindow), "item_id", "timeframe", "as_of_date", "views_sum", "score") == windows
        assert _snapshot(await _rows(PopularityLifetime), "item_id", "views_lifetime", "owner_adds_lifetime", "score") == lifetime
        assert (first.daily_rows, first.windows_rows, first.lifetime_total_rows) == (
            second.daily_rows, second.windows_rows, second.lifetime_total_rows
        )


class TestLateArrivals:
    """Correction of days already rolled up"""

    async def test_late_event_corrects_previous_day(self, catalog, add_events, job):
        r5 = catalog["canon-eos-r5"]
        yesterday = AS_OF - timedelta(days=1)
        await add_events(r5, [("view", at(yesterday), 2)])
        first = await job.run(yesterday, now=at(AS_OF, 0))
        assert first.ok

        # Arrives after the run for yesterday, stamped with yesterday's time
        await add_events(r5, [("view", at(yesterday, 23), 1)])
        await add_events(r5, [("view", at(AS_OF), 1)])

        result = await job.run(AS_OF, now=RUN_AT)

        assert result.ok
        assert result.corrected_date == yesterday
        assert result.late_arrivals == 1
        assert result.recomputed_dates == [yesterday, AS_OF]
        [row] = await _rows(PopularityDaily, PopularityDaily.date == yesterday)
        assert row.views == 3

        [run] = await _rows(RollupRun, RollupRun.as_of_date == AS_OF)
        assert run.late_arrivals == 1
        assert run.corrected_date == yesterday

    async def test_unprocessed_days_caught_up_without_counting_late(self, catalog, add_events, job):
        r5 = catalog["canon-eos-r5"]
        await add_events(r5, [("view", at(AS_OF - timedelta(days=3)), 4)])

        result = await job.run(AS_OF, now=RUN_AT)

        assert result.corrected_date == AS_OF - timedelta(days=3)
        assert result.late_arrivals == 0
        [row] = await _rows(PopularityDaily, PopularityDaily.date == AS_OF - timedelta(days=3))
        assert row.views == 4

    async def test_lookback_bounds_correction(self, catalog, add_events, weights):
        r5 = catalog["canon-eos-r5"]
        await add_events(r5, [("view", at(AS_OF - timedelta(days=5)), 1)])

        result = await DailyRollupJob(weights=weights, lookback_days=2).run(AS_OF, now=RUN_AT)

        assert result.corrected_date == AS_OF
        assert await _rows(PopularityDaily, PopularityDaily.date == AS_OF - timedelta(days=5)) == []


class TestWindows:
    """Window stage"""

    async def test_seven_day_window_sums_days_four_to_ten(self, catalog, add_events, weights):
        r5 = catalog["canon-eos-r5"]
        day_one = AS_OF - timedelta(days=9)
        # Day n has n views
        for n in range(1, 11):
            await add_events(r5, [("view", at(day_one + timedelta(days=n - 1)), n)])

        job = DailyRollupJob(weights=weights, lookback_days=10)
        result = await job.run(AS_OF, now=RUN_AT)

        assert result.ok
        [seven] = await _rows(
            PopularityWindow,
            PopularityWindow.timeframe == "7d",
            PopularityWindow.as_of_date == AS_OF,
        )
        [thirty] = await _rows(
            PopularityWindow,
            PopularityWindow.timeframe == "30d",
            PopularityWindow.as_of_date == AS_OF,
        )
        assert seven.views_sum == sum(range(4, 11))
        assert seven.score == pytest.approx(sum(range(4, 11)) * 0.1)
        assert thirty.views_sum == sum(range(1, 11))
        assert result.windows_rows == 2

    async def test_window_snapshot_replaced(self, catalog, add_events, job):
        await add_events(catalog["canon-eos-r5"], [("view", at(AS_OF), 1)])
        await job.run(AS_OF, now=RUN_AT)

        await add_events(catalog["sony-a7-iv"], [("view", at(AS_OF), 1)])
        result = await job.run(AS_OF, now=RUN_AT)

        rows = await _rows(PopularityWindow, PopularityWindow.as_of_date == AS_OF)
        assert len(rows) == 4
        assert result.windows_rows == 4


class TestLifetime:
    """Lifetime stage"""

    async def test_lifetime_sums_all_days(self, catalog, add_events, job):
        r5 = catalog["canon-eos-r5"]
        await add_events(r5, [("owner_add", at(AS_OF - timedelta(days=1)), 2)])
        await add_events(r5, [("owner_add", at(AS_OF), 1), ("view", at(AS_OF), 5)])

        result = await job.run(AS_OF, now=RUN_AT)

        [row] = await _rows(PopularityLifetime)
        assert row.owner_adds_lifetime == 3
        assert row.views_lifetime == 5
        assert row.score == pytest.approx(3 * 3.0 + 5 * 0.1)
        assert result.lifetime_total_rows == 1


class TestFailures:
    """Failed runs are reported, recorded and rolled back"""

    async def test_stage_failure_returns_structured_result(self, catalog, add_events, job, monkeypatch):
        await add_events(catalog["canon-eos-r5"], [("view", at(AS_OF), 3)])

        async def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(rollup_module, "rollup_windows", broken)

        result = await job.run(AS_OF, now=RUN_AT)

        assert result.ok is False
        assert result.failed_stage == "windows"
        assert "disk full" in result.error
        assert result.daily_rows == 0

        # Daily rows written before the failure were rolled back
        assert await _rows(PopularityDaily) == []

        [run] = await _rows(RollupRun)
        assert run.success is False
        assert "windows" in run.error
        assert result.run_id == run.id

    async def test_timeout_recorded_as_failure(self, catalog, add_events, weights, monkeypatch):
        await add_events(catalog["canon-eos-r5"], [("view", at(AS_OF), 1)])

        async def slow(*args, **kwargs):
            await asyncio.sleep(5)

        monkeypatch.setattr(rollup_module, "rollup_lifetime", slow)
        job = DailyRollupJob(weights=weights, timeout_seconds=0.1)

        result = await job.run(AS_OF, now=RUN_AT)

        assert result.ok is False
        assert "budget" in result.error
        [run] = await _rows(RollupRun)
        assert run.success is False
        assert await _rows(PopularityDaily) == []
        assert await _rows(PopularityWindow) == []
        assert await _rows(PopularityLifetime) == []

    async def test_success_recorded_in_ledger(self, catalog, add_events, job):
        await add_events(catalog["canon-eos-r5"], [("view", at(AS_OF), 1)])

        result = await job.run(AS_OF, now=RUN_AT)

        [run] = await _rows(RollupRun)
        assert run.id == result.run_id
        assert run.success is True
        assert run.error is None
        assert run.created_at == RUN_AT
        assert (run.daily_rows, run.windows_rows, run.lifetime_total_rows) == (1, 2, 1)
