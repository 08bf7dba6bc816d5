"""
Unit Tests - Run Ledger and Compare Pairs
"""
from datetime import date, datetime, timedelta

import pytest

from gear_popularity.database import get_db
from gear_popularity.errors import NotFoundError, ValidationError
from gear_popularity.popularity.compare import increment_compare_pair, top_compare_pairs
from gear_popularity.popularity.ledger import (
    RunRecord,
    last_success_at,
    list_runs,
    record_run,
    rolled_up_dates,
)


async def _record(as_of: date, created_at: datetime, corrected: date = None, success: bool = True):
    async with get_db() as db:
        run = await record_run(
            db,
            RunRecord(as_of_date=as_of, corrected_date=corrected or as_of, success=success),
            created_at=created_at,
        )
        return run.id


class TestRunLedger:
    """Tests for the rollup run ledger"""

    async def test_list_runs_newest_first(self, database):
        base = datetime(2025, 1, 1, 0, 5)
        for offset in range(3):
            await _record(date(2025, 1, 1) + timedelta(days=offset), base + timedelta(days=offset))

        async with get_db() as db:
            runs = await list_runs(db)

        assert [r.as_of_date for r in runs] == [date(2025, 1, 3), date(2025, 1, 2), date(2025, 1, 1)]

    async def test_list_runs_limit(self, database):
        base = datetime(2025, 1, 1, 0, 5)
        for offset in range(5):
            await _record(date(2025, 1, 1), base + timedelta(hours=offset))

        async with get_db() as db:
            runs = await list_runs(db, limit=2)

        assert len(runs) == 2
        assert runs[0].created_at == base + timedelta(hours=4)

    async def test_list_runs_rejects_bad_limit(self, database):
        async with get_db() as db:
            with pytest.raises(ValidationError):
                await list_runs(db, limit=0)

    async def test_failed_run_is_recorded(self, database):
        await _record(date(2025, 1, 1), datetime(2025, 1, 2), success=False)

        async with get_db() as db:
            [run] = await list_runs(db)

        assert run.success is False
        assert run.daily_rows == 0

    async def test_rolled_up_dates_only_successful_runs(self, database):
        await _record(date(2025, 1, 5), datetime(2025, 1, 6), corrected=date(2025, 1, 3))
        await _record(date(2025, 1, 8), datetime(2025, 1, 9), success=False)

        async with get_db() as db:
            covered = await rolled_up_dates(db, date(2025, 1, 1), date(2025, 1, 10))

        assert covered == {date(2025, 1, 3), date(2025, 1, 4), date(2025, 1, 5)}

    async def test_rolled_up_dates_clipped_to_range(self, database):
        await _record(date(2025, 1, 5), datetime(2025, 1, 6), corrected=date(2025, 1, 1))

        async with get_db() as db:
            covered = await rolled_up_dates(db, date(2025, 1, 4), date(2025, 1, 10))

        assert covered == {date(2025, 1, 4), date(2025, 1, 5)}

    async def test_last_success_at(self, database):
        day = date(2025, 1, 10)
        await _record(day, datetime(2025, 1, 10, 9))
        await _record(day, datetime(2025, 1, 10, 12))
        await _record(day, datetime(2025, 1, 10, 15), success=False)

        async with get_db() as db:
            assert await last_success_at(db, day) == datetime(2025, 1, 10, 12)
            assert await last_success_at(db, date(2025, 1, 11)) is None


class TestComparePairs:
    """Tests for compare pair counters"""

    async def test_pair_key_is_order_independent(self, catalog):
        async with get_db() as db:
            first = await increment_compare_pair(db, ["sony-a7-iv", "canon-eos-r5"])
        async with get_db() as db:
            second = await increment_compare_pair(db, ["canon-eos-r5", "sony-a7-iv"])

        assert first == second == "canon-eos-r5|sony-a7-iv"

        async with get_db() as db:
            [pair] = await top_compare_pairs(db)
        assert pair.count == 2
        assert {pair.gear_a_id, pair.gear_b_id} == {catalog["canon-eos-r5"], catalog["sony-a7-iv"]}
        assert pair.gear_a_id < pair.gear_b_id

    async def test_top_pairs_ordered_by_count(self, catalog):
        pairs = [
            ["canon-eos-r5", "sony-a7-iv"],
            ["canon-rf-50mm-f1-8", "sony-fe-85mm-f1-8"],
            ["canon-rf-50mm-f1-8", "sony-fe-85mm-f1-8"],
            ["canon-rf-50mm-f1-8", "sony-fe-85mm-f1-8"],
            ["canon-eos-r5", "canon-rf-50mm-f1-8"],
            ["canon-eos-r5", "canon-rf-50mm-f1-8"],
        ]
        for slugs in pairs:
            async with get_db() as db:
                await increment_compare_pair(db, slugs)

        async with get_db() as db:
            top = await top_compare_pairs(db, limit=2)

        assert [p.count for p in top] == [3, 2]
        assert {top[0].gear_a_slug, top[0].gear_b_slug} == {"canon-rf-50mm-f1-8", "sony-fe-85mm-f1-8"}

    @pytest.mark.parametrize("slugs", [
        ["canon-eos-r5"],
        ["canon-eos-r5", "canon-eos-r5"],
        ["canon-eos-r5", "sony-a7-iv", "sony-fe-85mm-f1-8"],
        ["canon-eos-r5", ""],
    ])
    async def test_requires_two_distinct_slugs(self, catalog, slugs):
        async with get_db() as db:
            with pytest.raises(ValidationError):
                await increment_compare_pair(db, slugs)

    async def test_unknown_slug(self, catalog):
        async with get_db() as db:
            with pytest.raises(NotFoundError, match="nikon-z9"):
                await increment_compare_pair(db, ["canon-eos-r5", "nikon-z9"])
