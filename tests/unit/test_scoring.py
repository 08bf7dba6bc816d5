"""
Unit Tests - Weights and Scoring
"""
from datetime import date, datetime, timedelta, timezone

import polars as pl
import pytest

from gear_popularity.errors import ValidationError
from gear_popularity.popularity.scoring import (
    COUNTERS,
    LIVE_SCHEMA,
    WINDOW_SCHEMA,
    EventType,
    Timeframe,
    WeightTable,
    blend_live_scores,
    counters_from_type_counts,
    parse_as_of_date,
    parse_event_type,
    parse_timeframe,
    utc_day_bounds,
    yesterday_utc,
)


def _counters(**values):
    return {c: values.get(c, 0) for c in COUNTERS}


class TestWeightTable:
    """Tests for WeightTable"""

    def test_default_weights(self, weights):
        assert weights.points(EventType.VIEW) == pytest.approx(0.1)
        assert weights.points(EventType.WISHLIST_ADD) == 2.0
        assert weights.points(EventType.OWNER_ADD) == 3.0
        assert weights.points(EventType.COMPARE_ADD) == 1.5
        assert weights.points(EventType.REVIEW_SUBMIT) == 2.5
        assert weights.points(EventType.API_FETCH) == 0.0

    def test_points_accepts_raw_value(self, weights):
        assert weights.points("owner_add") == 3.0

    def test_missing_event_type_rejected(self):
        with pytest.raises(ValueError, match="Missing weights"):
            WeightTable({EventType.VIEW: 1.0})

    def test_weights_are_read_only(self, weights):
        with pytest.raises(TypeError):
            weights.weights[EventType.VIEW] = 5.0

    def test_score_weighted_sum(self, weights):
        counters = _counters(views=3, wishlist_adds=2, review_submits=1)
        assert weights.score(counters) == pytest.approx(3 * 0.1 + 2 * 2.0 + 1 * 2.5)

    def test_score_with_suffix(self, weights):
        assert weights.score({"owner_adds_sum": 2}, suffix="_sum") == pytest.approx(6.0)

    def test_score_expr_matches_score(self, weights):
        counters = _counters(views=10, compare_adds=4, api_fetches=7)
        df = pl.DataFrame([counters])

        result = df.select(weights.score_expr().alias("score"))["score"][0]

        assert result == pytest.approx(weights.score(counters))


class TestCounters:
    """Tests for counter mapping"""

    def test_counters_from_type_counts(self):
        counters = counters_from_type_counts({"view": 5, "wishlist_add": 1})

        assert counters["views"] == 5
        assert counters["wishlist_adds"] == 1
        assert counters["owner_adds"] == 0
        assert set(counters) == set(COUNTERS)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            counters_from_type_counts({"like": 1})


class TestBlendLiveScores:
    """Tests for the live blend"""

    def _windowed(self, rows):
        return pl.DataFrame(
            [{**_counters(), "as_of_date": date(2025, 1, 9), **r} for r in rows],
            schema=WINDOW_SCHEMA,
        )

    def _live(self, rows):
        return pl.DataFrame([{**_counters(), **r} for r in rows], schema=LIVE_SCHEMA)

    def test_live_boost_added_to_windowed_score(self, weights):
        windowed = self._windowed([{"item_id": "a", "windowed_score": 4.0, "views": 40}])
        live = self._live([{"item_id": "a", "views": 1, "wishlist_adds": 1}])

        result = blend_live_scores(windowed, live, weights).row(0, named=True)

        assert result["score"] == pytest.approx(4.0 + 0.1 + 2.0)
        assert result["live_boost"] == pytest.approx(2.1)
        assert result["live_only"] is False
        assert result["views"] == 41
        assert result["as_of_date"] == date(2025, 1, 9)

    def test_live_only_item(self, weights):
        windowed = self._windowed([{"item_id": "a", "windowed_score": 4.0, "views": 40}])
        live = self._live([{"item_id": "b", "views": 5, "wishlist_adds": 1}])

        result = blend_live_scores(windowed, live, weights)
        b = result.filter(pl.col("item_id") == "b").row(0, named=True)

        assert b["live_only"] is True
        assert b["windowed_score"] == 0.0
        assert b["score"] == pytest.approx(5 * 0.1 + 2.0)
        assert b["as_of_date"] is None

    def test_sorted_by_score_then_item_id(self, weights):
        windowed = self._windowed([
            {"item_id": "c", "windowed_score": 1.0, "views": 10},
            {"item_id": "b", "windowed_score": 3.0, "views": 30},
            {"item_id": "a", "windowed_score": 1.0, "views": 10},
        ])

        result = blend_live_scores(windowed, self._live([]), weights)

        assert result["item_id"].to_list() == ["b", "a", "c"]

    def test_items_without_activity_dropped(self, weights):
        windowed = self._windowed([{"item_id": "a", "windowed_score": 0.0}])

        result = blend_live_scores(windowed, self._live([]), weights)

        assert result.is_empty()

    def test_does_not_mutate_inputs(self, weights):
        windowed = self._windowed([{"item_id": "a", "windowed_score": 4.0, "views": 40}])
        live = self._live([{"item_id": "a", "views": 2}])
        before = windowed.clone()

        blend_live_scores(windowed, live, weights)

        assert windowed.equals(before)
        assert "live_boost" not in live.columns


class TestParsing:
    """Tests for input parsers and UTC helpers"""

    def test_parse_as_of_date(self):
        assert parse_as_of_date("2025-01-31") == date(2025, 1, 31)

    @pytest.mark.parametrize("value", ["2025-1-31", "20250131", "2025-02-30", "", "yesterday"])
    def test_parse_as_of_date_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_as_of_date(value)

    def test_parse_timeframe(self):
        assert parse_timeframe("7d") is Timeframe.SEVEN_DAYS
        assert parse_timeframe("30d").days == 30
        with pytest.raises(ValidationError):
            parse_timeframe("90d")

    def test_parse_event_type(self):
        assert parse_event_type("compare_add") is EventType.COMPARE_ADD
        with pytest.raises(ValidationError, match="eventType"):
            parse_event_type("like")

    def test_utc_day_bounds_half_open(self):
        start, end = utc_day_bounds(date(2025, 1, 9))

        assert start == datetime(2025, 1, 9)
        assert end - start == timedelta(days=1)

    def test_yesterday_utc_converts_aware_times(self):
        # 01:00 in UTC+3 is still the previous UTC day
        now = datetime(2025, 1, 10, 1, 0, tzinfo=timezone(timedelta(hours=3)))

        assert yesterday_utc(now) == date(2025, 1, 8)
