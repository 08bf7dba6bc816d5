"""
Popularity Scoring

Event types, timeframes, the immutable weight table, and the pure
functions shared by the recorder, the rollup and the trending reads.

Nothing in this module touches the database.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
import re
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import polars as pl

from gear_popularity.config.settings import PopularitySettings
from gear_popularity.errors import ValidationError


class EventType(str, Enum):
    """Interaction event types"""
    VIEW = "view"
    WISHLIST_ADD = "wishlist_add"
    OWNER_ADD = "owner_add"
    COMPARE_ADD = "compare_add"
    REVIEW_SUBMIT = "review_submit"
    API_FETCH = "api_fetch"


class Timeframe(str, Enum):
    """Trailing window sizes"""
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"

    @property
    def days(self) -> int:
        return 7 if self is Timeframe.SEVEN_DAYS else 30


# Event type -> aggregate counter column
COUNTER_COLUMNS: Mapping[EventType, str] = MappingProxyType({
    EventType.VIEW: "views",
    EventType.WISHLIST_ADD: "wishlist_adds",
    EventType.OWNER_ADD: "owner_adds",
    EventType.COMPARE_ADD: "compare_adds",
    EventType.REVIEW_SUBMIT: "review_submits",
    EventType.API_FETCH: "api_fetches",
})

COUNTERS: Tuple[str, ...] = tuple(COUNTER_COLUMNS.values())

WINDOW_SCHEMA = {
    "item_id": pl.Utf8,
    "windowed_score": pl.Float64,
    "as_of_date": pl.Date,
    **{c: pl.Int64 for c in COUNTERS},
}

LIVE_SCHEMA = {
    "item_id": pl.Utf8,
    **{c: pl.Int64 for c in COUNTERS},
}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class WeightTable:
    """
    Immutable per-event-type weights.

    Built once from configuration and passed explicitly to every
    component that scores events.
    """

    weights: Mapping[EventType, float]

    def __post_init__(self):
        missing = [t.value for t in EventType if t not in self.weights]
        if missing:
            raise ValueError(f"Missing weights for event types: {missing}")
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))

    @classmethod
    def from_settings(cls, settings: PopularitySettings) -> "WeightTable":
        return cls({
            EventType.VIEW: settings.weight_view,
            EventType.WISHLIST_ADD: settings.weight_wishlist_add,
            EventType.OWNER_ADD: settings.weight_owner_add,
            EventType.COMPARE_ADD: settings.weight_compare_add,
            EventType.REVIEW_SUBMIT: settings.weight_review_submit,
            EventType.API_FETCH: settings.weight_api_fetch,
        })

    def points(self, event_type: EventType) -> float:
        """Weight recorded on a single event of this type"""
        return self.weights[EventType(event_type)]

    def score(self, counters: Mapping[str, int], suffix: str = "") -> float:
        """Weighted sum over a counter mapping keyed by column name (plus suffix)"""
        return sum(
            counters.get(f"{column}{suffix}", 0) * self.weights[event_type]
            for event_type, column in COUNTER_COLUMNS.items()
        )

    def score_expr(self, suffix: str = "") -> pl.Expr:
        """Polars expression computing the weighted sum of counter columns"""
        return pl.sum_horizontal([
            pl.col(f"{column}{suffix}").fill_null(0) * self.weights[event_type]
            for event_type, column in COUNTER_COLUMNS.items()
        ])


def counters_from_type_counts(type_counts: Mapping[str, int]) -> Dict[str, int]:
    """Map {event_type: count} onto the full set of counter columns"""
    counters = {column: 0 for column in COUNTERS}
    for event_type, count in type_counts.items():
        counters[COUNTER_COLUMNS[EventType(event_type)]] += int(count)
    return counters


def blend_live_scores(
    windowed: pl.DataFrame,
    live: pl.DataFrame,
    weights: WeightTable,
) -> pl.DataFrame:
    """
    Combine the committed window snapshot with today's live counters.

    Args:
        windowed: WINDOW_SCHEMA rows from the latest window snapshot
        live: LIVE_SCHEMA rows of today's events per item
        weights: Weight table used for the live boost

    Returns:
        One row per item with score = windowed_score + live_boost,
        live_only for items without a window row, and combined counters.
        Items with no events at all are dropped. Sorted by score
        descending, then item_id ascending.
    """
    live = live.with_columns(weights.score_expr().alias("live_boost"))

    joined = windowed.join(live, on="item_id", how="full", coalesce=True, suffix="_live")

    blended = joined.with_columns(
        pl.col("windowed_score").is_null().alias("live_only"),
        pl.col("windowed_score").fill_null(0.0),
        pl.col("live_boost").fill_null(0.0),
        *[
            (pl.col(c).fill_null(0) + pl.col(f"{c}_live").fill_null(0)).alias(c)
            for c in COUNTERS
        ],
    ).with_columns(
        (pl.col("windowed_score") + pl.col("live_boost")).alias("score"),
    )

    return (
        blended
        .filter(pl.sum_horizontal([pl.col(c) for c in COUNTERS]) > 0)
        .select(["item_id", "score", "windowed_score", "live_boost", "live_only", "as_of_date", *COUNTERS])
        .sort(["score", "item_id"], descending=[True, False])
    )


# =============================================================================
# UTC CALENDAR HELPERS
# =============================================================================

def utcnow() -> datetime:
    """Current UTC time as a naive datetime (storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utc_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Half-open [00:00, 24:00) bounds of a UTC calendar day"""
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def yesterday_utc(now: Optional[datetime] = None) -> date:
    now = to_naive_utc(now) if now else utcnow()
    return now.date() - timedelta(days=1)


def parse_as_of_date(value: str) -> date:
    """Parse a strict YYYY-MM-DD date"""
    if not _DATE_RE.match(value or ""):
        raise ValidationError("date must be formatted as YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"invalid date: {value}")


def parse_timeframe(value: str) -> Timeframe:
    try:
        return Timeframe(value)
    except ValueError:
        raise ValidationError("timeframe must be one of 7d or 30d")


def parse_event_type(value: str) -> EventType:
    try:
        return EventType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in EventType)
        raise ValidationError(f"eventType must be one of: {allowed}")
