"""
Unit Tests - Event Recorder
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from gear_popularity.database import get_db
from gear_popularity.database.models import PopularityEvent
from gear_popularity.errors import NotFoundError, ValidationError
from gear_popularity.popularity.recorder import (
    EVENTS_RECORDED,
    is_bot_user_agent,
    record_event,
    record_skipped_bot,
)

NOW = datetime(2025, 1, 10, 15, 30)


async def _event_count(**filters) -> int:
    async with get_db() as db:
        query = select(func.count()).select_from(PopularityEvent)
        for column, value in filters.items():
            query = query.where(getattr(PopularityEvent, column) == value)
        return (await db.execute(query)).scalar()


async def _record(weights, item_ref, event_type="view", actor_id="visitor-1", now=NOW, **kwargs):
    async with get_db() as db:
        return await record_event(db, item_ref, event_type, weights, actor_id=actor_id, now=now, **kwargs)


class TestRecordEvent:
    """Tests for record_event"""

    async def test_records_view_with_points(self, catalog, weights):
        result = await _record(weights, "canon-eos-r5")

        assert result.deduped is False
        assert result.item_id == catalog["canon-eos-r5"]

        async with get_db() as db:
            event = await db.get(PopularityEvent, result.event_id)
        assert event.event_type == "view"
        assert event.points == pytest.approx(0.1)
        assert event.actor_id == "visitor-1"
        assert event.created_at == NOW

    async def test_resolves_item_by_id(self, catalog, weights):
        result = await _record(weights, catalog["sony-a7-iv"], event_type="wishlist_add")

        assert result.item_id == catalog["sony-a7-iv"]

    async def test_view_deduped_within_utc_day(self, catalog, weights):
        first = await _record(weights, "canon-eos-r5", now=NOW)
        second = await _record(weights, "canon-eos-r5", now=NOW + timedelta(hours=3))

        assert first.deduped is False
        assert second.deduped is True
        assert await _event_count(item_id=catalog["canon-eos-r5"]) == 1

    async def test_view_counted_again_next_utc_day(self, catalog, weights):
        await _record(weights, "canon-eos-r5", now=datetime(2025, 1, 10, 23, 59))
        result = await _record(weights, "canon-eos-r5", now=datetime(2025, 1, 11, 0, 0))

        assert result.deduped is False
        assert await _event_count(item_id=catalog["canon-eos-r5"]) == 2

    async def test_distinct_actors_not_deduped(self, catalog, weights):
        for i in range(5):
            result = await _record(weights, "canon-eos-r5", actor_id=f"visitor-{i}")
            assert result.deduped is False

        assert await _event_count(event_type="view") == 5

    async def test_anonymous_without_token_not_deduped(self, catalog, weights):
        await _record(weights, "canon-eos-r5", actor_id=None)
        result = await _record(weights, "canon-eos-r5", actor_id=None)

        assert result.deduped is False
        assert await _event_count() == 2

    async def test_non_view_types_not_deduped_by_default(self, catalog, weights):
        await _record(weights, "canon-eos-r5", event_type="compare_add")
        result = await _record(weights, "canon-eos-r5", event_type="compare_add")

        assert result.deduped is False
        assert await _event_count(event_type="compare_add") == 2

    async def test_configured_dedupe_types(self, catalog, weights):
        kwargs = {"dedupe_event_types": ("view", "wishlist_add")}
        await _record(weights, "canon-eos-r5", event_type="wishlist_add", **kwargs)
        result = await _record(weights, "canon-eos-r5", event_type="wishlist_add", **kwargs)

        assert result.deduped is True

    async def test_unknown_item(self, catalog, weights):
        with pytest.raises(NotFoundError):
            await _record(weights, "nikon-z9")

        assert await _event_count() == 0

    async def test_unknown_event_type(self, catalog, weights):
        with pytest.raises(ValidationError):
            await _record(weights, "canon-eos-r5", event_type="like")


class TestBotDetection:
    """Tests for crawler user agents"""

    @pytest.mark.parametrize("user_agent", [
        "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
        "Slackbot-LinkExpanding 1.0",
        "Twitterbot/1.0",
        "some-crawler/0.1",
    ])
    def test_bots(self, user_agent):
        assert is_bot_user_agent(user_agent)

    @pytest.mark.parametrize("user_agent", [
        None,
        "",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15 Safari/605.1.15",
    ])
    def test_humans(self, user_agent):
        assert not is_bot_user_agent(user_agent)

    def test_skipped_bot_counted_by_event_type(self):
        result = record_skipped_bot("wishlist_add")

        assert result.skipped == "bot"
        assert not result.deduped

    def test_skipped_bot_rejects_unknown_event_type(self):
        def bot_series():
            return {
                sample.labels["event_type"]
                for metric in EVENTS_RECORDED.collect()
                for sample in metric.samples
                if sample.labels.get("outcome") == "bot"
            }

        before = bot_series()
        for i in range(5):
            with pytest.raises(ValidationError):
                record_skipped_bot(f"junk-{i}")

        assert bot_series() == before
        assert not any(label.startswith("junk-") for label in bot_series())
