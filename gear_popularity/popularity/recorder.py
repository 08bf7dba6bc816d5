"""
Event Recorder

Appends popularity events for gear interactions. Views (and any other
configured type) are deduped per actor per UTC calendar day.
"""

from dataclasses import dataclass
from datetime import datetime
import re
from typing import Any, Collection, Dict, Optional

import structlog
from prometheus_client import Counter
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gear_popularity.database.models import Gear, PopularityEvent
from gear_popularity.errors import NotFoundError, StorageError
from gear_popularity.popularity.scoring import (
    EventType,
    WeightTable,
    parse_event_type,
    to_naive_utc,
    utc_day_bounds,
    utcnow,
)

logger = structlog.get_logger(__name__)


EVENTS_RECORDED = Counter(
    "popularity_events_recorded_total",
    "Popularity events handled by the recorder",
    ["event_type", "outcome"],
)

BOT_PATTERNS = [
    r"Googlebot",
    r"Bingbot",
    r"Slurp",
    r"DuckDuckBot",
    r"Baiduspider",
    r"YandexBot",
    r"Sogou",
    r"Exabot",
    r"facebot",
    r"ia_archiver",
    r"Discordbot",
    r"Slackbot",
    r"Twitterbot",
    r"bingpreview",
    r"crawler",
    r"spider",
    r"bot",
]

_bot_regex = re.compile("|".join(BOT_PATTERNS), re.IGNORECASE)


@dataclass
class RecordResult:
    """Outcome of one record_event call"""
    deduped: bool
    item_id: Optional[str] = None
    event_id: Optional[str] = None
    skipped: Optional[str] = None


def is_bot_user_agent(user_agent: Optional[str]) -> bool:
    """True for obvious crawlers and link-preview bots"""
    if not user_agent:
        return False
    return bool(_bot_regex.search(user_agent))


async def resolve_item(db: AsyncSession, item_ref: str) -> Gear:
    """
    Look up a gear item by id or slug.

    Raises:
        NotFoundError: no gear matches
    """
    try:
        result = await db.execute(
            select(Gear).where(or_(Gear.id == item_ref, Gear.slug == item_ref)).limit(1)
        )
        gear = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error("Item lookup failed", item_ref=item_ref, error=str(e))
        raise StorageError(f"item lookup failed for {item_ref}") from e

    if gear is None:
        raise NotFoundError(f"Gear not found: {item_ref}")
    return gear


async def has_event_today(
    db: AsyncSession,
    item_id: str,
    actor_id: str,
    event_type: EventType,
    now: Optional[datetime] = None,
) -> bool:
    """Whether (item, actor, type) already has an event in the current UTC day"""
    now = to_naive_utc(now) if now else utcnow()
    start, end = utc_day_bounds(now.date())

    result = await db.execute(
        select(PopularityEvent.id)
        .where(
            PopularityEvent.item_id == item_id,
            PopularityEvent.actor_id == actor_id,
            PopularityEvent.event_type == event_type.value,
            PopularityEvent.created_at >= start,
            PopularityEvent.created_at < end,
        )
        .limit(1)
    )
    return result.first() is not None


async def record_event(
    db: AsyncSession,
    item_ref: str,
    event_type: str,
    weights: WeightTable,
    actor_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
    dedupe_event_types: Collection[str] = ("view",),
    now: Optional[datetime] = None,
) -> RecordResult:
    """
    Record a single popularity event.

    Args:
        db: Session; the caller's transaction commits the insert
        item_ref: Gear id or slug
        event_type: One of EventType values
        weights: Weight table supplying the event's points
        actor_id: Signed-in user id or anonymous visitor token
        context: Optional JSON context stored with the event
        dedupe_event_types: Types deduped per actor per UTC day
        now: Clock override

    Returns:
        RecordResult with deduped=True when the call was a no-op

    Raises:
        ValidationError: unknown event type
        NotFoundError: unknown item
        StorageError: persistence failure
    """
    kind = parse_event_type(event_type)
    gear = await resolve_item(db, item_ref)
    now = to_naive_utc(now) if now else utcnow()

    try:
        # Anonymous events without a token cannot be attributed, so never deduped
        if actor_id and kind.value in dedupe_event_types:
            if await has_event_today(db, gear.id, actor_id, kind, now=now):
                EVENTS_RECORDED.labels(event_type=kind.value, outcome="deduped").inc()
                logger.debug("Event deduped", item_id=gear.id, event_type=kind.value)
                return RecordResult(deduped=True, item_id=gear.id)

        event = PopularityEvent(
            item_id=gear.id,
            actor_id=actor_id,
            event_type=kind.value,
            points=weights.points(kind),
            context=context,
            created_at=now,
        )
        db.add(event)
        await db.flush()
    except SQLAlchemyError as e:
        logger.error(
            "Failed to record popularity event",
            item_id=gear.id,
            event_type=kind.value,
            error=str(e),
        )
        raise StorageError(f"failed to record {kind.value} for {gear.id}") from e

    EVENTS_RECORDED.labels(event_type=kind.value, outcome="recorded").inc()
    logger.info("Popularity event recorded", item_id=gear.id, event_type=kind.value)
    return RecordResult(deduped=False, item_id=gear.id, event_id=event.id)


def record_skipped_bot(event_type: str) -> RecordResult:
    """
    Result for bot traffic, which is never written.

    Raises:
        ValidationError: unknown event type
    """
    kind = parse_event_type(event_type)
    EVENTS_RECORDED.labels(event_type=kind.value, outcome="bot").inc()
    return RecordResult(deduped=False, skipped="bot")
