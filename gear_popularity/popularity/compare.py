"""
Compare Pair Counters

Counts how often two gear items are compared side by side. Pairs are
unordered and stored under their sorted ids.
"""

from dataclasses import dataclass
from typing import List, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from gear_popularity.database.connection import dialect_insert
from gear_popularity.database.models import ComparePairCount, Gear
from gear_popularity.errors import NotFoundError, StorageError, ValidationError

logger = structlog.get_logger(__name__)


@dataclass
class ComparePair:
    gear_a_id: str
    gear_a_slug: str
    gear_a_name: str
    gear_b_id: str
    gear_b_slug: str
    gear_b_name: str
    count: int


async def increment_compare_pair(db: AsyncSession, slugs: Sequence[str]) -> str:
    """
    Add one compare to the pair of slugs.

    Returns:
        The canonical pair key ("slug-a|slug-b", sorted)

    Raises:
        ValidationError: not exactly two distinct slugs
        NotFoundError: either slug is unknown
    """
    unique = sorted({s.strip() for s in slugs if s and s.strip()})
    if len(slugs) != 2 or len(unique) != 2:
        raise ValidationError("slugs must contain exactly two distinct gear slugs")

    try:
        result = await db.execute(select(Gear.id, Gear.slug).where(Gear.slug.in_(unique)))
        found = {slug: gear_id for gear_id, slug in result.all()}
        missing = [s for s in unique if s not in found]
        if missing:
            raise NotFoundError(f"Gear not found: {', '.join(missing)}")

        gear_a_id, gear_b_id = sorted(found.values())
        pair_key = "|".join(unique)

        stmt = dialect_insert(db, ComparePairCount).values(
            gear_a_id=gear_a_id,
            gear_b_id=gear_b_id,
            pair_key=pair_key,
            count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["gear_a_id", "gear_b_id"],
            set_={
                "count": ComparePairCount.count + 1,
                "pair_key": stmt.excluded.pair_key,
            },
        )
        await db.execute(stmt)
    except SQLAlchemyError as e:
        logger.error("Failed to increment compare pair", slugs=unique, error=str(e))
        raise StorageError("failed to increment compare pair") from e

    logger.debug("Compare pair incremented", pair_key=pair_key)
    return pair_key


async def top_compare_pairs(db: AsyncSession, limit: int = 20) -> List[ComparePair]:
    """Most compared pairs, by count descending"""
    if limit < 1:
        raise ValidationError("limit must be a positive number")

    gear_a = aliased(Gear)
    gear_b = aliased(Gear)
    try:
        result = await db.execute(
            select(
                ComparePairCount.gear_a_id,
                gear_a.slug,
                gear_a.name,
                ComparePairCount.gear_b_id,
                gear_b.slug,
                gear_b.name,
                ComparePairCount.count,
            )
            .join(gear_a, gear_a.id == ComparePairCount.gear_a_id)
            .join(gear_b, gear_b.id == ComparePairCount.gear_b_id)
            .order_by(ComparePairCount.count.desc(), ComparePairCount.pair_key)
            .limit(limit)
        )
    except SQLAlchemyError as e:
        logger.error("Failed to list compare pairs", error=str(e))
        raise StorageError("failed to list compare pairs") from e

    return [ComparePair(*row) for row in result.all()]
