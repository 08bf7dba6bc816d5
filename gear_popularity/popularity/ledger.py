"""
Run Ledger

Append-only audit trail of rollup executions.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Set

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gear_popularity.database.models import RollupRun
from gear_popularity.errors import StorageError, ValidationError
from gear_popularity.popularity.scoring import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class RunRecord:
    """Metrics of one rollup execution"""
    as_of_date: date
    corrected_date: date
    daily_rows: int = 0
    late_arrivals: int = 0
    windows_rows: int = 0
    lifetime_total_rows: int = 0
    duration_ms: int = 0
    success: bool = False
    error: Optional[str] = None


async def record_run(
    db: AsyncSession,
    record: RunRecord,
    created_at: Optional[datetime] = None,
) -> RollupRun:
    """Append a rollup run row"""
    run = RollupRun(created_at=created_at or utcnow(), **asdict(record))
    try:
        db.add(run)
        await db.flush()
    except SQLAlchemyError as e:
        logger.error("Failed to persist rollup run", as_of_date=str(record.as_of_date), error=str(e))
        raise StorageError("failed to persist rollup run") from e
    return run


async def list_runs(db: AsyncSession, limit: int = 50) -> List[RollupRun]:
    """Most recent rollup runs, newest first"""
    if limit < 1:
        raise ValidationError("limit must be a positive number")
    try:
        result = await db.execute(
            select(RollupRun)
            .order_by(RollupRun.created_at.desc(), RollupRun.id.desc())
            .limit(limit)
        )
    except SQLAlchemyError as e:
        logger.error("Failed to list rollup runs", error=str(e))
        raise StorageError("failed to list rollup runs") from e
    return list(result.scalars().all())


async def rolled_up_dates(db: AsyncSession, start: date, end: date) -> Set[date]:
    """Days in [start, end] recomputed by at least one successful run"""
    result = await db.execute(
        select(RollupRun.corrected_date, RollupRun.as_of_date).where(
            RollupRun.success.is_(True),
            RollupRun.as_of_date >= start,
            RollupRun.corrected_date <= end,
        )
    )
    covered: Set[date] = set()
    for first, last in result.all():
        day = max(first, start)
        while day <= min(last, end):
            covered.add(day)
            day += timedelta(days=1)
    return covered


async def last_success_at(db: AsyncSession, as_of_date: date) -> Optional[datetime]:
    """Start time of the latest successful run for as_of_date"""
    result = await db.execute(
        select(func.max(RollupRun.created_at)).where(
            RollupRun.success.is_(True),
            RollupRun.as_of_date == as_of_date,
        )
    )
    return result.scalar()
