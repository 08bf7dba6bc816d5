"""
Rollup API Endpoints

Trigger for the scheduler (cron or Prefect) and the admin run listing.
Both are protected by the shared CRON_SECRET bearer token.
"""

from datetime import date, datetime
import hmac
from typing import List, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from gear_popularity.config import get_settings
from gear_popularity.database.connection import get_db_dependency
from gear_popularity.errors import UnauthorizedError
from gear_popularity.popularity.ledger import list_runs
from gear_popularity.popularity.rollup import DailyRollupJob
from gear_popularity.popularity.scoring import parse_as_of_date
from gear_popularity.serving.api.routes.popularity import CamelModel

logger = structlog.get_logger(__name__)
router = APIRouter()


class RollupResponse(CamelModel):
    """Rollup outcome"""
    ok: bool
    as_of_date: date
    corrected_date: date
    daily_rows: int
    late_arrivals: int
    windows_rows: int
    lifetime_total_rows: int
    duration_ms: int
    recomputed_dates: List[date]
    run_id: Optional[str] = None
    error: Optional[str] = None
    failed_stage: Optional[str] = None


class RollupRunResponse(CamelModel):
    id: str
    created_at: datetime
    as_of_date: date
    corrected_date: date
    daily_rows: int
    late_arrivals: int
    windows_rows: int
    lifetime_total_rows: int
    duration_ms: int
    success: bool
    error: Optional[str]


class RollupRunListResponse(CamelModel):
    runs: List[RollupRunResponse]


def require_rollup_secret(authorization: Optional[str] = Header(None)) -> None:
    """Reject callers that do not present the configured bearer secret"""
    secret = get_settings().security.rollup_secret
    if secret is None:
        logger.warning("Rollup endpoint called but CRON_SECRET is not configured")
        raise UnauthorizedError("rollup secret is not configured")

    scheme, _, token = (authorization or "").partition(" ")
    expected = secret.get_secret_value().encode()
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip().encode(), expected):
        raise UnauthorizedError("invalid rollup credentials")


@router.api_route(
    "/rollup",
    methods=["GET", "POST"],
    response_model=RollupResponse,
    dependencies=[Depends(require_rollup_secret)],
)
async def trigger_rollup(date: Optional[str] = None) -> JSONResponse:
    """
    Run the daily rollup.

    Query:
        date: As-of date (YYYY-MM-DD); defaults to yesterday in UTC
    """
    as_of = parse_as_of_date(date) if date is not None else None

    result = await DailyRollupJob().run(as_of)

    body = RollupResponse.model_validate(result)
    return JSONResponse(
        status_code=200 if result.ok else 500,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.get(
    "/rollup/runs",
    response_model=RollupRunListResponse,
    dependencies=[Depends(require_rollup_secret)],
)
async def get_rollup_runs(
    limit: int = 50,
    db: AsyncSession = Depends(get_db_dependency),
) -> RollupRunListResponse:
    """Recent rollup runs, newest first"""
    runs = await list_runs(db, limit=limit)
    return RollupRunListResponse(
        runs=[RollupRunResponse.model_validate(r) for r in runs]
    )
