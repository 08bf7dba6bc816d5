"""
Popularity API Endpoints

Event recording, trending pages, per-item stats and compare pair counters.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
import uuid

from fastapi import APIRouter, Body, Depends, Header, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from gear_popularity.config import get_settings
from gear_popularity.database.connection import get_db_dependency
from gear_popularity.popularity.compare import increment_compare_pair, top_compare_pairs
from gear_popularity.popularity.recorder import (
    is_bot_user_agent,
    record_event,
    record_skipped_bot,
)
from gear_popularity.popularity.scoring import WeightTable
from gear_popularity.popularity.trending import get_item_stats, get_trending_page

settings = get_settings()
router = APIRouter()


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# SCHEMAS
# =============================================================================

class RecordEventRequest(CamelModel):
    """Event payload"""
    event_type: str = "view"
    visitor_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class RecordEventResponse(CamelModel):
    deduped: bool
    skipped: Optional[str] = None


class TrendingItem(CamelModel):
    """Ranked trending entry"""
    item_id: str
    slug: str
    name: str
    brand_name: Optional[str]
    gear_type: str
    score: float
    windowed_score: float
    live_boost: float
    live_only: bool
    as_of_date: Optional[date]
    stats: Dict[str, int]


class TrendingFilters(CamelModel):
    brand_id: Optional[str] = None
    mount_id: Optional[str] = None
    gear_type: Optional[str] = None


class TrendingResponse(CamelModel):
    """Paginated trending list"""
    items: List[TrendingItem]
    total: int
    page: int
    per_page: int
    timeframe: str
    filters: TrendingFilters
    include_live: bool
    generated_at: datetime


class ItemStatsResponse(CamelModel):
    item_id: str
    slug: str
    name: str
    lifetime: Dict[str, int]
    lifetime_score: float
    views_7d: int = Field(alias="views7d")
    views_30d: int = Field(alias="views30d")
    latest_as_of: Optional[date]


class ComparePairRequest(CamelModel):
    slugs: List[str] = Field(..., description="Exactly two gear slugs")


class ComparePairResponse(CamelModel):
    pair_key: str


class ComparePairItem(CamelModel):
    gear_a_id: str
    gear_a_slug: str
    gear_a_name: str
    gear_b_id: str
    gear_b_slug: str
    gear_b_name: str
    count: int


class ComparePairListResponse(CamelModel):
    pairs: List[ComparePairItem]


# =============================================================================
# EVENTS
# =============================================================================

@router.post(
    "/gear/{item_ref}/events",
    response_model=RecordEventResponse,
    response_model_exclude_none=True,
)
async def record_gear_event(
    item_ref: str,
    request: Request,
    response: Response,
    body: Optional[RecordEventRequest] = Body(None),
    x_user_id: Optional[str] = Header(None),
    user_agent: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db_dependency),
) -> RecordEventResponse:
    """
    Record an interaction with a gear item.

    Signed-in users are identified by the X-User-Id header set by the
    upstream auth layer; anonymous callers by a visitor token taken from
    the body, the visitor cookie, or a freshly issued cookie.
    """
    body = body or RecordEventRequest()

    if is_bot_user_agent(user_agent):
        skipped = record_skipped_bot(body.event_type)
        return RecordEventResponse(deduped=skipped.deduped, skipped=skipped.skipped)

    security = settings.security
    actor_id = x_user_id
    if not actor_id:
        actor_id = body.visitor_id or request.cookies.get(security.visitor_cookie_name)
        if not actor_id:
            actor_id = str(uuid.uuid4())
            response.set_cookie(
                security.visitor_cookie_name,
                actor_id,
                max_age=security.visitor_cookie_max_age,
                httponly=True,
                samesite="lax",
                secure=settings.is_production,
            )

    popularity = settings.popularity
    result = await record_event(
        db,
        item_ref,
        body.event_type,
        WeightTable.from_settings(popularity),
        actor_id=actor_id,
        context=body.context,
        dedupe_event_types=popularity.dedupe_event_types,
    )
    return RecordEventResponse(deduped=result.deduped, skipped=result.skipped)


# =============================================================================
# TRENDING
# =============================================================================

@router.get("/trending", response_model=TrendingResponse)
async def get_trending(
    response: Response,
    timeframe: str = "30d",
    page: int = 1,
    per_page: Optional[int] = Query(None, alias="perPage"),
    brand_id: Optional[str] = Query(None, alias="brandId"),
    mount_id: Optional[str] = Query(None, alias="mountId"),
    gear_type: Optional[str] = Query(None, alias="gearType"),
    live: bool = True,
    db: AsyncSession = Depends(get_db_dependency),
) -> TrendingResponse:
    """Trending gear for the 7d or 30d window, blended with today's activity"""
    result = await get_trending_page(
        db,
        timeframe=timeframe,
        page=page,
        per_page=per_page,
        brand_id=brand_id,
        mount_id=mount_id,
        gear_type=gear_type,
        include_live=live,
    )
    response.headers["Cache-Control"] = "no-store"

    return TrendingResponse(
        items=[TrendingItem.model_validate(entry) for entry in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        timeframe=result.timeframe,
        filters=TrendingFilters(**result.filters),
        include_live=result.include_live,
        generated_at=result.generated_at,
    )


@router.get("/gear/{item_ref}/stats", response_model=ItemStatsResponse)
async def get_gear_stats(
    item_ref: str,
    db: AsyncSession = Depends(get_db_dependency),
) -> ItemStatsResponse:
    """Lifetime totals and trailing views for one gear item"""
    stats = await get_item_stats(db, item_ref)
    return ItemStatsResponse.model_validate(stats)


# =============================================================================
# COMPARE PAIRS
# =============================================================================

@router.post("/compare-pairs", response_model=ComparePairResponse)
async def add_compare_pair(
    body: ComparePairRequest,
    db: AsyncSession = Depends(get_db_dependency),
) -> ComparePairResponse:
    pair_key = await increment_compare_pair(db, body.slugs)
    return ComparePairResponse(pair_key=pair_key)


@router.get("/compare-pairs/top", response_model=ComparePairListResponse)
async def list_top_compare_pairs(
    limit: int = 20,
    db: AsyncSession = Depends(get_db_dependency),
) -> ComparePairListResponse:
    pairs = await top_compare_pairs(db, limit=limit)
    return ComparePairListResponse(
        pairs=[ComparePairItem.model_validate(p) for p in pairs]
    )
