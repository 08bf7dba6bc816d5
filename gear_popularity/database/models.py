"""
Database Models - Popularity Schema

Raw fact table:
- PopularityEvent: append-only interaction events

Aggregate tables (written only by the daily rollup):
- PopularityDaily: one row per (item, UTC day)
- PopularityWindow: trailing 7d/30d sums per (item, timeframe, as-of date)
- PopularityLifetime: all-time totals per item

Operational tables:
- RollupRun: audit trail of rollup executions
- ComparePairCount: per-pair compare counters

Catalog mirror (owned by the gear catalog, read-only here):
- Brand, Mount, Gear
"""

from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _uuid_str() -> str:
    return str(uuid.uuid4())


# =============================================================================
# ENUMERATIONS
# =============================================================================

class GearType(str, Enum):
    """Catalog item type"""
    CAMERA = "CAMERA"
    ANALOG_CAMERA = "ANALOG_CAMERA"
    LENS = "LENS"


# =============================================================================
# CATALOG MIRROR
# =============================================================================

class Brand(Base):
    """Gear brand"""
    __tablename__ = "brands"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)


class Mount(Base):
    """Lens mount"""
    __tablename__ = "mounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    value: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)


class Gear(Base):
    """
    Gear item (camera or lens).

    Events and aggregates are keyed by gear.id; brand, mount and type are
    the static attributes trending filters join against.
    """
    __tablename__ = "gear"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    gear_type: Mapped[GearType] = mapped_column(SQLEnum(GearType), nullable=False)
    brand_id: Mapped[Optional[str]] = mapped_column(ForeignKey("brands.id"))
    mount_id: Mapped[Optional[str]] = mapped_column(ForeignKey("mounts.id"))

    brand: Mapped[Optional["Brand"]] = relationship()

    __table_args__ = (
        Index("ix_gear_brand", "brand_id"),
        Index("ix_gear_mount", "mount_id"),
    )


# =============================================================================
# FACT TABLE
# =============================================================================

class PopularityEvent(Base):
    """
    Popularity Event Fact Table

    Immutable interaction events. Rows are never updated or deleted.
    """
    __tablename__ = "popularity_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("gear.id", ondelete="CASCADE"), nullable=False
    )
    actor_id: Mapped[Optional[str]] = mapped_column(String(255))
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    points: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    context: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_pop_events_created", "created_at"),
        Index("ix_pop_events_item_type", "item_id", "event_type"),
        Index("ix_pop_events_dedupe", "item_id", "actor_id", "event_type", "created_at"),
    )


# =============================================================================
# AGGREGATE TABLES
# =============================================================================

class PopularityDaily(Base):
    """
    Daily aggregate per (item, UTC day).

    Upserted by the rollup; re-running a day overwrites its counters.
    """
    __tablename__ = "popularity_daily"

    item_id: Mapped[str] = mapped_column(
        ForeignKey("gear.id", ondelete="CASCADE"), primary_key=True
    )
    date: Mapped[date] = mapped_column(Date, primary_key=True)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wishlist_adds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    owner_adds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compare_adds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    review_submits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_fetches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_pop_daily_date", "date"),
    )


class PopularityWindow(Base):
    """
    Trailing window aggregate per (item, timeframe, as-of date).

    All rows of one (timeframe, as_of_date) snapshot are replaced together.
    """
    __tablename__ = "popularity_windows"

    item_id: Mapped[str] = mapped_column(
        ForeignKey("gear.id", ondelete="CASCADE"), primary_key=True
    )
    timeframe: Mapped[str] = mapped_column(String(8), primary_key=True)
    as_of_date: Mapped[date] = mapped_column(Date, primary_key=True)
    views_sum: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wishlist_adds_sum: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    owner_adds_sum: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compare_adds_sum: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    review_submits_sum: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_fetches_sum: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_pop_windows_snapshot", "timeframe", "as_of_date"),
    )


class PopularityLifetime(Base):
    """All-time totals per item, recomputed from the daily table"""
    __tablename__ = "popularity_lifetime"

    item_id: Mapped[str] = mapped_column(
        ForeignKey("gear.id", ondelete="CASCADE"), primary_key=True
    )
    views_lifetime: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wishlist_adds_lifetime: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    owner_adds_lifetime: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compare_adds_lifetime: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    review_submits_lifetime: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_fetches_lifetime: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# =============================================================================
# OPERATIONAL TABLES
# =============================================================================

class RollupRun(Base):
    """Rollup execution audit row (append-only)"""
    __tablename__ = "rollup_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    corrected_date: Mapped[date] = mapped_column(Date, nullable=False)
    daily_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_arrivals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    windows_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_rollup_runs_created", "created_at"),
    )


class ComparePairCount(Base):
    """Compare counter per unordered gear pair, stored in canonical id order"""
    __tablename__ = "compare_pair_counts"

    gear_a_id: Mapped[str] = mapped_column(
        ForeignKey("gear.id", ondelete="CASCADE"), primary_key=True
    )
    gear_b_id: Mapped[str] = mapped_column(
        ForeignKey("gear.id", ondelete="CASCADE"), primary_key=True
    )
    pair_key: Mapped[str] = mapped_column(String(500), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_compare_pairs_count", "count"),
    )
