"""
Synthetic Data Generator

Generates realistic gear catalog and popularity data for testing and
development.
Includes:
- Brands and lens mounts
- Cameras, analog cameras and lenses
- Popularity events with a long-tailed item distribution
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional
import uuid

import numpy as np
import polars as pl
from faker import Faker
import structlog
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from gear_popularity.database.models import Brand, Gear, GearType, Mount, PopularityEvent
from gear_popularity.popularity.scoring import EventType, WeightTable, utcnow

logger = structlog.get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

BRANDS = ["Canon", "Nikon", "Sony", "Fujifilm", "Panasonic", "Leica", "Olympus", "Sigma", "Pentax"]

MOUNTS = ["canon-rf", "canon-ef", "nikon-z", "nikon-f", "sony-e", "fujifilm-x", "micro-four-thirds", "leica-m", "l-mount"]

GEAR_TYPES = [
    (GearType.CAMERA, 0.45),
    (GearType.LENS, 0.45),
    (GearType.ANALOG_CAMERA, 0.10),
]

# Share of each event type in generated traffic
EVENT_MIX = [
    (EventType.VIEW, 0.80),
    (EventType.COMPARE_ADD, 0.07),
    (EventType.WISHLIST_ADD, 0.06),
    (EventType.API_FETCH, 0.04),
    (EventType.OWNER_ADD, 0.02),
    (EventType.REVIEW_SUBMIT, 0.01),
]

INSERT_BATCH_SIZE = 1000


# =============================================================================
# GENERATORS
# =============================================================================

class CatalogGenerator:
    """Generate brands, mounts and gear items"""

    def __init__(self, seed: int = 42):
        self.rng = np.random.default_rng(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)

    def brands(self) -> pl.DataFrame:
        return pl.DataFrame({
            "id": [str(uuid.uuid4()) for _ in BRANDS],
            "name": BRANDS,
            "slug": [b.lower() for b in BRANDS],
        })

    def mounts(self) -> pl.DataFrame:
        return pl.DataFrame({
            "id": [str(uuid.uuid4()) for _ in MOUNTS],
            "value": MOUNTS,
        })

    def gear(
        self,
        brands_df: pl.DataFrame,
        mounts_df: pl.DataFrame,
        n: int = 200,
    ) -> pl.DataFrame:
        """Generate n gear items spread across brands and mounts"""
        kinds = self.rng.choice(
            [k.value for k, _ in GEAR_TYPES],
            size=n,
            p=[p for _, p in GEAR_TYPES],
        )
        brand_idx = self.rng.integers(0, brands_df.height, n)
        mount_idx = self.rng.integers(0, mounts_df.height, n)

        brand_names = brands_df["name"].to_list()
        rows = []
        for i in range(n):
            brand = brand_names[brand_idx[i]]
            if kinds[i] == GearType.LENS.value:
                focal = int(self.rng.choice([14, 24, 35, 50, 85, 100, 135, 200]))
                aperture = float(self.rng.choice([1.2, 1.4, 1.8, 2.8, 4.0]))
                name = f"{brand} {focal}mm f/{aperture:g}"
            else:
                name = f"{brand} {self.fake.bothify('??-###').upper()}"
            rows.append({
                "id": str(uuid.uuid4()),
                "slug": f"{name.lower().replace(' ', '-').replace('/', '')}-{i}",
                "name": name,
                "gear_type": kinds[i],
                "brand_id": brands_df["id"][int(brand_idx[i])],
                "mount_id": mounts_df["id"][int(mount_idx[i])],
            })
        return pl.DataFrame(rows)


class EventGenerator:
    """
    Generate popularity events.

    Item popularity follows a Zipf distribution so that a handful of
    items dominate, as real traffic does.
    """

    def __init__(self, weights: WeightTable, seed: int = 42, zipf_a: float = 1.6):
        self.weights = weights
        self.rng = np.random.default_rng(seed)
        self.zipf_a = zipf_a

    def generate(
        self,
        item_ids: List[str],
        n: int = 20000,
        end: Optional[datetime] = None,
        days: int = 30,
        n_actors: int = 2000,
    ) -> pl.DataFrame:
        """Generate n events spread over the `days` days before `end`"""
        end = end or utcnow()
        start = end - timedelta(days=days)

        ranks = np.minimum(self.rng.zipf(self.zipf_a, n), len(item_ids)) - 1
        order = self.rng.permutation(len(item_ids))
        items = [item_ids[order[r]] for r in ranks]

        types = self.rng.choice(
            [t.value for t, _ in EVENT_MIX],
            size=n,
            p=[p for _, p in EVENT_MIX],
        )
        offsets = self.rng.uniform(0, (end - start).total_seconds(), n)
        actors = self.rng.integers(0, n_actors, n)

        return pl.DataFrame({
            "id": [str(uuid.uuid4()) for _ in range(n)],
            "item_id": items,
            "actor_id": [f"visitor-{a}" for a in actors],
            "event_type": types,
            "points": [self.weights.points(EventType(t)) for t in types],
            "created_at": [start + timedelta(seconds=float(s)) for s in offsets],
        }).sort("created_at")


# =============================================================================
# MAIN GENERATOR
# =============================================================================

class DataGenerator:
    """Seed a database with a synthetic catalog and event history"""

    def __init__(self, weights: WeightTable, seed: int = 42):
        self.catalog = CatalogGenerator(seed)
        self.events = EventGenerator(weights, seed)

    def generate_all(
        self,
        n_gear: int = 200,
        n_events: int = 20000,
        days: int = 30,
        end: Optional[datetime] = None,
    ) -> Dict[str, pl.DataFrame]:
        """Generate the complete dataset"""
        brands_df = self.catalog.brands()
        mounts_df = self.catalog.mounts()
        gear_df = self.catalog.gear(brands_df, mounts_df, n_gear)
        events_df = self.events.generate(gear_df["id"].to_list(), n_events, end=end, days=days)

        logger.info(
            "Synthetic dataset generated",
            brands=brands_df.height,
            gear=gear_df.height,
            events=events_df.height,
        )
        return {
            "brands": brands_df,
            "mounts": mounts_df,
            "gear": gear_df,
            "events": events_df,
        }

    async def seed(self, db: AsyncSession, data: Dict[str, pl.DataFrame]) -> Dict[str, int]:
        """Insert a generated dataset; the caller's transaction commits it"""
        tables = [
            (Brand, data["brands"]),
            (Mount, data["mounts"]),
            (Gear, data["gear"]),
            (PopularityEvent, data["events"]),
        ]
        counts = {}
        for model, frame in tables:
            rows = frame.to_dicts()
            for i in range(0, len(rows), INSERT_BATCH_SIZE):
                await db.execute(insert(model), rows[i:i + INSERT_BATCH_SIZE])
            counts[model.__tablename__] = len(rows)
            logger.info("Seeded table", table=model.__tablename__, rows=len(rows))
        return counts
