"""
Test Suite Configuration
"""
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

import pytest
from sqlalchemy import insert
from sqlalchemy.pool import StaticPool

from gear_popularity.config import PopularitySettings
from gear_popularity.database import close_database, create_tables, get_db, init_database
from gear_popularity.database.models import Brand, Gear, GearType, Mount, PopularityEvent
from gear_popularity.popularity.scoring import EventType, WeightTable


@pytest.fixture
async def database():
    """Fresh in-memory database per test"""
    engine = await init_database("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_tables()

    yield engine

    await close_database()


@pytest.fixture
def weights() -> WeightTable:
    """Default weight table"""
    return WeightTable.from_settings(PopularitySettings())


@pytest.fixture
async def catalog(database) -> Dict[str, str]:
    """
    Small gear catalog.

    Returns:
        Mapping of slug (and brand/mount keys) to ids
    """
    ids = {
        "brand:canon": "brand-canon",
        "brand:sony": "brand-sony",
        "mount:rf": "mount-rf",
        "mount:e": "mount-e",
        "canon-eos-r5": "gear-r5",
        "canon-rf-50mm-f1-8": "gear-rf50",
        "sony-a7-iv": "gear-a7iv",
        "sony-fe-85mm-f1-8": "gear-fe85",
    }
    async with get_db() as db:
        await db.execute(insert(Brand), [
            {"id": ids["brand:canon"], "name": "Canon", "slug": "canon"},
            {"id": ids["brand:sony"], "name": "Sony", "slug": "sony"},
        ])
        await db.execute(insert(Mount), [
            {"id": ids["mount:rf"], "value": "canon-rf"},
            {"id": ids["mount:e"], "value": "sony-e"},
        ])
        await db.execute(insert(Gear), [
            {"id": ids["canon-eos-r5"], "slug": "canon-eos-r5", "name": "Canon EOS R5",
             "gear_type": GearType.CAMERA, "brand_id": ids["brand:canon"], "mount_id": ids["mount:rf"]},
            {"id": ids["canon-rf-50mm-f1-8"], "slug": "canon-rf-50mm-f1-8", "name": "Canon RF 50mm f/1.8",
             "gear_type": GearType.LENS, "brand_id": ids["brand:canon"], "mount_id": ids["mount:rf"]},
            {"id": ids["sony-a7-iv"], "slug": "sony-a7-iv", "name": "Sony A7 IV",
             "gear_type": GearType.CAMERA, "brand_id": ids["brand:sony"], "mount_id": ids["mount:e"]},
            {"id": ids["sony-fe-85mm-f1-8"], "slug": "sony-fe-85mm-f1-8", "name": "Sony FE 85mm f/1.8",
             "gear_type": GearType.LENS, "brand_id": ids["brand:sony"], "mount_id": ids["mount:e"]},
        ])
    return ids


@pytest.fixture
def add_events(weights):
    """
    Insert raw events directly, bypassing the recorder's dedupe.

    Usage:
        await add_events("gear-r5", [("view", datetime(2025, 1, 9, 12), 3)])
    """
    counter = {"n": 0}

    async def _add(
        item_id: str,
        specs: Iterable[Tuple[str, datetime, int]],
        actor_prefix: Optional[str] = "visitor",
    ) -> int:
        rows = []
        for event_type, created_at, count in specs:
            for _ in range(count):
                counter["n"] += 1
                rows.append({
                    "id": f"evt-{counter['n']}",
                    "item_id": item_id,
                    "actor_id": f"{actor_prefix}-{counter['n']}" if actor_prefix else None,
                    "event_type": event_type,
                    "points": weights.points(EventType(event_type)),
                    "created_at": created_at,
                })
        async with get_db() as db:
            await db.execute(insert(PopularityEvent), rows)
        return len(rows)

    return _add
