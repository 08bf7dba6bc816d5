"""
Synthetic Popularity Dataset Loader
Seeds a database with a gear catalog and 30 days of events, then rolls
up every day so trending has data to serve.

Usage:
    DATABASE_URL=sqlite+aiosqlite:///./gear.db python scripts/generate_dataset.py
"""

import asyncio
from datetime import timedelta

from gear_popularity.config import get_settings
from gear_popularity.config.logging import configure_logging
from gear_popularity.data import DataGenerator
from gear_popularity.database import close_database, create_tables, get_db, init_database
from gear_popularity.popularity.rollup import DailyRollupJob
from gear_popularity.popularity.scoring import WeightTable, utcnow, yesterday_utc

N_GEAR = 200
N_EVENTS = 20000
DAYS = 30


async def main():
    configure_logging(log_format="text")
    settings = get_settings()
    weights = WeightTable.from_settings(settings.popularity)

    print("=" * 60)
    print("📷 Gear Popularity Dataset Generator")
    print("=" * 60 + "\n")

    await init_database()
    try:
        await create_tables()

        generator = DataGenerator(weights)
        data = generator.generate_all(n_gear=N_GEAR, n_events=N_EVENTS, days=DAYS)

        async with get_db() as db:
            counts = await generator.seed(db, data)

        for table, rows in counts.items():
            print(f"   ✅ {table}: {rows:,} rows")

        # Roll up oldest first so each window sees the days before it
        job = DailyRollupJob(weights=weights, lookback_days=0)
        last = yesterday_utc()
        day = last - timedelta(days=DAYS)
        while day <= last:
            result = await job.run(day)
            status = "✅" if result.ok else "❌"
            print(f"   {status} rollup {day}: {result.daily_rows} items ({result.duration_ms} ms)")
            day += timedelta(days=1)
    finally:
        await close_database()

    print("\n" + "=" * 60)
    print(f"✅ Dataset ready at {utcnow():%Y-%m-%d %H:%M} UTC")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
