"""
Prefect Workflow Orchestration - Popularity Rollup

Scheduled daily rollup of popularity events with:
- Nightly execution shortly after UTC midnight
- Retries on failed runs
- Alerting on failures and stale ledgers
"""

from datetime import date, timedelta
from typing import Optional

from prefect import flow, task, get_run_logger
from redis.exceptions import RedisError

from gear_popularity.config import get_settings
from gear_popularity.config.logging import configure_logging
from gear_popularity.database.connection import close_database, get_db, init_database
from gear_popularity.popularity.ledger import list_runs
from gear_popularity.popularity.rollup import DailyRollupJob
from gear_popularity.popularity.scoring import parse_as_of_date, utcnow
from gear_popularity.serving.cache import close_redis, init_redis

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="run_rollup",
    description="Aggregate popularity events into daily, window and lifetime tables",
    retries=2,
    retry_delay_seconds=120,
)
async def run_rollup(as_of_date: Optional[date] = None) -> dict:
    """Run the rollup; raises when the run failed so Prefect retries it"""
    logger = get_run_logger()

    result = await DailyRollupJob().run(as_of_date)

    logger.info(
        f"Rollup for {result.as_of_date} finished ok={result.ok} "
        f"corrected_date={result.corrected_date} daily_rows={result.daily_rows} "
        f"late_arrivals={result.late_arrivals} duration_ms={result.duration_ms}"
    )

    if not result.ok:
        raise RuntimeError(f"Rollup for {result.as_of_date} failed: {result.error}")

    return {
        "as_of_date": result.as_of_date.isoformat(),
        "corrected_date": result.corrected_date.isoformat(),
        "daily_rows": result.daily_rows,
        "late_arrivals": result.late_arrivals,
        "windows_rows": result.windows_rows,
        "lifetime_total_rows": result.lifetime_total_rows,
        "duration_ms": result.duration_ms,
        "run_id": result.run_id,
    }


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()

    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="daily_popularity_rollup",
    description="Nightly popularity rollup for yesterday (UTC)",
)
async def daily_popularity_rollup(as_of_date: Optional[str] = None) -> dict:
    """
    Daily popularity rollup.

    Args:
        as_of_date: YYYY-MM-DD; defaults to yesterday in UTC
    """
    logger = get_run_logger()
    configure_logging()

    as_of = parse_as_of_date(as_of_date) if as_of_date else None
    logger.info(f"Starting popularity rollup for {as_of or 'yesterday'}")

    await init_database()
    if settings.redis.enabled:
        try:
            await init_redis()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis unavailable, trending cache will not be invalidated: {e}")

    try:
        summary = await run_rollup(as_of)
    except Exception as e:
        await send_alert(
            alert_type="Popularity Rollup Failed",
            message=str(e),
            severity="critical",
        )
        raise
    finally:
        await close_redis()
        await close_database()

    if summary["late_arrivals"]:
        await send_alert(
            alert_type="Late Arrivals",
            message=(
                f"{summary['late_arrivals']} late events; recomputed from "
                f"{summary['corrected_date']}"
            ),
        )

    return summary


@flow(
    name="popularity_ledger_check",
    description="Alert when the latest rollup failed or is overdue",
)
async def popularity_ledger_check(max_age_hours: int = 36) -> dict:
    """Inspect the run ledger for failed or missing rollups"""
    logger = get_run_logger()

    await init_database()
    try:
        async with get_db() as db:
            runs = await list_runs(db, limit=1)
    finally:
        await close_database()

    if not runs:
        await send_alert("Popularity Rollup Missing", "No rollup has ever run", "critical")
        return {"status": "missing"}

    latest = runs[0]
    age = utcnow() - latest.created_at

    if not latest.success:
        await send_alert(
            "Popularity Rollup Failed",
            f"Latest run for {latest.as_of_date} failed: {latest.error}",
            "critical",
        )
        status = "failed"
    elif age > timedelta(hours=max_age_hours):
        await send_alert(
            "Popularity Rollup Overdue",
            f"Latest successful run was {age} ago",
            "warning",
        )
        status = "overdue"
    else:
        status = "ok"

    logger.info(f"Ledger check: {status} (latest run {latest.id} at {latest.created_at})")
    return {"status": status, "run_id": latest.id, "as_of_date": latest.as_of_date.isoformat()}


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    daily_popularity_rollup.serve(
        name="daily-popularity-rollup",
        cron="5 0 * * *",
    )
