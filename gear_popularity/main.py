"""
FastAPI Production Application

Main entry point for the Gear Popularity API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.exceptions import RedisError
import structlog

from gear_popularity.config import get_settings
from gear_popularity.config.logging import configure_logging
from gear_popularity.database.connection import init_database, close_database
from gear_popularity.serving.api import create_api_app
from gear_popularity.serving.cache import init_redis, close_redis

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()

    logger.info("Starting Gear Popularity API", environment=settings.app_env)

    await init_database()

    # Trending works without its cache
    if settings.redis.enabled:
        try:
            await init_redis()
        except (RedisError, OSError) as e:
            logger.warning("Redis init failed, trending cache disabled", error=str(e))

    yield

    logger.info("Shutting down...")
    await close_redis()
    await close_database()


app = create_api_app(lifespan=lifespan)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
