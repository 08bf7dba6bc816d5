"""
API Routes Module
"""
from .health import router as health_router
from .popularity import router as popularity_router
from .rollup import router as rollup_router

__all__ = [
    "health_router",
    "popularity_router",
    "rollup_router",
]
