"""
Data Generation Module
"""
from .generators import DataGenerator, CatalogGenerator, EventGenerator

__all__ = [
    "DataGenerator",
    "CatalogGenerator",
    "EventGenerator",
]
