"""
Gear Popularity Engine
Configuration Module
"""
from .settings import Settings, PopularitySettings, get_settings

__all__ = ["Settings", "PopularitySettings", "get_settings"]
