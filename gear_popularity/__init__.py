"""
Gear Popularity Engine

Popularity events, daily rollups and live-blended trending rankings
for a photography gear catalog.
"""

__version__ = "1.0.0"
