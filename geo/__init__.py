"""
Geographic helpers for the ingestion pipeline.
"""

from geo.calculator import DEFAULT_EARTH_RADIUS_METERS, GeoCalculator

__all__ = ["DEFAULT_EARTH_RADIUS_METERS", "GeoCalculator"]
