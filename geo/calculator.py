"""
Great-circle geometry for device positions.

Distances use the Haversine formula on a sphere of configurable radius and are
rounded to six decimal places (micrometer resolution), matching the precision
of the stored coordinates.
"""

import math
from typing import Tuple

DEFAULT_EARTH_RADIUS_METERS = 6371000.0


class GeoCalculator:
    """
    Stateless helper for coordinate validation and distance computation.

    Attributes:
        earth_radius: Sphere radius in meters used for every distance
    """

    def __init__(self, earth_radius: float = DEFAULT_EARTH_RADIUS_METERS):
        self.earth_radius = earth_radius

    def distance(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """
        Calculate the great-circle distance between two points.

        Args:
            lat1: Latitude of the first point in degrees
            lon1: Longitude of the first point in degrees
            lat2: Latitude of the second point in degrees
            lon2: Longitude of the second point in degrees

        Returns:
            Distance in meters rounded to 6 decimal places
        """
        lat1_rad = math.radians(lat1)
        lat2_rad = math.radians(lat2)
        delta_lat = lat2_rad - lat1_rad
        delta_lon = math.radians(lon2) - math.radians(lon1)

        a = (
            math.sin(delta_lat / 2) ** 2
            + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
        )
        # Clamp rounding noise so sqrt(1 - a) stays real
        a = min(1.0, max(0.0, a))
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

        return round(self.earth_radius * c, 6)

    @staticmethod
    def valid_coordinates(latitude: float, longitude: float) -> bool:
        """Check that latitude is within [-90, 90] and longitude within [-180, 180]."""
        return -90 <= latitude <= 90 and -180 <= longitude <= 180

    @staticmethod
    def midpoint(lat1: float, lon1: float, lat2: float, lon2: float) -> Tuple[float, float]:
        """
        Calculate the great-circle midpoint between two points.

        Returns:
            Tuple of (latitude, longitude) in degrees
        """
        lat1_rad = math.radians(lat1)
        lon1_rad = math.radians(lon1)
        lat2_rad = math.radians(lat2)
        delta_lon = math.radians(lon2) - lon1_rad

        bx = math.cos(lat2_rad) * math.cos(delta_lon)
        by = math.cos(lat2_rad) * math.sin(delta_lon)

        lat3 = math.atan2(
            math.sin(lat1_rad) + math.sin(lat2_rad),
            math.sqrt((math.cos(lat1_rad) + bx) ** 2 + by ** 2),
        )
        lon3 = lon1_rad + math.atan2(by, math.cos(lat1_rad) + bx)

        return math.degrees(lat3), math.degrees(lon3)

    @staticmethod
    def format_coordinates(
        latitude: float,
        longitude: float,
        precision: int = 6
    ) -> Tuple[float, float]:
        """Round a coordinate pair to the given number of decimals."""
        return round(latitude, precision), round(longitude, precision)
