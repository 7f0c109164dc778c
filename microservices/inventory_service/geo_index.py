"""
GeoIndex

Great-circle distance and radius filtering for product discovery.
Pure functions; no I/O and no shared state.
"""

import math
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from .models import BoundingBox, GeoPoint

EARTH_RADIUS_KM = 6371.0

# Widen the prefilter box slightly so float rounding never drops a point
# that the exact distance check would keep.
_BBOX_MARGIN_DEG = 1e-9

T = TypeVar("T")


def haversine_km(a: GeoPoint, b: GeoPoint, radius_km: float = EARTH_RADIUS_KM) -> float:
    """
    Distance between two points in kilometres.

    Symmetric (points are put in a canonical order first) and exactly 0.0
    for identical points.
    """
    if a == b:
        return 0.0
    p1, p2 = sorted(((a.latitude, a.longitude), (b.latitude, b.longitude)))
    lat1, lon1 = p1
    lat2, lon2 = p2

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    h = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return radius_km * c


def bounding_box(center: GeoPoint, radius_km: float, earth_radius_km: float = EARTH_RADIUS_KM) -> BoundingBox:
    """
    Smallest lat/lon box containing every point within ``radius_km``.

    Near the poles the box spans all longitudes; across the antimeridian
    ``min_longitude > max_longitude`` (see ``BoundingBox.contains``).
    """
    if radius_km < 0:
        raise ValueError("radius_km must be non-negative")

    angular = radius_km / earth_radius_km
    lat_delta = math.degrees(angular) + _BBOX_MARGIN_DEG
    min_lat = center.latitude - lat_delta
    max_lat = center.latitude + lat_delta

    if min_lat <= -90 or max_lat >= 90 or angular >= math.pi / 2:
        return BoundingBox(
            min_latitude=max(min_lat, -90.0),
            max_latitude=min(max_lat, 90.0),
            min_longitude=-180.0,
            max_longitude=180.0,
        )

    ratio = math.sin(angular) / math.cos(math.radians(center.latitude))
    if ratio >= 1:
        lon_delta = 180.0
    else:
        lon_delta = math.degrees(math.asin(ratio)) + _BBOX_MARGIN_DEG

    if lon_delta >= 180:
        min_lon, max_lon = -180.0, 180.0
    else:
        min_lon = center.longitude - lon_delta
        max_lon = center.longitude + lon_delta
        if min_lon < -180:
            min_lon += 360
        if max_lon > 180:
            max_lon -= 360

    return BoundingBox(
        min_latitude=min_lat,
        max_latitude=max_lat,
        min_longitude=min_lon,
        max_longitude=max_lon,
    )


class GeoIndex:
    """Distance computation and radius filtering over arbitrary items"""

    def __init__(self, earth_radius_km: float = EARTH_RADIUS_KM):
        self.earth_radius_km = earth_radius_km

    def distance_km(self, a: GeoPoint, b: GeoPoint) -> float:
        return haversine_km(a, b, self.earth_radius_km)

    def bounding_box(self, center: GeoPoint, radius_km: float) -> BoundingBox:
        return bounding_box(center, radius_km, self.earth_radius_km)

    def annotate(
        self,
        center: GeoPoint,
        items: Iterable[T],
        key: Callable[[T], Optional[GeoPoint]],
    ) -> List[Tuple[T, Optional[float]]]:
        """Pair each item with its distance from ``center`` (None without a location)"""
        result = []
        for item in items:
            point = key(item)
            result.append((item, self.distance_km(center, point) if point is not None else None))
        return result

    def within_radius(
        self,
        center: GeoPoint,
        radius_km: float,
        items: Iterable[T],
        key: Callable[[T], Optional[GeoPoint]],
    ) -> List[Tuple[T, float]]:
        """Items whose location lies within ``radius_km`` (inclusive), with distances"""
        if radius_km < 0:
            raise ValueError("radius_km must be non-negative")
        return [
            (item, distance)
            for item, distance in self.annotate(center, items, key)
            if distance is not None and distance <= radius_km
        ]
