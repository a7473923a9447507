# =============================================
# File: app/services/geo.py
# Purpose: Great-circle distance, bounding boxes and proximity scores
# =============================================
from __future__ import annotations
import math
from typing import Optional, Tuple

from app.services.models import GeoFilter, GeoPoint

EARTH_RADIUS_KM = 6371.0088


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Numerically stable haversine distance in kilometres."""
    rlat1, rlon1 = math.radians(a.lat), math.radians(a.lon)
    rlat2, rlon2 = math.radians(b.lat), math.radians(b.lon)
    dlat = rlat2 - rlat1
    dlon = rlon2 - rlon1
    h = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def bounding_box(center: GeoPoint, radius_km: float) -> Tuple[float, float, float, float]:
    """(lat_min, lat_max, lon_min, lon_max); a cheap pre-filter before haversine."""
    lat_delta = math.degrees(radius_km / EARTH_RADIUS_KM)
    cos_lat = math.cos(math.radians(center.lat))
    if cos_lat < 1e-9:
        # at a pole every longitude is in range
        lon_delta = 180.0
    else:
        lon_delta = min(180.0, math.degrees(radius_km / (EARTH_RADIUS_KM * cos_lat)))
    return (
        max(-90.0, center.lat - lat_delta),
        min(90.0, center.lat + lat_delta),
        center.lon - lon_delta,
        center.lon + lon_delta,
    )


def in_bounding_box(point: GeoPoint, box: Tuple[float, float, float, float]) -> bool:
    lat_min, lat_max, lon_min, lon_max = box
    if not (lat_min <= point.lat <= lat_max):
        return False
    if lon_max - lon_min >= 360.0:
        return True
    lon = point.lon
    # handle boxes crossing the antimeridian
    if lon < lon_min:
        lon += 360.0
    elif lon > lon_max:
        lon -= 360.0
    return lon_min <= lon <= lon_max


def within_radius(point: Optional[GeoPoint], geo: GeoFilter) -> bool:
    if point is None:
        return False
    if not in_bounding_box(point, bounding_box(geo.center, geo.radius_km)):
        return False
    return haversine_km(geo.center, point) <= geo.radius_km


def proximity_score(distance_km: float, radius_km: float) -> float:
    """1.0 at the centre, decaying linearly to 0.0 at the radius."""
    if radius_km <= 0:
        return 0.0
    return max(0.0, 1.0 - distance_km / radius_km)
