"""Geo math: great-circle distance and the ``"lat,lon"`` wire encoding."""

from __future__ import annotations

import math

from visitcapture.core.models import GeoPoint

# Earth radius in meters (for Haversine).
_EARTH_R = 6_371_000.0


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters between two points."""
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * _EARTH_R * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def parse_lat_lon(text: str | None) -> GeoPoint | None:
    """Parse the server's ``"lat,lon"`` string. Returns None when unset or malformed."""
    if not text:
        return None
    parts = text.split(",")
    if len(parts) != 2:
        return None
    try:
        lat, lon = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if math.isnan(lat) or math.isnan(lon):
        return None
    try:
        return GeoPoint(lat, lon)
    except ValueError:
        return None


def format_lat_lon(point: GeoPoint) -> str:
    """Encode a point as ``"lat,lon"`` for outbound payloads."""
    return f"{point.latitude},{point.longitude}"


def format_display(point: GeoPoint) -> str:
    """Six-decimal ``"lat, lon"`` used on watermarks."""
    return f"{point.latitude:.6f}, {point.longitude:.6f}"
