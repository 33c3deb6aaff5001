"""Geofence validation: is the operator close enough to the outlet?

A radius of zero is a sentinel that disables geofencing for the outlet; the
distance is still measured so the UI can display it.
"""

from __future__ import annotations

from dataclasses import dataclass

from visitcapture.core.geo import distance_meters
from visitcapture.core.models import GeoPoint, Outlet


@dataclass(frozen=True)
class GeofenceResult:
    in_range: bool
    distance: float | None
    radius_meters: int
    bypassed: bool = False

    @property
    def eligible(self) -> bool:
        """False when the outlet has no stored location at all."""
        return self.distance is not None


class GeofenceValidator:
    """Pure in-range decision for an outlet and a current position."""

    def validate(self, outlet: Outlet, current: GeoPoint) -> GeofenceResult:
        if outlet.location is None:
            return GeofenceResult(in_range=False, distance=None, radius_meters=outlet.radius_meters)

        distance = distance_meters(outlet.location, current)
        if outlet.radius_meters == 0:
            return GeofenceResult(in_range=True, distance=distance, radius_meters=0, bypassed=True)

        return GeofenceResult(
            in_range=distance <= outlet.radius_meters,
            distance=distance,
            radius_meters=outlet.radius_meters,
        )
