"""visitcapture core internal data models.

These are plain dataclasses with no framework dependencies.
Server JSON is converted to/from these at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class VisitMode(str, Enum):
    CHECK_IN = "checkin"
    CHECK_OUT = "checkout"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude {self.latitude} out of range")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude {self.longitude} out of range")


@dataclass(frozen=True)
class Outlet:
    id: str
    location: GeoPoint | None
    radius_meters: int
    name: str = ""
    code: str = ""
    district: str = ""

    @property
    def capture_eligible(self) -> bool:
        return self.location is not None

    @classmethod
    def from_api(cls, data: dict, default_radius: int = 100) -> Outlet:
        """Build an outlet from the server's JSON representation.

        ``radius`` null/missing falls back to ``default_radius``; an explicit
        zero is kept and disables geofencing.
        """
        from visitcapture.core.geo import parse_lat_lon

        radius = data.get("radius")
        if radius is None or radius == "":
            radius = default_radius
        district = data.get("district") or ""
        if isinstance(district, dict):
            district = district.get("name", "")
        return cls(
            id=str(data.get("id", "")),
            location=parse_lat_lon(data.get("location") or data.get("latlong") or ""),
            radius_meters=int(radius),
            name=data.get("name") or "",
            code=data.get("code") or "",
            district=district,
        )


@dataclass(frozen=True)
class OpenVisit:
    id: str
    outlet: Outlet
    checked_out: bool = False


@dataclass(frozen=True)
class CapturedPhoto:
    data: bytes
    mime_type: str = "image/jpeg"
    width_px: int = 0

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class CompressionResult:
    data: bytes
    quality_used: float | None
    attempts: int
    budget_bytes: int
    ok: bool

    @property
    def size(self) -> int:
        return len(self.data)

    def accept(self) -> bytes:
        """Return the artifact, refusing to hand out an over-budget one."""
        if not self.ok:
            from visitcapture.core.errors import CompressionBudgetExceeded

            raise CompressionBudgetExceeded(self.size, self.budget_bytes)
        return self.data


@dataclass(frozen=True)
class WatermarkFields:
    outlet_label: str
    outlet_sub_label: str | None
    timestamp_text: str
    location_text: str


@dataclass
class VisitDraft:
    outlet_id: str
    mode: VisitMode
    visit_id: str | None = None
    raw_photo: CapturedPhoto | None = None
    compressed_photo: CapturedPhoto | None = None
    composited_photo: CapturedPhoto | None = None
    notes: str = ""
    transaction_flag: bool | None = None
    geo_point_at_capture: GeoPoint | None = None

    def discard_photos(self) -> None:
        self.raw_photo = None
        self.compressed_photo = None
        self.composited_photo = None

    def missing_fields(self) -> list[str]:
        """Required fields still absent before this draft may be submitted."""
        missing = []
        if self.composited_photo is None:
            missing.append("photo")
        if self.mode is VisitMode.CHECK_OUT:
            if not self.notes.strip():
                missing.append("notes")
            if self.transaction_flag is None:
                missing.append("transaction")
        return missing
