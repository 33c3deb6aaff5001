"""Device interfaces (ports) for the camera and geolocation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from visitcapture.core.models import CapturedPhoto, GeoPoint


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class CaptureOptions:
    quality: float = 0.7
    mirror: bool = True


class CameraProvider(Protocol):
    """Port: takes a picture once the camera signals readiness."""

    def is_ready(self) -> bool: ...

    async def wait_ready(self) -> None: ...

    async def capture(self, options: CaptureOptions) -> CapturedPhoto: ...


class GeolocationProvider(Protocol):
    """Port: current device position."""

    async def request_permission(self) -> PermissionStatus: ...

    async def get_current_position(self, accuracy: str = "balanced") -> GeoPoint: ...
