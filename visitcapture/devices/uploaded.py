"""Device adapters fed by the UI shell.

The UI shell owns the real camera and GPS; it pushes frames and fixes to these
adapters, which the state machine then consumes through the device ports.
Readiness is an ``asyncio.Event`` set when a frame is pending.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, TYPE_CHECKING

import structlog

from visitcapture.core.errors import DeviceUnavailable, LocationUnavailable, PermissionDenied
from visitcapture.devices.base import PermissionStatus

if TYPE_CHECKING:
    from visitcapture.core.models import CapturedPhoto, GeoPoint
    from visitcapture.devices.base import CaptureOptions

log = structlog.get_logger()


class UploadedPhotoCamera:
    """CameraProvider backed by a single pending uploaded frame."""

    def __init__(self) -> None:
        self._ready = asyncio.Event()
        self._pending: CapturedPhoto | None = None
        self._permission = PermissionStatus.GRANTED

    def offer(self, photo: CapturedPhoto) -> None:
        """Make a frame available. Replaces any frame not yet captured."""
        self._pending = photo
        self._ready.set()

    def set_permission(self, status: PermissionStatus) -> None:
        self._permission = status

    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    async def capture(self, options: CaptureOptions) -> CapturedPhoto:
        # quality and mirroring are applied by the device that produced the frame
        if self._permission is not PermissionStatus.GRANTED:
            raise PermissionDenied("camera", "camera permission is required")
        photo = self._pending
        if photo is None:
            raise DeviceUnavailable("no frame available from the camera")
        self._pending = None
        self._ready.clear()
        log.debug("frame_captured", size=photo.size, quality=options.quality,
                  mirror=options.mirror)
        return photo


class ReportedPositionProvider:
    """GeolocationProvider backed by the last fix reported by the UI shell."""

    def __init__(self, max_age_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._max_age = max_age_seconds
        self._clock = clock
        self._permission = PermissionStatus.GRANTED
        self._fix: GeoPoint | None = None
        self._fix_at = 0.0

    def report(self, point: GeoPoint) -> None:
        self._fix = point
        self._fix_at = self._clock()
        self._permission = PermissionStatus.GRANTED

    def set_permission(self, status: PermissionStatus) -> None:
        self._permission = status
        if status is PermissionStatus.DENIED:
            self._fix = None

    @property
    def last_fix(self) -> GeoPoint | None:
        return self._fix

    async def request_permission(self) -> PermissionStatus:
        return self._permission

    async def get_current_position(self, accuracy: str = "balanced") -> GeoPoint:
        if self._fix is None:
            raise LocationUnavailable("no location reported yet, make sure GPS is on")
        age = self._clock() - self._fix_at
        if age > self._max_age:
            raise LocationUnavailable(f"last location is {round(age)}s old, refresh your position")
        return self._fix
