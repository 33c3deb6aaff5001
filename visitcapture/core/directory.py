"""Pre-flight lookups against the visit server.

``VisitDirectory`` resolves outlets and open visits and runs the active-visit
check before a check-in. Outlet snapshots are kept in an ``OutletCache`` owned
by the directory: entries expire after a TTL and can be invalidated explicitly
when the outlet-edit flow corrects an outlet's location or radius.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, TYPE_CHECKING

import structlog

from visitcapture.core.errors import LookupFailed
from visitcapture.core.models import OpenVisit, Outlet

if TYPE_CHECKING:
    from visitcapture.remote.base import VisitApi

log = structlog.get_logger()


@dataclass
class _CacheEntry:
    outlet: Outlet
    stored_at: float


class OutletCache:
    """TTL cache of outlet snapshots keyed by outlet id."""

    def __init__(self, ttl_seconds: float = 300.0,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    def get(self, outlet_id: str) -> Outlet | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(outlet_id)
            if entry is None:
                return None
            if now - entry.stored_at > self._ttl:
                del self._entries[outlet_id]
                return None
            return entry.outlet

    def put(self, outlet: Outlet) -> None:
        with self._lock:
            self._entries[outlet.id] = _CacheEntry(outlet=outlet, stored_at=self._clock())

    def invalidate(self, outlet_id: str) -> bool:
        """Drop one outlet. Returns True if it was cached."""
        with self._lock:
            return self._entries.pop(outlet_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class VisitDirectory:
    def __init__(self, api: VisitApi, cache: OutletCache, *, default_radius: int = 100) -> None:
        self._api = api
        self._cache = cache
        self._default_radius = default_radius

    @property
    def cache(self) -> OutletCache:
        return self._cache

    async def get_outlet(self, outlet_id: str) -> Outlet:
        cached = self._cache.get(outlet_id)
        if cached is not None:
            return cached

        response = await self._api.get(f"/outlets/{outlet_id}")
        if not response.ok or not isinstance(response.data, dict):
            log.warning("outlet_lookup_failed", outlet=outlet_id, status=response.status_code)
            raise LookupFailed(response.message or f"outlet {outlet_id} could not be loaded")

        outlet = Outlet.from_api(response.data, self._default_radius)
        self._cache.put(outlet)
        log.debug("outlet_loaded", outlet=outlet.id, eligible=outlet.capture_eligible,
                  radius=outlet.radius_meters)
        return outlet

    async def get_open_visit(self, visit_id: str) -> OpenVisit:
        response = await self._api.get(f"/visits/{visit_id}")
        if not response.ok or not isinstance(response.data, dict):
            log.warning("visit_lookup_failed", visit=visit_id, status=response.status_code)
            raise LookupFailed(response.message or f"visit {visit_id} could not be loaded")

        data = response.data
        outlet_data = data.get("outlet") or {}
        outlet_id = str(outlet_data.get("id", ""))
        # The visit payload carries a thin outlet; prefer the full record.
        outlet = self._cache.get(outlet_id) if outlet_id else None
        if outlet is None:
            outlet = Outlet.from_api(outlet_data, self._default_radius)
        return OpenVisit(
            id=str(data.get("id", visit_id)),
            outlet=outlet,
            checked_out=bool(data.get("checkout_time")),
        )

    async def check_visit_status(self, outlet_id: str) -> str | None:
        """Pre-flight active-visit check. Returns the conflict message, or None."""
        response = await self._api.get("/visits/check", params={"outlet_id": outlet_id})
        if response.status_code == 400:
            return response.message or "An active visit already exists for this outlet"
        if not response.ok:
            raise LookupFailed(response.message or "visit status check failed")

        data = response.data if isinstance(response.data, dict) else {}
        if data.get("can_checkin") is False or data.get("has_active_visit"):
            return data.get("message") or response.message or "An active visit already exists"
        return None
