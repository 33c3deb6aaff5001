"""Shared test fixtures and port fakes."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient

import visitcapture.main as main_module
from visitcapture.config import AppConfig
from visitcapture.core.directory import OutletCache, VisitDirectory
from visitcapture.core.models import CapturedPhoto, GeoPoint
from visitcapture.core.state_machine import CapturePolicy, VisitCaptureStateMachine
from visitcapture.core.stats import PipelineStats
from visitcapture.core.submission import SubmissionCoordinator
from visitcapture.devices.base import PermissionStatus
from visitcapture.imaging.base import RenderHandle
from visitcapture.remote.base import ApiResponse

OUTLET_ID = "10"
VISIT_ID = "55"
OUTLET_JSON = {
    "id": 10,
    "name": "Toko Maju",
    "code": "OUT-10",
    "location": "-6.2,106.8",
    "radius": 100,
    "district": "Menteng",
}
FIXED_NOW = datetime(2026, 10, 18, 9, 30, 0)


class FakeCamera:
    def __init__(self) -> None:
        self.ready = True
        self.photo = CapturedPhoto(b"raw-photo-bytes", "image/jpeg", 1080)
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.calls = 0
        self.options = []

    def is_ready(self) -> bool:
        return self.ready

    async def wait_ready(self) -> None:
        while not self.ready:
            await asyncio.sleep(0.01)

    async def capture(self, options):
        self.calls += 1
        self.options.append(options)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.photo


class FakeGeolocation:
    def __init__(self) -> None:
        self.permission = PermissionStatus.GRANTED
        self.position = GeoPoint(-6.2, 106.8)
        self.error: Exception | None = None

    async def request_permission(self):
        return self.permission

    async def get_current_position(self, accuracy: str = "balanced"):
        if self.error is not None:
            raise self.error
        return self.position


class FakeEncoder:
    """Returns payloads of scripted sizes; the last size repeats."""

    def __init__(self) -> None:
        self.sizes = [50 * 1024]
        self.error: Exception | None = None
        self.qualities: list[float] = []
        self.gate: asyncio.Event | None = None

    async def encode(self, photo, target_width, quality, fmt="JPEG") -> bytes:
        self.qualities.append(quality)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        index = min(len(self.qualities) - 1, len(self.sizes) - 1)
        return b"j" * self.sizes[index]


class FakeRenderer:
    """Records events; completes the render on the next loop tick unless ``manual``."""

    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.manual = False
        self.fail_with: Exception | None = None
        self.handles: list[RenderHandle] = []
        self.fields = []
        self.released: list[int] = []

    def render(self, photo, fields) -> RenderHandle:
        loop = asyncio.get_running_loop()
        handle = RenderHandle(handle_id=len(self.handles) + 1, completed=loop.create_future())
        self.handles.append(handle)
        self.fields.append(fields)
        self.events.append("render")
        if not self.manual:
            loop.call_soon(self.complete, handle)
        return handle

    def complete(self, handle: RenderHandle | None = None) -> None:
        handle = handle or self.handles[-1]
        if handle.completed.done():
            return
        if self.fail_with is not None:
            handle.completed.set_exception(self.fail_with)
            return
        handle.surface = "surface"
        self.events.append("complete")
        handle.completed.set_result(None)

    def release(self, handle: RenderHandle) -> None:
        self.released.append(handle.handle_id)
        self.events.append("release")


class FakeSnapshotter:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.error: Exception | None = None
        self.calls = 0

    async def snapshot(self, handle: RenderHandle) -> CapturedPhoto:
        self.calls += 1
        if not handle.completed.done():
            pytest.fail("snapshot taken before the render-complete signal")
        self.events.append("snapshot")
        if self.error is not None:
            raise self.error
        return CapturedPhoto(b"composited-photo", "image/jpeg", 480)


class FakeVisitApi:
    def __init__(self) -> None:
        self.responses: dict[str, ApiResponse | Exception] = {
            f"/outlets/{OUTLET_ID}": ApiResponse(200, "ok", dict(OUTLET_JSON)),
            "/visits/check": ApiResponse(200, "ok", {"can_checkin": True, "has_active_visit": False}),
            f"/visits/{VISIT_ID}": ApiResponse(200, "ok", {
                "id": 55, "checkout_time": None, "outlet": dict(OUTLET_JSON),
            }),
        }
        self.post_response = ApiResponse(200, "Visit saved", {"id": 77})
        self.post_error: Exception | None = None
        self.gets: list[tuple[str, dict | None]] = []
        self.posts: list[dict] = []

    def set_outlet(self, **overrides) -> None:
        data = dict(OUTLET_JSON)
        data.update(overrides)
        self.responses[f"/outlets/{OUTLET_ID}"] = ApiResponse(200, "ok", data)

    async def get(self, endpoint, params=None):
        self.gets.append((endpoint, params))
        # Suspend like a real request would.
        await asyncio.sleep(0)
        response = self.responses.get(endpoint, ApiResponse(404, "not found"))
        if isinstance(response, Exception):
            raise response
        return response

    async def post(self, endpoint, fields, files=None, method="POST"):
        self.posts.append({"endpoint": endpoint, "fields": fields, "files": files, "method": method})
        if self.post_error is not None:
            raise self.post_error
        return self.post_response


class Fakes:
    def __init__(self) -> None:
        self.events: list[str] = []
        self.camera = FakeCamera()
        self.geolocation = FakeGeolocation()
        self.encoder = FakeEncoder()
        self.renderer = FakeRenderer(self.events)
        self.snapshotter = FakeSnapshotter(self.events)
        self.api = FakeVisitApi()
        self.stats = PipelineStats()


@pytest.fixture
def fakes() -> Fakes:
    return Fakes()


@pytest.fixture
def make_machine(fakes):
    def _make(submitter: SubmissionCoordinator | None = None, **policy) -> VisitCaptureStateMachine:
        policy.setdefault("camera_grace_seconds", 0.1)
        return VisitCaptureStateMachine(
            camera=fakes.camera,
            geolocation=fakes.geolocation,
            encoder=fakes.encoder,
            renderer=fakes.renderer,
            snapshotter=fakes.snapshotter,
            directory=VisitDirectory(fakes.api, OutletCache()),
            submitter=submitter or SubmissionCoordinator(fakes.api, clock=lambda: 1_760_000_000.0),
            policy=CapturePolicy(**policy),
            stats=fakes.stats,
            operator_id="op-1",
            clock=lambda: FIXED_NOW,
        )

    return _make


@pytest.fixture
def app_config() -> AppConfig:
    config = AppConfig()
    config.logging.level = "warning"
    return config


@pytest.fixture(autouse=True)
def _init_service(app_config, fakes):
    """Initialize service singletons for every test, backed by the fake visit API."""
    main_module.install(app_config, fakes.api)

    yield

    # Cleanup
    main_module._registry = None
    main_module._directory = None
    main_module._media = None
    main_module._stats = None
    main_module._config = None


@pytest.fixture
async def client():
    from visitcapture.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
