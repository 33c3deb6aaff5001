"""visitcapture service: main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, device, imaging, remote, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI

from visitcapture.api.capture import router as capture_router
from visitcapture.api.media import router as media_router
from visitcapture.api.monitoring import router as monitoring_router
from visitcapture.config import AppConfig, load_config
from visitcapture.core.compression import CompressionPolicy, SizeBudgetCompressor, VideoPolicy
from visitcapture.core.directory import OutletCache, VisitDirectory
from visitcapture.core.media import OutletMediaService
from visitcapture.core.sessions import CaptureSession, CaptureSessionRegistry
from visitcapture.core.state_machine import CapturePolicy, VisitCaptureStateMachine
from visitcapture.core.stats import PipelineStats
from visitcapture.core.submission import SubmissionCoordinator
from visitcapture.core.watermark import WatermarkCompositor
from visitcapture.devices.uploaded import ReportedPositionProvider, UploadedPhotoCamera
from visitcapture.imaging.pillow_imaging import (
    PassthroughVideoEncoder,
    PillowImageEncoder,
    PillowOverlayRenderer,
    PillowSnapshotter,
)
from visitcapture.remote.httpx_client import HttpxVisitApi

if TYPE_CHECKING:
    from visitcapture.imaging.base import ImageEncoder, OverlayRenderer, Snapshotter
    from visitcapture.remote.base import VisitApi

log = structlog.get_logger()

# Module-level singletons (set during startup)
_registry: CaptureSessionRegistry | None = None
_directory: VisitDirectory | None = None
_media: OutletMediaService | None = None
_stats: PipelineStats | None = None
_config: AppConfig | None = None


def get_registry() -> CaptureSessionRegistry:
    assert _registry is not None, "Service not initialized"
    return _registry


def get_directory() -> VisitDirectory:
    assert _directory is not None, "Service not initialized"
    return _directory


def get_media() -> OutletMediaService:
    assert _media is not None, "Service not initialized"
    return _media


def get_stats() -> PipelineStats:
    assert _stats is not None, "Service not initialized"
    return _stats


def get_config() -> AppConfig:
    assert _config is not None, "Service not initialized"
    return _config


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    extra = {}
    if config.logging.file:
        extra["logger_factory"] = structlog.WriteLoggerFactory(file=open(config.logging.file, "a"))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
        **extra,
    )


def build_registry(
    config: AppConfig,
    *,
    directory: VisitDirectory,
    submitter: SubmissionCoordinator,
    stats: PipelineStats,
    encoder: ImageEncoder,
    renderer: OverlayRenderer,
    snapshotter: Snapshotter,
) -> CaptureSessionRegistry:
    """Build the per-operator session registry from config and collaborators."""
    comp = config.compression
    compressor = SizeBudgetCompressor(CompressionPolicy(
        initial_quality=comp.initial_quality,
        quality_step=comp.quality_step,
        min_quality=comp.min_quality,
        max_attempts=comp.max_attempts,
        target_width=comp.target_width,
    ))
    compositor = WatermarkCompositor(render_timeout_seconds=config.watermark.render_timeout_seconds)
    policy = CapturePolicy(
        camera_grace_seconds=config.camera.grace_seconds,
        camera_quality=config.camera.quality,
        camera_mirror=config.camera.mirror,
        location_accuracy=config.geolocation.accuracy,
        photo_budget_bytes=comp.photo_budget_bytes,
        enforce_geofence_on_checkout=config.geofence.enforce_on_checkout,
        timestamp_format=config.watermark.timestamp_format,
    )

    def factory(operator_id: str) -> CaptureSession:
        camera = UploadedPhotoCamera()
        geolocation = ReportedPositionProvider(max_age_seconds=config.geolocation.max_age_seconds)
        machine = VisitCaptureStateMachine(
            camera=camera,
            geolocation=geolocation,
            encoder=encoder,
            renderer=renderer,
            snapshotter=snapshotter,
            directory=directory,
            submitter=submitter,
            compressor=compressor,
            compositor=compositor,
            policy=policy,
            stats=stats,
            operator_id=operator_id,
        )
        return CaptureSession(operator_id, machine, camera, geolocation)

    return CaptureSessionRegistry(factory)


def build_media_service(config: AppConfig, encoder: ImageEncoder) -> OutletMediaService:
    comp, video = config.compression, config.video
    compressor = SizeBudgetCompressor(
        CompressionPolicy(
            initial_quality=comp.media_initial_quality,
            quality_step=comp.quality_step,
            min_quality=comp.min_quality,
            max_attempts=comp.max_attempts,
            target_width=comp.media_target_width,
        ),
        VideoPolicy(
            budget_bytes=video.budget_bytes,
            raw_ceiling_bytes=video.raw_ceiling_bytes,
            min_bytes=video.min_bytes,
            preset=video.preset,
            quality=video.quality,
        ),
    )
    return OutletMediaService(compressor, encoder, PassthroughVideoEncoder(),
                              photo_budget_bytes=comp.photo_budget_bytes)


def install(config: AppConfig, api: VisitApi) -> None:
    """Create all components around a VisitApi and publish the singletons."""
    global _registry, _directory, _media, _stats, _config

    _config = config
    _stats = PipelineStats()
    _directory = VisitDirectory(
        api,
        OutletCache(ttl_seconds=config.cache.outlet_ttl_seconds),
        default_radius=config.geofence.default_radius_m,
    )
    encoder = PillowImageEncoder()
    _registry = build_registry(
        config,
        directory=_directory,
        submitter=SubmissionCoordinator(api, checkin_type=config.api.checkin_type),
        stats=_stats,
        encoder=encoder,
        renderer=PillowOverlayRenderer(),
        snapshotter=PillowSnapshotter(quality=config.watermark.snapshot_quality),
    )
    _media = build_media_service(config, encoder)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _registry, _directory, _media, _stats, _config

    config = load_config()
    _setup_logging(config)

    log.info("service_starting",
             env=config.server.env,
             api_base_url=config.api.base_url,
             enforce_on_checkout=config.geofence.enforce_on_checkout)

    api = HttpxVisitApi(
        base_url=config.api.base_url,
        token=config.api.token,
        timeout=config.api.timeout_seconds,
    )
    install(config, api)

    log.info("service_started",
             host=config.server.host,
             port=config.server.port)

    yield

    # Shutdown
    await api.aclose()
    _registry = _directory = _media = _stats = _config = None
    log.info("service_stopped")


app = FastAPI(
    title="visitcapture",
    description="Visit capture pipeline: geofence, photo budget, watermark, submission",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(capture_router)
app.include_router(media_router)
app.include_router(monitoring_router)
