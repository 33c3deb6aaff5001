"""Health check and monitoring endpoints."""

from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from visitcapture.main import get_registry, get_stats

    snapshot = get_stats().snapshot()
    return {
        "status": "ok",
        "version": "0.1.0",
        "uptime_seconds": snapshot["uptime_seconds"],
        "active_sessions": snapshot["active_sessions"],
        "operators": len(get_registry()),
    }


@router.get("/stats")
async def stats() -> dict:
    """Pipeline counters.

    ``blocked`` and ``failed`` are keyed by error code, ``submissions``
    splits accepted, rejected and unreachable-server outcomes.
    """
    from visitcapture.main import get_stats

    return get_stats().snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Capture parameters for the UI shell.

    The shell calls this on startup to size camera frames and show limits.
    """
    from visitcapture.main import get_config

    config = get_config()
    return {
        "camera_grace_seconds": config.camera.grace_seconds,
        "camera_quality": config.camera.quality,
        "camera_mirror": config.camera.mirror,
        "photo_budget_bytes": config.compression.photo_budget_bytes,
        "photo_target_width": config.compression.target_width,
        "video_budget_bytes": config.video.budget_bytes,
        "video_raw_ceiling_bytes": config.video.raw_ceiling_bytes,
        "default_radius_m": config.geofence.default_radius_m,
        "enforce_geofence_on_checkout": config.geofence.enforce_on_checkout,
        "position_max_age_seconds": config.geolocation.max_age_seconds,
    }
