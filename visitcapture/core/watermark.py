"""Watermark compositing.

The renderer and the snapshot function belong to different subsystems. The
snapshot must only run after the renderer signals that the overlay surface is
fully drawn, otherwise it captures stale or blank pixels. The handoff is the
render handle's ``completed`` future, consumed exactly once here.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from visitcapture.core.errors import CompositingFailed

if TYPE_CHECKING:
    from visitcapture.core.models import CapturedPhoto, WatermarkFields
    from visitcapture.imaging.base import OverlayRenderer, Snapshotter

log = structlog.get_logger()


class WatermarkCompositor:
    """Produces one flattened image from a photo and its overlay text."""

    def __init__(self, render_timeout_seconds: float = 5.0) -> None:
        self._render_timeout = render_timeout_seconds

    async def composite(
        self,
        photo: CapturedPhoto,
        fields: WatermarkFields,
        renderer: OverlayRenderer,
        snapshotter: Snapshotter,
    ) -> CapturedPhoto:
        try:
            handle = renderer.render(photo, fields)
        except Exception as exc:
            raise CompositingFailed("overlay could not be rendered") from exc

        try:
            try:
                await asyncio.wait_for(handle.completed, timeout=self._render_timeout)
            except asyncio.TimeoutError:
                log.warning("overlay_render_timeout", handle=handle.handle_id,
                            timeout=self._render_timeout)
                raise CompositingFailed("overlay did not finish rendering") from None
            except CompositingFailed:
                raise
            except Exception as exc:
                raise CompositingFailed("overlay rendering failed") from exc

            try:
                flattened = await snapshotter.snapshot(handle)
            except CompositingFailed:
                raise
            except Exception as exc:
                log.error("overlay_snapshot_failed", handle=handle.handle_id, exc_info=True)
                raise CompositingFailed("snapshot of the overlay failed") from exc
        finally:
            renderer.release(handle)

        log.debug("watermark_composited", handle=handle.handle_id, size=flattened.size)
        return flattened
