"""Imaging interfaces (ports) for encoding, overlay rendering and snapshots."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from visitcapture.core.models import CapturedPhoto, WatermarkFields


@dataclass
class RenderHandle:
    """A transient render target.

    ``completed`` resolves once the overlay is fully drawn; ``surface`` is only
    meaningful after that.
    """
    handle_id: int
    completed: asyncio.Future
    surface: Any = None
    meta: dict = field(default_factory=dict)


class ImageEncoder(Protocol):
    """Port: resizes and re-encodes a photo at a given quality."""

    async def encode(self, photo: CapturedPhoto, target_width: int, quality: float,
                     fmt: str = "JPEG") -> bytes: ...


class VideoEncoder(Protocol):
    """Port: single-pass video compression."""

    async def compress(self, raw: bytes, preset: str, quality: str) -> bytes: ...


class OverlayRenderer(Protocol):
    """Port: draws photo + watermark text onto a surface."""

    def render(self, photo: CapturedPhoto, fields: WatermarkFields) -> RenderHandle: ...

    def release(self, handle: RenderHandle) -> None: ...


class Snapshotter(Protocol):
    """Port: flattens a rendered surface into a single image."""

    async def snapshot(self, handle: RenderHandle) -> CapturedPhoto: ...
