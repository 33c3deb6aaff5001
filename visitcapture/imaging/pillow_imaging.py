"""Pillow-backed imaging adapters.

- ``PillowImageEncoder``: resize to a target width and re-encode at a quality.
- ``PillowOverlayRenderer``: draws the watermark bar onto the photo in a worker
  thread and resolves the handle's ``completed`` future when done.
- ``PillowSnapshotter``: flattens a completed surface to JPEG bytes.
- ``PassthroughVideoEncoder``: returns the input when no video codec is available.
"""

from __future__ import annotations

import asyncio
import io
import itertools
from typing import TYPE_CHECKING

import structlog
from PIL import Image, ImageDraw, ImageFont, ImageOps

from visitcapture.core.errors import CompositingFailed, EncoderFailed
from visitcapture.core.models import CapturedPhoto
from visitcapture.imaging.base import RenderHandle

if TYPE_CHECKING:
    from visitcapture.core.models import WatermarkFields

log = structlog.get_logger()

# Overlay styling.
_BAR_RGBA = (0, 0, 0, 166)
_LABEL_RGB = (255, 136, 0)
_TEXT_RGB = (255, 255, 255)
_PAD = 12
_LINE_GAP = 4


def _jpeg_quality(quality: float) -> int:
    return max(1, min(95, round(quality * 100)))


class PillowImageEncoder:
    async def encode(self, photo: CapturedPhoto, target_width: int, quality: float,
                     fmt: str = "JPEG") -> bytes:
        return await asyncio.to_thread(self._encode, photo.data, target_width, quality, fmt)

    @staticmethod
    def _encode(data: bytes, target_width: int, quality: float, fmt: str) -> bytes:
        try:
            with Image.open(io.BytesIO(data)) as src:
                img = ImageOps.exif_transpose(src).convert("RGB")
        except (OSError, ValueError) as exc:
            raise EncoderFailed("photo could not be decoded") from exc

        if img.width > target_width:
            height = max(1, round(img.height * target_width / img.width))
            img = img.resize((target_width, height), Image.Resampling.LANCZOS)

        out = io.BytesIO()
        img.save(out, format=fmt, quality=_jpeg_quality(quality), optimize=True)
        return out.getvalue()


class PillowOverlayRenderer:
    """Renders photo + watermark text; completion is signalled via the handle."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._tasks: dict[int, asyncio.Task] = {}

    def render(self, photo: CapturedPhoto, fields: WatermarkFields) -> RenderHandle:
        loop = asyncio.get_running_loop()
        handle = RenderHandle(handle_id=next(self._ids), completed=loop.create_future())
        self._tasks[handle.handle_id] = loop.create_task(self._render(handle, photo, fields))
        return handle

    async def _render(self, handle: RenderHandle, photo: CapturedPhoto,
                      fields: WatermarkFields) -> None:
        try:
            surface = await asyncio.to_thread(self._draw, photo.data, fields)
        except Exception as exc:
            if not handle.completed.done():
                handle.completed.set_exception(CompositingFailed(f"overlay render failed: {exc}"))
            return
        handle.surface = surface
        if not handle.completed.done():
            handle.completed.set_result(None)
        log.debug("overlay_rendered", handle=handle.handle_id, size=surface.size)

    @staticmethod
    def _draw(data: bytes, fields: WatermarkFields) -> Image.Image:
        with Image.open(io.BytesIO(data)) as src:
            base = src.convert("RGBA")
        font = ImageFont.load_default()
        measure = ImageDraw.Draw(base)

        def line_height(text: str) -> int:
            left, top, right, bottom = measure.textbbox((0, 0), text or " ", font=font)
            return bottom - top

        lines = [fields.outlet_label]
        if fields.outlet_sub_label:
            lines.append(fields.outlet_sub_label)
        footer_h = max(line_height(fields.timestamp_text), line_height(fields.location_text))
        bar_h = _PAD * 2 + sum(line_height(t) + _LINE_GAP for t in lines) + footer_h

        overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        top = max(0, base.height - bar_h)
        draw.rectangle([(0, top), (base.width, base.height)], fill=_BAR_RGBA)

        y = top + _PAD
        draw.text((_PAD, y), fields.outlet_label, font=font, fill=_LABEL_RGB)
        y += line_height(fields.outlet_label) + _LINE_GAP
        if fields.outlet_sub_label:
            draw.text((_PAD, y), fields.outlet_sub_label, font=font, fill=_TEXT_RGB)
            y += line_height(fields.outlet_sub_label) + _LINE_GAP
        draw.text((_PAD, y), fields.timestamp_text, font=font, fill=_TEXT_RGB)
        loc_w = measure.textbbox((0, 0), fields.location_text, font=font)[2]
        draw.text((max(_PAD, base.width - _PAD - loc_w), y), fields.location_text,
                  font=font, fill=_TEXT_RGB)

        return Image.alpha_composite(base, overlay)

    def release(self, handle: RenderHandle) -> None:
        task = self._tasks.pop(handle.handle_id, None)
        if task is not None and not task.done():
            task.cancel()
        if not handle.completed.done():
            handle.completed.cancel()
        if handle.surface is not None:
            handle.surface.close()
            handle.surface = None


class PillowSnapshotter:
    def __init__(self, quality: float = 0.5) -> None:
        self._quality = quality

    async def snapshot(self, handle: RenderHandle) -> CapturedPhoto:
        if not handle.completed.done() or handle.surface is None:
            raise CompositingFailed("overlay surface is not rendered yet")
        surface = handle.surface
        data = await asyncio.to_thread(self._flatten, surface, self._quality)
        return CapturedPhoto(data=data, mime_type="image/jpeg", width_px=surface.width)

    @staticmethod
    def _flatten(surface: Image.Image, quality: float) -> bytes:
        out = io.BytesIO()
        surface.convert("RGB").save(out, format="JPEG", quality=_jpeg_quality(quality))
        return out.getvalue()


class PassthroughVideoEncoder:
    """VideoEncoder used when no native codec is available: returns the input."""

    async def compress(self, raw: bytes, preset: str, quality: str) -> bytes:
        log.debug("video_passthrough", size=len(raw), preset=preset, quality=quality)
        return raw
