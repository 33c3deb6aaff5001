"""Tests for the Pillow imaging adapters."""

from __future__ import annotations

import asyncio
import io

import pytest
from PIL import Image, ImageDraw

from visitcapture.core.compression import SizeBudgetCompressor
from visitcapture.core.errors import CompositingFailed, EncoderFailed
from visitcapture.core.models import CapturedPhoto, WatermarkFields
from visitcapture.core.watermark import WatermarkCompositor
from visitcapture.imaging.base import RenderHandle
from visitcapture.imaging.pillow_imaging import (
    PassthroughVideoEncoder,
    PillowImageEncoder,
    PillowOverlayRenderer,
    PillowSnapshotter,
)

FIELDS = WatermarkFields("OUT-10 • Toko Maju", "Menteng", "18/10/2026 09:30:00", "-6.200000, 106.800000")


def _jpeg(width: int = 1280, height: int = 960, noise: bool = False) -> bytes:
    if noise:
        img = Image.effect_noise((width, height), 80).convert("RGB")
    else:
        img = Image.new("RGB", (width, height), (90, 140, 200))
        draw = ImageDraw.Draw(img)
        draw.rectangle([(width // 4, height // 4), (width // 2, height // 2)], fill=(240, 200, 40))
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=95)
    return out.getvalue()


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


@pytest.mark.asyncio
async def test_encoder_resizes_to_target_width():
    data = await PillowImageEncoder().encode(CapturedPhoto(_jpeg()), 480, 0.7)
    img = _open(data)
    assert img.format == "JPEG"
    assert img.size == (480, 360)


@pytest.mark.asyncio
async def test_encoder_never_upscales():
    data = await PillowImageEncoder().encode(CapturedPhoto(_jpeg(320, 240)), 480, 0.7)
    assert _open(data).size == (320, 240)


@pytest.mark.asyncio
async def test_lower_quality_is_smaller():
    photo = CapturedPhoto(_jpeg(noise=True))
    encoder = PillowImageEncoder()
    high = await encoder.encode(photo, 480, 0.7)
    low = await encoder.encode(photo, 480, 0.25)
    assert len(low) < len(high)


@pytest.mark.asyncio
async def test_encoder_rejects_garbage():
    with pytest.raises(EncoderFailed):
        await PillowImageEncoder().encode(CapturedPhoto(b"not an image"), 480, 0.7)


@pytest.mark.asyncio
async def test_compressor_with_pillow_meets_budget():
    photo = CapturedPhoto(_jpeg())
    result = await SizeBudgetCompressor().compress(photo, 100 * 1024, PillowImageEncoder())
    assert result.ok
    assert result.attempts == 1
    assert result.size <= 100 * 1024


@pytest.mark.asyncio
async def test_compressor_with_pillow_over_tiny_budget():
    photo = CapturedPhoto(_jpeg(noise=True))
    result = await SizeBudgetCompressor().compress(photo, 500, PillowImageEncoder())
    assert not result.ok
    assert result.attempts == 4
    assert result.quality_used == 0.25


@pytest.mark.asyncio
async def test_composite_with_pillow():
    encoder = PillowImageEncoder()
    compressed = CapturedPhoto(await encoder.encode(CapturedPhoto(_jpeg()), 480, 0.7), "image/jpeg", 480)
    renderer = PillowOverlayRenderer()
    result = await WatermarkCompositor().composite(compressed, FIELDS, renderer, PillowSnapshotter())

    img = _open(result.data)
    assert img.format == "JPEG"
    assert img.size == (480, 360)
    assert result.width_px == 480
    # The bottom band is darkened by the overlay bar.
    top_pixel = img.convert("RGB").getpixel((5, 5))
    bottom_pixel = img.convert("RGB").getpixel((5, 355))
    assert sum(bottom_pixel) < sum(top_pixel)


@pytest.mark.asyncio
async def test_render_of_garbage_fails():
    renderer = PillowOverlayRenderer()
    with pytest.raises(CompositingFailed):
        await WatermarkCompositor().composite(CapturedPhoto(b"garbage"), FIELDS, renderer, PillowSnapshotter())


@pytest.mark.asyncio
async def test_snapshot_refuses_unrendered_handle():
    handle = RenderHandle(handle_id=1, completed=asyncio.get_running_loop().create_future())
    with pytest.raises(CompositingFailed):
        await PillowSnapshotter().snapshot(handle)


@pytest.mark.asyncio
async def test_release_closes_surface():
    renderer = PillowOverlayRenderer()
    handle = renderer.render(CapturedPhoto(_jpeg(320, 240)), FIELDS)
    await handle.completed
    assert handle.surface is not None
    renderer.release(handle)
    assert handle.surface is None


@pytest.mark.asyncio
async def test_passthrough_video_encoder():
    assert await PassthroughVideoEncoder().compress(b"video", "manual", "low") == b"video"
