"""Outlet-edit media flow.

The outlet-edit screen attaches a storefront photo and a short video. Both go
through the same size-budget pattern as visit photos: the photo uses the
quality ladder with its own width and budget, the video a single encode pass.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from visitcapture.core.errors import CompressionBudgetExceeded, MediaInvalid
from visitcapture.core.models import CapturedPhoto

if TYPE_CHECKING:
    from visitcapture.core.compression import SizeBudgetCompressor
    from visitcapture.imaging.base import ImageEncoder, VideoEncoder

log = structlog.get_logger()


class OutletMediaService:
    def __init__(
        self,
        photo_compressor: SizeBudgetCompressor,
        image_encoder: ImageEncoder,
        video_encoder: VideoEncoder,
        *,
        photo_budget_bytes: int = 100 * 1024,
    ) -> None:
        self._photo_compressor = photo_compressor
        self._image_encoder = image_encoder
        self._video_encoder = video_encoder
        self._photo_budget = photo_budget_bytes

    async def prepare_photo(self, raw: bytes, mime_type: str = "image/jpeg") -> CapturedPhoto:
        if not raw:
            raise MediaInvalid("photo is empty")
        result = await self._photo_compressor.compress(
            CapturedPhoto(raw, mime_type), self._photo_budget, self._image_encoder,
        )
        if not result.ok:
            log.warning("outlet_photo_over_budget", size=result.size, budget=result.budget_bytes)
            raise CompressionBudgetExceeded(
                result.size, result.budget_bytes,
                "photo is still too large after compression, retake it",
            )
        log.info("outlet_photo_prepared", size=result.size, quality=result.quality_used,
                 attempts=result.attempts)
        return CapturedPhoto(result.accept(), "image/jpeg",
                             self._photo_compressor.policy.target_width)

    async def prepare_video(self, raw: bytes) -> bytes:
        result = await self._photo_compressor.compress_video(raw, self._video_encoder)
        if not result.ok:
            raise CompressionBudgetExceeded(
                result.size, result.budget_bytes,
                "video is too large, record a shorter video",
            )
        return result.accept()
