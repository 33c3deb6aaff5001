"""Size-budget compression.

Photos: step the encoder quality down a fixed ladder until the output fits the
byte budget or the attempt budget / quality floor runs out.

Videos: a single encode attempt, with a hard size check on the raw input
before encoding and on the output after.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from visitcapture.core.errors import CompressionBudgetExceeded, EncoderFailed, MediaInvalid
from visitcapture.core.models import CompressionResult

if TYPE_CHECKING:
    from visitcapture.core.models import CapturedPhoto
    from visitcapture.imaging.base import ImageEncoder, VideoEncoder

log = structlog.get_logger()

_QUALITY_PRECISION = 4


@dataclass(frozen=True)
class CompressionPolicy:
    initial_quality: float = 0.7
    quality_step: float = 0.15
    min_quality: float = 0.2
    max_attempts: int = 5
    target_width: int = 480
    fmt: str = "JPEG"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if not 0.0 < self.initial_quality <= 1.0:
            raise ValueError(f"initial_quality {self.initial_quality} must be in (0, 1]")
        if not 0.0 <= self.min_quality <= self.initial_quality:
            raise ValueError(f"min_quality {self.min_quality} must be in [0, initial_quality]")
        if self.quality_step <= 0.0:
            raise ValueError(f"quality_step must be positive, got {self.quality_step}")
        if self.target_width < 1:
            raise ValueError(f"target_width must be positive, got {self.target_width}")


@dataclass(frozen=True)
class VideoPolicy:
    budget_bytes: int = 5 * 1024 * 1024
    raw_ceiling_bytes: int = 15 * 1024 * 1024
    min_bytes: int = 1024
    preset: str = "manual"
    quality: str = "low"


class SizeBudgetCompressor:
    """Owns the quality search policy; the codec belongs to the encoder."""

    def __init__(self, policy: CompressionPolicy | None = None,
                 video_policy: VideoPolicy | None = None) -> None:
        self._policy = policy or CompressionPolicy()
        self._video_policy = video_policy or VideoPolicy()

    @property
    def policy(self) -> CompressionPolicy:
        return self._policy

    async def compress(self, photo: CapturedPhoto, budget_bytes: int,
                       encoder: ImageEncoder) -> CompressionResult:
        policy = self._policy
        quality = policy.initial_quality
        attempts = 0
        smallest: tuple[bytes, float] | None = None

        while attempts < policy.max_attempts:
            attempts += 1
            try:
                data = await encoder.encode(photo, policy.target_width, quality, policy.fmt)
            except EncoderFailed:
                raise
            except Exception as exc:
                log.error("photo_encode_failed", quality=quality, attempt=attempts,
                          exc_info=True)
                raise EncoderFailed(f"encoder failed at quality {quality}") from exc

            log.debug("photo_encoded", quality=quality, attempt=attempts,
                      size=len(data), budget=budget_bytes)
            if len(data) <= budget_bytes:
                return CompressionResult(data=data, quality_used=quality, attempts=attempts,
                                         budget_bytes=budget_bytes, ok=True)

            if smallest is None or len(data) < len(smallest[0]):
                smallest = (data, quality)

            next_quality = round(quality - policy.quality_step, _QUALITY_PRECISION)
            if next_quality < policy.min_quality:
                break
            quality = next_quality

        assert smallest is not None
        log.warning("photo_over_budget", attempts=attempts, smallest=len(smallest[0]),
                    budget=budget_bytes)
        return CompressionResult(data=smallest[0], quality_used=smallest[1], attempts=attempts,
                                 budget_bytes=budget_bytes, ok=False)

    async def compress_video(self, raw: bytes, encoder: VideoEncoder) -> CompressionResult:
        """Single-pass video compression with a pre-encode ceiling."""
        policy = self._video_policy
        if len(raw) < policy.min_bytes:
            raise MediaInvalid(f"video is {len(raw)} bytes, recording looks invalid")
        if len(raw) > policy.raw_ceiling_bytes:
            raise CompressionBudgetExceeded(
                len(raw), policy.raw_ceiling_bytes,
                "recorded video is too large, record a shorter video",
            )

        try:
            data = await encoder.compress(raw, policy.preset, policy.quality)
        except Exception as exc:
            log.error("video_encode_failed", raw_size=len(raw), exc_info=True)
            raise EncoderFailed("video encoder failed") from exc

        if len(data) < policy.min_bytes:
            raise MediaInvalid(f"compressed video is {len(data)} bytes, output looks invalid")

        ok = len(data) <= policy.budget_bytes
        log.info("video_compressed", raw_size=len(raw), size=len(data), ok=ok)
        return CompressionResult(data=data, quality_used=None, attempts=1,
                                 budget_bytes=policy.budget_bytes, ok=ok)
