"""
Size-targeted compression: predict a quality, encode, and refine.

The search is a bounded monotone descent rather than a binary search. It
issues at most ``1 + max_refinement_attempts`` encodes and quality strictly
decreases between them, so it always terminates.
"""
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from media_service.utils.events import CompressionObserver
from media_service.utils.image_processing import EncodedImage, encode_image
from media_service.utils.quality_predictor import PredictionInput, predict_quality, round_half_up, select_tier
from media_service.utils.validation import ImageAsset


Encoder = Callable[[bytes, int], EncodedImage]

FIRST_REFINEMENT_CAP = 95
LATE_REFINEMENT_DISCOUNT = 0.8
FORCED_STEP = 5


@dataclass(frozen=True)
class CompressionTarget:
    target_size_bytes: int = 100 * 1024
    max_refinement_attempts: int = 2
    quality_floor: int = 1
    quality_ceiling: int = 100

    def __post_init__(self):
        if not 1 <= self.quality_floor <= self.quality_ceiling <= 100:
            raise ValueError(
                f"Quality bounds must satisfy 1 <= floor <= ceiling <= 100, "
                f"got floor={self.quality_floor}, ceiling={self.quality_ceiling}"
            )
        if self.target_size_bytes <= 0:
            raise ValueError(f"Target size must be positive, got {self.target_size_bytes}")
        if self.max_refinement_attempts < 0:
            raise ValueError(f"Refinement attempts cannot be negative, got {self.max_refinement_attempts}")

    @property
    def max_encode_calls(self) -> int:
        return 1 + self.max_refinement_attempts


@dataclass
class CompressionResult:
    final_buffer: bytes
    final_size: int
    final_quality: int
    attempts_used: int
    compression_applied: bool
    achieved_target: bool
    original_size: int
    qualities_tried: List[int] = field(default_factory=list)

    @property
    def compression_ratio(self) -> int:
        """Percentage reduction from the original size, rounded. 0 when the output grew."""
        return max(0, round_half_up((1 - self.final_size / self.original_size) * 100))


def refine_quality(quality: int, measured_size: int, target: CompressionTarget, refinement: int) -> int:
    """
    Compute the next quality to try after an encode overshot the target.

    Args:
        quality: Quality of the last encode
        measured_size: Byte size that encode produced
        target: Compression target in force
        refinement: 1 for the first refinement, 2 for the second, ...

    Returns:
        Next quality, strictly below ``quality`` unless already at the floor
    """
    adjustment = target.target_size_bytes / measured_size

    if refinement == 1:
        # Square-root dampening keeps the first correction from overshooting
        new_quality = round_half_up(quality * math.sqrt(adjustment))
        new_quality = max(target.quality_floor, min(FIRST_REFINEMENT_CAP, new_quality))
    else:
        new_quality = max(target.quality_floor, round_half_up(quality * adjustment * LATE_REFINEMENT_DISCOUNT))

    if new_quality >= quality:
        new_quality = max(target.quality_floor, quality - FORCED_STEP)

    return new_quality


def compress_to_target(
    asset: ImageAsset,
    target: CompressionTarget = CompressionTarget(),
    encoder: Optional[Encoder] = None,
    observer: Optional[CompressionObserver] = None,
) -> CompressionResult:
    """
    Encode an image so that it fits the target size, within the attempt budget.

    Images already at or under the target are only normalized to the output
    format at the ceiling quality. Missing the target is not an error: the
    result reports ``achieved_target=False``.

    Args:
        asset: Validated image to compress
        target: Size target and quality bounds
        encoder: Callable performing one encode at a given quality, WebP by default
        observer: Receives prediction/attempt/result events

    Returns:
        CompressionResult for the last encode performed
    """
    encoder = encoder or encode_image
    observer = observer or CompressionObserver()
    original_size = asset.original_size

    if original_size <= target.target_size_bytes:
        encoded = encoder(asset.data, target.quality_ceiling)
        observer.emit('normalized', filename=asset.filename, quality=target.quality_ceiling, size=encoded.size)
        return CompressionResult(
            final_buffer=encoded.data,
            final_size=encoded.size,
            final_quality=target.quality_ceiling,
            attempts_used=1,
            compression_applied=False,
            achieved_target=encoded.size <= target.target_size_bytes,
            original_size=original_size,
            qualities_tried=[target.quality_ceiling],
        )

    quality = predict_quality(
        original_size, asset.width, asset.height, target.target_size_bytes,
        floor=target.quality_floor, ceiling=target.quality_ceiling,
    )
    tier = select_tier(PredictionInput(original_size, asset.width, asset.height, target.target_size_bytes))
    observer.emit('prediction', filename=asset.filename, quality=quality, tier=tier.name)

    attempts = 0
    qualities_tried = []
    while True:
        encoded = encoder(asset.data, quality)
        attempts += 1
        qualities_tried.append(quality)
        observer.emit('attempt', filename=asset.filename, attempt=attempts, quality=quality, size=encoded.size)

        if (encoded.size <= target.target_size_bytes
                or quality == target.quality_floor
                or attempts >= target.max_encode_calls):
            break

        new_quality = refine_quality(quality, encoded.size, target, refinement=attempts)
        if new_quality == quality:
            break
        quality = new_quality

    result = CompressionResult(
        final_buffer=encoded.data,
        final_size=encoded.size,
        final_quality=quality,
        attempts_used=attempts,
        compression_applied=True,
        achieved_target=encoded.size <= target.target_size_bytes,
        original_size=original_size,
        qualities_tried=qualities_tried,
    )

    if result.achieved_target:
        observer.emit('compressed', filename=asset.filename, quality=quality, size=encoded.size, attempt=attempts)
    else:
        observer.emit('target_missed', filename=asset.filename, quality=quality, size=encoded.size, attempt=attempts)

    return result
