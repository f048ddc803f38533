"""
Initial quality guess for the size-targeted WebP search.

Large or high-resolution images shrink more per quality point than small
ones, so the straight ratio-to-quality mapping is discounted per tier.
Tiers are checked in order and the first match wins.
"""
import math
from dataclasses import dataclass
from typing import Callable, Tuple


MEGAPIXEL = 1_000_000
LARGE_FILE_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class PredictionInput:
    original_size: int
    width: int
    height: int
    target_size_bytes: int

    @property
    def compression_ratio(self) -> float:
        return self.target_size_bytes / self.original_size

    @property
    def megapixels(self) -> float:
        return self.width * self.height / MEGAPIXEL


@dataclass(frozen=True)
class QualityTier:
    name: str
    matches: Callable[[PredictionInput], bool]
    multiplier: float


# A multiplier of 0 collapses to the quality floor
QUALITY_TIERS: Tuple[QualityTier, ...] = (
    QualityTier('extreme_ratio', lambda p: p.compression_ratio < 0.1, 0.0),
    QualityTier('very_high_resolution', lambda p: p.megapixels > 20, 0.3),
    QualityTier('high_resolution', lambda p: p.megapixels > 10, 0.5),
    QualityTier('large_file', lambda p: p.original_size > LARGE_FILE_BYTES, 0.6),
    QualityTier('standard', lambda p: True, 0.8),
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def select_tier(prediction: PredictionInput) -> QualityTier:
    for tier in QUALITY_TIERS:
        if tier.matches(prediction):
            return tier
    # 'standard' always matches
    raise LookupError("No quality tier matched")


def predict_quality(
    original_size: int,
    width: int,
    height: int,
    target_size_bytes: int,
    floor: int = 1,
    ceiling: int = 100,
) -> int:
    """
    Predict the first quality to try for a size target.

    Args:
        original_size: Size of the uploaded file in bytes
        width: Image width in pixels
        height: Image height in pixels
        target_size_bytes: Byte budget for the encoded output
        floor: Lowest quality that may be returned
        ceiling: Highest quality that may be returned

    Returns:
        Integer quality in [floor, ceiling]
    """
    if original_size <= 0:
        raise ValueError("original_size must be positive")

    prediction = PredictionInput(original_size, width, height, target_size_bytes)
    tier = select_tier(prediction)
    quality = round_half_up(prediction.compression_ratio * 100 * tier.multiplier)
    return max(floor, min(ceiling, quality))
