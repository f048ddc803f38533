"""
Image processing utilities: single-pass lossy WebP re-encoding.

Dimensions are never changed. Every upload, whatever its input format,
leaves here as WebP without EXIF, ICC or XMP metadata.
"""
import io
from dataclasses import dataclass

from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from media_service.utils.errors import EncodeError
from media_service.utils.validation import ALPHA_MODES


OUTPUT_FORMAT = 'webp'
OUTPUT_MIMETYPE = 'image/webp'

# Below this quality the pre-filter gets stronger
STRONG_FILTER_BELOW = 50
SMART_SUBSAMPLE_FROM = 30
MAX_METHOD = 6


@dataclass(frozen=True)
class EncodeSettings:
    quality: int
    alpha_quality: int
    method: int
    smart_subsample: bool
    saturation: float
    blur_radius: float


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    quality: int

    @property
    def size(self) -> int:
        return len(self.data)


def encode_settings(quality: int) -> EncodeSettings:
    """
    Codec and pre-filter settings for a requested quality.

    Args:
        quality: Lossy quality in [1, 100]

    Returns:
        EncodeSettings for that quality
    """
    if not 1 <= quality <= 100:
        raise ValueError(f"Quality must be between 1 and 100, got {quality}")

    strong = quality < STRONG_FILTER_BELOW
    return EncodeSettings(
        quality=quality,
        alpha_quality=max(10, quality - 10),
        method=MAX_METHOD,
        # Pillow's WebP binding has no sharp-YUV switch; kept so callers can report it
        smart_subsample=quality >= SMART_SUBSAMPLE_FROM,
        saturation=0.95 if strong else 0.98,
        blur_radius=0.3 if strong else 0.0,
    )


def _prefilter(img: Image.Image, settings: EncodeSettings) -> Image.Image:
    """Normalize contrast, pull saturation down and optionally blur the colour bands."""
    alpha = None
    if img.mode in ALPHA_MODES or 'transparency' in img.info:
        rgba = img.convert('RGBA')
        alpha = rgba.getchannel('A')
        rgb = rgba.convert('RGB')
    else:
        rgb = img.convert('RGB')

    # Clip the darkest and brightest 1% before stretching
    rgb = ImageOps.autocontrast(rgb, cutoff=1)
    rgb = ImageEnhance.Color(rgb).enhance(settings.saturation)
    if settings.blur_radius:
        rgb = rgb.filter(ImageFilter.GaussianBlur(radius=settings.blur_radius))

    if alpha is not None:
        rgb.putalpha(alpha)
    return rgb


def encode_image(image_bytes: bytes, quality: int) -> EncodedImage:
    """
    Re-encodes an image as lossy WebP at the given quality.

    Args:
        image_bytes: Original image bytes (any format Pillow can decode)
        quality: Lossy quality in [1, 100]

    Returns:
        EncodedImage with the WebP bytes

    Raises:
        EncodeError: If the image cannot be decoded or encoded
    """
    settings = encode_settings(quality)

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img.load()
            prepared = _prefilter(img, settings)

        # Metadata is only written when passed explicitly, so none is kept
        output = io.BytesIO()
        prepared.save(
            output,
            format='WEBP',
            quality=settings.quality,
            alpha_quality=settings.alpha_quality,
            method=settings.method,
            lossless=False,
        )
    except Exception as e:
        raise EncodeError(f"Image processing failed: {str(e)}") from e

    return EncodedImage(data=output.getvalue(), quality=quality)
