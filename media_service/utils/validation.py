"""
Input validation utilities for uploaded images.

Everything here runs before the encoder is touched: a file that fails any
check is rejected without producing output.
"""
import io
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image

from media_service.utils.errors import ImageTooLargeError, ImageValidationError, InvalidImageError


# Pillow reports multi-picture JPEGs (most phone cameras) as MPO
FORMAT_ALIASES = {
    'jpg': 'jpeg',
    'mpo': 'jpeg',
}

ALPHA_MODES = ('RGBA', 'LA', 'PA', 'RGBa', 'La')


@dataclass(frozen=True)
class UploadLimits:
    """Boundary limits applied to every upload batch."""

    max_file_size_bytes: int = 11 * 1024 * 1024
    max_files_per_batch: int = 10
    min_width: int = 100
    min_height: int = 100
    allowed_formats: Tuple[str, ...] = ('jpeg', 'png', 'webp')


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    format: str
    has_alpha: bool
    channels: int


@dataclass(frozen=True)
class ImageAsset:
    """A validated upload. Owned by the task processing it."""

    data: bytes
    filename: str
    mimetype: str
    width: int
    height: int
    format: str

    @property
    def original_size(self) -> int:
        return len(self.data)


def normalize_format(name: Optional[str]) -> str:
    name = (name or '').lower()
    return FORMAT_ALIASES.get(name, name)


def get_image_metadata(data: bytes) -> ImageMetadata:
    """
    Read dimensions, format and channel layout from raw image bytes.

    Args:
        data: Raw image bytes

    Returns:
        ImageMetadata for the image

    Raises:
        InvalidImageError: If the buffer is empty or cannot be decoded
    """
    if not data:
        raise InvalidImageError("Empty or invalid image buffer")

    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            mode = img.mode
            has_alpha = mode in ALPHA_MODES or 'transparency' in img.info
            return ImageMetadata(
                width=width,
                height=height,
                format=normalize_format(img.format),
                has_alpha=has_alpha,
                channels=len(img.getbands()),
            )
    except Exception as e:
        raise InvalidImageError(f"Failed to read image metadata: {str(e)}") from e


def validate_image(
    data: bytes,
    filename: str,
    content_type: Optional[str],
    limits: UploadLimits = UploadLimits(),
    position: Optional[int] = None,
) -> ImageAsset:
    """
    Validates one uploaded image against the upload limits.

    Args:
        data: Raw image bytes
        filename: Original filename, used in error messages
        content_type: Declared MIME type of the upload
        limits: Boundary limits to enforce
        position: 1-based position of the file in its batch

    Returns:
        ImageAsset ready for compression

    Raises:
        ImageValidationError: If the upload breaks one of the limits
    """
    if not content_type or not content_type.startswith('image/'):
        raise ImageValidationError(
            f"Only image files are allowed, got {content_type or 'unknown type'}",
            filename, position,
        )

    if not data:
        raise InvalidImageError("Image file is empty", filename, position)

    if len(data) > limits.max_file_size_bytes:
        raise ImageTooLargeError(
            f"Image too large: {len(data)} bytes (max: {limits.max_file_size_bytes} bytes)",
            filename, position,
        )

    try:
        metadata = get_image_metadata(data)
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except InvalidImageError as e:
        raise InvalidImageError(e.message, filename, position) from e
    except Exception as e:
        raise InvalidImageError(f"Invalid image file: {str(e)}", filename, position) from e

    if metadata.format not in limits.allowed_formats:
        raise ImageValidationError(
            f"Unsupported format: {metadata.format} (allowed: {', '.join(limits.allowed_formats)})",
            filename, position,
        )

    if metadata.width < limits.min_width or metadata.height < limits.min_height:
        raise ImageValidationError(
            f"Image too small: {metadata.width}x{metadata.height} "
            f"(min: {limits.min_width}x{limits.min_height})",
            filename, position,
        )

    return ImageAsset(
        data=data,
        filename=filename,
        mimetype=content_type,
        width=metadata.width,
        height=metadata.height,
        format=metadata.format,
    )


def validate_batch_size(count: int, limits: UploadLimits = UploadLimits()) -> None:
    """Reject empty batches and batches with more files than allowed."""
    if count == 0:
        raise ImageValidationError("No image files provided")
    if count > limits.max_files_per_batch:
        raise ImageTooLargeError(
            f"Too many files. Maximum {limits.max_files_per_batch} images allowed per upload"
        )


def sanitize_string(input_str: str, max_length: int = 256) -> str:
    """
    Sanitize string input before it is stored or used in a filename.

    Args:
        input_str: String to sanitize
        max_length: Length limit applied after stripping

    Returns:
        Sanitized string
    """
    if not input_str:
        return ""

    # Remove any null bytes
    sanitized = input_str.replace('\x00', '')

    sanitized = sanitized.strip()

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]

    return sanitized
