"""
Exception types raised by the image compression engine.
"""
from typing import List, Optional


class ImageProcessingError(Exception):
    """Base error for the image compression engine."""


class ImageValidationError(ImageProcessingError):
    """An upload was rejected before any encoding took place."""

    def __init__(self, message: str, filename: Optional[str] = None, position: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.filename = filename
        self.position = position


class ImageTooLargeError(ImageValidationError):
    """A file or batch exceeds the configured byte or count limits."""


class InvalidImageError(ImageValidationError):
    """Empty, corrupt or unidentifiable image data."""


class EncodeError(ImageProcessingError):
    """The codec failed while re-encoding an image."""


class PersistenceError(ImageProcessingError):
    """The persistence sink failed to store or delete a file."""


class BatchProcessingError(ImageProcessingError):
    """
    A batch was aborted while processing one of its files.

    Files stored before the failure are listed in ``persisted`` so the
    caller can reconcile them (see ``BatchResult.rollback``).
    """

    def __init__(self, cause: Exception, filename: str, position: int, persisted: Optional[List[str]] = None):
        super().__init__(f"Failed to process image {position} ({filename}): {cause}")
        self.cause = cause
        self.filename = filename
        self.position = position
        self.persisted = list(persisted or [])


class UploadCancelledError(ImageProcessingError):
    """The batch was cancelled by the caller before it completed."""
