"""
Batch upload processing: validate, compress and store images one at a time.

Files are handled strictly in order, and file N+1 is not touched until file
N has been encoded and stored, so at most one raw/encoded buffer pair is
alive at a time. A failure aborts the batch. Files stored before the
failure are kept unless ``rollback_on_failure`` is set; the raised
BatchProcessingError lists them either way.
"""
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from media_service.utils.compression import CompressionTarget, Encoder, compress_to_target
from media_service.utils.errors import (
    BatchProcessingError,
    EncodeError,
    ImageValidationError,
    PersistenceError,
    UploadCancelledError,
)
from media_service.utils.events import CompressionObserver
from media_service.utils.image_processing import OUTPUT_FORMAT, encode_image
from media_service.utils.storage import ImageSink, StoredImage
from media_service.utils.validation import (
    ImageAsset,
    UploadLimits,
    sanitize_string,
    validate_batch_size,
    validate_image,
)


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content_type: Optional[str]
    data: bytes


@dataclass(frozen=True)
class ImageMetadataEntry:
    """Caller-supplied details for the image at the same batch position."""

    alt_text: Optional[str] = None
    order: Optional[int] = None
    is_main: Optional[bool] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ImageMetadataEntry':
        order = raw.get('order')
        try:
            order = int(order) if order not in (None, '') else None
        except (TypeError, ValueError):
            raise ImageValidationError(f"Invalid image order: {order}")

        alt_text = raw.get('altText')
        return cls(
            alt_text=sanitize_string(str(alt_text)) if alt_text else None,
            order=order,
            is_main=_parse_flag(raw.get('isMain')),
        )


def _parse_flag(value: Any) -> Optional[bool]:
    # Multipart forms send booleans as strings
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes')


def parse_image_metadata(raw: Any) -> List[ImageMetadataEntry]:
    """
    Parse the optional per-image metadata array.

    Args:
        raw: JSON string, list of dicts, or None

    Returns:
        List of ImageMetadataEntry indexed by upload position

    Raises:
        ImageValidationError: If the metadata is not a JSON array of objects
    """
    if raw is None or raw == '':
        return []

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ImageValidationError(f"Invalid imageMetadata JSON: {str(e)}")

    if not isinstance(raw, list) or not all(isinstance(item, dict) for item in raw):
        raise ImageValidationError("imageMetadata must be an array of objects")

    return [ImageMetadataEntry.from_dict(item) for item in raw]


@dataclass
class ProcessedImage:
    url: str
    public_id: str
    original_name: str
    size: int
    original_size: int
    compression_ratio: int
    width: int
    height: int
    quality: int
    compression_applied: bool
    achieved_target: bool
    attempts: int
    alt_text: str
    order: int
    is_main: bool
    format: str = OUTPUT_FORMAT

    @property
    def compressed(self) -> bool:
        return self.compression_applied

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'publicId': self.public_id,
            'originalName': self.original_name,
            'size': self.size,
            'originalSize': self.original_size,
            'compressionRatio': self.compression_ratio,
            'format': self.format,
            'width': self.width,
            'height': self.height,
            'compressed': self.compressed,
            'quality': self.quality,
            'compressionApplied': self.compression_applied,
            'achievedTarget': self.achieved_target,
            'attempts': self.attempts,
            'altText': self.alt_text,
            'order': self.order,
            'isMain': self.is_main,
        }


def assign_main_image(images: Sequence[ProcessedImage]) -> None:
    """Leave exactly one main image: the first flagged one, else the first image."""
    if not images:
        return
    flagged = [index for index, image in enumerate(images) if image.is_main]
    main_index = flagged[0] if flagged else 0
    for index, image in enumerate(images):
        image.is_main = index == main_index


def delete_stored(sink: ImageSink, public_ids: Sequence[str], observer: Optional[CompressionObserver] = None) -> List[str]:
    """
    Best-effort delete of stored images. A failing delete never stops the
    cleanup of the remaining ids.

    Returns:
        The public ids that could not be deleted
    """
    observer = observer or CompressionObserver()
    failed = []
    for public_id in public_ids:
        try:
            sink.delete(public_id)
        except Exception as e:
            observer.emit('batch_failed', public_id=public_id, error=str(e))
            failed.append(public_id)
    observer.emit('rolled_back', deleted=len(public_ids) - len(failed), failed=len(failed))
    return failed


@dataclass
class BatchResult:
    images: List[ProcessedImage]

    @property
    def public_ids(self) -> List[str]:
        return [image.public_id for image in self.images]

    def to_list(self) -> List[Dict[str, Any]]:
        return [image.to_dict() for image in self.images]

    def rollback(self, sink: ImageSink, observer: Optional[CompressionObserver] = None) -> List[str]:
        """Delete every stored image of this batch, e.g. when the owning entity failed to save."""
        return delete_stored(sink, self.public_ids, observer)


class UploadOrchestrator:
    """Runs validation, compression and storage over an ordered batch of uploads."""

    def __init__(
        self,
        sink: ImageSink,
        limits: UploadLimits = UploadLimits(),
        target: CompressionTarget = CompressionTarget(),
        encoder: Optional[Encoder] = None,
        observer: Optional[CompressionObserver] = None,
        rollback_on_failure: bool = False,
    ):
        self.sink = sink
        self.limits = limits
        self.target = target
        self.encoder = encoder or encode_image
        self.observer = observer or CompressionObserver()
        self.rollback_on_failure = rollback_on_failure

    def validate_batch(self, files: Sequence[UploadedFile]) -> List[ImageAsset]:
        """Validate every file before any of them is encoded."""
        validate_batch_size(len(files), self.limits)
        return [
            validate_image(f.data, f.filename, f.content_type, self.limits, position=index + 1)
            for index, f in enumerate(files)
        ]

    def process_batch(
        self,
        files: Sequence[UploadedFile],
        metadata: Any = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> BatchResult:
        """
        Process an upload batch.

        Args:
            files: Uploaded files in upload order
            metadata: Optional per-image metadata (JSON string or list of dicts)
            is_cancelled: Polled before each file; when it returns True the
                files stored so far are deleted and the batch is cancelled

        Returns:
            BatchResult with one ProcessedImage per file, in upload order

        Raises:
            ImageValidationError: If the batch or any file fails validation
            BatchProcessingError: If encoding or storage fails for a file
            UploadCancelledError: If the batch was cancelled
        """
        entries = parse_image_metadata(metadata)
        assets = self.validate_batch(files)

        processed: List[ProcessedImage] = []
        for index, asset in enumerate(assets):
            position = index + 1

            if is_cancelled is not None and is_cancelled():
                self.observer.emit('cancelled', filename=asset.filename, position=position)
                delete_stored(self.sink, [image.public_id for image in processed], self.observer)
                raise UploadCancelledError(f"Upload cancelled before image {position} ({asset.filename})")

            entry = entries[index] if index < len(entries) else ImageMetadataEntry()
            try:
                processed.append(self._process_one(asset, entry, index))
            except (EncodeError, PersistenceError) as e:
                persisted = [image.public_id for image in processed]
                self.observer.emit('batch_failed', filename=asset.filename, position=position, error=str(e))
                if self.rollback_on_failure:
                    persisted = delete_stored(self.sink, persisted, self.observer)
                raise BatchProcessingError(e, asset.filename, position, persisted) from e

        assign_main_image(processed)
        return BatchResult(images=processed)

    def _store(self, data: bytes, filename: str) -> StoredImage:
        try:
            return self.sink.store(data, filename)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to store {filename}: {str(e)}") from e

    def _process_one(self, asset: ImageAsset, entry: ImageMetadataEntry, index: int) -> ProcessedImage:
        result = compress_to_target(asset, self.target, self.encoder, self.observer)
        stored = self._store(result.final_buffer, asset.filename)
        self.observer.emit('stored', filename=asset.filename, position=index + 1, size=result.final_size)

        # Only the summary outlives this call; the encoded buffer is released here
        return ProcessedImage(
            url=stored.url,
            public_id=stored.public_id,
            original_name=asset.filename,
            size=result.final_size,
            original_size=result.original_size,
            compression_ratio=result.compression_ratio,
            width=asset.width,
            height=asset.height,
            quality=result.final_quality,
            compression_applied=result.compression_applied,
            achieved_target=result.achieved_target,
            attempts=result.attempts_used,
            alt_text=entry.alt_text or f"Property image {index + 1}",
            order=entry.order if entry.order is not None else index,
            is_main=bool(entry.is_main),
        )
