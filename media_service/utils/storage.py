"""
Persistence sinks for encoded images.
"""
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from media_service.utils.errors import PersistenceError
from media_service.utils.image_processing import OUTPUT_FORMAT


@dataclass(frozen=True)
class StoredImage:
    url: str
    public_id: str


class ImageSink(Protocol):
    """Where encoded images are committed. The engine only needs these two calls."""

    def store(self, data: bytes, suggested_name: str) -> StoredImage:
        ...

    def delete(self, public_id: str) -> None:
        ...


def safe_stem(filename: str) -> str:
    """Filename stem with whitespace as underscores and anything else unsafe dropped."""
    stem = Path(filename or '').name.split('.')[0]
    stem = re.sub(r'\s+', '_', stem)
    stem = re.sub(r'[^a-zA-Z0-9_-]', '', stem)
    return stem or 'image'


class LocalImageStorage:
    """Stores images under a local directory served at ``<base_url>/uploads``."""

    def __init__(self, upload_dir: str, base_url: str):
        self.upload_dir = Path(upload_dir)
        self.base_url = base_url.rstrip('/')

    def _path_for(self, public_id: str) -> Path:
        if not public_id or public_id in ('.', '..') or Path(public_id).name != public_id:
            raise PersistenceError(f"Invalid image id: {public_id}")
        return self.upload_dir / public_id

    def store(self, data: bytes, suggested_name: str) -> StoredImage:
        timestamp = int(time.time() * 1000)
        token = uuid.uuid4().hex[:8]
        public_id = f"property_{timestamp}_{token}_{safe_stem(suggested_name)}.{OUTPUT_FORMAT}"

        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            self._path_for(public_id).write_bytes(data)
        except OSError as e:
            raise PersistenceError(f"Failed to store {suggested_name}: {str(e)}") from e

        return StoredImage(url=f"{self.base_url}/uploads/{public_id}", public_id=public_id)

    def delete(self, public_id: str) -> None:
        path = self._path_for(public_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise PersistenceError(f"Failed to delete {public_id}: {str(e)}") from e

    def exists(self, public_id: str) -> bool:
        return self._path_for(public_id).exists()
