"""
Configuration loaded from environment variables (and a local .env file).
"""
import os
from dotenv import load_dotenv

from media_service.utils.compression import CompressionTarget
from media_service.utils.validation import UploadLimits

# Load environment variables
load_dotenv()


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in {'1', 'true', 'yes', 'y', 'on'}


class Config:
    """Configuration class to load environment variables."""

    API_KEY = os.getenv('API_KEY')
    FLASK_ENV = os.getenv('FLASK_ENV', 'production')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    UPLOAD_DIR = os.getenv('UPLOAD_DIR', 'uploads')
    BASE_URL = os.getenv('BASE_URL', 'http://localhost:8000')

    MAX_FILE_SIZE = int(os.getenv('MAX_FILE_SIZE', 11 * 1024 * 1024))  # 11MB default
    MAX_FILES_PER_BATCH = int(os.getenv('MAX_FILES_PER_BATCH', 10))
    MIN_IMAGE_WIDTH = int(os.getenv('MIN_IMAGE_WIDTH', 100))
    MIN_IMAGE_HEIGHT = int(os.getenv('MIN_IMAGE_HEIGHT', 100))
    ALLOWED_IMAGE_FORMATS = tuple(
        f.strip().lower() for f in os.getenv('ALLOWED_IMAGE_FORMATS', 'jpeg,png,webp').split(',') if f.strip()
    )

    TARGET_SIZE_BYTES = int(os.getenv('TARGET_SIZE_BYTES', 100 * 1024))  # 100KB default
    MAX_REFINEMENT_ATTEMPTS = int(os.getenv('MAX_REFINEMENT_ATTEMPTS', 2))
    QUALITY_FLOOR = int(os.getenv('QUALITY_FLOOR', 1))
    QUALITY_CEILING = int(os.getenv('QUALITY_CEILING', 100))
    ROLLBACK_ON_FAILURE = _env_flag('ROLLBACK_ON_FAILURE')

    # Whole multipart body: every file at its limit plus room for form fields
    MAX_CONTENT_LENGTH = MAX_FILE_SIZE * MAX_FILES_PER_BATCH + 1024 * 1024


def upload_limits(config) -> UploadLimits:
    return UploadLimits(
        max_file_size_bytes=config['MAX_FILE_SIZE'],
        max_files_per_batch=config['MAX_FILES_PER_BATCH'],
        min_width=config['MIN_IMAGE_WIDTH'],
        min_height=config['MIN_IMAGE_HEIGHT'],
        allowed_formats=tuple(config['ALLOWED_IMAGE_FORMATS']),
    )


def compression_target(config) -> CompressionTarget:
    return CompressionTarget(
        target_size_bytes=config['TARGET_SIZE_BYTES'],
        max_refinement_attempts=config['MAX_REFINEMENT_ATTEMPTS'],
        quality_floor=config['QUALITY_FLOOR'],
        quality_ceiling=config['QUALITY_CEILING'],
    )
