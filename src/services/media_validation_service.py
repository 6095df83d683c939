"""
Media validation service.
Checks file type and size against per-platform limits before a session opens.
"""
import os
from typing import Dict, Optional
from src.core import config
from src.core.exceptions import FileTooLargeException, ValidationException
from src.models.upload_session import FileMetadata, Platform

GB = 1024 * 1024 * 1024

VIDEO_EXTENSIONS = {'.mp4', '.mov', '.avi', '.mkv', '.webm'}
IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png'}

MIME_TYPES = {
    '.mp4': 'video/mp4',
    '.mov': 'video/quicktime',
    '.avi': 'video/x-msvideo',
    '.mkv': 'video/x-matroska',
    '.webm': 'video/webm',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png'
}


class PlatformLimits:
    """Allowed extensions and maximum size for one platform."""

    def __init__(self, allowed_extensions: set, max_size_bytes: int):
        self.allowed_extensions = allowed_extensions
        self.max_size_bytes = max_size_bytes


PLATFORM_LIMITS: Dict[Platform, PlatformLimits] = {
    Platform.YOUTUBE: PlatformLimits(VIDEO_EXTENSIONS, 256 * GB),
    Platform.X: PlatformLimits({'.mp4', '.mov'} | IMAGE_EXTENSIONS, GB // 2),
    Platform.TIKTOK: PlatformLimits({'.mp4', '.mov', '.webm'}, 4 * GB),
    Platform.INSTAGRAM: PlatformLimits({'.mp4', '.mov'} | IMAGE_EXTENSIONS, GB),
}


class MediaValidationService:
    """Service for upload pre-flight checks."""

    def max_size_for(self, platform: Platform) -> int:
        """Effective limit: the platform's own limit capped by configuration."""
        return min(PLATFORM_LIMITS[Platform(platform)].max_size_bytes, config.settings.max_file_size_bytes)

    def validate(self, platform: Platform, file_metadata: FileMetadata) -> None:
        """
        Validate a file against the platform's limits.

        Args:
            platform: Target platform
            file_metadata: Declared name and size of the source file

        Raises:
            ValidationException: If the name, type or size is not acceptable
            FileTooLargeException: If the file exceeds the size limit
        """
        limits = PLATFORM_LIMITS[Platform(platform)]

        if not file_metadata.file_name or not file_metadata.file_name.strip():
            raise ValidationException("file_name cannot be empty")

        extension = self.extension_of(file_metadata.file_name)
        if extension not in limits.allowed_extensions:
            raise ValidationException(
                f"Unsupported file format for {Platform(platform).value}. "
                f"Allowed: {', '.join(sorted(limits.allowed_extensions))}"
            )

        if file_metadata.total_size <= 0:
            raise ValidationException(f"total_size must be positive, got: {file_metadata.total_size}")

        max_size = self.max_size_for(platform)
        if file_metadata.total_size > max_size:
            raise FileTooLargeException(
                f"File size ({file_metadata.total_size / (1024 * 1024):.2f}MB) exceeds maximum allowed size "
                f"of {max_size / (1024 * 1024):.0f}MB for {Platform(platform).value}"
            )

    def mime_type_for(self, file_name: str) -> Optional[str]:
        return MIME_TYPES.get(self.extension_of(file_name))

    @staticmethod
    def extension_of(file_name: str) -> str:
        return os.path.splitext(file_name)[1].lower()
