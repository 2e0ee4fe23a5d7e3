"""
Image Storage Module
====================

Provides abstract and concrete implementations for storing uploaded
wine label images.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from vinho.config import StorageConfig, get_default_config


@dataclass
class StoredImage:
    """Location and fingerprint of a stored label image."""

    path: str
    url: str
    content_type: str
    size_bytes: int
    content_hash: str


class ImageStorage(ABC):
    """
    Abstract base class for label image storage.

    Implementations return both a storage path (used for deletion) and
    a URL the AI model can fetch.
    """

    @abstractmethod
    def save_image(self, content: bytes, user_id: str, content_type: str = "image/jpeg") -> StoredImage:
        """
        Save an uploaded image.

        Args:
            content: Raw image bytes
            user_id: Owner of the image
            content_type: MIME type of the image

        Returns:
            StoredImage with storage details
        """
        pass

    @abstractmethod
    def get_image(self, path: str) -> bytes | None:
        """Read an image back, or None if it does not exist."""
        pass

    @abstractmethod
    def delete_image(self, path: str) -> bool:
        """
        Delete an image.

        Returns:
            True if deleted, False if not found
        """
        pass


class LocalImageStorage(ImageStorage):
    """
    Local filesystem storage for label images.

    Directory structure:
        {base_path}/{user_id}/YYYY/MM/DD/{image_id}.{ext}
    """

    # Map MIME types to file extensions
    MIME_EXTENSIONS = {
        "image/jpeg": "jpg",
        "image/jpg": "jpg",
        "image/png": "png",
        "image/webp": "webp",
        "image/heic": "heic",
    }

    def __init__(self, base_path: str | Path, public_base_url: str = "/images") -> None:
        """
        Initialize local file storage.

        Args:
            base_path: Base directory for storing images
            public_base_url: URL prefix under which base_path is served
        """
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _get_extension(self, content_type: str) -> str:
        """Get file extension for a MIME type."""
        return self.MIME_EXTENSIONS.get(content_type.lower(), "bin")

    def _resolve(self, path: str) -> Path:
        full_path = (self.base_path / path).resolve()
        if not full_path.is_relative_to(self.base_path):
            raise ValueError(f"Path escapes storage root: {path}")
        return full_path

    def save_image(self, content: bytes, user_id: str, content_type: str = "image/jpeg") -> StoredImage:
        """Save an image to the local filesystem."""
        created_at = datetime.now(UTC)
        relative = (
            Path(user_id)
            / created_at.strftime("%Y/%m/%d")
            / f"{uuid4()}.{self._get_extension(content_type)}"
        )
        full_path = self._resolve(relative.as_posix())
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(content)

        return StoredImage(
            path=relative.as_posix(),
            url=f"{self.public_base_url}/{relative.as_posix()}",
            content_type=content_type,
            size_bytes=len(content),
            content_hash=hashlib.sha256(content).hexdigest(),
        )

    def get_image(self, path: str) -> bytes | None:
        """Read an image from the local filesystem."""
        full_path = self._resolve(path)
        if not full_path.exists():
            return None
        return full_path.read_bytes()

    def delete_image(self, path: str) -> bool:
        """Delete an image from the local filesystem."""
        full_path = self._resolve(path)
        if not full_path.exists():
            return False
        full_path.unlink()
        return True


def get_default_storage(config: StorageConfig | None = None) -> ImageStorage:
    """
    Get the default image storage instance.

    Args:
        config: Storage settings (defaults to the global pipeline config)

    Returns:
        Configured ImageStorage instance
    """
    if config is None:
        config = get_default_config().storage
    return LocalImageStorage(config.base_path, config.public_base_url)
