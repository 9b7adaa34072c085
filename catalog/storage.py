"""
Local file storage for book cover images.
"""

import re
import time
import uuid
from pathlib import Path
from typing import Dict, Optional

import structlog
from anyio import to_thread

from .errors import InvalidInputError, StorageFailure
from .models import ImageUpload

logger = structlog.get_logger(__name__)

MIME_TYPES: Dict[str, str] = {
    "image/jpg": "jpg",
    "image/jpeg": "jpg",
    "image/png": "png",
}

IMAGES_ROUTE = "/images/"


def write_file(filepath: Path, data: bytes) -> None:
    with open(filepath, 'wb') as f:
        f.write(data)


def remove_file(filepath: Path) -> None:
    filepath.unlink(missing_ok=True)


class LocalImageStorage:
    """Stores cover images on disk and hands out public URLs for them."""

    def __init__(self, images_dir: str, public_base_url: str):
        """
        Initialize image storage.

        Args:
            images_dir: Directory the images are written to
            public_base_url: Base URL the API is reachable at, e.g. http://localhost:8000
        """
        self.images_dir = Path(images_dir)
        self.images_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self.logger = logger.bind(component="image_storage")

    @staticmethod
    def extension_for(content_type: Optional[str]) -> str:
        """
        Map an upload's MIME type to a file extension.

        Raises:
            InvalidInputError: for anything but JPEG and PNG
        """
        extension = MIME_TYPES.get((content_type or "").lower())
        if not extension:
            raise InvalidInputError(
                "Unsupported image format, use JPEG or PNG",
                reason="unsupported_image_type",
            )
        return extension

    def build_filename(self, upload: ImageUpload) -> str:
        extension = self.extension_for(upload.content_type)
        stem = Path(upload.filename or "image").stem
        stem = re.sub(r"\s+", "_", stem) or "image"
        return f"{stem}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.{extension}"

    def url_for(self, filename: str) -> str:
        return f"{self.public_base_url}{IMAGES_ROUTE}{filename}"

    def path_for(self, url: str) -> Optional[Path]:
        """Local path of an image URL, or None if the URL is not ours."""
        if IMAGES_ROUTE not in url:
            return None
        filename = url.split(IMAGES_ROUTE, 1)[1]
        if not filename or "/" in filename or filename in (".", ".."):
            return None
        return self.images_dir / filename

    async def store(self, upload: ImageUpload) -> str:
        """
        Write an image to disk.

        Returns:
            Public URL of the stored image

        Raises:
            InvalidInputError: if the image type is not supported
            StorageFailure: if the file cannot be written
        """
        filename = self.build_filename(upload)
        filepath = self.images_dir / filename

        # Blocking file I/O stays off the event loop
        try:
            await to_thread.run_sync(write_file, filepath, upload.data)
        except OSError as e:
            self.logger.error("Failed to store image", filename=filename, error=str(e))
            raise StorageFailure("Failed to store image")

        self.logger.info("Stored image", filename=filename, size=len(upload.data))
        return self.url_for(filename)

    async def delete(self, url: str) -> None:
        """
        Remove a stored image. Unknown URLs and missing files are ignored.

        Raises:
            StorageFailure: if the file exists but cannot be removed
        """
        filepath = self.path_for(url)
        if filepath is None:
            self.logger.warning("Ignoring image URL outside storage", url=url)
            return

        try:
            await to_thread.run_sync(remove_file, filepath)
        except OSError as e:
            self.logger.error("Failed to delete image", filepath=str(filepath), error=str(e))
            raise StorageFailure("Failed to delete image")

        self.logger.info("Deleted image", filepath=str(filepath))
