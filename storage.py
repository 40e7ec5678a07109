import os
import uuid
from typing import Optional

from constants import (
    ALLOWED_IMAGE_TYPES,
    ALLOWED_VIDEO_TYPES,
    MAX_IMAGE_BYTES,
    MAX_VIDEO_BYTES,
    MEDIA_BASE_URL,
    MEDIA_BUCKET,
    MEDIA_EXTENSIONS,
    MEDIA_ROOT,
)
from logging_config import get_logger

logger = get_logger(__name__)


class MediaRejected(ValueError):
    """Raised when a file does not satisfy the bucket restrictions."""


def media_kind(mime_type: str) -> Optional[str]:
    if mime_type in ALLOWED_IMAGE_TYPES:
        return "image"
    if mime_type in ALLOWED_VIDEO_TYPES:
        return "video"
    return None


def max_media_bytes(kind: str) -> int:
    return MAX_VIDEO_BYTES if kind == "video" else MAX_IMAGE_BYTES


def validate_media(filename: str, mime_type: str, size: Optional[int]) -> str:
    """Check a file against the bucket rules and return its kind.

    A ``size`` of None checks the type only.
    """
    mime_type = mime_type or ""
    if mime_type.startswith("image/") and mime_type not in ALLOWED_IMAGE_TYPES:
        raise MediaRejected(f"Unsupported image type: {mime_type}")
    if mime_type.startswith("video/") and mime_type not in ALLOWED_VIDEO_TYPES:
        raise MediaRejected(f"Unsupported video type: {mime_type}")
    kind = media_kind(mime_type)
    if kind is None:
        raise MediaRejected(f"Unsupported file: {filename}")
    if size is None:
        return kind
    if size <= 0:
        raise MediaRejected(f"Empty file: {filename}")
    if kind == "image" and size > MAX_IMAGE_BYTES:
        raise MediaRejected(f"Image too large: {filename} > 8MB")
    if kind == "video" and size > MAX_VIDEO_BYTES:
        raise MediaRejected(f"Video too large: {filename} > 50MB")
    return kind


class MediaStorage:
    """Public bucket of uploaded media, laid out as ``{room_id}/{uuid}.{ext}``."""

    def __init__(self, root: str = MEDIA_ROOT, bucket: str = MEDIA_BUCKET, base_url: str = MEDIA_BASE_URL):
        self.root = root
        self.bucket = bucket
        self.base_url = base_url.rstrip("/")

    @property
    def bucket_path(self) -> str:
        return os.path.join(self.root, self.bucket)

    def ensure_bucket(self):
        os.makedirs(self.bucket_path, exist_ok=True)
        return self.bucket_path

    def object_path(self, room_id, mime_type: str) -> str:
        ext = MEDIA_EXTENSIONS.get(mime_type)
        if ext is None:
            raise MediaRejected(f"Unsupported file type: {mime_type}")
        return f"{room_id}/{uuid.uuid4().hex}.{ext}"

    def full_path(self, path: str) -> str:
        return os.path.join(self.bucket_path, *path.split("/"))

    def upload(self, path: str, data: bytes) -> str:
        """Write an object; existing objects are never overwritten."""
        full_path = self.full_path(path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "xb") as f:
            f.write(data)
        logger.debug(f"Stored {len(data)} bytes at {self.bucket}/{path}")
        return path

    def delete(self, path: str) -> bool:
        try:
            os.remove(self.full_path(path))
        except FileNotFoundError:
            return False
        logger.debug(f"Removed {self.bucket}/{path}")
        return True

    def get_public_url(self, path: str, base_url: Optional[str] = None) -> str:
        base = (base_url or self.base_url).rstrip("/")
        return f"{base}/{self.bucket}/{path}"

    def delete_room(self, room_id):
        """Remove every object stored for a room."""
        room_dir = os.path.join(self.bucket_path, str(room_id))
        if not os.path.isdir(room_dir):
            return 0
        removed = 0
        for name in os.listdir(room_dir):
            os.remove(os.path.join(room_dir, name))
            removed += 1
        os.rmdir(room_dir)
        logger.info(f"Removed {removed} media objects for room {room_id}")
        return removed


media_storage = MediaStorage()
