"""Attachment storage"""
import re
import uuid
from pathlib import Path
from typing import NamedTuple

from intake.core.config import settings
from intake.core.logger import get_logger

logger = get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class FilePayload(NamedTuple):
    filename: str
    data: bytes
    mime_type: str = "application/octet-stream"


class BlobStore:
    def upload(self, folder_key: str, filename: str, data: bytes, mime_type: str) -> str:
        """Store the bytes and return a URL to them."""
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Writes files under `root/<folder_key>/` and serves them from `base_url`."""

    def __init__(self, root: str = None, base_url: str = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    def upload(self, folder_key, filename, data, mime_type):
        folder = _UNSAFE.sub("_", folder_key) or "misc"
        name = _UNSAFE.sub("_", Path(filename).name) or "file"
        stored_name = f"{uuid.uuid4().hex[:8]}_{name}"

        target_dir = self.root / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / stored_name).write_bytes(data)

        url = f"{self.base_url}/{folder}/{stored_name}"
        logger.info(f"Stored attachment {filename} ({mime_type}, {len(data)} bytes) at {url}")
        return url
