"""
Object Storage

Stores uploaded project documents and land images and hands back an
opaque URL. The workflow only ever keeps that string.
"""
from pathlib import Path
from typing import Optional
from uuid import uuid4
import logging
import re

from ..config import UPLOAD_DIR, UPLOAD_BASE_URL
from .errors import DependencyFailure

logger = logging.getLogger(__name__)


class ObjectStorage:
    """Interface for the storage collaborator."""

    def save(self, filename: str, content: bytes) -> str:
        raise NotImplementedError

    def delete(self, url: str) -> None:
        raise NotImplementedError


class LocalObjectStorage(ObjectStorage):
    """Filesystem-backed storage serving files under `base_url`."""

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = Path(root or UPLOAD_DIR)
        self.base_url = (base_url or UPLOAD_BASE_URL).rstrip("/")

    def save(self, filename: str, content: bytes) -> str:
        safe_name = re.sub(r"[^A-Za-z0-9._-]", "_", Path(filename or "upload").name)
        key = f"{uuid4().hex}-{safe_name}"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            (self.root / key).write_bytes(content)
        except OSError as e:
            logger.exception(f"Failed to store upload {filename}")
            raise DependencyFailure("File storage is unavailable") from e
        return f"{self.base_url}/{key}"

    def delete(self, url: str) -> None:
        key = url.rsplit("/", 1)[-1]
        try:
            (self.root / key).unlink(missing_ok=True)
        except OSError:
            logger.exception(f"Failed to remove stored file {url}")
