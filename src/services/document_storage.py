"""Document storage for expense and payment attachments.

The ledger only needs two things from storage: store a file and get back a
URL, and delete a file by that URL. LocalDocumentStorage keeps files on disk
and hands out file:// URLs.
"""

import logging
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import NamedTuple
from urllib.parse import unquote, urlparse

from src.services.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StoredDocument(NamedTuple):
    """Where a stored file lives and how big it is."""

    file_url: str
    file_size: int


class DocumentStorage(ABC):
    """Store a document, return a URL; delete by URL."""

    @abstractmethod
    def store(self, folder: str, file_name: str, content: bytes) -> StoredDocument:
        """Persist content and return its URL."""

    @abstractmethod
    def delete(self, file_url: str) -> bool:
        """Delete the file behind file_url. Returns False if it was already gone."""

    @abstractmethod
    def owns(self, file_url: str) -> bool:
        """Whether file_url points into this storage."""


class LocalDocumentStorage(DocumentStorage):
    """Filesystem-backed storage rooted at a base directory."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir).resolve()

    def _path_for_url(self, file_url: str) -> Path:
        parsed = urlparse(file_url)
        if parsed.scheme != "file":
            raise ValidationError(f"Not a local document URL: {file_url}", field="file_url")
        path = Path(unquote(parsed.path)).resolve()
        if self.base_dir not in path.parents:
            raise ValidationError(f"Document URL outside storage: {file_url}", field="file_url")
        return path

    def owns(self, file_url: str) -> bool:
        try:
            self._path_for_url(file_url)
        except ValidationError:
            return False
        return True

    def store(self, folder: str, file_name: str, content: bytes) -> StoredDocument:
        if not file_name:
            raise ValidationError("file_name is required", field="name")
        safe_name = _UNSAFE_CHARS.sub("_", Path(file_name).name)
        safe_folder = _UNSAFE_CHARS.sub("_", folder)
        target_dir = self.base_dir / safe_folder
        target = target_dir / f"{uuid.uuid4().hex}_{safe_name}"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            logger.error("Failed to store document %s: %s", target, e)
            raise PersistenceError(f"Failed to store document {file_name}") from e
        logger.info("Stored document %s (%d bytes)", target, len(content))
        return StoredDocument(file_url=target.as_uri(), file_size=len(content))

    def delete(self, file_url: str) -> bool:
        path = self._path_for_url(file_url)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Document already removed: %s", file_url)
            return False
        except OSError as e:
            logger.error("Failed to delete document %s: %s", file_url, e)
            raise PersistenceError(f"Failed to delete document {file_url}") from e
        return True


__all__ = ["DocumentStorage", "LocalDocumentStorage", "StoredDocument"]
