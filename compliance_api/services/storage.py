# compliance_api/services/storage.py
"""
Local-disk blob store for uploaded compliance documents.

Keys are relative POSIX paths under the storage root:

  submissions/<project_id>/<subcontractor_id>/<MM_YYYY>/<uuid>_<name>
  annual/<subcontractor_id>/<year>/<uuid>_<name>

The API serves a key back at /api/v1/files/<key>.
"""
from __future__ import annotations

import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

log = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_EXTENSIONS = (".pdf", ".png", ".jpeg", ".jpg", ".docx")
FILES_URL_PREFIX = "/api/v1/files/"


class FileRejected(Exception):
    """Upload failed validation (size or type)."""


def _stream_size(file_storage) -> int:
    stream = file_storage.stream
    pos = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(pos)
    return size


class LocalFileStore:

    def __init__(self, root: str, max_bytes: int = DEFAULT_MAX_BYTES, allowed_extensions=DEFAULT_EXTENSIONS):
        self.root = os.path.abspath(root)
        self.max_bytes = max_bytes
        self.allowed_extensions = tuple(e.lower() for e in allowed_extensions)

    # ---- validation ----
    def validate(self, filename: str, size: int) -> None:
        if size > self.max_bytes:
            limit_mb = self.max_bytes / (1024 * 1024)
            raise FileRejected(f"File size must be less than {limit_mb:g}MB")
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in self.allowed_extensions:
            raise FileRejected(
                f"File type not allowed. Accepted types: {', '.join(self.allowed_extensions)}"
            )

    # ---- keys ----
    @staticmethod
    def _leaf(filename: str) -> str:
        name = secure_filename(filename or "") or "upload"
        return f"{uuid.uuid4().hex}_{name}"

    def submission_key(self, project_id: int, subcontractor_id: int, period, filename: str) -> str:
        return f"submissions/{project_id}/{subcontractor_id}/{period.key}/{self._leaf(filename)}"

    def annual_key(self, subcontractor_id: int, year: int, filename: str) -> str:
        return f"annual/{subcontractor_id}/{year}/{self._leaf(filename)}"

    @staticmethod
    def url_for(key: str) -> str:
        return FILES_URL_PREFIX + key

    # ---- io ----
    def open_path(self, key: str) -> str:
        """Absolute path for ``key``; refuses anything resolving outside the root."""
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([self.root, path]) != self.root or path == self.root:
            raise FileRejected("Invalid storage key")
        return path

    def save(self, file_storage, key: str) -> int:
        """Validate and write an uploaded werkzeug FileStorage. Returns bytes written."""
        size = _stream_size(file_storage)
        self.validate(file_storage.filename, size)

        path = self.open_path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_storage.save(path)
        log.info("stored %s (%d bytes)", key, size)
        return size

    def exists(self, key: str) -> bool:
        return os.path.isfile(self.open_path(key))

    def delete(self, key: str) -> None:
        path = self.open_path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            log.warning("delete of missing blob %s", key)


def get_store() -> LocalFileStore:
    cfg = current_app.config
    return LocalFileStore(
        root=cfg["UPLOAD_STORAGE_ROOT"],
        max_bytes=cfg.get("MAX_UPLOAD_BYTES", DEFAULT_MAX_BYTES),
        allowed_extensions=cfg.get("ALLOWED_UPLOAD_EXTENSIONS", DEFAULT_EXTENSIONS),
    )
