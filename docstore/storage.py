"""
Storage for uploaded documents.

Uploaded bytes go into a :class:`ContentStore` directory under a generated
name, and a :class:`MetadataStore` keeps one JSON record per document in a
side-file.  :class:`DocumentStore` ties the two together for the HTTP layer.
"""

from __future__ import annotations

import datetime
import json
import logging
import os
import secrets
import shutil
import tempfile
import threading
from typing import TYPE_CHECKING

from .exceptions import StorageError

if TYPE_CHECKING:  # pragma: no cover
    from typing import TypedDict

    from .multipart import File

    class FileRecord(TypedDict):
        id: str
        originalName: str
        filename: str
        fileType: str
        fileSize: int
        uploadDate: str
        textContent: str
        hasThumbnail: bool


logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".txt": "text/plain",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def guess_mime_type(filename: str) -> str:
    _, ext = os.path.splitext(filename)
    return MIME_TYPES.get(ext.lower(), DEFAULT_MIME_TYPE)


class ContentStore:
    """A flat directory of stored payloads."""

    def __init__(self, directory: str) -> None:
        self.directory = directory
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError:
            logger.exception("Error creating upload directory")
            raise StorageError("Error creating upload directory: %r" % directory)

    def path_for(self, name: str) -> str:
        # Names are generated by us, but they also come back in from the
        # metadata file, so keep them inside the directory.
        if not name or name != os.path.basename(name) or name in (".", ".."):
            raise StorageError("Invalid stored file name: %r" % name)
        return os.path.join(self.directory, name)

    def write(self, name: str, file: File) -> int:
        """Copies the file's payload verbatim and returns the size on disk."""
        path = self.path_for(name)
        try:
            with open(path, "wb") as f:
                shutil.copyfileobj(file.file_object, f)
            return os.path.getsize(path)
        except OSError:
            logger.exception("Error writing file")
            raise StorageError("Error writing file: %r" % path)

    def exists(self, name: str) -> bool:
        return os.path.isfile(self.path_for(name))

    def delete(self, name: str) -> None:
        path = self.path_for(name)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.warning("Stored file %r was already missing", path)
        except OSError:
            logger.exception("Error deleting file")
            raise StorageError("Error deleting file: %r" % path)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(directory={self.directory!r})"


class MetadataStore:
    """Document records kept in a JSON object keyed by document id.

    The file is read once on construction.  Every change is written back
    with :meth:`save`, which replaces the file atomically.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._records: dict[str, FileRecord] = self._load()

    def _load(self) -> dict[str, FileRecord]:
        if not os.path.exists(self.path):
            logger.info("No existing metadata at %r, starting fresh", self.path)
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("Could not read metadata %r, starting fresh", self.path, exc_info=True)
            return {}

        if not isinstance(data, dict):
            logger.warning("Metadata %r is not a JSON object, starting fresh", self.path)
            return {}
        return data

    def save(self) -> None:
        directory = os.path.dirname(self.path) or "."
        with self._lock:
            try:
                os.makedirs(directory, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(self._records, f, indent=2)
                os.replace(tmp_path, self.path)
            except OSError:
                logger.exception("Error saving metadata")
                raise StorageError("Error saving metadata: %r" % self.path)

    def add(self, record: FileRecord) -> None:
        with self._lock:
            self._records[record["id"]] = record
        try:
            self.save()
        except StorageError:
            with self._lock:
                self._records.pop(record["id"], None)
            raise

    def remove(self, file_id: str) -> FileRecord | None:
        with self._lock:
            record = self._records.pop(file_id, None)
        if record is None:
            return None
        try:
            self.save()
        except StorageError:
            with self._lock:
                self._records[file_id] = record
            raise
        return record

    def get(self, file_id: str) -> FileRecord | None:
        return self._records.get(file_id)

    def all(self) -> list[FileRecord]:
        with self._lock:
            return list(self._records.values())

    def search(self, query: str | None) -> list[FileRecord]:
        """Case-insensitive substring match on the original name and the
        extracted text.  An empty query matches nothing.
        """
        if not query:
            return []
        query = query.lower()
        return [
            record
            for record in self.all()
            if query in (record.get("originalName") or "").lower()
            or query in (record.get("textContent") or "").lower()
        ]

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path={self.path!r})"


class DocumentStore:
    def __init__(self, content: ContentStore, metadata: MetadataStore) -> None:
        self.content = content
        self.metadata = metadata

    @classmethod
    def from_directories(cls, upload_dir: str, data_dir: str) -> DocumentStore:
        return cls(ContentStore(upload_dir), MetadataStore(os.path.join(data_dir, "files.json")))

    def store(self, file: File) -> FileRecord:
        """Writes an uploaded file and records its metadata.

        The stored name is a random id plus the original extension.  The
        declared content type wins over the extension-based guess.
        """
        file_id = secrets.token_hex(16)
        _, ext = os.path.splitext(file.file_name)
        filename = file_id + ext

        size = self.content.write(filename, file)
        record: FileRecord = {
            "id": file_id,
            "originalName": file.file_name,
            "filename": filename,
            "fileType": file.content_type or guess_mime_type(file.file_name),
            "fileSize": size,
            "uploadDate": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "textContent": "",
            "hasThumbnail": False,
        }
        try:
            self.metadata.add(record)
        except StorageError:
            self.content.delete(filename)
            raise

        logger.info("Stored %r as %r (%d bytes)", file.file_name, filename, size)
        return record

    def get(self, file_id: str) -> FileRecord | None:
        return self.metadata.get(file_id)

    def path_for(self, record: FileRecord) -> str | None:
        """Path of the stored bytes, or None when they are gone from disk."""
        if not self.content.exists(record["filename"]):
            return None
        return self.content.path_for(record["filename"])

    def delete(self, file_id: str) -> bool:
        record = self.metadata.get(file_id)
        if record is None:
            return False

        # A failed save must leave both the record and the bytes in place.
        self.metadata.remove(file_id)
        if self.content.exists(record["filename"]):
            self.content.delete(record["filename"])
        logger.info("Deleted %r (%s)", record.get("originalName"), file_id)
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(content={self.content!r}, metadata={self.metadata!r})"
