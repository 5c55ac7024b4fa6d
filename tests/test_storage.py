from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from docstore.exceptions import StorageError
from docstore.multipart import File
from docstore.storage import ContentStore, DocumentStore, MetadataStore, guess_mime_type


@pytest.fixture
def documents(tmp_path: Path) -> DocumentStore:
    return DocumentStore.from_directories(str(tmp_path / "uploads"), str(tmp_path / "data"))


def test_guess_mime_type() -> None:
    assert guess_mime_type("report.PDF") == "application/pdf"
    assert guess_mime_type("sheet.xlsx") == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    assert guess_mime_type("photo.jpeg") == "image/jpeg"
    assert guess_mime_type("archive.tar.gz") == "application/octet-stream"
    assert guess_mime_type("README") == "application/octet-stream"


def test_content_store_creates_directory(tmp_path: Path) -> None:
    ContentStore(str(tmp_path / "a" / "b"))
    assert (tmp_path / "a" / "b").is_dir()


def test_content_store_writes_verbatim(tmp_path: Path) -> None:
    store = ContentStore(str(tmp_path))
    payload = bytes(range(256)) + b"\r\n\r\n"
    size = store.write("x.bin", File("file", "x.bin", None, payload))

    assert size == len(payload)
    assert (tmp_path / "x.bin").read_bytes() == payload
    assert store.exists("x.bin")


@pytest.mark.parametrize("name", ["", ".", "..", "../x", "a/b", "/etc/passwd"])
def test_content_store_rejects_paths(tmp_path: Path, name: str) -> None:
    with pytest.raises(StorageError):
        ContentStore(str(tmp_path)).path_for(name)


def test_content_store_delete_missing(tmp_path: Path) -> None:
    # Already gone is not an error.
    ContentStore(str(tmp_path)).delete("missing.bin")


def test_content_store_write_error(tmp_path: Path) -> None:
    store = ContentStore(str(tmp_path))
    with patch("docstore.storage.open", side_effect=PermissionError, create=True):
        with pytest.raises(StorageError):
            store.write("x.bin", File("file", "x.bin", None, b"data"))


def test_metadata_missing_file(tmp_path: Path) -> None:
    store = MetadataStore(str(tmp_path / "files.json"))
    assert len(store) == 0
    assert store.all() == []


def test_metadata_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "files.json"
    path.write_text("{not json")
    assert len(MetadataStore(str(path))) == 0

    path.write_text("[1, 2, 3]")
    assert len(MetadataStore(str(path))) == 0


def test_metadata_persists(tmp_path: Path, documents: DocumentStore) -> None:
    record = documents.store(File("file", "notes.txt", "text/plain", b"hello"))

    reloaded = MetadataStore(str(tmp_path / "data" / "files.json"))
    assert reloaded.get(record["id"]) == record
    assert json.loads((tmp_path / "data" / "files.json").read_text()) == {record["id"]: record}


def test_metadata_search(documents: DocumentStore) -> None:
    a = documents.store(File("file", "Quarterly Report.pdf", "application/pdf", b"%PDF"))
    b = documents.store(File("file", "holiday.png", "image/png", b"\x89PNG"))
    b["textContent"] = "Beach REPORT photos"

    assert documents.metadata.search("report") == [a, b]
    assert documents.metadata.search("HOLIDAY") == [b]
    assert documents.metadata.search("zzz") == []
    assert documents.metadata.search("") == []
    assert documents.metadata.search(None) == []


def test_metadata_save_error_rolls_back(tmp_path: Path) -> None:
    store = MetadataStore(str(tmp_path / "files.json"))
    record = {"id": "abc", "originalName": "a.txt"}
    with patch("docstore.storage.tempfile.mkstemp", side_effect=OSError):
        with pytest.raises(StorageError):
            store.add(record)  # type: ignore[arg-type]
    assert store.get("abc") is None


def test_document_store(tmp_path: Path, documents: DocumentStore) -> None:
    payload = b"\x00\x01\x02\xff"
    record = documents.store(File("file", "photo.JPG", None, payload))

    assert len(record["id"]) == 32
    assert record["filename"] == record["id"] + ".JPG"
    assert record["originalName"] == "photo.JPG"
    assert record["fileType"] == "image/jpeg"
    assert record["fileSize"] == len(payload)
    assert record["textContent"] == ""
    assert record["hasThumbnail"] is False
    assert "T" in record["uploadDate"]

    path = documents.path_for(record)
    assert path is not None
    assert Path(path).read_bytes() == payload


def test_document_store_declared_type_wins(documents: DocumentStore) -> None:
    record = documents.store(File("file", "data.txt", "application/json", b"{}"))
    assert record["fileType"] == "application/json"


def test_document_store_delete(documents: DocumentStore) -> None:
    record = documents.store(File("file", "a.txt", "text/plain", b"a"))
    path = documents.path_for(record)
    assert path is not None

    assert documents.delete(record["id"])
    assert not os.path.exists(path)
    assert documents.get(record["id"]) is None
    assert not documents.delete(record["id"])


def test_document_store_missing_bytes(documents: DocumentStore) -> None:
    record = documents.store(File("file", "a.txt", "text/plain", b"a"))
    path = documents.path_for(record)
    assert path is not None
    os.remove(path)

    assert documents.path_for(record) is None
    assert documents.delete(record["id"])


def test_document_store_metadata_failure_removes_bytes(tmp_path: Path, documents: DocumentStore) -> None:
    with patch.object(documents.metadata, "save", side_effect=StorageError("disk full")):
        with pytest.raises(StorageError):
            documents.store(File("file", "a.txt", "text/plain", b"a"))

    assert os.listdir(tmp_path / "uploads") == []
    assert documents.metadata.all() == []


def test_metadata_remove_error_rolls_back(tmp_path: Path) -> None:
    store = MetadataStore(str(tmp_path / "files.json"))
    record = {"id": "abc", "originalName": "a.txt"}
    store.add(record)  # type: ignore[arg-type]
    with patch("docstore.storage.tempfile.mkstemp", side_effect=OSError):
        with pytest.raises(StorageError):
            store.remove("abc")
    assert store.get("abc") == record


def test_document_store_delete_keeps_bytes_on_metadata_failure(documents: DocumentStore) -> None:
    record = documents.store(File("file", "a.txt", "text/plain", b"a"))
    path = documents.path_for(record)
    assert path is not None

    with patch.object(documents.metadata, "save", side_effect=StorageError("disk full")):
        with pytest.raises(StorageError):
            documents.delete(record["id"])

    assert documents.get(record["id"]) == record
    assert os.path.exists(path)


def test_metadata_search_record_without_name(tmp_path: Path) -> None:
    path = tmp_path / "files.json"
    path.write_text(json.dumps({"abc": {"id": "abc", "filename": "abc.txt", "textContent": "Annual report"}}))
    store = MetadataStore(str(path))

    assert store.search("report") == [store.get("abc")]
    assert store.search("a.txt") == []
