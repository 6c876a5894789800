from __future__ import annotations

import asyncio
import io
from pathlib import Path

import pytest

from ticket_improve.config import settings
from ticket_improve.image_payload import read_stream_capped
from ticket_improve.storage import (
    LocalStorageReader,
    S3StorageReader,
    StorageError,
    build_storage_reader,
    extract_storage_path_from_url,
    is_storage_path,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("uploads/a.png", True),
        ("/uploads/a.png", True),
        ("https://cdn.example.com/a.png", False),
        ("HTTP://cdn.example.com/a.png", False),
        ("data:image/png;base64,AAAA", False),
        ("blob:https://app.example.com/123", False),
        ("/api/media/file?path=uploads%2Fa.png", False),
        ("   ", False),
        (None, False),
    ],
)
def test_is_storage_path(value: str | None, expected: bool) -> None:
    assert is_storage_path(value) is expected


def test_extract_storage_path_from_media_urls() -> None:
    assert extract_storage_path_from_url("uploads/a.png") == "uploads/a.png"
    assert extract_storage_path_from_url("/api/media/file?path=uploads%2Fa%20b.png") == "uploads/a b.png"
    assert extract_storage_path_from_url("https://app.example.com/API/MEDIA/file?path=x%2Fy.png&v=1") == "x/y.png"
    assert extract_storage_path_from_url("/api/media/file?path=bad%FFbyte.png") == "bad%FFbyte.png"
    assert extract_storage_path_from_url("https://cdn.example.com/a.png") is None
    assert extract_storage_path_from_url("") is None


def test_local_reader_streams_file_content(tmp_path: Path) -> None:
    (tmp_path / "uploads").mkdir()
    (tmp_path / "uploads" / "shot.png").write_bytes(b"x" * 10)
    reader = LocalStorageReader(tmp_path, chunk_size=3)

    async def read():
        stored = await reader.get_object("/uploads/shot.png")
        return stored, await read_stream_capped(stored.stream, 100)

    stored, content = asyncio.run(read())

    assert content == b"x" * 10
    assert stored.content_type == "image/png"
    assert stored.content_length == 10


@pytest.mark.parametrize("path", ["uploads/missing.png", "../outside.png", "", "/"])
def test_local_reader_rejects_missing_or_escaping_paths(tmp_path: Path, path: str) -> None:
    (tmp_path.parent / "outside.png").write_bytes(b"secret")
    reader = LocalStorageReader(tmp_path)

    with pytest.raises(StorageError):
        asyncio.run(reader.get_object(path))


class FakeS3Client:
    def __init__(self, objects: dict[tuple[str, str], bytes]) -> None:
        self.objects = objects
        self.calls: list[dict[str, str]] = []

    def get_object(self, **kwargs):
        self.calls.append(kwargs)
        key = (kwargs["Bucket"], kwargs["Key"])
        if key not in self.objects:
            raise RuntimeError("NoSuchKey")
        content = self.objects[key]
        return {"Body": io.BytesIO(content), "ContentType": "image/gif", "ContentLength": len(content)}


def test_s3_reader_applies_key_prefix_once() -> None:
    reader = S3StorageReader(bucket="media", prefix="/production/", client=FakeS3Client({}))

    assert reader.object_key("uploads/a.png") == "production/uploads/a.png"
    assert reader.object_key("/production/uploads/a.png") == "production/uploads/a.png"
    assert S3StorageReader(bucket="media", client=FakeS3Client({})).object_key("/uploads/a.png") == "uploads/a.png"


def test_s3_reader_streams_object_body() -> None:
    client = FakeS3Client({("media", "production/uploads/a.gif"): b"GIF89a"})
    reader = S3StorageReader(bucket="media", prefix="production", chunk_size=2, client=client)

    async def read():
        stored = await reader.get_object("uploads/a.gif")
        return stored, await read_stream_capped(stored.stream, 100)

    stored, content = asyncio.run(read())

    assert content == b"GIF89a"
    assert stored.content_type == "image/gif"
    assert stored.content_length == 6
    assert client.calls == [{"Bucket": "media", "Key": "production/uploads/a.gif"}]


def test_s3_reader_wraps_client_errors() -> None:
    reader = S3StorageReader(bucket="media", client=FakeS3Client({}))

    with pytest.raises(StorageError, match="NoSuchKey"):
        asyncio.run(reader.get_object("uploads/missing.png"))


def test_s3_reader_requires_bucket() -> None:
    with pytest.raises(StorageError, match="S3_BUCKET"):
        asyncio.run(S3StorageReader(bucket=" ", client=FakeS3Client({})).get_object("a.png"))


def test_build_storage_reader_selects_backend(tmp_path: Path) -> None:
    local = build_storage_reader(settings.model_copy(update={"storage_backend": "fs", "storage_root": str(tmp_path)}))
    remote = build_storage_reader(settings.model_copy(update={"storage_backend": "S3"}))

    assert isinstance(local, LocalStorageReader)
    assert isinstance(remote, S3StorageReader)
    with pytest.raises(StorageError, match="Unsupported"):
        build_storage_reader(settings.model_copy(update={"storage_backend": "ftp"}))
