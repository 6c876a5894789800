from __future__ import annotations

import asyncio
import logging

from ticket_improve.image_payload import (
    ImageContentPart,
    ImagePayloadBuilder,
    attachment_image_sources,
    dedupe_sources,
    read_stream_capped,
)
from ticket_improve.models import AttachmentInput
from ticket_improve.storage import StorageError, StorageObject


class FakeStorage:
    def __init__(self, objects: dict[str, dict[str, object]] | None = None) -> None:
        self.objects = objects or {}
        self.requested: list[str] = []
        self.closed: list[str] = []

    async def get_object(self, path: str) -> StorageObject:
        self.requested.append(path)
        if path not in self.objects:
            raise StorageError(f"Stored file not found at '{path}'.")
        spec = self.objects[path]
        return StorageObject(
            stream=self._stream(path, list(spec["chunks"])),
            content_type=spec.get("content_type"),
            content_length=spec.get("content_length"),
        )

    async def _stream(self, path: str, chunks: list[bytes]):
        try:
            for chunk in chunks:
                yield chunk
        finally:
            self.closed.append(path)


def _build(storage: FakeStorage, sources: list[str], **kwargs) -> list[ImageContentPart]:
    return asyncio.run(ImagePayloadBuilder(storage, **kwargs).build(sources))


def test_attachment_sources_keep_only_images() -> None:
    attachments = [
        AttachmentInput(url="https://files.example.com/requirements.pdf", type="application/pdf", name="requirements.pdf"),
        AttachmentInput(url="https://files.example.com/shot.PNG", name="shot.PNG"),
        AttachmentInput(url="https://files.example.com/blob-id", type="image/jpeg"),
        AttachmentInput(url="https://files.example.com/notes.txt", type="text/plain"),
        AttachmentInput(url=None, type="image/png"),
    ]

    assert attachment_image_sources(attachments) == [
        "https://files.example.com/shot.PNG",
        "https://files.example.com/blob-id",
    ]


def test_dedupe_sources_trims_and_keeps_first_seen_order() -> None:
    assert dedupe_sources(["b.png", " a.png", "b.png ", "", "a.png"]) == ["b.png", "a.png"]


def test_remote_sources_pass_through_and_are_capped() -> None:
    sources = [
        "https://cdn.example.com/a.png",
        " https://cdn.example.com/a.png ",
        "data:image/png;base64,AAAA",
        "https://cdn.example.com/b.png",
        "https://cdn.example.com/c.png",
        "https://cdn.example.com/d.png",
    ]

    parts = _build(FakeStorage(), sources)

    assert [part.url for part in parts] == [
        "https://cdn.example.com/a.png",
        "https://cdn.example.com/b.png",
        "https://cdn.example.com/c.png",
    ]
    assert all(part.kind == "remote" for part in parts)
    assert parts[0].to_message_part() == {
        "type": "image_url",
        "image_url": {"url": "https://cdn.example.com/a.png"},
    }


def test_storage_paths_are_inlined_as_base64() -> None:
    storage = FakeStorage({"uploads/a.jpg": {"chunks": [b"ab", b"c"], "content_type": "image/jpeg"}})

    parts = _build(storage, ["uploads/a.jpg"])

    assert parts == [ImageContentPart(url="data:image/jpeg;base64,YWJj", source="uploads/a.jpg", kind="inline")]
    assert storage.closed == ["uploads/a.jpg"]


def test_media_route_urls_resolve_to_storage_paths() -> None:
    storage = FakeStorage({"uploads/board 1/a.png": {"chunks": [b"abc"]}})

    parts = _build(storage, ["https://app.example.com/api/media/file?path=uploads%2Fboard%201%2Fa.png&v=2"])

    assert storage.requested == ["uploads/board 1/a.png"]
    assert parts[0].url == "data:image/png;base64,YWJj"
    assert parts[0].kind == "inline"


def test_declared_oversize_objects_are_skipped(caplog) -> None:
    storage = FakeStorage({"uploads/big.png": {"chunks": [b"0123456789"], "content_length": 10}})

    with caplog.at_level(logging.INFO, logger="ticket_improve.images"):
        parts = _build(storage, ["uploads/big.png", "https://cdn.example.com/a.png"], max_image_bytes=4)

    assert [part.url for part in parts] == ["https://cdn.example.com/a.png"]
    reasons = [getattr(record, "reason", None) for record in caplog.records]
    assert "oversize" in reasons


def test_streams_exceeding_the_ceiling_mid_read_are_aborted() -> None:
    storage = FakeStorage({"uploads/sneaky.png": {"chunks": [b"ab", b"cd", b"ef", b"gh"]}})

    parts = _build(storage, ["uploads/sneaky.png"], max_image_bytes=5)

    assert parts == []
    assert storage.closed == ["uploads/sneaky.png"]


def test_fetch_failures_are_swallowed_and_do_not_use_a_slot() -> None:
    sources = [
        "uploads/missing.png",
        "https://cdn.example.com/a.png",
        "https://cdn.example.com/b.png",
        "https://cdn.example.com/c.png",
    ]

    parts = _build(FakeStorage(), sources)

    assert [part.source for part in parts] == sources[1:]


def test_read_stream_capped_accepts_content_at_the_limit() -> None:
    async def stream():
        yield b"abc"
        yield b"de"

    assert asyncio.run(read_stream_capped(stream(), 5)) == b"abcde"
    assert asyncio.run(read_stream_capped(stream(), 4)) is None
