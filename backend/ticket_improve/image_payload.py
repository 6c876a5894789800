from __future__ import annotations

import base64
from dataclasses import dataclass
import logging
import re
from typing import AsyncIterator, Iterable, Literal

from ticket_improve.storage import StorageReader, extract_storage_path_from_url

logger = logging.getLogger("ticket_improve.images")

MAX_IMAGES = 3
MAX_IMAGE_BYTES = 2 * 1024 * 1024
DEFAULT_IMAGE_CONTENT_TYPE = "image/png"
IMAGE_EXTENSION_PATTERN = re.compile(r"\.(png|jpe?g|webp|gif|bmp|svg|tiff?)$", re.IGNORECASE)
REMOTE_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class ImageContentPart:
    url: str
    source: str
    kind: Literal["inline", "remote"]

    def to_message_part(self) -> dict[str, object]:
        return {"type": "image_url", "image_url": {"url": self.url}}


def is_image_attachment(url: str, content_type: str | None) -> bool:
    if content_type and content_type.strip().lower().startswith("image/"):
        return True
    return bool(IMAGE_EXTENSION_PATTERN.search(url))


def attachment_image_sources(attachments: Iterable[object]) -> list[str]:
    sources: list[str] = []
    for attachment in attachments:
        url = getattr(attachment, "url", None)
        if not url:
            continue
        if is_image_attachment(url, getattr(attachment, "type", None)):
            sources.append(url)
    return sources


def dedupe_sources(sources: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for source in sources:
        candidate = (source or "").strip()
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        unique.append(candidate)
    return unique


async def read_stream_capped(stream: AsyncIterator[bytes], max_bytes: int) -> bytes | None:
    """Collect a byte stream, or return None once it grows past ``max_bytes``."""
    chunks: list[bytes] = []
    total = 0
    try:
        async for chunk in stream:
            total += len(chunk)
            if total > max_bytes:
                return None
            chunks.append(chunk)
    finally:
        close = getattr(stream, "aclose", None)
        if close is not None:
            await close()
    return b"".join(chunks)


class ImagePayloadBuilder:
    def __init__(
        self,
        storage: StorageReader,
        *,
        max_images: int = MAX_IMAGES,
        max_image_bytes: int = MAX_IMAGE_BYTES,
        media_route_prefix: str = "/api/media/",
    ) -> None:
        self._storage = storage
        self._max_images = max_images
        self._max_image_bytes = max_image_bytes
        self._media_route_prefix = media_route_prefix

    async def build(self, sources: Iterable[str]) -> list[ImageContentPart]:
        parts: list[ImageContentPart] = []
        for source in dedupe_sources(sources):
            if len(parts) >= self._max_images:
                break
            if source.startswith("data:"):
                continue

            storage_path = extract_storage_path_from_url(source, media_route_prefix=self._media_route_prefix)
            if storage_path:
                part = await self._load_inline(source, storage_path)
                if part is not None:
                    parts.append(part)
                continue

            if REMOTE_URL_PATTERN.match(source):
                parts.append(ImageContentPart(url=source, source=source, kind="remote"))
                continue

            self._log_skip(source, "unsupported_source")
        return parts

    async def _load_inline(self, source: str, storage_path: str) -> ImageContentPart | None:
        try:
            stored = await self._storage.get_object(storage_path)
            if stored.content_length and stored.content_length > self._max_image_bytes:
                close = getattr(stored.stream, "aclose", None)
                if close is not None:
                    await close()
                self._log_skip(source, "oversize", content_length=stored.content_length)
                return None
            content = await read_stream_capped(stored.stream, self._max_image_bytes)
        except Exception as exc:
            self._log_skip(source, "fetch_failed", error=str(exc))
            return None

        if content is None:
            self._log_skip(source, "stream_limit")
            return None

        content_type = stored.content_type or DEFAULT_IMAGE_CONTENT_TYPE
        encoded = base64.b64encode(content).decode("ascii")
        return ImageContentPart(url=f"data:{content_type};base64,{encoded}", source=source, kind="inline")

    @staticmethod
    def _log_skip(source: str, reason: str, **details: object) -> None:
        logger.info(
            "ticket_image_skipped",
            extra={"event": "ticket_image_skipped", "source": source, "reason": reason, **details},
        )
