from __future__ import annotations

import asyncio
from dataclasses import dataclass
import mimetypes
from pathlib import Path
import re
from typing import Any, AsyncIterator, Protocol
from urllib.parse import unquote

from ticket_improve.config import Settings

DEFAULT_CHUNK_BYTES = 64 * 1024


class StorageError(RuntimeError):
    """Raised when a stored object cannot be located or read."""


@dataclass
class StorageObject:
    stream: AsyncIterator[bytes]
    content_type: str | None = None
    content_length: int | None = None


class StorageReader(Protocol):
    async def get_object(self, path: str) -> StorageObject:
        ...


def _normalize_backend(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in {"local", "filesystem", "fs"}:
        return "local"
    if normalized in {"s3"}:
        return "s3"
    raise StorageError(f"Unsupported STORAGE_BACKEND '{value}'. Use 'local' or 's3'.")


def _normalize_segment(value: str) -> str:
    parts = [part.strip() for part in (value or "").split("/")]
    return "/".join(part for part in parts if part and part not in {".", ".."})


def normalize_storage_path(value: str) -> str:
    return value.strip().lstrip("/")


def is_storage_path(value: str | None, *, media_route_prefix: str = "/api/media/") -> bool:
    if not value:
        return False
    trimmed = value.strip()
    if not trimmed:
        return False
    if trimmed.startswith(media_route_prefix):
        return False
    if trimmed.startswith("data:") or trimmed.startswith("blob:"):
        return False
    return re.match(r"^https?://", trimmed, flags=re.IGNORECASE) is None


def extract_storage_path_from_url(url: str, *, media_route_prefix: str = "/api/media/") -> str | None:
    """Resolve a storage path from a bare path or a media route URL (``.../file?path=<encoded>``)."""
    if not url:
        return None
    if is_storage_path(url, media_route_prefix=media_route_prefix):
        return url
    pattern = re.escape(media_route_prefix.rstrip("/")) + r"/file\?path=([^&]+)"
    match = re.search(pattern, url, flags=re.IGNORECASE)
    if not match:
        return None
    raw = match.group(1)
    try:
        return unquote(raw, errors="strict")
    except UnicodeDecodeError:
        return raw


class LocalStorageReader:
    def __init__(self, root: str | Path, *, chunk_size: int = DEFAULT_CHUNK_BYTES) -> None:
        self._root = Path(root).resolve()
        self._chunk_size = max(1, chunk_size)

    async def get_object(self, path: str) -> StorageObject:
        relative = _normalize_segment(normalize_storage_path(path))
        if not relative:
            raise StorageError("Missing storage path.")
        target = (self._root / relative).resolve()
        if target != self._root and self._root not in target.parents:
            raise StorageError(f"Storage path escapes storage root: '{path}'.")
        if not target.is_file():
            raise StorageError(f"Stored file not found at '{relative}'.")

        content_type, _ = mimetypes.guess_type(target.name)
        return StorageObject(
            stream=self._iter_file(target),
            content_type=content_type,
            content_length=target.stat().st_size,
        )

    async def _iter_file(self, target: Path) -> AsyncIterator[bytes]:
        handle = await asyncio.to_thread(target.open, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()


class S3StorageReader:
    def __init__(
        self,
        *,
        bucket: str,
        prefix: str = "",
        aws_region: str = "us-east-1",
        chunk_size: int = DEFAULT_CHUNK_BYTES,
        client: Any | None = None,
    ) -> None:
        self._bucket = bucket.strip()
        self._prefix = _normalize_segment(prefix)
        self._aws_region = aws_region
        self._chunk_size = max(1, chunk_size)
        self._client = client

    def object_key(self, path: str) -> str:
        normalized = normalize_storage_path(path)
        if not self._prefix or normalized.startswith(f"{self._prefix}/"):
            return normalized
        return f"{self._prefix}/{normalized}"

    async def get_object(self, path: str) -> StorageObject:
        if not self._bucket:
            raise StorageError("S3 storage backend selected but S3_BUCKET is not configured.")
        key = self.object_key(path)
        if not key:
            raise StorageError("Missing storage path.")

        client = self._client or self._create_client()
        try:
            response = await asyncio.to_thread(client.get_object, Bucket=self._bucket, Key=key)
        except Exception as exc:
            raise StorageError(f"Failed to read object from S3 (bucket={self._bucket}, key={key}): {exc}") from exc

        body = response.get("Body")
        if body is None or not hasattr(body, "read"):
            raise StorageError(f"S3 get_object returned no body (bucket={self._bucket}, key={key}).")

        return StorageObject(
            stream=self._iter_body(body),
            content_type=response.get("ContentType"),
            content_length=response.get("ContentLength"),
        )

    async def _iter_body(self, body: Any) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(body.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            body.close()

    def _create_client(self) -> Any:
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise StorageError("boto3 is required for S3 storage backend.") from exc

        self._client = boto3.client("s3", region_name=self._aws_region)
        return self._client


def build_storage_reader(settings: Settings) -> StorageReader:
    backend = _normalize_backend(settings.storage_backend)
    if backend == "local":
        return LocalStorageReader(settings.storage_root, chunk_size=settings.storage_read_chunk_bytes)
    return S3StorageReader(
        bucket=settings.s3_bucket,
        prefix=settings.s3_prefix,
        aws_region=settings.aws_region,
        chunk_size=settings.storage_read_chunk_bytes,
    )
