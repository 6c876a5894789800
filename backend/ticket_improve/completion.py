from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Any, Protocol

import httpx

from ticket_improve.config import Settings
from ticket_improve.errors import CompletionTimeoutError, ConfigurationError, UpstreamError

logger = logging.getLogger("ticket_improve.completion")

CHAT_COMPLETIONS_PATH = "/chat/completions"
DEFAULT_TIMEOUT_SECONDS = 30.0
ERROR_BODY_PREVIEW_CHARS = 500

Message = dict[str, Any]


@dataclass(frozen=True)
class CompletionResult:
    content: str | None
    raw: dict[str, Any] = field(default_factory=dict)


class CompletionClient(Protocol):
    async def create_chat_completion(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CompletionResult:
        ...


def build_chat_completions_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}{CHAT_COMPLETIONS_PATH}"


class OpenRouterCompletionClient:
    """Chat completion client for OpenRouter and other OpenAI-compatible endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http_client = http_client

    async def create_chat_completion(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CompletionResult:
        api_key = self._settings.completion_api_key.strip()
        if not api_key:
            raise ConfigurationError("Completion service API key is not configured.")

        timeout = timeout_seconds or self._settings.completion_timeout_seconds or DEFAULT_TIMEOUT_SECONDS
        model_id = model or self._settings.completion_model
        url = build_chat_completions_url(self._settings.completion_base_url)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            "HTTP-Referer": self._settings.completion_referer,
            "X-Title": self._settings.completion_title,
        }
        body = {"model": model_id, "messages": messages}

        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(self._post(url, headers, body, timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.warning(
                "completion_request_timeout",
                extra={
                    "event": "completion_request_timeout",
                    "model_id": model_id,
                    "timeout_seconds": timeout,
                    "duration_ms": duration_ms,
                },
            )
            raise CompletionTimeoutError() from exc
        except httpx.HTTPError as exc:
            self._log_failure(model_id, started, status_code=None, error=str(exc))
            raise UpstreamError(f"Completion request failed: {exc}", status_code=500, retryable=True) from exc

        if not response.is_success:
            error_text = response.text[:ERROR_BODY_PREVIEW_CHARS]
            self._log_failure(model_id, started, status_code=response.status_code, error=error_text)
            raise UpstreamError(
                f"Completion API error: {response.status_code} - {error_text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            self._log_failure(model_id, started, status_code=response.status_code, error="malformed body")
            raise UpstreamError(
                "Completion API returned a malformed body.", status_code=500, retryable=True
            ) from exc
        if not isinstance(data, dict):
            data = {}

        content = self._extract_content(data)
        logger.info(
            "completion_request_completed",
            extra={
                "event": "completion_request_completed",
                "model_id": model_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "message_count": len(messages),
                "response_chars": len(content or ""),
            },
        )
        return CompletionResult(content=content, raw=data)

    async def _post(
        self, url: str, headers: dict[str, str], body: dict[str, Any], timeout: float
    ) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(url, headers=headers, json=body, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, headers=headers, json=body)

    @staticmethod
    def _extract_content(data: dict[str, Any]) -> str | None:
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        content = (choices[0].get("message") or {}).get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            texts = [item.get("text") for item in content if isinstance(item, dict)]
            joined = "".join(text for text in texts if isinstance(text, str))
            return joined or None
        return None

    @staticmethod
    def _log_failure(model_id: str, started: float, *, status_code: int | None, error: str) -> None:
        logger.warning(
            "completion_request_failed",
            extra={
                "event": "completion_request_failed",
                "model_id": model_id,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "error": error,
            },
        )
