from __future__ import annotations

from functools import lru_cache
import json
import logging
import re
import time
from typing import Any, Callable

from ticket_improve.completion import CompletionClient, Message, OpenRouterCompletionClient
from ticket_improve.config import Settings, settings as default_settings
from ticket_improve.errors import InvalidResponseError
from ticket_improve.image_payload import (
    MAX_IMAGE_BYTES,
    MAX_IMAGES,
    ImageContentPart,
    ImagePayloadBuilder,
    attachment_image_sources,
)
from ticket_improve.models import (
    AcceptanceCriterion,
    AcceptanceCriterionInput,
    TicketImproveInput,
    TicketImproveResult,
)
from ticket_improve.prompts import TICKET_IMPROVE_SYSTEM_PROMPT, build_ticket_improve_prompt
from ticket_improve.reconcile import reconcile_image_placeholders
from ticket_improve.richtext import normalize_rich_text, replace_images_with_placeholders
from ticket_improve.sanitizer import sanitize_html_content
from ticket_improve.storage import StorageReader, build_storage_reader

logger = logging.getLogger("ticket_improve.pipeline")

MAX_CRITERIA = 10


def normalize_input_criteria(criteria: list[AcceptanceCriterionInput]) -> list[str]:
    texts: list[str] = []
    for item in criteria:
        text = item.text.strip() if isinstance(item.text, str) else ""
        if text:
            texts.append(text)
    return texts


def normalize_acceptance_criteria(items: Any, *, limit: int = MAX_CRITERIA) -> list[AcceptanceCriterion]:
    if not isinstance(items, list):
        return []
    result: list[AcceptanceCriterion] = []
    for item in items:
        if len(result) >= limit:
            break
        if isinstance(item, str):
            text = item.strip()
        elif isinstance(item, dict) and isinstance(item.get("text"), str):
            text = item["text"].strip()
        else:
            text = ""
        if text:
            result.append(AcceptanceCriterion(text=text, completed=False))
    return result


def parse_json_response(content: str | None) -> Any:
    """Parse a model reply as JSON, tolerating code fences and prose around the object."""
    if not content:
        return None
    trimmed = content.strip()
    if not trimmed:
        return None
    try:
        return json.loads(trimmed)
    except ValueError:
        pass

    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", trimmed, flags=re.IGNORECASE | re.DOTALL)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except ValueError:
            pass

    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start >= 0 and end > start:
        try:
            return json.loads(trimmed[start : end + 1])
        except ValueError:
            return None
    return None


def build_messages(prompt: str, image_parts: list[ImageContentPart]) -> list[Message]:
    user_content: str | list[dict[str, object]] = prompt
    if image_parts:
        user_content = [{"type": "text", "text": prompt}, *(part.to_message_part() for part in image_parts)]
    return [
        {"role": "system", "content": TICKET_IMPROVE_SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


class TicketImprover:
    def __init__(
        self,
        completion_client: CompletionClient,
        storage: StorageReader,
        *,
        sanitize: Callable[[str], str] = sanitize_html_content,
        model: str | None = None,
        timeout_seconds: float | None = None,
        max_images: int = MAX_IMAGES,
        max_image_bytes: int = MAX_IMAGE_BYTES,
        max_criteria: int = MAX_CRITERIA,
        media_route_prefix: str = "/api/media/",
    ) -> None:
        self._completion_client = completion_client
        self._sanitize = sanitize
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._max_criteria = max_criteria
        self._images = ImagePayloadBuilder(
            storage,
            max_images=max_images,
            max_image_bytes=max_image_bytes,
            media_route_prefix=media_route_prefix,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        completion_client: CompletionClient | None = None,
        storage: StorageReader | None = None,
    ) -> "TicketImprover":
        return cls(
            completion_client or OpenRouterCompletionClient(settings),
            storage or build_storage_reader(settings),
            model=settings.completion_model,
            timeout_seconds=settings.completion_timeout_seconds,
            max_images=settings.max_images,
            max_image_bytes=settings.max_image_bytes,
            max_criteria=settings.max_criteria,
            media_route_prefix=settings.media_route_prefix,
        )

    async def improve_ticket_content(self, ticket: TicketImproveInput) -> TicketImproveResult:
        started = time.perf_counter()
        description_html = normalize_rich_text(ticket.description)
        criteria = normalize_input_criteria(ticket.acceptance_criteria)
        substituted, placeholders = replace_images_with_placeholders(description_html)

        sources = attachment_image_sources(ticket.attachments) + [item.src for item in placeholders]
        image_parts = await self._images.build(sources)

        prompt = build_ticket_improve_prompt(
            title=ticket.title,
            description=substituted,
            acceptance_criteria=criteria,
            image_placeholders=[item.placeholder for item in placeholders],
            ticket_type=ticket.ticket_type,
            user_command=ticket.user_command,
        )
        response = await self._completion_client.create_chat_completion(
            build_messages(prompt, image_parts),
            model=self._model,
            timeout_seconds=self._timeout_seconds,
        )

        parsed = parse_json_response(response.content)
        if not isinstance(parsed, dict):
            parsed = {}
        description_raw = parsed.get("description") if isinstance(parsed.get("description"), str) else ""
        improved_criteria = normalize_acceptance_criteria(
            parsed.get("acceptanceCriteria"), limit=self._max_criteria
        )

        if not description_raw.strip() and not improved_criteria:
            logger.warning(
                "ticket_improve_invalid_response",
                extra={
                    "event": "ticket_improve_invalid_response",
                    "response_chars": len(response.content or ""),
                    "parsed": bool(parsed),
                },
            )
            raise InvalidResponseError("Invalid AI response: no description or acceptance criteria returned.")

        reconciled = reconcile_image_placeholders(description_raw, placeholders)
        description = self._sanitize(reconciled.html)

        logger.info(
            "ticket_improve_completed",
            extra={
                "event": "ticket_improve_completed",
                "placeholder_count": len(placeholders),
                "image_parts_sent": len(image_parts),
                "recovered_placeholders": reconciled.recovered,
                "dropped_image_tags": reconciled.dropped_tags,
                "dropped_duplicate_placeholders": reconciled.dropped_duplicates,
                "criteria_count": len(improved_criteria),
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return TicketImproveResult(description=description, acceptance_criteria=improved_criteria)


@lru_cache(maxsize=1)
def _cached_ticket_improver() -> TicketImprover:
    return TicketImprover.from_settings(default_settings)


def get_ticket_improver() -> TicketImprover:
    return _cached_ticket_improver()


async def improve_ticket_content(
    ticket: TicketImproveInput, *, improver: TicketImprover | None = None
) -> TicketImproveResult:
    return await (improver or get_ticket_improver()).improve_ticket_content(ticket)
