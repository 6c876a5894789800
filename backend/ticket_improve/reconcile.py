from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import re

from ticket_improve.richtext import ImagePlaceholder, iter_image_tags


@dataclass(frozen=True)
class ReconciliationResult:
    html: str
    restored_from_tags: int
    restored_from_placeholders: int
    recovered: int
    dropped_tags: int
    dropped_duplicates: int


@dataclass
class _Segment:
    text: str
    restored: bool = False


def reconcile_image_placeholders(html: str, placeholders: list[ImagePlaceholder]) -> ReconciliationResult:
    """Merge model-authored markup with the original image elements.

    Every placeholder ends up in the output exactly once as its original tag: raw
    ``<img>`` elements written by the model are swapped for the original tag of the
    same source (or removed when the source is unknown), placeholder tokens resolve
    on first occurrence only, and anything left unconsumed is appended at the end.
    """
    queues: dict[str, deque[ImagePlaceholder]] = {}
    for item in placeholders:
        queues.setdefault(item.src, deque()).append(item)

    consumed: set[str] = set()
    segments: list[_Segment] = []
    cursor = 0
    restored_from_tags = 0
    dropped_tags = 0

    for image in iter_image_tags(html):
        segments.append(_Segment(html[cursor : image.start]))
        cursor = image.end
        queue = queues.get(image.src) if image.src else None
        if not queue:
            dropped_tags += 1
            continue
        original = queue.popleft()
        consumed.add(original.placeholder)
        segments.append(_Segment(original.tag, restored=True))
        restored_from_tags += 1
    segments.append(_Segment(html[cursor:]))

    by_token = {item.placeholder: item for item in placeholders}
    restored_from_placeholders = 0
    dropped_duplicates = 0

    if by_token:
        token_pattern = re.compile("|".join(re.escape(token) for token in by_token))

        def resolve(match: re.Match[str]) -> str:
            nonlocal restored_from_placeholders, dropped_duplicates
            token = match.group(0)
            if token in consumed:
                dropped_duplicates += 1
                return ""
            consumed.add(token)
            restored_from_placeholders += 1
            return by_token[token].tag

        # Restored tags are never rescanned, so token-like text inside an original tag stays put.
        for segment in segments:
            if not segment.restored:
                segment.text = token_pattern.sub(resolve, segment.text)

    merged = "".join(segment.text for segment in segments)
    missing = [item for item in placeholders if item.placeholder not in consumed]
    if missing:
        appended = "".join(f"<p>{item.tag}</p>" for item in missing)
        merged = appended if not merged.strip() else f"{merged}\n{appended}"

    return ReconciliationResult(
        html=merged,
        restored_from_tags=restored_from_tags,
        restored_from_placeholders=restored_from_placeholders,
        recovered=len(missing),
        dropped_tags=dropped_tags,
        dropped_duplicates=dropped_duplicates,
    )


def apply_image_layout(html: str, placeholders: list[ImagePlaceholder]) -> str:
    return reconcile_image_placeholders(html, placeholders).html
