from __future__ import annotations

from dataclasses import dataclass
import json
import re
from typing import Any, Callable, Iterator, Mapping


IMAGE_TAG_PATTERN = re.compile(
    # A quoted value must close before whitespace, "/" or ">"; anything else scans to the next ">".
    r"""<img\b(?:(?:[^>"']|"[^"]*"(?=[\s/>])|'[^']*'(?=[\s/>]))*>|[^>]*>)""",
    re.IGNORECASE,
)
ATTRIBUTE_PATTERN = re.compile(
    r"""([^\s"'>/=]+)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+)))?"""
)
PLACEHOLDER_TEMPLATE = "[[IMAGE_{index}]]"


@dataclass(frozen=True)
class ImageTag:
    tag: str
    src: str | None
    start: int
    end: int


@dataclass(frozen=True)
class ImagePlaceholder:
    placeholder: str
    src: str
    tag: str


def normalize_rich_text(value: Any) -> str:
    """Return the markup carried by a rich-text value.

    Accepts raw markup, a ``{"content": ...}`` mapping, or that mapping encoded as a
    JSON string. Anything else yields an empty string.
    """
    if not value:
        return ""

    if isinstance(value, str):
        trimmed = value.strip()
        if trimmed.startswith("{") and trimmed.endswith("}"):
            try:
                parsed = json.loads(trimmed)
            except ValueError:
                return value
            if isinstance(parsed, dict) and isinstance(parsed.get("content"), str):
                return parsed["content"]
        return value

    if isinstance(value, Mapping):
        content = value.get("content")
        if isinstance(content, str):
            return content

    return ""


def image_tag_source(tag: str) -> str | None:
    """Return the ``src`` attribute of an ``<img>`` element, or None when absent or empty."""
    body = tag[4:-1] if len(tag) >= 5 else ""
    for match in ATTRIBUTE_PATTERN.finditer(body):
        if match.group(1).lower() != "src":
            continue
        value = next((group for group in match.groups()[1:] if group is not None), None)
        return value or None
    return None


def iter_image_tags(html: str) -> Iterator[ImageTag]:
    if not html:
        return
    for match in IMAGE_TAG_PATTERN.finditer(html):
        tag = match.group(0)
        yield ImageTag(tag=tag, src=image_tag_source(tag), start=match.start(), end=match.end())


def replace_image_tags(html: str, replace: Callable[[ImageTag], str]) -> str:
    if not html:
        return html
    pieces: list[str] = []
    cursor = 0
    for image in iter_image_tags(html):
        pieces.append(html[cursor : image.start])
        pieces.append(replace(image))
        cursor = image.end
    pieces.append(html[cursor:])
    return "".join(pieces)


def replace_images_with_placeholders(html: str) -> tuple[str, list[ImagePlaceholder]]:
    placeholders: list[ImagePlaceholder] = []

    def substitute(image: ImageTag) -> str:
        # Elements without a usable source stay in the markup untouched.
        if not image.src:
            return image.tag
        placeholder = PLACEHOLDER_TEMPLATE.format(index=len(placeholders) + 1)
        placeholders.append(ImagePlaceholder(placeholder=placeholder, src=image.src, tag=image.tag))
        return placeholder

    return replace_image_tags(html, substitute), placeholders
