from __future__ import annotations

import re
from urllib.parse import urlsplit

from bleach import html5lib_shim
from bleach.css_sanitizer import CSSSanitizer
from bleach.sanitizer import Cleaner
import tinycss2

ALLOWED_TAGS = frozenset(
    {
        "p",
        "br",
        "strong",
        "em",
        "u",
        "s",
        "a",
        "ul",
        "ol",
        "li",
        "blockquote",
        "pre",
        "code",
        "h1",
        "h2",
        "h3",
        "span",
        "div",
        "img",
        "video",
        "iframe",
    }
)
COMMON_ATTRIBUTES = ["class", "style"]
TAG_ATTRIBUTES: dict[str, list[str]] = {
    "a": ["href", "target", "rel"],
    "img": ["src", "alt", "width", "height"],
    "video": ["src", "controls", "width", "height", "poster"],
    "iframe": ["src", "allow", "allowfullscreen", "frameborder", "width", "height", "title"],
    "li": ["data-list", "data-checked"],
}
URL_ATTRIBUTES = {"src", "href", "poster"}
ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto"})
PROTOCOLS_BY_TAG: dict[str, frozenset[str]] = {
    "img": frozenset({"http", "https", "data", "blob"}),
    "video": frozenset({"http", "https", "blob"}),
    "iframe": frozenset({"http", "https"}),
}

LINK_REL_VALUES = ("noopener", "noreferrer")
COLOR_PROPERTIES = ("color", "background-color")
COLOR_VALUE_PATTERN = re.compile(r"^(?:#(?:[0-9a-f]{3}|[0-9a-f]{6})$|rgb\(|hsl\(|var\(--)", re.IGNORECASE)


class ColorCSSSanitizer(CSSSanitizer):
    """Keeps only color declarations whose value is a hex, rgb(), hsl() or custom-property color."""

    def __init__(self) -> None:
        super().__init__(allowed_css_properties=COLOR_PROPERTIES)

    def sanitize_css(self, style: str) -> str:
        kept: list[str] = []
        for token in tinycss2.parse_declaration_list(style, skip_comments=True, skip_whitespace=True):
            if token.type != "declaration" or token.lower_name not in self.allowed_css_properties:
                continue
            value = tinycss2.serialize(token.value).strip()
            if COLOR_VALUE_PATTERN.match(value):
                kept.append(f"{token.lower_name}: {value};")
        return " ".join(kept)


class LinkRelFilter(html5lib_shim.Filter):
    """Adds ``noopener noreferrer`` to every link so opened pages cannot reach this window."""

    def __iter__(self):
        for token in super().__iter__():
            if token["type"] in ("StartTag", "EmptyTag") and token["name"] == "a":
                attrs = dict(token["data"])
                rel = attrs.get((None, "rel"), "").split()
                attrs[(None, "rel")] = " ".join(rel + [value for value in LINK_REL_VALUES if value not in rel])
                token["data"] = attrs
            yield token


def _allowed_attribute(tag: str, name: str, value: str) -> bool:
    if name not in COMMON_ATTRIBUTES and name not in TAG_ATTRIBUTES.get(tag, []):
        return False
    if name not in URL_ATTRIBUTES:
        return True
    scheme = urlsplit(value.strip()).scheme.lower()
    # Relative references carry no scheme and stay in place.
    if not scheme:
        return True
    return scheme in PROTOCOLS_BY_TAG.get(tag, ALLOWED_PROTOCOLS)


def sanitize_html_content(content: str) -> str:
    if not content:
        return ""
    cleaner = Cleaner(
        tags=ALLOWED_TAGS,
        attributes=_allowed_attribute,
        # Scheme checks happen in the attribute filter so data: stays limited to images.
        protocols=ALLOWED_PROTOCOLS | {"data", "blob"},
        css_sanitizer=ColorCSSSanitizer(),
        strip=True,
        filters=[LinkRelFilter],
    )
    return cleaner.clean(content)
