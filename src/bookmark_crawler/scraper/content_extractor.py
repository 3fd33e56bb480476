"""Readable-content extraction from raw HTML.

Reading view: ``readability-lxml`` isolates the main article fragment, which
is then sanitized with BeautifulSoup (scripts, embeds, event-handler
attributes and ``javascript:`` URLs removed).

Plain text: ``trafilatura`` (boilerplate removal), falling back to the text
of the sanitized fragment when trafilatura returns nothing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import trafilatura
from bs4 import BeautifulSoup
from readability import Document

from bookmark_crawler.scraper.config import MAX_CONTENT_BYTES

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Output dataclass
# ---------------------------------------------------------------------------


@dataclass
class ReadableContent:
    """Result of extracting the readable part of an HTML page.

    Attributes:
        html: Sanitized reading-view HTML fragment.
        text: Plain article text.
    """

    html: str
    text: str


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

_DROP_TAGS: tuple[str, ...] = (
    "script",
    "style",
    "noscript",
    "iframe",
    "frame",
    "frameset",
    "object",
    "embed",
    "applet",
    "form",
    "input",
    "button",
    "link",
    "meta",
    "base",
)

_URL_ATTRS: frozenset[str] = frozenset({"href", "src", "action", "formaction", "xlink:href"})

_UNSAFE_SCHEME_RE = re.compile(r"^\s*(javascript|vbscript|data):", re.IGNORECASE)


def sanitize_html(fragment: str) -> str:
    """Strip active content from an HTML fragment."""
    soup = BeautifulSoup(fragment, "lxml")
    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()
    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            name = attr.lower()
            if name.startswith("on"):
                del tag.attrs[attr]
            elif name in _URL_ATTRS:
                value = tag.attrs[attr]
                if isinstance(value, str) and _UNSAFE_SCHEME_RE.match(value):
                    # Inline data: images are harmless.
                    if not (tag.name == "img" and value.strip().lower().startswith("data:image/")):
                        del tag.attrs[attr]
    body = soup.body
    if body is None:
        return str(soup)
    return "".join(str(child) for child in body.children)


def _clean_text(text: str) -> str:
    # PostgreSQL rejects NUL bytes in text columns.
    text = text.replace("\x00", "")
    encoded = text.encode("utf-8")
    if len(encoded) > MAX_CONTENT_BYTES:
        text = encoded[:MAX_CONTENT_BYTES].decode("utf-8", errors="ignore")
    return text


# ---------------------------------------------------------------------------
# Public extraction function
# ---------------------------------------------------------------------------


def extract_readable_content(html: str, url: str) -> Optional[ReadableContent]:
    """Return the sanitized reading view and plain text of *html*.

    Returns ``None`` when no readable fragment can be isolated.  Never raises.
    """
    try:
        fragment = Document(html, url=url).summary(html_partial=True)
    except Exception as exc:  # noqa: BLE001
        logger.warning("crawler: readability failed for %s: %s", url, exc)
        return None
    if not fragment or not fragment.strip():
        return None

    safe_html = sanitize_html(fragment)

    text: str | None = None
    try:
        text = trafilatura.extract(
            html,
            url=url,
            include_comments=False,
            include_tables=True,
            output_format="txt",
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("crawler: trafilatura extraction failed for %s: %s", url, exc)

    if not text:
        text = BeautifulSoup(safe_html, "lxml").get_text(" ", strip=True)
        text = re.sub(r"\s+", " ", text).strip()

    return ReadableContent(html=safe_html.replace("\x00", ""), text=_clean_text(text))
