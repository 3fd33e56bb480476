"""Page metadata extraction as an ordered rule chain.

For every field (title, description, image, ...) :data:`RULES` lists rule
functions in priority order; the first rule that returns a non-empty value
wins.  Rules receive a :class:`RuleContext` carrying the parsed document and,
for enhanced social scrapes, the :class:`NormalizedSocialPost` side-channel,
which the social rules at the head of each chain prefer over the page markup.

``trafilatura``'s metadata extractor is consulted last for fields that no
markup rule could fill.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Optional
from urllib.parse import urljoin, urlsplit

import trafilatura
from bs4 import BeautifulSoup

from bookmark_crawler.social.models import X_PUBLISHER, NormalizedSocialPost
from bookmark_crawler.social.urls import is_x_url

logger = logging.getLogger(__name__)


@dataclass
class ExtractedMetadata:
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    logo: Optional[str] = None
    date_published: Optional[datetime] = None
    date_modified: Optional[datetime] = None


@dataclass
class RuleContext:
    url: str
    soup: BeautifulSoup
    social_post: Optional[NormalizedSocialPost] = None
    _json_ld: Optional[list[dict[str, Any]]] = field(default=None, repr=False)

    @property
    def json_ld(self) -> list[dict[str, Any]]:
        """Flattened JSON-LD objects of the page (parsed once)."""
        if self._json_ld is None:
            self._json_ld = _parse_json_ld(self.soup)
        return self._json_ld


Rule = Callable[[RuleContext], Any]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = re.sub(r"\s+", " ", value).strip()
    return value or None


def _parse_json_ld(soup: BeautifulSoup) -> list[dict[str, Any]]:
    objects: list[dict[str, Any]] = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue
        stack = data if isinstance(data, list) else [data]
        while stack:
            obj = stack.pop(0)
            if isinstance(obj, list):
                stack.extend(obj)
            elif isinstance(obj, dict):
                objects.append(obj)
                graph = obj.get("@graph")
                if isinstance(graph, list):
                    stack.extend(graph)
    return objects


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("name") or value.get("url")
    return _clean(value)


def _url_of(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("url") or value.get("contentUrl")
    return _clean(value)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 or RFC 2822 dates into aware datetimes."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = _clean(value)
    if text is None:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
        if parsed is None:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Rule factories
# ---------------------------------------------------------------------------


def meta(*names: str) -> Rule:
    """Content of the first ``<meta property|name|itemprop=...>`` among *names*."""

    def rule(ctx: RuleContext) -> Optional[str]:
        for name in names:
            for attr in ("property", "name", "itemprop"):
                tag = ctx.soup.find("meta", attrs={attr: name})
                value = _clean(tag.get("content")) if tag is not None else None
                if value:
                    return value
        return None

    return rule


def json_ld(key: str, pick: Callable[[Any], Optional[str]] = _name_of) -> Rule:
    def rule(ctx: RuleContext) -> Optional[str]:
        for obj in ctx.json_ld:
            value = pick(obj.get(key))
            if value:
                return value
        return None

    return rule


def tag_text(name: str, **attrs: Any) -> Rule:
    def rule(ctx: RuleContext) -> Optional[str]:
        tag = ctx.soup.find(name, attrs=attrs)
        return _clean(tag.get_text()) if tag is not None else None

    return rule


def tag_attr(name: str, attr: str, **attrs: Any) -> Rule:
    def rule(ctx: RuleContext) -> Optional[str]:
        tag = ctx.soup.find(name, attrs=attrs)
        return _clean(tag.get(attr)) if tag is not None else None

    return rule


def link_icon(ctx: RuleContext) -> Optional[str]:
    for rel in ("apple-touch-icon", "icon", "shortcut icon"):
        for tag in ctx.soup.find_all("link", href=True):
            rels = tag.get("rel") or []
            if " ".join(rels).lower() == rel:
                return _clean(tag["href"])
    return None


# ---------------------------------------------------------------------------
# Social side-channel rules
# ---------------------------------------------------------------------------


def _social(pick: Callable[[NormalizedSocialPost], Any]) -> Rule:
    def rule(ctx: RuleContext) -> Any:
        if ctx.social_post is None or not is_x_url(ctx.url):
            return None
        return pick(ctx.social_post)

    return rule


def _social_image(post: NormalizedSocialPost) -> Optional[str]:
    if post.media:
        return post.media[0].url
    return post.author.avatar_url


def _x_publisher(ctx: RuleContext) -> Optional[str]:
    return X_PUBLISHER if is_x_url(ctx.url) else None


def _x_author_from_og_title(ctx: RuleContext) -> Optional[str]:
    if not is_x_url(ctx.url):
        return None
    og_title = meta("og:title")(ctx)
    if og_title and " on X:" in og_title:
        return og_title.split(" on X:", 1)[0].strip() or None
    return None


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

RULES: dict[str, tuple[Rule, ...]] = {
    "title": (
        _social(lambda p: p.title),
        meta("og:title", "twitter:title"),
        json_ld("headline", _clean),
        tag_text("title"),
        tag_text("h1"),
    ),
    "description": (
        _social(lambda p: p.text or None),
        meta("og:description", "twitter:description", "description"),
        json_ld("description", _clean),
    ),
    "image_url": (
        _social(_social_image),
        meta("og:image:secure_url", "og:image", "og:image:url", "twitter:image", "twitter:image:src"),
        json_ld("image", _url_of),
        tag_attr("link", "href", rel="image_src"),
    ),
    "author": (
        _social(lambda p: p.author.display_name or None),
        _x_author_from_og_title,
        meta("author", "article:author", "parsely-author", "sailthru.author"),
        json_ld("author", _name_of),
        tag_text("a", rel="author"),
    ),
    "publisher": (
        _x_publisher,
        meta("og:site_name", "application-name", "publisher"),
        json_ld("publisher", _name_of),
    ),
    "logo": (
        meta("og:logo"),
        json_ld("logo", _url_of),
        link_icon,
    ),
    "date_published": (
        _social(lambda p: p.created_at),
        meta("article:published_time", "datePublished", "date", "pubdate", "DC.date.issued"),
        json_ld("datePublished", _clean),
        tag_attr("time", "datetime"),
    ),
    "date_modified": (
        meta("article:modified_time", "og:updated_time", "dateModified", "last-modified"),
        json_ld("dateModified", _clean),
    ),
}

_URL_FIELDS = ("image_url", "logo")
_DATE_FIELDS = ("date_published", "date_modified")


def _run_chain(ctx: RuleContext, rules: tuple[Rule, ...]) -> Any:
    for rule in rules:
        value = rule(ctx)
        if value:
            return value
    return None


def _trafilatura_fallback(html: str, url: str, result: ExtractedMetadata) -> None:
    try:
        doc = trafilatura.extract_metadata(html, default_url=url)
    except Exception as exc:  # noqa: BLE001
        logger.debug("crawler: trafilatura metadata failed for %s: %s", url, exc)
        return
    if doc is None:
        return
    result.title = result.title or _clean(getattr(doc, "title", None))
    result.description = result.description or _clean(getattr(doc, "description", None))
    result.author = result.author or _clean(getattr(doc, "author", None))
    result.publisher = result.publisher or _clean(getattr(doc, "sitename", None))
    result.image_url = result.image_url or _clean(getattr(doc, "image", None))
    if result.date_published is None:
        result.date_published = parse_date(getattr(doc, "date", None))


def extract_metadata(
    html: str,
    url: str,
    social_post: Optional[NormalizedSocialPost] = None,
) -> ExtractedMetadata:
    """Run the rule chain over *html*.

    Args:
        html: Page HTML.
        url: Final page URL; used to resolve relative image/logo URLs and to
            decide whether the X-specific rules apply.
        social_post: Normalized post from the enhanced scraper, preferred
            over page markup when given.
    """
    ctx = RuleContext(url=url, soup=BeautifulSoup(html or "", "lxml"), social_post=social_post)
    result = ExtractedMetadata()
    for name, rules in RULES.items():
        value = _run_chain(ctx, rules)
        if name in _DATE_FIELDS:
            value = parse_date(value)
        elif name in _URL_FIELDS and isinstance(value, str) and not value.startswith("data:"):
            value = urljoin(url, value)
        setattr(result, name, value)

    if not all((result.title, result.description, result.author, result.publisher)):
        _trafilatura_fallback(html, url, result)

    if result.image_url and urlsplit(result.image_url).scheme not in ("http", "https", "data"):
        result.image_url = None
    return result
