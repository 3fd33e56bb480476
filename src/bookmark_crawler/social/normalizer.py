"""Normalization of raw X/Twitter scraper items into :class:`NormalizedSocialPost`.

The upstream actor has shipped several incompatible item shapes over time
(``id`` vs ``tweetId``, ``text`` vs ``fullText``, author fields nested or at
the root, three different media layouts, ...).  Each logical field is
resolved through an ordered tuple of extractors; the first one that yields
a usable value wins.  The tuples are plain module data so they can be read,
tested and extended without touching the control flow.

An item that has neither an id nor any text is dropped with a warning rather
than raised, so a single malformed entry never fails a whole scrape.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import structlog

from bookmark_crawler.social.models import (
    MediaKind,
    NormalizedSocialPost,
    SocialAuthor,
    SocialMedia,
    SocialMetrics,
)
from bookmark_crawler.social.urls import extract_post_id

logger = structlog.get_logger(__name__)

#: Nesting depth (thread continuations and quoted posts) followed below the
#: top-level item.  Deeper structures are cut off, not rejected.
MAX_NESTING_DEPTH: int = 5

_HASHTAG_RE = re.compile(r"#\w+")
_MENTION_RE = re.compile(r"@\w+")

_TWITTER_TIME_FORMAT = "%a %b %d %H:%M:%S %z %Y"

Extractor = Callable[[dict[str, Any]], Any]


def _path(*keys: str) -> Extractor:
    """Return an extractor that walks nested dict keys, yielding ``None`` on any miss."""

    def extract(item: dict[str, Any]) -> Any:
        value: Any = item
        for key in keys:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value

    return extract


# ---------------------------------------------------------------------------
# Alias tables
# ---------------------------------------------------------------------------

ID_EXTRACTORS: tuple[Extractor, ...] = (_path("id"), _path("tweetId"), _path("id_str"))
TEXT_EXTRACTORS: tuple[Extractor, ...] = (_path("text"), _path("fullText"), _path("full_text"))

USERNAME_EXTRACTORS: tuple[Extractor, ...] = (
    _path("author", "userName"),
    _path("author", "username"),
    _path("username"),
    _path("userName"),
)
NAME_EXTRACTORS: tuple[Extractor, ...] = (
    _path("author", "name"),
    _path("author", "displayName"),
    _path("displayName"),
)
AVATAR_EXTRACTORS: tuple[Extractor, ...] = (
    _path("author", "profileImageUrl"),
    _path("author", "profilePicture"),
)
VERIFIED_EXTRACTORS: tuple[Extractor, ...] = (
    _path("author", "isVerified"),
    _path("author", "verified"),
    _path("author", "isBlueVerified"),
)
FOLLOWERS_EXTRACTORS: tuple[Extractor, ...] = (
    _path("author", "followers"),
    _path("author", "followersCount"),
)

LIKES_EXTRACTORS: tuple[Extractor, ...] = (
    _path("likes"),
    _path("favoriteCount"),
    _path("likeCount"),
)
SHARES_EXTRACTORS: tuple[Extractor, ...] = (_path("retweets"), _path("retweetCount"))
REPLIES_EXTRACTORS: tuple[Extractor, ...] = (_path("replies"), _path("replyCount"))
VIEWS_EXTRACTORS: tuple[Extractor, ...] = (_path("viewCount"), _path("views"))
BOOKMARKS_EXTRACTORS: tuple[Extractor, ...] = (_path("bookmarkCount"),)
QUOTES_EXTRACTORS: tuple[Extractor, ...] = (_path("quoteCount"),)

CREATED_AT_EXTRACTORS: tuple[Extractor, ...] = (
    _path("createdAt"),
    _path("date"),
    _path("timestamp"),
)
URL_EXTRACTORS: tuple[Extractor, ...] = (_path("url"), _path("twitterUrl"), _path("tweetUrl"))
QUOTED_EXTRACTORS: tuple[Extractor, ...] = (
    _path("quotedStatus"),
    _path("quotedTweet"),
    _path("quote"),
)


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _as_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_flag(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _as_dict(value: Any) -> Optional[dict[str, Any]]:
    return value if isinstance(value, dict) and value else None


def first_value(
    item: dict[str, Any],
    extractors: Iterable[Extractor],
    coerce: Callable[[Any], Any] = _as_text,
) -> Any:
    """Return the first extractor result that *coerce* accepts, else ``None``."""
    for extract in extractors:
        value = coerce(extract(item))
        if value is not None:
            return value
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse the timestamp shapes seen upstream into an aware UTC datetime.

    Accepts the classic Twitter format (``"Mon Jan 15 12:34:56 +0000 2026"``),
    ISO-8601 strings (with or without ``Z``) and epoch seconds/milliseconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.strptime(text, _TWITTER_TIME_FORMAT)
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    logger.warning("social_normalizer.timestamp_parse_error", value=str(value))
    return None


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


def _media_kind(raw_type: Any) -> MediaKind:
    if raw_type == "video":
        return "video"
    if raw_type in ("animated_gif", "gif"):
        return "gif"
    return "image"


def _flat_media(item: dict[str, Any]) -> list[SocialMedia]:
    found: list[SocialMedia] = []
    photos = item.get("photos") or item.get("images") or []
    for url in photos if isinstance(photos, list) else []:
        if isinstance(url, str) and url:
            found.append(SocialMedia(kind="image", url=url))
    videos = item.get("videos") or []
    for url in videos if isinstance(videos, list) else []:
        if isinstance(url, str) and url:
            found.append(SocialMedia(kind="video", url=url))
    return found


def _unified_media(item: dict[str, Any]) -> list[SocialMedia]:
    raw = item.get("media")
    if not isinstance(raw, list):
        return []
    found: list[SocialMedia] = []
    for entry in raw:
        if isinstance(entry, str) and entry:
            found.append(SocialMedia(kind="image", url=entry))
        elif isinstance(entry, dict):
            url = _as_text(entry.get("url")) or _as_text(entry.get("media_url_https"))
            if not url:
                continue
            duration = _as_count(entry.get("duration"))
            millis = _as_count(entry.get("durationMs"))
            if duration is None and millis is not None:
                duration = round(millis / 1000)
            found.append(
                SocialMedia(
                    kind=_media_kind(entry.get("type")),
                    url=url,
                    thumbnail_url=_as_text(entry.get("thumbnailUrl"))
                    or _as_text(entry.get("thumbnail")),
                    width=_as_count(entry.get("width")),
                    height=_as_count(entry.get("height")),
                    duration_sec=duration,
                )
            )
    return found


def _extended_entities_media(item: dict[str, Any]) -> list[SocialMedia]:
    raw = _path("extendedEntities", "media")(item)
    if not isinstance(raw, list):
        return []
    found: list[SocialMedia] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        url = _as_text(entry.get("media_url_https")) or _as_text(entry.get("media_url"))
        if not url:
            continue
        kind = _media_kind(entry.get("type"))
        duration = None
        millis = _as_count(_path("video_info", "duration_millis")(entry))
        if kind != "image" and millis:
            duration = round(millis / 1000)
        large = _path("sizes", "large")(entry)
        width = height = None
        if isinstance(large, dict):
            width, height = _as_count(large.get("w")), _as_count(large.get("h"))
        found.append(
            SocialMedia(kind=kind, url=url, width=width, height=height, duration_sec=duration)
        )
    return found


def _merge_media(a: SocialMedia, b: SocialMedia) -> SocialMedia:
    """Combine two descriptions of the same URL, the richer one taking precedence."""
    rich, poor = (a, b) if a.richness >= b.richness else (b, a)
    return SocialMedia(
        kind=rich.kind,
        url=rich.url,
        thumbnail_url=rich.thumbnail_url or poor.thumbnail_url,
        width=rich.width if rich.width is not None else poor.width,
        height=rich.height if rich.height is not None else poor.height,
        duration_sec=rich.duration_sec if rich.duration_sec is not None else poor.duration_sec,
    )


def extract_media(item: dict[str, Any]) -> tuple[SocialMedia, ...]:
    """Merge flat URL lists, the unified ``media`` array and ``extendedEntities``.

    One entry per URL survives, in first-seen order.
    """
    merged: dict[str, SocialMedia] = {}
    for media in _flat_media(item) + _unified_media(item) + _extended_entities_media(item):
        existing = merged.get(media.url)
        merged[media.url] = media if existing is None else _merge_media(existing, media)
    return tuple(merged.values())


# ---------------------------------------------------------------------------
# Hashtags / mentions
# ---------------------------------------------------------------------------


def _prefixed(value: Any, prefix: str) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("text") or value.get("screen_name") or value.get("tag")
    text = _as_text(value)
    if text is None:
        return None
    text = text.strip()
    return text if text.startswith(prefix) else prefix + text


def extract_hashtags(item: dict[str, Any], text: str) -> tuple[str, ...]:
    tags: list[str] = []
    for source in (item.get("hashtags"), _path("entities", "hashtags")(item)):
        if isinstance(source, list):
            tags.extend(t for t in (_prefixed(v, "#") for v in source) if t)
    tags.extend(_HASHTAG_RE.findall(text))
    return tuple(dict.fromkeys(tags))


def extract_mentions(item: dict[str, Any], text: str) -> tuple[str, ...]:
    mentions: list[str] = []
    structured = _path("entities", "user_mentions")(item)
    if isinstance(structured, list):
        mentions.extend(m for m in (_prefixed(v, "@") for v in structured) if m)
    mentions.extend(_MENTION_RE.findall(text))
    return tuple(dict.fromkeys(mentions))


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def normalize_item(item: Any, _depth: int = 0) -> Optional[NormalizedSocialPost]:
    """Normalize one raw item, or return ``None`` if it has neither id nor text."""
    if not isinstance(item, dict):
        logger.warning("social_normalizer.item_not_object", item_type=type(item).__name__)
        return None

    url = first_value(item, URL_EXTRACTORS) or ""
    post_id = first_value(item, ID_EXTRACTORS, _as_id) or (extract_post_id(url) if url else None)
    raw_text = first_value(item, TEXT_EXTRACTORS)
    text = raw_text.strip() if raw_text else ""
    if not post_id and not text:
        logger.warning("social_normalizer.item_skipped", reason="no id and no text")
        return None

    author = SocialAuthor(
        username=first_value(item, USERNAME_EXTRACTORS) or "",
        name=first_value(item, NAME_EXTRACTORS) or "",
        avatar_url=first_value(item, AVATAR_EXTRACTORS),
        verified=bool(first_value(item, VERIFIED_EXTRACTORS, _as_flag)),
        follower_count=first_value(item, FOLLOWERS_EXTRACTORS, _as_count),
    )
    metrics = SocialMetrics(
        likes=first_value(item, LIKES_EXTRACTORS, _as_count) or 0,
        shares=first_value(item, SHARES_EXTRACTORS, _as_count) or 0,
        replies=first_value(item, REPLIES_EXTRACTORS, _as_count) or 0,
        views=first_value(item, VIEWS_EXTRACTORS, _as_count),
        bookmarks=first_value(item, BOOKMARKS_EXTRACTORS, _as_count),
        quotes=first_value(item, QUOTES_EXTRACTORS, _as_count),
    )

    raw_thread = item.get("thread")
    thread: tuple[NormalizedSocialPost, ...] = ()
    quoted: Optional[NormalizedSocialPost] = None
    if _depth < MAX_NESTING_DEPTH:
        if isinstance(raw_thread, list):
            thread = tuple(normalize_items(raw_thread, _depth=_depth + 1))
        raw_quote = first_value(item, QUOTED_EXTRACTORS, _as_dict)
        if raw_quote is not None:
            quoted = normalize_item(raw_quote, _depth=_depth + 1)
    elif raw_thread or first_value(item, QUOTED_EXTRACTORS, _as_dict):
        logger.warning("social_normalizer.depth_limit", post_id=post_id, depth=_depth)

    created_raw = None
    for extract in CREATED_AT_EXTRACTORS:
        created_raw = extract(item)
        if created_raw not in (None, ""):
            break

    return NormalizedSocialPost(
        id=post_id,
        text=text,
        author=author,
        metrics=metrics,
        media=extract_media(item),
        hashtags=extract_hashtags(item, text),
        mentions=extract_mentions(item, text),
        thread=thread,
        quoted_post=quoted,
        url=url,
        created_at=parse_timestamp(created_raw),
        is_thread=bool(item.get("isThread")) or bool(thread),
    )


def normalize_items(items: Iterable[Any], _depth: int = 0) -> list[NormalizedSocialPost]:
    """Normalize a list of raw items, dropping those without id and text."""
    posts = []
    for item in items:
        post = normalize_item(item, _depth=_depth)
        if post is not None:
            posts.append(post)
    return posts
