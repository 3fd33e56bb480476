"""URL helpers for X (formerly Twitter) post links."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

#: Hosts served by X.  ``mobile.`` variants are accepted for matching but
#: rewritten away by :func:`normalize_x_url`.
X_HOSTS: frozenset[str] = frozenset(
    {
        "x.com",
        "www.x.com",
        "mobile.x.com",
        "twitter.com",
        "www.twitter.com",
        "mobile.twitter.com",
    }
)

#: First path segments that are app pages rather than user handles.
_RESERVED_PATHS: frozenset[str] = frozenset(
    {"i", "home", "explore", "notifications", "messages", "bookmarks", "settings"}
)

_TRACKING_PARAMS: frozenset[str] = frozenset(
    {"s", "t", "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term"}
)

_TRACKING_FRAGMENT_RE = re.compile(r"^[A-Za-z0-9_-]*$")


def _hostname(url: str) -> Optional[str]:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def is_x_url(url: str) -> bool:
    """Return ``True`` if *url* points at an X/Twitter host."""
    return _hostname(url) in X_HOSTS


def is_post_url(url: str) -> bool:
    """Return ``True`` if *url* points at a single post (``/<user>/status/<id>``)."""
    try:
        return "/status/" in urlsplit(url).path
    except ValueError:
        return False


def extract_post_id(url: str) -> Optional[str]:
    """Return the post id from a ``/status/<id>`` URL, or ``None``."""
    try:
        parts = urlsplit(url).path.split("/")
    except ValueError:
        return None
    if "status" not in parts:
        return None
    idx = parts.index("status")
    if idx + 1 < len(parts) and parts[idx + 1]:
        return parts[idx + 1]
    return None


def extract_username(url: str) -> Optional[str]:
    """Return the handle in the first path segment, skipping app pages."""
    try:
        parts = [p for p in urlsplit(url).path.split("/") if p]
    except ValueError:
        return None
    if parts and parts[0] not in _RESERVED_PATHS:
        return parts[0]
    return None


def normalize_x_url(url: str) -> str:
    """Canonicalise an X/Twitter URL.

    - ``twitter.com`` becomes ``x.com``
    - the ``mobile.`` host prefix is dropped
    - share/tracking query parameters (``s``, ``t``, ``utm_*``) are removed
    - a bare-token fragment is removed

    Unparseable input is returned unchanged.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.netloc:
        return url

    netloc = parts.netloc.replace("twitter.com", "x.com")
    if netloc.startswith("mobile."):
        netloc = netloc[len("mobile."):]

    query = urlencode(
        [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in _TRACKING_PARAMS]
    )
    fragment = "" if _TRACKING_FRAGMENT_RE.match(parts.fragment) else parts.fragment
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))
