"""Plain HTTP operations of the crawl pipeline, built on ``httpx``.

- :func:`probe_content_type` — short HEAD request used to classify a URL
- :func:`fetch_browserless` — timed GET used when no browser context is available
- :func:`download_file` — fetch a binary resource (PDF, image, banner)

All functions take a shared :class:`httpx.AsyncClient`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from bookmark_crawler.core.exceptions import TransientNetworkError
from bookmark_crawler.scraper.config import (
    BROWSERLESS_FETCH_TIMEOUT_SEC,
    DOWNLOAD_TIMEOUT_SEC,
    PROBE_TIMEOUT_SEC,
    USER_AGENT,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class CrawlResult:
    """Page content acquired for one crawl job.

    Attributes:
        html: Final page HTML.
        status_code: HTTP status of the main document (0 if unknown).
        final_url: URL after redirects.
        screenshot: PNG bytes, or ``None`` when no screenshot was taken.
    """

    html: str
    status_code: int
    final_url: str
    screenshot: bytes | None = None


@dataclass
class DownloadedFile:
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


def _mime_type(content_type: str | None) -> Optional[str]:
    """``"Text/HTML; charset=utf-8"`` -> ``"text/html"``."""
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime or None


# ---------------------------------------------------------------------------
# Public functions
# ---------------------------------------------------------------------------


async def probe_content_type(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: float = PROBE_TIMEOUT_SEC,
) -> Optional[str]:
    """Return the MIME type reported by a HEAD request, or ``None``.

    Any failure (timeout, refused connection, server that rejects HEAD) is
    logged and yields ``None`` so the caller proceeds with a regular crawl.
    """
    try:
        response = await client.head(
            url,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
    except httpx.HTTPError as exc:
        logger.error("crawler: failed to determine the content-type for %s: %s", url, exc)
        return None
    mime = _mime_type(response.headers.get("content-type"))
    logger.info("crawler: content-type for %s is %r", url, mime)
    return mime


async def fetch_browserless(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: float = BROWSERLESS_FETCH_TIMEOUT_SEC,
) -> CrawlResult:
    """Fetch *url* with a plain GET.  No screenshot is produced.

    Raises:
        TransientNetworkError: On timeouts and connection failures.
    """
    logger.info("crawler: running browserless, plain HTTP request to %s", url)
    try:
        response = await client.get(
            url,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
    except httpx.TimeoutException as exc:
        raise TransientNetworkError(f"Timed out fetching {url}", url=url) from exc
    except httpx.RequestError as exc:
        raise TransientNetworkError(f"Request error fetching {url}: {exc}", url=url) from exc

    logger.info(
        "crawler: fetched %s (status=%d, size=%d)",
        url,
        response.status_code,
        len(response.content),
    )
    return CrawlResult(
        html=response.text,
        status_code=response.status_code,
        final_url=str(response.url),
    )


async def download_file(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: float = DOWNLOAD_TIMEOUT_SEC,
) -> Optional[DownloadedFile]:
    """Download a binary resource.

    Returns ``None`` (after logging) on network errors, non-2xx responses and
    responses without a ``Content-Type`` header.
    """
    try:
        response = await client.get(
            url,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
    except httpx.HTTPError as exc:
        logger.error("crawler: failed to download %s: %s", url, exc)
        return None

    if not response.is_success:
        logger.error("crawler: failed to download %s: HTTP %d", url, response.status_code)
        return None

    mime = _mime_type(response.headers.get("content-type"))
    if mime is None:
        logger.error("crawler: no content type in the response for %s", url)
        return None

    return DownloadedFile(data=response.content, content_type=mime)
