"""Request-level ad and tracker blocking for pooled browser pages.

Routes are installed on the *page*, not the context, because contexts are
pooled and reused across jobs while pages are created per crawl.
"""

from __future__ import annotations

import logging
from typing import Iterable
from urllib.parse import urlsplit

from playwright.async_api import Page, Route

logger = logging.getLogger(__name__)

#: Registrable domains whose requests are aborted, including all subdomains.
DEFAULT_BLOCKED_DOMAINS: frozenset[str] = frozenset(
    {
        "doubleclick.net",
        "googlesyndication.com",
        "googleadservices.com",
        "google-analytics.com",
        "googletagmanager.com",
        "googletagservices.com",
        "adservice.google.com",
        "amazon-adsystem.com",
        "adnxs.com",
        "criteo.com",
        "criteo.net",
        "taboola.com",
        "outbrain.com",
        "scorecardresearch.com",
        "quantserve.com",
        "moatads.com",
        "pubmatic.com",
        "rubiconproject.com",
        "openx.net",
        "hotjar.com",
        "mixpanel.com",
        "segment.io",
        "connect.facebook.net",
    }
)


class AdBlocker:
    """Aborts requests to known ad and tracking hosts.

    Args:
        blocked_domains: Domains to block.  A request is blocked when its host
            equals one of them or is a subdomain of one.
    """

    def __init__(self, blocked_domains: Iterable[str] = DEFAULT_BLOCKED_DOMAINS) -> None:
        self._blocked = frozenset(d.lower().lstrip(".") for d in blocked_domains)

    def is_blocked(self, url: str) -> bool:
        try:
            host = (urlsplit(url).hostname or "").lower()
        except ValueError:
            return False
        while host:
            if host in self._blocked:
                return True
            _, _, host = host.partition(".")
        return False

    async def enable(self, page: Page) -> None:
        """Install the blocking route handler on *page*."""
        await page.route("**/*", self._handle)

    async def _handle(self, route: Route) -> None:
        if self.is_blocked(route.request.url):
            await route.abort()
            return
        await route.continue_()
