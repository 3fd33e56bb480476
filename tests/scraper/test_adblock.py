"""Unit tests for the request-level ad blocker."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from bookmark_crawler.scraper.adblock import AdBlocker


class TestIsBlocked:
    def test_blocks_listed_domain(self) -> None:
        assert AdBlocker().is_blocked("https://doubleclick.net/ad.js") is True

    def test_blocks_subdomains(self) -> None:
        assert AdBlocker().is_blocked("https://stats.g.doubleclick.net/collect") is True

    def test_allows_regular_hosts(self) -> None:
        assert AdBlocker().is_blocked("https://example.com/app.js") is False

    def test_does_not_match_on_suffix_alone(self) -> None:
        assert AdBlocker().is_blocked("https://notdoubleclick.net/") is False

    def test_custom_list(self) -> None:
        blocker = AdBlocker(["Ads.Example.org"])
        assert blocker.is_blocked("https://cdn.ads.example.org/x") is True
        assert blocker.is_blocked("https://doubleclick.net/") is False


def _route(url: str) -> MagicMock:
    route = MagicMock()
    route.request.url = url
    route.abort = AsyncMock()
    route.continue_ = AsyncMock()
    return route


@pytest.mark.asyncio
class TestRouteHandler:
    async def test_enable_routes_every_request(self) -> None:
        page = MagicMock()
        page.route = AsyncMock()
        blocker = AdBlocker()

        await blocker.enable(page)

        page.route.assert_awaited_once()
        assert page.route.await_args.args[0] == "**/*"

    async def test_blocked_request_is_aborted(self) -> None:
        route = _route("https://www.google-analytics.com/analytics.js")
        await AdBlocker()._handle(route)
        route.abort.assert_awaited_once()
        route.continue_.assert_not_awaited()

    async def test_other_request_continues(self) -> None:
        route = _route("https://example.com/")
        await AdBlocker()._handle(route)
        route.continue_.assert_awaited_once()
        route.abort.assert_not_awaited()
