"""Tests for ``EnhancedSocialScraper``.

The Apify client is replaced by a ``MagicMock`` built through the scraper's
``client_factory`` hook, so no API token or network is needed.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bookmark_crawler.core.exceptions import ThirdPartyServiceError
from bookmark_crawler.social.scraper import DATASET_ATTEMPTS, EnhancedSocialScraper
from tests.conftest import make_settings

POST_URL = "https://x.com/acme/status/1789"

_ITEM = {
    "id": "1789",
    "text": "Launching today!",
    "url": POST_URL,
    "author": {"userName": "acme", "name": "Acme Corp"},
}


def _client(*pages: list[Any], run: Any = None, call_error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    actor = MagicMock()
    actor.call = AsyncMock(
        return_value={"defaultDatasetId": "ds1"} if run is None else run,
        side_effect=call_error,
    )
    client.actor.return_value = actor
    dataset = MagicMock()
    dataset.list_items = AsyncMock(side_effect=[MagicMock(items=items) for items in pages])
    client.dataset.return_value = dataset
    return client


def _scraper(client: MagicMock, **settings_overrides: Any) -> tuple[EnhancedSocialScraper, MagicMock]:
    values: dict[str, Any] = {"apify_enabled": True, "apify_api_key": "apify-token"}
    values.update(settings_overrides)
    settings = make_settings(**values)
    factory = MagicMock(return_value=client)
    scraper = EnhancedSocialScraper(
        settings_provider=lambda: settings,
        client_factory=factory,
        dataset_retry_delay_sec=0,
        inter_request_delay_sec=0,
    )
    return scraper, factory


class TestFeatureFlag:
    def test_enabled_needs_flag_and_key(self) -> None:
        assert _scraper(_client())[0].is_enabled() is True
        assert _scraper(_client(), apify_enabled=False)[0].is_enabled() is False
        assert _scraper(_client(), apify_api_key=None)[0].is_enabled() is False

    def test_settings_are_read_on_every_check(self) -> None:
        current = {"settings": make_settings(apify_enabled=False, apify_api_key="k")}
        scraper = EnhancedSocialScraper(settings_provider=lambda: current["settings"])

        assert scraper.is_enabled() is False
        current["settings"] = make_settings(apify_enabled=True, apify_api_key="k")
        assert scraper.is_enabled() is True

    def test_status(self) -> None:
        status = _scraper(_client())[0].status()
        assert status == {
            "enabled": True,
            "configured": True,
            "actor_id": "apidojo/twitter-scraper-lite",
        }


@pytest.mark.asyncio
class TestScrape:
    async def test_returns_first_normalized_post(self) -> None:
        client = _client([_ITEM, {"id": "1790", "text": "reply"}])
        scraper, factory = _scraper(client)

        post = await scraper.scrape(POST_URL)

        assert post is not None
        assert post.id == "1789"
        assert post.title == "Acme Corp (@acme)"
        factory.assert_called_once_with("apify-token")
        client.actor.assert_called_once_with("apidojo/twitter-scraper-lite")
        run_input = client.actor.return_value.call.await_args.kwargs["run_input"]
        assert run_input["startUrls"] == [POST_URL]
        client.dataset.assert_called_with("ds1")

    async def test_dataset_polled_until_items_appear(self) -> None:
        client = _client([], [_ITEM])
        scraper, _ = _scraper(client)

        post = await scraper.scrape(POST_URL)

        assert post is not None
        assert client.dataset.return_value.list_items.await_count == 2

    async def test_empty_dataset_returns_none(self) -> None:
        client = _client(*([[]] * DATASET_ATTEMPTS))
        scraper, _ = _scraper(client)

        assert await scraper.scrape(POST_URL) is None
        assert client.dataset.return_value.list_items.await_count == DATASET_ATTEMPTS

    async def test_unusable_items_return_none(self) -> None:
        scraper, _ = _scraper(_client([{"likes": 3}]))
        assert await scraper.scrape(POST_URL) is None

    async def test_non_x_url_rejected(self) -> None:
        scraper, factory = _scraper(_client())
        with pytest.raises(ValueError):
            await scraper.scrape("https://example.com/post")
        factory.assert_not_called()

    async def test_missing_key_raises_service_error(self) -> None:
        scraper, _ = _scraper(_client(), apify_api_key=None)
        with pytest.raises(ThirdPartyServiceError):
            await scraper.scrape(POST_URL)

    async def test_actor_failure_raises_service_error(self) -> None:
        scraper, _ = _scraper(_client(call_error=RuntimeError("quota exceeded")))
        with pytest.raises(ThirdPartyServiceError, match="quota exceeded") as exc_info:
            await scraper.scrape(POST_URL)
        assert exc_info.value.service == "apify"

    async def test_run_without_dataset_raises_service_error(self) -> None:
        scraper, _ = _scraper(_client(run={}))
        with pytest.raises(ThirdPartyServiceError):
            await scraper.scrape(POST_URL)


@pytest.mark.asyncio
class TestScrapeMany:
    async def test_failures_become_none(self) -> None:
        scraper, _ = _scraper(_client())
        post = MagicMock()

        async def _fake_scrape(url: str) -> Any:
            if "fail" in url:
                raise ThirdPartyServiceError("boom", service="apify")
            return post

        with patch.object(scraper, "scrape", side_effect=_fake_scrape):
            results = await scraper.scrape_many(
                [POST_URL, "https://x.com/a/status/fail", "https://example.com/"]
            )

        assert results[0] is post
        assert results[1] is None
        assert results[2] is post
