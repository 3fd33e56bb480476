"""Actor-based scraping of X/Twitter posts via Apify.

:class:`EnhancedSocialScraper` runs the configured Apify actor for one post
URL, fetches the run's dataset and normalizes the first usable item.

Dataset materialisation can trail the actor run by a few seconds, so the
dataset is polled a fixed number of times with a fixed delay.  An empty
dataset is a normal "no result" (``None``); only service, auth or quota
failures raise, as :class:`ThirdPartyServiceError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from apify_client import ApifyClientAsync

from bookmark_crawler.config.settings import Settings, get_settings
from bookmark_crawler.core.exceptions import ThirdPartyServiceError
from bookmark_crawler.social.models import NormalizedSocialPost
from bookmark_crawler.social.normalizer import normalize_items
from bookmark_crawler.social.urls import is_x_url

logger = logging.getLogger(__name__)

_SERVICE = "apify"

#: Items requested per run.  Threads come back as several items.
MAX_ITEMS: int = 50

#: Upper bound for one actor run, in seconds.
ACTOR_TIMEOUT_SEC: int = 300

DATASET_ATTEMPTS: int = 3
DATASET_RETRY_DELAY_SEC: float = 5.0

#: Pause between consecutive URLs in :meth:`EnhancedSocialScraper.scrape_many`.
INTER_REQUEST_DELAY_SEC: float = 2.0


class EnhancedSocialScraper:
    """Scrape X posts through an Apify actor and normalize the result.

    Args:
        settings_provider: Returns the current settings.  Called on every
            :meth:`is_enabled` check so a flag flipped between enqueue and
            execution is honoured.
        client_factory: Builds an Apify client from an API token.  Defaults
            to :class:`apify_client.ApifyClientAsync`.
        dataset_retry_delay_sec: Delay between dataset polls.
        inter_request_delay_sec: Delay between URLs in :meth:`scrape_many`.
    """

    def __init__(
        self,
        settings_provider: Callable[[], Settings] = get_settings,
        client_factory: Callable[[str], Any] = ApifyClientAsync,
        dataset_retry_delay_sec: float = DATASET_RETRY_DELAY_SEC,
        inter_request_delay_sec: float = INTER_REQUEST_DELAY_SEC,
    ) -> None:
        self._settings_provider = settings_provider
        self._client_factory = client_factory
        self._dataset_retry_delay_sec = dataset_retry_delay_sec
        self._inter_request_delay_sec = inter_request_delay_sec

    @property
    def actor_id(self) -> str:
        return self._settings_provider().apify_x_scraper_actor_id

    def is_enabled(self) -> bool:
        """``True`` when the feature flag is on and an API key is configured."""
        settings = self._settings_provider()
        return settings.apify_enabled and settings.apify_configured

    def status(self) -> dict[str, Any]:
        settings = self._settings_provider()
        return {
            "enabled": self.is_enabled(),
            "configured": settings.apify_configured,
            "actor_id": settings.apify_x_scraper_actor_id,
        }

    # ------------------------------------------------------------------
    # Scraping
    # ------------------------------------------------------------------

    async def scrape(self, url: str) -> Optional[NormalizedSocialPost]:
        """Scrape one X post URL.

        Returns:
            The normalized main post (with its thread and quoted post), or
            ``None`` when the actor produced no usable items.

        Raises:
            ValueError: If *url* is not an X/Twitter URL.
            ThirdPartyServiceError: If the actor run or dataset fetch fails,
                or no API key is configured.
        """
        if not is_x_url(url):
            raise ValueError(f"Not an X/Twitter URL: {url}")

        settings = self._settings_provider()
        if not settings.apify_api_key:
            raise ThirdPartyServiceError("APIFY_API_KEY is not configured", service=_SERVICE)

        logger.info("apify: starting scrape for %s", url)
        client = self._client_factory(settings.apify_api_key)
        items = await self._run_actor(client, settings.apify_x_scraper_actor_id, url)
        if not items:
            logger.warning("apify: no results for %s", url)
            return None

        posts = normalize_items(items)
        if not posts:
            logger.warning("apify: %d item(s) for %s but none usable", len(items), url)
            return None

        logger.info("apify: scraped %s (%d post(s))", url, len(posts))
        return posts[0]

    async def scrape_many(self, urls: list[str]) -> list[Optional[NormalizedSocialPost]]:
        """Scrape several URLs one after another.

        A URL that fails for any reason yields ``None`` in its slot.
        """
        results: list[Optional[NormalizedSocialPost]] = []
        for i, url in enumerate(urls):
            if i:
                await asyncio.sleep(self._inter_request_delay_sec)
            try:
                results.append(await self.scrape(url))
            except (ValueError, ThirdPartyServiceError) as exc:
                logger.error("apify: failed to scrape %s: %s", url, exc)
                results.append(None)
        return results

    async def _run_actor(self, client: Any, actor_id: str, url: str) -> list[Any]:
        run_input = {"startUrls": [url], "maxItems": MAX_ITEMS}
        logger.debug("apify: running actor %s with %s", actor_id, run_input)
        try:
            run = await client.actor(actor_id).call(
                run_input=run_input,
                timeout_secs=ACTOR_TIMEOUT_SEC,
            )
        except Exception as exc:  # noqa: BLE001
            raise ThirdPartyServiceError(
                f"Apify actor run failed: {exc}",
                service=_SERVICE,
                status_code=getattr(exc, "status_code", None),
            ) from exc

        if not run or not run.get("defaultDatasetId"):
            raise ThirdPartyServiceError(
                f"Apify actor {actor_id} returned no run for {url}",
                service=_SERVICE,
            )

        dataset_id = run["defaultDatasetId"]
        items: list[Any] = []
        for attempt in range(1, DATASET_ATTEMPTS + 1):
            try:
                page = await client.dataset(dataset_id).list_items()
            except Exception as exc:  # noqa: BLE001
                raise ThirdPartyServiceError(
                    f"Apify dataset fetch failed: {exc}",
                    service=_SERVICE,
                    status_code=getattr(exc, "status_code", None),
                ) from exc
            items = list(page.items)
            logger.debug("apify: attempt %d retrieved %d item(s)", attempt, len(items))
            if items:
                break
            if attempt < DATASET_ATTEMPTS:
                await asyncio.sleep(self._dataset_retry_delay_sec)
        else:
            logger.warning("apify: dataset %s empty after %d attempts", dataset_id, DATASET_ATTEMPTS)
        return items
