"""Per-job crawl pipeline for link bookmarks.

:class:`CrawlOrchestrator` drives one bookmark through these stages, checking
the job's cancellation token between them:

1. **validate** — http(s) only, loopback hostnames rejected (terminal)
2. **classify** — HEAD probe for the content type
3. **asset branch** — PDFs and supported images are downloaded and the
   bookmark is converted into an asset bookmark; the pipeline ends there
4. **enhanced branch** — X posts are scraped through the Apify actor when
   the feature is enabled; any failure falls through to step 5 silently
5. **generic branch** — precrawled archive, pooled browser or plain GET
6. **extract** — metadata rule chain and readable content
7. **persist** — link fields and screenshot/banner assets in one transaction
8. **fan out** — inference, search reindex, video, webhook
9. **archive** — optional ``monolith`` full-page archive (generic path only),
   run after the job deadline under its own timeout

Only validation errors, cancellation and unrecovered network errors
propagate.  Screenshot, banner image, archival and enhanced-scraping
failures are logged and absorbed.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlsplit

import httpx
from sqlalchemy.exc import SQLAlchemyError

from bookmark_crawler.config.settings import Settings
from bookmark_crawler.core.asset_store import AssetMetadata, AssetStore
from bookmark_crawler.core.cancellation import CancellationToken
from bookmark_crawler.core.exceptions import (
    AssetStorageError,
    CrawlValidationError,
    JobCancelledError,
    TransientNetworkError,
)
from bookmark_crawler.core.models import AssetType
from bookmark_crawler.core.repository import (
    AssetReplacement,
    BookmarkDetails,
    BookmarkRepository,
    NewBookmarkAsset,
)
from bookmark_crawler.scraper.adblock import AdBlocker
from bookmark_crawler.scraper.archiver import ArchiveError, archive_html
from bookmark_crawler.scraper.browser_pool import BrowserContextPool
from bookmark_crawler.scraper.config import (
    ARCHIVE_CONTENT_TYPE,
    DENIED_HOSTNAMES,
    PDF_CONTENT_TYPE,
    SCREENSHOT_CONTENT_TYPE,
    SCREENSHOT_FILE_NAME,
    SUPPORTED_IMAGE_TYPES,
)
from bookmark_crawler.scraper.content_extractor import extract_readable_content
from bookmark_crawler.scraper.http_fetcher import CrawlResult, download_file, probe_content_type
from bookmark_crawler.scraper.metadata import extract_metadata
from bookmark_crawler.scraper.playwright_fetcher import CrawlOptions, crawl_page
from bookmark_crawler.social.models import X_PUBLISHER, NormalizedSocialPost
from bookmark_crawler.social.rendering import render_post_body, render_post_html
from bookmark_crawler.social.scraper import EnhancedSocialScraper
from bookmark_crawler.social.urls import is_x_url
from bookmark_crawler.workers.queues import JobQueue

logger = logging.getLogger(__name__)

Archiver = Callable[..., Awaitable[Path]]

#: Work that runs after the job-wide deadline has been lifted.
FollowUp = Callable[[], Awaitable[None]]

#: Inference kinds enqueued after every successful crawl.
INFERENCE_KINDS: tuple[str, ...] = ("tag", "summarize", "enhance-description")


@dataclass(frozen=True)
class CrawlJob:
    """One dequeued crawl request.

    Attributes:
        job_id: Queue job id, used in log lines.
        bookmark_id: Link bookmark to crawl.
        archive_full_page: Archive the page even if the global setting is off.
        run_inference: ``False`` skips the inference fan-out.
        cancellation: Token checked between pipeline stages.
    """

    job_id: str
    bookmark_id: str
    archive_full_page: bool = False
    run_inference: Optional[bool] = None
    cancellation: CancellationToken = field(default_factory=CancellationToken)


@dataclass(frozen=True)
class CrawlOutcome:
    path: str
    status_code: Optional[int] = None


def validate_url(url: str) -> None:
    """Basic target checks: http(s) scheme and no loopback hostname.

    This is not SSRF protection; DNS pointing at a private address or a
    redirect still gets through.

    Raises:
        CrawlValidationError: If the URL is rejected.
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError as exc:
        raise CrawlValidationError(f"Malformed URL: {url}", url=url) from exc
    if parts.scheme.lower() not in ("http", "https"):
        raise CrawlValidationError(f"Unsupported URL protocol: {parts.scheme or '(none)'}", url=url)
    if not hostname:
        raise CrawlValidationError(f"URL has no hostname: {url}", url=url)
    if hostname.lower() in DENIED_HOSTNAMES:
        raise CrawlValidationError(f"Link hostname rejected: {hostname}", url=url)


class CrawlOrchestrator:
    """Runs the crawl pipeline for link bookmarks.

    Args:
        settings: Crawler settings.
        repository: Transactional bookmark persistence.
        asset_store: Binary asset storage.
        job_queue: Downstream job producer.
        pool: Shared browser context pool.
        http_client: Shared client for probes, plain fetches and downloads.
        social_scraper: Enhanced X scraper; ``None`` disables the enhanced path.
        adblocker: Request filter applied to pooled pages, if any.
        archiver: Full-page archiver, :func:`archive_html` by default.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        repository: BookmarkRepository,
        asset_store: AssetStore,
        job_queue: JobQueue,
        pool: BrowserContextPool,
        http_client: httpx.AsyncClient,
        social_scraper: Optional[EnhancedSocialScraper] = None,
        adblocker: Optional[AdBlocker] = None,
        archiver: Archiver = archive_html,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._assets = asset_store
        self._queue = job_queue
        self._pool = pool
        self._http = http_client
        self._social = social_scraper
        self._adblocker = adblocker
        self._archiver = archiver
        self._crawl_options = CrawlOptions.from_settings(settings)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, job: CrawlJob) -> CrawlOutcome:
        """Crawl one bookmark within the configured job timeout.

        Full-page archival happens after the metadata commit and is not
        counted against the job timeout; it is bounded by
        ``crawler_archive_timeout_sec`` instead.

        Raises:
            CrawlValidationError: Terminal: bad URL or not a link bookmark.
            JobCancelledError: The job's token fired.
            TransientNetworkError: Navigation/fetch failure or job timeout.
        """
        timeout = self._settings.crawler_job_timeout_sec
        try:
            outcome, follow_up = await asyncio.wait_for(self._run(job), timeout=timeout)
        except asyncio.TimeoutError as exc:
            job.cancellation.cancel("timeout")
            raise TransientNetworkError(f"Crawl job {job.job_id} exceeded {timeout}s") from exc
        if follow_up is not None:
            job.cancellation.raise_if_cancelled("archive")
            await follow_up()
        return outcome

    async def _run(self, job: CrawlJob) -> tuple[CrawlOutcome, Optional[FollowUp]]:
        token = job.cancellation
        details = await self._repository.get_bookmark_details(job.bookmark_id)
        url = details.url
        logger.info("crawler[%s]: will crawl %s for link %s", job.job_id, url, job.bookmark_id)

        validate_url(url)
        token.raise_if_cancelled("classify")

        content_type = await probe_content_type(url, client=self._http)
        token.raise_if_cancelled("route")

        if content_type == PDF_CONTENT_TYPE:
            await self._handle_as_asset(job, details, "pdf")
            return CrawlOutcome(path="asset"), None
        if content_type in SUPPORTED_IMAGE_TYPES:
            await self._handle_as_asset(job, details, "image")
            return CrawlOutcome(path="asset"), None

        if self._social is not None and is_x_url(url) and self._social.is_enabled():
            if await self._crawl_enhanced(job, details):
                token.raise_if_cancelled("fan_out")
                await self._fan_out(job, details, include_video=False)
                return CrawlOutcome(path="enhanced"), None

        return await self._crawl_generic(job, details)

    # ------------------------------------------------------------------
    # Asset branch
    # ------------------------------------------------------------------

    async def _handle_as_asset(self, job: CrawlJob, details: BookmarkDetails, kind: str) -> None:
        url = details.url
        logger.info("crawler[%s]: %s points to a %s, converting to an asset bookmark", job.job_id, url, kind)
        downloaded = await download_file(url, client=self._http)
        if downloaded is None:
            return
        job.cancellation.raise_if_cancelled("store_asset")

        file_name = PurePosixPath(urlsplit(url).path).name or None
        asset_id = self._assets.new_asset_id()
        await self._assets.save_asset(
            details.user_id,
            asset_id,
            downloaded.data,
            AssetMetadata(content_type=downloaded.content_type, file_name=file_name),
        )
        try:
            await self._repository.convert_link_to_asset(
                job.bookmark_id,
                details.user_id,
                NewBookmarkAsset(
                    asset_id=asset_id,
                    kind=kind,
                    content_type=downloaded.content_type,
                    size=downloaded.size,
                    file_name=file_name,
                    source_url=url,
                ),
            )
        except Exception:
            await self._assets.silent_delete(details.user_id, asset_id)
            raise
        await self._queue.enqueue_asset_preprocessing(job.bookmark_id, fix_mode=False)

    # ------------------------------------------------------------------
    # Enhanced branch
    # ------------------------------------------------------------------

    async def _crawl_enhanced(self, job: CrawlJob, details: BookmarkDetails) -> bool:
        """Scrape and persist an X post.  ``False`` means "use the generic path"."""
        assert self._social is not None
        logger.info("crawler[%s]: using Apify to scrape %s", job.job_id, details.url)
        try:
            post = await self._social.scrape(details.url)
            if post is None:
                logger.warning(
                    "crawler[%s]: Apify returned no results for %s, falling back to regular crawling",
                    job.job_id,
                    details.url,
                )
                return False
            job.cancellation.raise_if_cancelled("persist")
            await self._persist_social_post(job, details, post)
        except JobCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "crawler[%s]: enhanced scraping failed, falling back to regular crawling: %s",
                job.job_id,
                exc,
            )
            return False
        return True

    async def _persist_social_post(
        self,
        job: CrawlJob,
        details: BookmarkDetails,
        post: NormalizedSocialPost,
    ) -> None:
        document = render_post_html(post)
        meta = await asyncio.to_thread(extract_metadata, document, details.url, post)

        banner = None
        image = post.first_image
        if image is not None:
            banner = await self._store_banner(job, details, image.url)

        fields: dict[str, Any] = {
            "title": meta.title or post.title,
            "description": meta.description or post.text,
            "image_url": None if banner is not None else post.author.avatar_url,
            "content": post.text,
            "html_content": render_post_body(post),
            "crawled_at": datetime.now(timezone.utc),
            "author": meta.author or post.author.display_name,
            "publisher": meta.publisher or X_PUBLISHER,
            "date_published": post.created_at,
        }
        await self._repository.update_link_content(
            job.bookmark_id,
            fields,
            [banner] if banner is not None else [],
        )
        if banner is not None:
            await self._assets.silent_delete(details.user_id, details.image_asset_id)
        logger.info("crawler[%s]: stored Apify results for bookmark %s", job.job_id, job.bookmark_id)

    # ------------------------------------------------------------------
    # Generic branch
    # ------------------------------------------------------------------

    async def _crawl_generic(
        self, job: CrawlJob, details: BookmarkDetails
    ) -> tuple[CrawlOutcome, Optional[FollowUp]]:
        token = job.cancellation
        result = await self._acquire_page(job, details)
        token.raise_if_cancelled("extract")

        meta = await asyncio.to_thread(extract_metadata, result.html, result.final_url)
        readable = await asyncio.to_thread(extract_readable_content, result.html, result.final_url)
        screenshot = await self._store_screenshot(job, details, result.screenshot)
        token.raise_if_cancelled("banner")

        banner = None
        if meta.image_url and not meta.image_url.startswith("data:"):
            banner = await self._store_banner(job, details, meta.image_url)
        token.raise_if_cancelled("persist")

        fields: dict[str, Any] = {
            "title": meta.title,
            "description": meta.description,
            # Data URIs are not URLs and are usually large.
            "image_url": None
            if meta.image_url and meta.image_url.startswith("data:")
            else meta.image_url,
            "favicon": meta.logo,
            "content": readable.text if readable else None,
            "html_content": readable.html if readable else None,
            "crawled_at": datetime.now(timezone.utc),
            "crawl_status_code": result.status_code,
            "author": meta.author,
            "publisher": meta.publisher,
            "date_published": meta.date_published,
            "date_modified": meta.date_modified,
        }
        replacements = [a for a in (screenshot, banner) if a is not None]
        await self._repository.update_link_content(job.bookmark_id, fields, replacements)

        if screenshot is not None:
            await self._assets.silent_delete(details.user_id, details.screenshot_asset_id)
        if banner is not None:
            await self._assets.silent_delete(details.user_id, details.image_asset_id)

        token.raise_if_cancelled("fan_out")
        await self._fan_out(job, details, include_video=True)

        outcome = CrawlOutcome(path="generic", status_code=result.status_code)
        if not details.precrawled_archive_asset_id and (
            self._settings.crawler_full_page_archive or job.archive_full_page
        ):
            return outcome, functools.partial(self._archive, job, details, result)
        return outcome, None

    async def _acquire_page(self, job: CrawlJob, details: BookmarkDetails) -> CrawlResult:
        if details.precrawled_archive_asset_id:
            logger.info("crawler[%s]: using the precrawled archive instead of fetching", job.job_id)
            stored = await self._assets.read_asset(details.user_id, details.precrawled_archive_asset_id)
            return CrawlResult(
                html=stored.data.decode("utf-8", errors="replace"),
                status_code=200,
                final_url=details.url,
            )
        return await crawl_page(
            details.url,
            pool=self._pool,
            client=self._http,
            options=self._crawl_options,
            adblocker=self._adblocker,
            cancellation=job.cancellation,
            job_id=job.job_id,
        )

    # ------------------------------------------------------------------
    # Optional assets
    # ------------------------------------------------------------------

    async def _store_screenshot(
        self,
        job: CrawlJob,
        details: BookmarkDetails,
        screenshot: Optional[bytes],
    ) -> Optional[AssetReplacement]:
        if not self._settings.crawler_store_screenshot:
            logger.info("crawler[%s]: skipping storing the screenshot as per the config", job.job_id)
            return None
        if not screenshot:
            return None
        asset_id = self._assets.new_asset_id()
        try:
            await self._assets.save_asset(
                details.user_id,
                asset_id,
                screenshot,
                AssetMetadata(content_type=SCREENSHOT_CONTENT_TYPE, file_name=SCREENSHOT_FILE_NAME),
            )
        except AssetStorageError as exc:
            logger.warning("crawler[%s]: failed to store the screenshot: %s", job.job_id, exc)
            return None
        logger.info("crawler[%s]: stored the screenshot as asset %s", job.job_id, asset_id)
        return AssetReplacement(
            asset_id=asset_id,
            asset_type=AssetType.LINK_SCREENSHOT,
            user_id=details.user_id,
            content_type=SCREENSHOT_CONTENT_TYPE,
            size=len(screenshot),
            file_name=SCREENSHOT_FILE_NAME,
            previous_asset_id=details.screenshot_asset_id,
        )

    async def _store_banner(
        self,
        job: CrawlJob,
        details: BookmarkDetails,
        image_url: str,
    ) -> Optional[AssetReplacement]:
        if not self._settings.crawler_download_banner_image:
            logger.info("crawler[%s]: skipping the banner image as per the config", job.job_id)
            return None
        downloaded = await download_file(image_url, client=self._http)
        if downloaded is None:
            return None
        asset_id = self._assets.new_asset_id()
        try:
            await self._assets.save_asset(
                details.user_id,
                asset_id,
                downloaded.data,
                AssetMetadata(content_type=downloaded.content_type),
            )
        except AssetStorageError as exc:
            logger.warning("crawler[%s]: failed to store the banner image: %s", job.job_id, exc)
            return None
        logger.info("crawler[%s]: downloaded banner image as asset %s", job.job_id, asset_id)
        return AssetReplacement(
            asset_id=asset_id,
            asset_type=AssetType.LINK_BANNER_IMAGE,
            user_id=details.user_id,
            content_type=downloaded.content_type,
            size=downloaded.size,
            previous_asset_id=details.image_asset_id,
        )

    async def _archive(self, job: CrawlJob, details: BookmarkDetails, result: CrawlResult) -> None:
        logger.info("crawler[%s]: will attempt to archive the page", job.job_id)
        timeout = self._settings.crawler_archive_timeout_sec
        try:
            path = await asyncio.wait_for(
                self._archiver(result.html, result.final_url, timeout_sec=timeout),
                timeout=timeout,
            )
        except ArchiveError as exc:
            logger.warning("crawler[%s]: full-page archival failed: %s", job.job_id, exc)
            return
        except asyncio.TimeoutError:
            logger.warning("crawler[%s]: full-page archival timed out after %ss", job.job_id, timeout)
            return

        asset_id = self._assets.new_asset_id()
        try:
            await self._assets.save_asset_from_file(
                details.user_id,
                asset_id,
                path,
                AssetMetadata(content_type=ARCHIVE_CONTENT_TYPE),
            )
            size = await self._assets.get_asset_size(details.user_id, asset_id)
            await self._repository.replace_asset(
                job.bookmark_id,
                AssetReplacement(
                    asset_id=asset_id,
                    asset_type=AssetType.LINK_FULL_PAGE_ARCHIVE,
                    user_id=details.user_id,
                    content_type=ARCHIVE_CONTENT_TYPE,
                    size=size,
                    previous_asset_id=details.full_page_archive_asset_id,
                ),
            )
        except (AssetStorageError, SQLAlchemyError) as exc:
            logger.error("crawler[%s]: failed to store the full-page archive: %s", job.job_id, exc)
            Path(path).unlink(missing_ok=True)
            await self._assets.silent_delete(details.user_id, asset_id)
            return

        await self._assets.silent_delete(details.user_id, details.full_page_archive_asset_id)
        logger.info("crawler[%s]: archived the page as asset %s", job.job_id, asset_id)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _fan_out(self, job: CrawlJob, details: BookmarkDetails, *, include_video: bool) -> None:
        # A missing flag means "run it".
        if job.run_inference is not False:
            for kind in INFERENCE_KINDS:
                await self._queue.enqueue_inference(job.bookmark_id, kind, source="crawler")
        await self._queue.trigger_search_reindex(job.bookmark_id)
        if include_video:
            await self._queue.trigger_video_worker(job.bookmark_id, details.url)
        await self._queue.trigger_webhook(job.bookmark_id, "crawled", user_id=details.user_id)
