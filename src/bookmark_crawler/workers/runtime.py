"""Per-process runtime shared by all crawler tasks.

Celery task bodies are synchronous, but the crawl pipeline is asyncio and
its long-lived components (browser pool, HTTP client, batch collector
timers) must outlive a single task.  :class:`WorkerRuntime` therefore owns
one event loop running forever in a daemon thread; tasks submit coroutines
to it with :meth:`WorkerRuntime.run` and block until they finish.

The runtime is built in ``worker_process_init`` and torn down in
``worker_process_shutdown`` (see ``workers/celery_app.py``).  Code running
outside a Celery worker (eager mode, scripts) gets a lazily started runtime
from :func:`get_runtime`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Coroutine, Optional, TypeVar

import httpx

from bookmark_crawler.config.settings import Settings, get_settings
from bookmark_crawler.core.asset_store import AssetStore
from bookmark_crawler.core.database import dispose_engine
from bookmark_crawler.core.repository import BookmarkRepository
from bookmark_crawler.scraper.adblock import AdBlocker
from bookmark_crawler.scraper.browser_pool import BrowserContextPool
from bookmark_crawler.scraper.config import USER_AGENT
from bookmark_crawler.scraper.orchestrator import CrawlOrchestrator
from bookmark_crawler.social.scraper import EnhancedSocialScraper
from bookmark_crawler.workers.batch_collector import EnrichmentBatchCollector
from bookmark_crawler.workers.queues import JobQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerRuntime:
    """Event loop thread plus the singletons every crawl task shares."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

        self.http_client: Optional[httpx.AsyncClient] = None
        self.pool: Optional[BrowserContextPool] = None
        self.job_queue: Optional[JobQueue] = None
        self.repository: Optional[BookmarkRepository] = None
        self.orchestrator: Optional[CrawlOrchestrator] = None
        self.collector: Optional[EnrichmentBatchCollector] = None

    @property
    def started(self) -> bool:
        return self._loop is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the loop thread and build the shared components."""
        if self._loop is not None:
            return
        loop = asyncio.new_event_loop()
        thread = threading.Thread(target=loop.run_forever, name="crawler-loop", daemon=True)
        thread.start()
        self._loop, self._thread = loop, thread
        self.run(self._startup())
        logger.info("runtime: started")

    def stop(self) -> None:
        """Flush the collector, close the pool and stop the loop thread."""
        loop, thread = self._loop, self._thread
        if loop is None or thread is None:
            return
        try:
            self.run(self._shutdown())
        finally:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=10)
            loop.close()
            self._loop = self._thread = None
        logger.info("runtime: stopped")

    def run(self, coro: Coroutine[Any, Any, T], timeout: Optional[float] = None) -> T:
        """Run *coro* on the runtime loop and block until it completes."""
        if self._loop is None:
            coro.close()
            raise RuntimeError("WorkerRuntime is not started")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout)

    async def _startup(self) -> None:
        settings = self._settings
        self.http_client = httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        self.pool = BrowserContextPool.from_settings(settings)
        if not settings.crawler_browser_connect_on_demand:
            try:
                await self.pool.initialize()
            except Exception as exc:  # noqa: BLE001
                logger.error("runtime: browser connection failed, scheduling reconnect: %s", exc)
                self.pool.schedule_reconnect()

        self.job_queue = JobQueue()
        self.repository = BookmarkRepository()
        self.orchestrator = CrawlOrchestrator(
            settings=settings,
            repository=self.repository,
            asset_store=AssetStore(settings.assets_dir),
            job_queue=self.job_queue,
            pool=self.pool,
            http_client=self.http_client,
            social_scraper=EnhancedSocialScraper(),
            adblocker=AdBlocker() if settings.crawler_enable_adblocker else None,
        )
        self.collector = EnrichmentBatchCollector.from_settings(
            self.job_queue.enqueue_description_batch,
            settings,
        )

    async def _shutdown(self) -> None:
        if self.collector is not None:
            await self.collector.shutdown()
        if self.pool is not None:
            await self.pool.close()
        if self.http_client is not None:
            await self.http_client.aclose()
        await dispose_engine()


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_runtime: Optional[WorkerRuntime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> WorkerRuntime:
    """Return the process runtime, starting it on first use."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            runtime = WorkerRuntime()
            runtime.start()
            _runtime = runtime
        return _runtime


def shutdown_runtime() -> None:
    global _runtime
    with _runtime_lock:
        runtime, _runtime = _runtime, None
    if runtime is not None:
        runtime.stop()
