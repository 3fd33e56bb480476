"""Pooled browser contexts over one shared remote-browser connection.

:class:`BrowserContextPool` connects to a remote Chromium (Playwright
websocket or Chrome DevTools endpoint), lends out at most ``max_contexts``
isolated :class:`~playwright.async_api.BrowserContext` objects and queues
further callers FIFO until a context is released.

"No context" is signalled by returning ``None``, never by raising: the
crawler then falls back to a plain HTTP fetch.  That covers the browserless
configuration (no endpoint set), a failed on-demand connection, a failed
``new_context`` call and waiters that are still queued when the pool is torn
down.

All bookkeeping happens on one event loop.  Guards (``_reconnecting``,
``_pending_creations``) are checked and set before the first ``await`` of
the operation they protect, so no locks are needed.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from bookmark_crawler.config.settings import Settings
from bookmark_crawler.scraper.config import (
    BROWSER_CONNECT_TIMEOUT_MS,
    BROWSER_SLOW_MO_MS,
    CONTEXT_IDLE_TTL_SEC,
    CONTEXT_SWEEP_INTERVAL_SEC,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY_SEC,
    RECONNECT_JITTER_RATIO,
    RECONNECT_MAX_DELAY_SEC,
    RECONNECT_RETRY_PAUSE_SEC,
    USER_AGENT,
    VIEWPORT,
)

logger = logging.getLogger(__name__)

#: Async callable returning a connected browser, or ``None`` in browserless mode.
Connector = Callable[[], Awaitable[Optional[Browser]]]


class PoolState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    GIVEN_UP = "given_up"
    BROWSERLESS = "browserless"
    CLOSED = "closed"


@dataclass
class PooledContext:
    context: BrowserContext
    in_use: bool
    last_used: float


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


async def _resolve_host(url: str) -> str:
    """Replace the hostname of *url* with its resolved IP address.

    Chrome's DevTools endpoint rejects requests whose ``Host`` header is not
    an IP address or ``localhost``.
    """
    parts = urlsplit(url)
    if not parts.hostname:
        return url
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(parts.hostname, parts.port)
    address = infos[0][4][0]
    host = f"[{address}]" if ":" in address else address
    netloc = f"{host}:{parts.port}" if parts.port else host
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class PlaywrightConnector:
    """Default :data:`Connector`: attaches to a remote Chromium via Playwright.

    Args:
        web_socket_url: Playwright server websocket endpoint.
        web_url: Chrome DevTools HTTP endpoint.  Used only when
            *web_socket_url* is not set.
    """

    def __init__(self, web_socket_url: str | None = None, web_url: str | None = None) -> None:
        self._web_socket_url = web_socket_url
        self._web_url = web_url
        self._playwright: Playwright | None = None

    @property
    def configured(self) -> bool:
        return bool(self._web_socket_url or self._web_url)

    async def __call__(self) -> Optional[Browser]:
        if not self.configured:
            logger.info("browser_pool: running in browserless mode")
            return None

        if self._playwright is None:
            self._playwright = await async_playwright().start()
        chromium = self._playwright.chromium

        if self._web_socket_url:
            logger.info("browser_pool: connecting to browser websocket %s", self._web_socket_url)
            return await chromium.connect(
                self._web_socket_url,
                slow_mo=BROWSER_SLOW_MO_MS,
                timeout=BROWSER_CONNECT_TIMEOUT_MS,
            )

        endpoint = await _resolve_host(self._web_url or "")
        logger.info("browser_pool: connecting to browser at %s (%s)", self._web_url, endpoint)
        return await chromium.connect_over_cdp(
            endpoint,
            slow_mo=BROWSER_SLOW_MO_MS,
            timeout=BROWSER_CONNECT_TIMEOUT_MS,
        )

    async def aclose(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------


class BrowserContextPool:
    """Bounded pool of browser contexts sharing one browser connection.

    Args:
        connector: Produces the browser connection (``None`` = browserless).
        max_contexts: Upper bound on contexts held by the pool.
        connect_on_demand: Let :meth:`acquire_context` connect when no
            browser is attached yet.
        idle_ttl_sec: Idle age after which :meth:`cleanup_old_contexts`
            closes a context.
        sweep_interval_sec: Period of the background idle sweep.
        reconnect_base_delay_sec: First reconnect backoff delay.
        max_reconnect_attempts: Attempts before the pool gives up for good.
    """

    def __init__(
        self,
        connector: Connector,
        *,
        max_contexts: int = 5,
        connect_on_demand: bool = False,
        idle_ttl_sec: float = CONTEXT_IDLE_TTL_SEC,
        sweep_interval_sec: float = CONTEXT_SWEEP_INTERVAL_SEC,
        reconnect_base_delay_sec: float = RECONNECT_BASE_DELAY_SEC,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
    ) -> None:
        self._connector = connector
        self._max_contexts = max_contexts
        self._connect_on_demand = connect_on_demand
        self._idle_ttl_sec = idle_ttl_sec
        self._sweep_interval_sec = sweep_interval_sec
        self._reconnect_base_delay_sec = reconnect_base_delay_sec
        self._max_reconnect_attempts = max_reconnect_attempts

        self._state = PoolState.UNINITIALIZED
        self._browser: Browser | None = None
        self._contexts: list[PooledContext] = []
        self._waiters: deque[asyncio.Future[Optional[BrowserContext]]] = deque()
        self._pending_creations = 0
        self._init_task: asyncio.Future[None] | None = None
        self._connect_task: asyncio.Future[Optional[Browser]] | None = None
        self._reconnecting = False
        self._reconnect_attempts = 0
        self._reconnect_task: asyncio.Task[None] | None = None
        self._sweeper: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrowserContextPool":
        return cls(
            PlaywrightConnector(
                web_socket_url=settings.crawler_browser_web_socket_url,
                web_url=settings.crawler_browser_web_url,
            ),
            max_contexts=settings.crawler_max_contexts,
            connect_on_demand=settings.crawler_browser_connect_on_demand,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def size(self) -> int:
        return len(self._contexts)

    @property
    def in_use_count(self) -> int:
        return sum(1 for item in self._contexts if item.in_use)

    @property
    def waiting_count(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect to the browser.  Concurrent callers share one attempt."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        await asyncio.shield(self._init_task)

    async def _initialize(self) -> None:
        self._state = PoolState.INITIALIZING
        try:
            browser = await self._connector()
        except Exception:
            self._state = PoolState.UNINITIALIZED
            logger.exception("browser_pool: failed to initialize browser")
            raise
        if browser is None:
            self._state = PoolState.BROWSERLESS
            return
        self._attach(browser)

    def _attach(self, browser: Browser) -> None:
        self._browser = browser
        self._state = PoolState.CONNECTED
        browser.on("disconnected", self._on_disconnected)
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.ensure_future(self._sweep_forever())

    def _on_disconnected(self, browser: Any = None) -> None:
        if self._state is PoolState.CLOSED:
            return
        if browser is not None and browser is not self._browser:
            return
        logger.warning("browser_pool: browser disconnected, will attempt to reconnect")
        self.schedule_reconnect()

    def schedule_reconnect(self) -> asyncio.Task[None]:
        """Start :meth:`reconnect` in the background; :meth:`close` cancels it."""
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.ensure_future(self.reconnect())
        return self._reconnect_task

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_sec)
            await self.cleanup_old_contexts()

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    async def acquire_context(self) -> Optional[BrowserContext]:
        """Borrow a context, waiting FIFO when the pool is at capacity.

        Returns:
            A context that must be handed back with :meth:`release_context`,
            or ``None`` when no browser is available.
        """
        if self._state is PoolState.CLOSED:
            return None

        if self._browser is None:
            if not self._connect_on_demand or self._reconnecting:
                logger.warning("browser_pool: no browser available")
                return None
            if self._connect_task is None or self._connect_task.done():
                self._connect_task = asyncio.ensure_future(self._connector())
            try:
                browser = await asyncio.shield(self._connect_task)
            except Exception as exc:  # noqa: BLE001
                logger.error("browser_pool: failed to connect on demand: %s", exc)
                return None
            if browser is None:
                self._state = PoolState.BROWSERLESS
                return None
            if self._browser is not browser:
                self._attach(browser)

        for item in self._contexts:
            if not item.in_use:
                item.in_use = True
                item.last_used = time.monotonic()
                return item.context

        if len(self._contexts) + self._pending_creations < self._max_contexts:
            return await self._create_context()

        logger.warning("browser_pool: context pool at capacity, waiting for a release")
        waiter: asyncio.Future[Optional[BrowserContext]] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiters.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.result() is not None:
                handed = self._find(waiter.result())
                if handed is not None:
                    self._hand_back(handed)
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    async def _create_context(self) -> Optional[BrowserContext]:
        browser = self._browser
        if browser is None:
            return None
        self._pending_creations += 1
        try:
            context = await browser.new_context(viewport=VIEWPORT, user_agent=USER_AGENT)
        except Exception as exc:  # noqa: BLE001
            logger.error("browser_pool: failed to create context: %s", exc)
            return None
        finally:
            self._pending_creations -= 1
        self._contexts.append(PooledContext(context=context, in_use=True, last_used=time.monotonic()))
        return context

    async def release_context(self, context: BrowserContext) -> None:
        """Return a borrowed context.

        The oldest live waiter receives it directly.  A context the pool does
        not know (e.g. created before a reconnect) is closed instead.
        """
        item = self._find(context)
        if item is None:
            try:
                await context.close()
            except Exception as exc:  # noqa: BLE001
                logger.error("browser_pool: failed to close foreign context: %s", exc)
            return
        self._hand_back(item)

    def _find(self, context: BrowserContext) -> Optional[PooledContext]:
        return next((item for item in self._contexts if item.context is context), None)

    def _hand_back(self, item: PooledContext) -> None:
        item.last_used = time.monotonic()
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            item.in_use = True
            waiter.set_result(item.context)
            return
        item.in_use = False

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup_old_contexts(self) -> None:
        """Close idle contexts that have not been used for ``idle_ttl_sec``."""
        now = time.monotonic()
        stale = [
            item
            for item in self._contexts
            if not item.in_use and now - item.last_used > self._idle_ttl_sec
        ]
        for item in stale:
            self._contexts.remove(item)
            try:
                await item.context.close()
            except Exception as exc:  # noqa: BLE001
                logger.error("browser_pool: failed to close idle context: %s", exc)
        if stale:
            logger.debug("browser_pool: closed %d idle context(s)", len(stale))

    async def cleanup(self) -> None:
        """Close every pooled context and resolve all waiters with ``None``."""
        contexts, self._contexts = self._contexts, []
        results = await asyncio.gather(
            *(item.context.close() for item in contexts), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.error("browser_pool: failed to close context during cleanup: %s", result)

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

    async def close(self) -> None:
        """Tear the pool down for good."""
        self._state = PoolState.CLOSED
        for task in (self._sweeper, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()
        await self.cleanup()

        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:  # noqa: BLE001
                logger.error("browser_pool: failed to close browser: %s", exc)

        aclose = getattr(self._connector, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as exc:  # noqa: BLE001
                logger.error("browser_pool: failed to stop playwright: %s", exc)

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def backoff_delay(self, attempt: int) -> float:
        """Capped exponential delay for *attempt* (1-based) plus up to 10% jitter."""
        delay = min(self._reconnect_base_delay_sec * 2 ** (attempt - 1), RECONNECT_MAX_DELAY_SEC)
        return delay + random.uniform(0, RECONNECT_JITTER_RATIO * delay)

    async def reconnect(self) -> None:
        """Re-establish the browser connection with capped exponential backoff.

        Single-flight: a call made while a reconnection is running returns
        immediately.  After ``max_reconnect_attempts`` consecutive failures
        the pool moves to :attr:`PoolState.GIVEN_UP` and stops trying.
        """
        if self._reconnecting or self._state is PoolState.CLOSED:
            return
        if self._reconnect_attempts >= self._max_reconnect_attempts:
            self._give_up()
            return

        self._reconnecting = True
        self._state = PoolState.RECONNECTING
        try:
            self._browser = None
            await self.cleanup()

            while self._reconnect_attempts < self._max_reconnect_attempts:
                self._reconnect_attempts += 1
                delay = self.backoff_delay(self._reconnect_attempts)
                logger.info(
                    "browser_pool: reconnection attempt %d/%d in %.0fms",
                    self._reconnect_attempts,
                    self._max_reconnect_attempts,
                    delay * 1000,
                )
                await asyncio.sleep(delay)
                if self._state is PoolState.CLOSED:
                    return

                try:
                    browser = await self._connector()
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "browser_pool: failed to reconnect (attempt %d/%d): %s",
                        self._reconnect_attempts,
                        self._max_reconnect_attempts,
                        exc,
                    )
                    await asyncio.sleep(RECONNECT_RETRY_PAUSE_SEC)
                    continue

                if browser is None:
                    self._state = PoolState.BROWSERLESS
                    return
                self._reconnect_attempts = 0
                self._attach(browser)
                logger.info("browser_pool: reconnected to browser")
                return

            self._give_up()
        finally:
            self._reconnecting = False

    def _give_up(self) -> None:
        self._state = PoolState.GIVEN_UP
        logger.error(
            "browser_pool: maximum reconnection attempts (%d) reached, giving up",
            self._max_reconnect_attempts,
        )
