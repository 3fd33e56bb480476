"""Coalesces crawler-triggered description-enhancement requests into batches.

Crawls finish one bookmark at a time, but the description enhancer is far
cheaper per bookmark when it gets them in bulk.  :class:`EnrichmentBatchCollector`
keeps a pending set of bookmark ids and hands it to a submit callable when
either

- the set reaches ``batch_size`` (immediate flush), or
- ``timeout_sec`` has passed since the first id of the current batch arrived.

A failed submission is retried on a retry timer with exponential backoff.
When the retry budget is exhausted the ids are merged back into the pending
set, so they ride along with the next natural flush instead of being dropped.

At most one flush timer and one retry timer are armed at any time.  All
state is mutated from the owning event loop only, so no locks are needed:
the ``_flushing`` flag is checked before the first suspension point.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from bookmark_crawler.config.settings import MAX_DESCRIPTION_BATCH_SIZE, Settings

logger = structlog.get_logger(__name__)

#: ``submit(bookmark_ids, source)``; raises on failure.
Submitter = Callable[[list[str], str], Awaitable[None]]

#: The only request source that is batched.  Interactive (``api``) and
#: administrative (``admin``) requests take other paths.
BATCHABLE_SOURCE = "crawler"


class EnrichmentBatchCollector:
    """Size/time-bounded batching with loss-free retry.

    Args:
        submit: Coroutine function that delivers one batch downstream.
        batch_size: Pending ids that trigger an immediate flush.  Also the
            maximum size of a submitted batch.
        timeout_sec: Delay between the first pending id and a timed flush.
        max_retries: Retry attempts per failed batch before it is merged back.
        retry_base_delay_sec: Delay of the first retry; doubles per attempt.
    """

    def __init__(
        self,
        submit: Submitter,
        *,
        batch_size: int = 10,
        timeout_sec: float = 30.0,
        max_retries: int = 3,
        retry_base_delay_sec: float = 1.0,
    ) -> None:
        if not 1 <= batch_size <= MAX_DESCRIPTION_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_DESCRIPTION_BATCH_SIZE}")
        self._submit = submit
        self._batch_size = batch_size
        self._timeout_sec = timeout_sec
        self._max_retries = max_retries
        self._retry_base_delay_sec = retry_base_delay_sec

        # bookmark id -> monotonic time it was (first) added
        self._pending: dict[str, float] = {}
        self._flush_timer: Optional[asyncio.Task[None]] = None
        self._retry_timer: Optional[asyncio.Task[None]] = None
        self._retry_batch: list[str] = []
        self._flushing = False
        self._closed = False

    @classmethod
    def from_settings(cls, submit: Submitter, settings: Settings) -> "EnrichmentBatchCollector":
        return cls(
            submit,
            batch_size=settings.batch_description_batch_size,
            timeout_sec=settings.batch_description_timeout_sec,
            max_retries=settings.batch_description_max_retries,
            retry_base_delay_sec=settings.batch_description_retry_base_delay_sec,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    @property
    def flush_timer(self) -> Optional[asyncio.Task[None]]:
        return self._flush_timer

    @property
    def retry_timer(self) -> Optional[asyncio.Task[None]]:
        return self._retry_timer

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add(self, bookmark_id: str, source: str) -> bool:
        """Queue *bookmark_id* for the next batch.

        Returns:
            ``False`` if the request was rejected because *source* is not
            batchable, ``True`` otherwise.

        Raises:
            RuntimeError: If the collector has been shut down.
        """
        if source != BATCHABLE_SOURCE:
            logger.warning("batch_collector.source_rejected", bookmark_id=bookmark_id, source=source)
            return False
        if self._closed:
            raise RuntimeError("EnrichmentBatchCollector has been shut down")

        self._pending.setdefault(bookmark_id, time.monotonic())
        if len(self._pending) >= self._batch_size:
            self._cancel_flush_timer()
            await self.flush()
        else:
            self._arm_flush_timer(self._timeout_sec)
        return True

    async def flush(self) -> None:
        """Submit up to ``batch_size`` pending ids.

        The batch is removed from the pending set before the first await, so
        ids added during submission start the next batch.
        """
        if self._flushing or not self._pending:
            return
        self._cancel_flush_timer()
        batch = self._take_batch()
        self._flushing = True
        try:
            delivered = await self._try_submit(batch, attempt=0)
        finally:
            self._flushing = False
        if not delivered:
            self._schedule_retry(batch, attempt=1)
        self._rearm()

    async def shutdown(self) -> None:
        """Cancel timers and make a final, single-attempt flush of the remainder."""
        if self._closed:
            return
        self._closed = True
        self._cancel_flush_timer()
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
            self._merge_back(self._retry_batch)
            self._retry_batch = []

        while self._pending:
            batch = self._take_batch()
            if not await self._try_submit(batch, attempt=0):
                self._merge_back(batch)
                logger.error("batch_collector.shutdown_undelivered", count=len(self._pending))
                return
        logger.info("batch_collector.shutdown_complete")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _take_batch(self) -> list[str]:
        batch = list(self._pending)[: self._batch_size]
        for bookmark_id in batch:
            del self._pending[bookmark_id]
        return batch

    async def _try_submit(self, batch: list[str], attempt: int) -> bool:
        try:
            await self._submit(batch, BATCHABLE_SOURCE)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "batch_collector.submit_failed",
                size=len(batch),
                attempt=attempt,
                error=str(exc),
            )
            return False
        logger.info("batch_collector.flushed", size=len(batch), attempt=attempt)
        return True

    def _schedule_retry(self, batch: list[str], attempt: int) -> None:
        if self._closed or attempt > self._max_retries or self._retry_timer is not None:
            if attempt > self._max_retries:
                logger.error("batch_collector.retries_exhausted", size=len(batch))
            self._merge_back(batch)
            return
        delay = self._retry_base_delay_sec * 2 ** (attempt - 1)
        self._retry_batch = batch
        self._retry_timer = asyncio.create_task(self._retry_after(delay, batch, attempt))

    async def _retry_after(self, delay: float, batch: list[str], attempt: int) -> None:
        await asyncio.sleep(delay)
        self._retry_timer = None
        self._retry_batch = []
        if not await self._try_submit(batch, attempt=attempt):
            self._schedule_retry(batch, attempt + 1)

    def _merge_back(self, batch: list[str]) -> None:
        now = time.monotonic()
        for bookmark_id in batch:
            self._pending.setdefault(bookmark_id, now)
        if batch:
            logger.info("batch_collector.requeued", size=len(batch), pending=len(self._pending))
        self._rearm()

    def _rearm(self) -> None:
        if self._closed or self._flushing or not self._pending:
            return
        if len(self._pending) >= self._batch_size:
            self._arm_flush_timer(0)
        else:
            self._arm_flush_timer(self._timeout_sec)

    def _arm_flush_timer(self, delay: float) -> None:
        if self._flush_timer is None:
            self._flush_timer = asyncio.create_task(self._flush_after(delay))

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._flush_timer = None
        await self.flush()

    def _cancel_flush_timer(self) -> None:
        timer, self._flush_timer = self._flush_timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
