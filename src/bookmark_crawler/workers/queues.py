"""Typed producers for the jobs this worker hands to other workers.

Every method validates its payload with a schema from
:mod:`bookmark_crawler.core.schemas.queues` and publishes it through
``celery_app.send_task`` in a worker thread, so the calling event loop is
never blocked on the broker.  Payloads travel as the ``payload`` keyword
argument in JSON form.

Usage::

    queue = JobQueue()
    await queue.trigger_search_reindex(bookmark_id)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from celery import Celery
from pydantic import BaseModel

from bookmark_crawler.core.exceptions import BatchSubmissionError
from bookmark_crawler.core.schemas.queues import (
    AssetPreprocessingRequest,
    CrawlLinkRequest,
    DescriptionBatchRequest,
    InferenceRequest,
    SearchIndexRequest,
    VideoRequest,
    WebhookRequest,
)
from bookmark_crawler.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

# Tasks consumed by this worker.
CRAWL_TASK = "bookmark_crawler.workers.tasks.crawl_link_task"
DISPATCH_INFERENCE_TASK = "bookmark_crawler.workers.tasks.dispatch_inference_task"

# Tasks consumed by downstream workers.
INFERENCE_TASK = "bookmarks.inference.run"
DESCRIPTION_BATCH_TASK = "bookmarks.inference.describe_batch"
SEARCH_INDEX_TASK = "bookmarks.search.index"
VIDEO_TASK = "bookmarks.video.extract"
WEBHOOK_TASK = "bookmarks.webhooks.deliver"
ASSET_PREPROCESSING_TASK = "bookmarks.assets.preprocess"


class JobQueue:
    """Publishes validated job payloads to the broker.

    Args:
        app: Celery application used for ``send_task``.  Defaults to the
            shared :data:`~bookmark_crawler.workers.celery_app.celery_app`.
    """

    def __init__(self, app: Optional[Celery] = None) -> None:
        self._app = app if app is not None else celery_app

    async def _send(self, task_name: str, payload: BaseModel) -> None:
        await asyncio.to_thread(
            self._app.send_task,
            task_name,
            kwargs={"payload": payload.model_dump(mode="json")},
        )
        logger.debug("queue: sent %s", task_name)

    # ------------------------------------------------------------------
    # Crawl
    # ------------------------------------------------------------------

    async def enqueue_crawl(
        self,
        bookmark_id: str,
        *,
        run_inference: Optional[bool] = None,
        archive_full_page: bool = False,
    ) -> None:
        await self._send(
            CRAWL_TASK,
            CrawlLinkRequest(
                bookmark_id=bookmark_id,
                run_inference=run_inference,
                archive_full_page=archive_full_page,
            ),
        )

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    async def enqueue_inference(self, bookmark_id: str, kind: str, source: str = "api") -> None:
        """Route an enrichment request through ``dispatch_inference_task``."""
        await self._send(
            DISPATCH_INFERENCE_TASK,
            InferenceRequest(bookmark_id=bookmark_id, kind=kind, source=source),
        )

    async def forward_inference(self, request: InferenceRequest) -> None:
        """Hand a tagging/summarization request to the inference worker."""
        await self._send(INFERENCE_TASK, request)

    async def enqueue_description_batch(self, bookmark_ids: list[str], source: str = "crawler") -> None:
        """Submit one description-enhancement batch.

        Raises:
            BatchSubmissionError: If the broker rejects the message.
        """
        request = DescriptionBatchRequest(bookmark_ids=bookmark_ids, source=source)
        try:
            await self._send(DESCRIPTION_BATCH_TASK, request)
        except Exception as exc:  # noqa: BLE001
            raise BatchSubmissionError(
                f"Failed to enqueue description batch: {exc}",
                bookmark_ids=request.bookmark_ids,
            ) from exc

    # ------------------------------------------------------------------
    # Post-crawl triggers
    # ------------------------------------------------------------------

    async def trigger_search_reindex(self, bookmark_id: str) -> None:
        await self._send(SEARCH_INDEX_TASK, SearchIndexRequest(bookmark_id=bookmark_id))

    async def trigger_video_worker(self, bookmark_id: str, url: str) -> None:
        await self._send(VIDEO_TASK, VideoRequest(bookmark_id=bookmark_id, url=url))

    async def trigger_webhook(
        self,
        bookmark_id: str,
        operation: str,
        user_id: Optional[str] = None,
    ) -> None:
        await self._send(
            WEBHOOK_TASK,
            WebhookRequest(bookmark_id=bookmark_id, operation=operation, user_id=user_id),
        )

    async def enqueue_asset_preprocessing(self, bookmark_id: str, *, fix_mode: bool = False) -> None:
        await self._send(
            ASSET_PREPROCESSING_TASK,
            AssetPreprocessingRequest(bookmark_id=bookmark_id, fix_mode=fix_mode),
        )
