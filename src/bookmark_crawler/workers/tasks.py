"""Celery tasks consumed by the crawler worker.

``crawl_link_task``
    Crawls one link bookmark through :class:`CrawlOrchestrator`.

``dispatch_inference_task``
    Routes an enrichment request: crawler-originated description
    enhancements go to the :class:`EnrichmentBatchCollector`, other
    description enhancements become one-element batches, and tagging or
    summarization is forwarded to the inference worker.

Both tasks run their coroutines on the per-process
:class:`~bookmark_crawler.workers.runtime.WorkerRuntime` loop.

Retry policy (crawl):
    Validation errors, malformed payloads and cancellations are terminal:
    the bookmark is marked ``failure`` and the task is not retried.  Any
    other error is retried with exponential countdown up to ``max_retries``;
    once retries are exhausted the bookmark is marked ``failure`` and the
    error is re-raised.  A completed crawl marks the bookmark ``success``.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from bookmark_crawler.core.exceptions import (
    CrawlValidationError,
    JobCancelledError,
    MalformedJobError,
)
from bookmark_crawler.core.logging_config import job_id_var
from bookmark_crawler.core.models import CrawlStatus
from bookmark_crawler.core.schemas.queues import CrawlLinkRequest, InferenceRequest
from bookmark_crawler.scraper.orchestrator import CrawlJob, CrawlOrchestrator, CrawlOutcome
from bookmark_crawler.workers.batch_collector import BATCHABLE_SOURCE
from bookmark_crawler.workers.celery_app import celery_app
from bookmark_crawler.workers.runtime import WorkerRuntime, get_runtime

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

#: First retry countdown; doubles per retry up to :data:`_MAX_RETRY_COUNTDOWN_SEC`.
_RETRY_COUNTDOWN_SEC = 5
_MAX_RETRY_COUNTDOWN_SEC = 300


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse(model: type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedJobError(
            f"Malformed {model.__name__} payload: {exc.error_count()} error(s)",
            payload=payload if isinstance(payload, dict) else None,
        ) from exc


async def _run_job(orchestrator: CrawlOrchestrator, job: CrawlJob) -> CrawlOutcome:
    # Tasks on the runtime loop do not inherit the Celery thread's context.
    job_id_var.set(job.job_id)
    return await orchestrator.run(job)


def _set_status(
    runtime: WorkerRuntime,
    bookmark_id: str,
    status: CrawlStatus,
    status_code: int | None = None,
) -> None:
    """Best-effort crawl status update; a failure here never fails the task."""
    assert runtime.repository is not None
    try:
        runtime.run(runtime.repository.set_crawl_status(bookmark_id, status, status_code))
    except Exception as exc:  # noqa: BLE001
        logger.warning("crawler: failed to set crawl status of %s to %s: %s", bookmark_id, status.value, exc)


def _retry_countdown(retries: int) -> int:
    return min(_MAX_RETRY_COUNTDOWN_SEC, _RETRY_COUNTDOWN_SEC * 2**retries)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@celery_app.task(
    name="bookmark_crawler.workers.tasks.crawl_link_task",
    bind=True,
    max_retries=5,
    acks_late=True,
)
def crawl_link_task(self: Any, payload: dict[str, Any]) -> dict[str, Any]:
    """Crawl one link bookmark.

    Args:
        payload: A :class:`CrawlLinkRequest` in JSON form.

    Returns:
        Dict with ``status`` (``success`` | ``failure``) and, on success, the
        crawl ``path`` taken and the page ``status_code``.
    """
    job_id = self.request.id or "-"
    ctx_token = job_id_var.set(job_id)
    try:
        try:
            request = _parse(CrawlLinkRequest, payload)
        except MalformedJobError as exc:
            logger.error("crawler[%s]: %s", job_id, exc)
            return {"status": "failure", "error": str(exc)}

        runtime = get_runtime()
        assert runtime.orchestrator is not None
        job = CrawlJob(
            job_id=job_id,
            bookmark_id=request.bookmark_id,
            archive_full_page=request.archive_full_page,
            run_inference=request.run_inference,
        )

        try:
            outcome = runtime.run(_run_job(runtime.orchestrator, job))
        except (CrawlValidationError, JobCancelledError) as exc:
            logger.error("crawler[%s]: crawl of %s failed permanently: %s", job_id, request.bookmark_id, exc)
            _set_status(runtime, request.bookmark_id, CrawlStatus.FAILURE)
            return {"status": "failure", "error": str(exc)}
        except Exception as exc:
            retries = self.request.retries or 0
            if retries >= self.max_retries:
                logger.error(
                    "crawler[%s]: crawl of %s failed after %d retries: %s",
                    job_id,
                    request.bookmark_id,
                    retries,
                    exc,
                )
                _set_status(runtime, request.bookmark_id, CrawlStatus.FAILURE)
                raise
            logger.warning(
                "crawler[%s]: crawl of %s failed (attempt %d), retrying: %s",
                job_id,
                request.bookmark_id,
                retries + 1,
                exc,
            )
            raise self.retry(countdown=_retry_countdown(retries), exc=exc)

        _set_status(runtime, request.bookmark_id, CrawlStatus.SUCCESS, outcome.status_code)
        logger.info("crawler[%s]: completed successfully via the %s path", job_id, outcome.path)
        return {"status": "success", "path": outcome.path, "status_code": outcome.status_code}
    finally:
        job_id_var.reset(ctx_token)


@celery_app.task(
    name="bookmark_crawler.workers.tasks.dispatch_inference_task",
    bind=True,
    max_retries=3,
    acks_late=True,
)
def dispatch_inference_task(self: Any, payload: dict[str, Any]) -> dict[str, Any]:
    """Route one enrichment request.

    Args:
        payload: An :class:`InferenceRequest` in JSON form.

    Returns:
        Dict with ``status``: ``batched``, ``submitted``, ``forwarded`` or
        ``rejected``.
    """
    try:
        request = _parse(InferenceRequest, payload)
    except MalformedJobError as exc:
        logger.error("inference: %s", exc)
        return {"status": "rejected", "error": str(exc)}

    runtime = get_runtime()
    assert runtime.collector is not None and runtime.job_queue is not None
    try:
        if request.kind == "enhance-description":
            if request.source == BATCHABLE_SOURCE:
                runtime.run(runtime.collector.add(request.bookmark_id, request.source))
                return {"status": "batched"}
            runtime.run(runtime.job_queue.enqueue_description_batch([request.bookmark_id], request.source))
            return {"status": "submitted"}
        runtime.run(runtime.job_queue.forward_inference(request))
        return {"status": "forwarded"}
    except Exception as exc:
        logger.warning("inference: dispatch of %s for %s failed: %s", request.kind, request.bookmark_id, exc)
        raise self.retry(countdown=_retry_countdown(self.request.retries or 0), exc=exc)
