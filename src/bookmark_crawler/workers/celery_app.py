"""Celery application for the bookmark crawler.

Configures the broker, result backend, serialization and task routing.
All configuration values are sourced from ``Settings`` so that no secrets
or environment-specific values are hard-coded here.

Usage (starting a crawl worker)::

    celery -A bookmark_crawler.workers.celery_app worker -Q crawl,enrichment --loglevel=info

Usage (within application code)::

    from bookmark_crawler.workers.celery_app import celery_app

    celery_app.send_task(
        "bookmark_crawler.workers.tasks.crawl_link_task",
        kwargs={"payload": {"bookmark_id": "abc123"}},
    )
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

load_dotenv()

from bookmark_crawler.config.settings import get_settings  # noqa: E402

settings = get_settings()

#: The global Celery application instance.
celery_app = Celery(
    "bookmark_crawler",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["bookmark_crawler.workers.tasks"],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # Serialization: every payload is a JSON-mode pydantic dump.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Acknowledge only after completion so a crashed worker's crawl is redelivered.
    task_acks_late=True,
    # Crawls are long and hold a browser context; do not hoard them.
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.crawler_num_workers,
    result_expires=86_400,
    # The orchestrator enforces crawler_job_timeout_sec; these are the backstop.
    task_soft_time_limit=settings.crawler_job_timeout_sec * 3,
    task_time_limit=settings.crawler_job_timeout_sec * 4,
    task_routes={
        "bookmark_crawler.workers.tasks.crawl_link_task": {"queue": "crawl"},
        "bookmark_crawler.workers.tasks.dispatch_inference_task": {"queue": "enrichment"},
        "bookmarks.inference.*": {"queue": "inference"},
        "bookmarks.search.*": {"queue": "search"},
        "bookmarks.video.*": {"queue": "video"},
        "bookmarks.webhooks.*": {"queue": "webhooks"},
        "bookmarks.assets.*": {"queue": "assets"},
    },
)


# ---------------------------------------------------------------------------
# Per-process runtime
# ---------------------------------------------------------------------------
@worker_process_init.connect
def _start_runtime(**kwargs: object) -> None:  # noqa: ARG001
    """Configure logging and build the crawler runtime in each worker child.

    The runtime's event loop, browser connection and database pool must be
    created after ``fork()``, never inherited from the parent.
    """
    from bookmark_crawler.core.logging_config import configure_logging  # noqa: PLC0415
    from bookmark_crawler.workers.runtime import get_runtime  # noqa: PLC0415

    configure_logging(get_settings().log_level)
    get_runtime()
    _logger.info("celery: crawler runtime ready")


@worker_process_shutdown.connect
def _stop_runtime(**kwargs: object) -> None:  # noqa: ARG001
    """Flush pending description batches and close the browser pool."""
    from bookmark_crawler.workers.runtime import shutdown_runtime  # noqa: PLC0415

    try:
        shutdown_runtime()
    except Exception as exc:  # noqa: BLE001
        _logger.error("celery: runtime shutdown failed: %s", exc)
