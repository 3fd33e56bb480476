"""Application-wide exception hierarchy for the bookmark crawler.

All custom exceptions subclass ``BookmarkCrawlerError``, enabling
consistent error handling and structured logging across the worker.

Hierarchy::

    BookmarkCrawlerError
    ├── CrawlValidationError        (terminal for the job)
    │   └── MalformedJobError
    ├── TransientNetworkError       (left to the queue's retry policy)
    ├── ThirdPartyServiceError      (absorbed: triggers a soft fallback)
    ├── BatchSubmissionError
    ├── AssetStorageError
    └── JobCancelledError
"""

from __future__ import annotations


class BookmarkCrawlerError(Exception):
    """Base class for all bookmark crawler exceptions."""


# ---------------------------------------------------------------------------
# Job-level errors
# ---------------------------------------------------------------------------


class CrawlValidationError(BookmarkCrawlerError):
    """Raised when a crawl target or job cannot be processed at all.

    Covers unsupported URL schemes, rejected hostnames and bookmarks that are
    not links.  The crawl task never retries this error.

    Args:
        message: Human-readable description of the failure.
        url: The offending URL, when there is one.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class MalformedJobError(CrawlValidationError):
    """Raised when a job payload fails schema validation.

    Args:
        message: Description of the validation failure.
        payload: The raw payload (for debugging).
    """

    def __init__(self, message: str, payload: dict | None = None) -> None:  # type: ignore[type-arg]
        super().__init__(message)
        self.payload = payload


class JobCancelledError(BookmarkCrawlerError):
    """Raised at a stage boundary once the job's cancellation token fired.

    Args:
        stage: Name of the pipeline stage that observed the cancellation.
    """

    def __init__(self, stage: str | None = None) -> None:
        msg = "Crawl job cancelled"
        if stage:
            msg += f" before stage '{stage}'"
        super().__init__(msg)
        self.stage = stage


# ---------------------------------------------------------------------------
# Network / service errors
# ---------------------------------------------------------------------------


class TransientNetworkError(BookmarkCrawlerError):
    """Raised on timeouts and connection failures while fetching a page.

    Args:
        message: Human-readable description of the failure.
        url: The URL being fetched.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class ThirdPartyServiceError(BookmarkCrawlerError):
    """Raised when an external scraping service fails (auth, quota, outage).

    The orchestrator treats this as "feature currently unavailable" and falls
    back to the generic crawl path.

    Args:
        message: Human-readable description of the failure.
        service: Name of the service (e.g. ``"apify"``).
        status_code: HTTP status reported by the service, if known.
    """

    def __init__(
        self,
        message: str,
        service: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Enrichment / storage errors
# ---------------------------------------------------------------------------


class BatchSubmissionError(BookmarkCrawlerError):
    """Raised when a coalesced enrichment batch cannot be handed to the queue.

    Args:
        message: Description of the submission failure.
        bookmark_ids: The ids contained in the failed batch.
    """

    def __init__(self, message: str, bookmark_ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.bookmark_ids = bookmark_ids or []


class AssetStorageError(BookmarkCrawlerError):
    """Raised when an asset cannot be read from or written to the asset store.

    Args:
        message: Description of the storage failure.
        asset_id: The asset involved.
    """

    def __init__(self, message: str, asset_id: str | None = None) -> None:
        super().__init__(message)
        self.asset_id = asset_id
