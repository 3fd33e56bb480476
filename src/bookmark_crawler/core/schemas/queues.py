"""Pydantic schemas for job payloads consumed and produced by the crawler.

Every payload that crosses the Celery broker is validated with one of these
models, on the way in (``crawl_link_task``, ``dispatch_inference_task``) and
on the way out (``JobQueue``).  Field names are snake_case on the wire.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bookmark_crawler.config.settings import MAX_DESCRIPTION_BATCH_SIZE

#: Who asked for an enrichment.  Only ``crawler`` requests are batched.
INFERENCE_SOURCE_VALUES = Literal["admin", "api", "crawler"]

INFERENCE_KIND_VALUES = Literal["tag", "summarize", "enhance-description"]

WEBHOOK_OPERATION_VALUES = Literal["crawled", "created", "edited", "ai tagged", "deleted"]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ---------------------------------------------------------------------------
# Consumed
# ---------------------------------------------------------------------------


class CrawlLinkRequest(_Payload):
    """A request to crawl one link bookmark.

    Attributes:
        bookmark_id: Id of the bookmark to crawl.
        run_inference: ``False`` skips the tagging/summary/description fan-out.
            ``None`` means "use the default", which is to run it.
        archive_full_page: Archive the page with ``monolith`` even when the
            global full-page-archive setting is off.
    """

    bookmark_id: str = Field(..., min_length=1)
    run_inference: Optional[bool] = None
    archive_full_page: bool = False


# ---------------------------------------------------------------------------
# Produced
# ---------------------------------------------------------------------------


class InferenceRequest(_Payload):
    """Tagging, summarization or description enhancement for one bookmark."""

    bookmark_id: str = Field(..., min_length=1)
    kind: INFERENCE_KIND_VALUES
    source: INFERENCE_SOURCE_VALUES = "api"


class SearchIndexRequest(_Payload):
    bookmark_id: str = Field(..., min_length=1)
    type: Literal["index", "delete"] = "index"


class VideoRequest(_Payload):
    bookmark_id: str = Field(..., min_length=1)
    url: str


class WebhookRequest(_Payload):
    bookmark_id: str = Field(..., min_length=1)
    operation: WEBHOOK_OPERATION_VALUES
    user_id: Optional[str] = None


class AssetPreprocessingRequest(_Payload):
    """Asks the asset worker to extract text/thumbnails from a stored asset.

    Attributes:
        bookmark_id: The (now asset-typed) bookmark.
        fix_mode: ``True`` when re-running over an already processed asset.
    """

    bookmark_id: str = Field(..., min_length=1)
    fix_mode: bool = False


class DescriptionBatchRequest(_Payload):
    """A coalesced description-enhancement batch.

    Attributes:
        bookmark_ids: Distinct bookmark ids, at most
            :data:`~bookmark_crawler.config.settings.MAX_DESCRIPTION_BATCH_SIZE`.
        source: Origin of the requests in the batch.
    """

    bookmark_ids: list[str] = Field(..., min_length=1, max_length=MAX_DESCRIPTION_BATCH_SIZE)
    source: INFERENCE_SOURCE_VALUES = "crawler"

    @field_validator("bookmark_ids")
    @classmethod
    def dedupe_ids(cls, v: list[str]) -> list[str]:
        """Drop duplicate ids while keeping first-seen order."""
        return list(dict.fromkeys(v))
