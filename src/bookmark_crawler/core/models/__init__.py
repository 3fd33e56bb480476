"""SQLAlchemy ORM models for the bookmark crawler.

All models are imported here so that:
1. Migrations can discover them via Base.metadata.
2. Application code can do `from bookmark_crawler.core.models import Asset`
   without knowing which sub-module a model lives in.
"""

from __future__ import annotations

from bookmark_crawler.core.models.base import Base, TimestampMixin
from bookmark_crawler.core.models.bookmarks import (
    Asset,
    AssetType,
    Bookmark,
    BookmarkAsset,
    BookmarkLink,
    BookmarkType,
    CrawlStatus,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Asset",
    "AssetType",
    "Bookmark",
    "BookmarkAsset",
    "BookmarkLink",
    "BookmarkType",
    "CrawlStatus",
]
