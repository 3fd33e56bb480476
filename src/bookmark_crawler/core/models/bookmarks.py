"""SQLAlchemy ORM models for bookmarks and their stored assets.

A bookmark row carries only the owner and the bookmark *type*.  The
type-specific fields live in a one-to-one side table keyed by the same id:

- ``bookmark_links``  — crawled page fields for ``type = "link"``
- ``bookmark_assets`` — file fields for ``type = "asset"`` (PDFs, images)

Binary payloads (screenshots, banner images, archives, uploaded files) are
kept in the asset store; the ``assets`` table records which bookmark owns
which asset and what role it plays.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from bookmark_crawler.core.models.base import Base, TimestampMixin


class BookmarkType(str, enum.Enum):
    LINK = "link"
    ASSET = "asset"
    TEXT = "text"


class CrawlStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class AssetType(str, enum.Enum):
    """Role an asset plays for its bookmark."""

    LINK_SCREENSHOT = "link_screenshot"
    LINK_BANNER_IMAGE = "link_banner_image"
    LINK_FULL_PAGE_ARCHIVE = "link_full_page_archive"
    LINK_PRECRAWLED_ARCHIVE = "link_precrawled_archive"
    BOOKMARK_ASSET = "bookmark_asset"


class Bookmark(TimestampMixin, Base):
    """A user's saved item.

    Attributes:
        id: Opaque string primary key.
        user_id: Owner of the bookmark and of every asset attached to it.
        type: One of :class:`BookmarkType`.
    """

    __tablename__ = "bookmarks"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(
        sa.String(16),
        nullable=False,
        server_default=BookmarkType.LINK.value,
    )


class BookmarkLink(Base):
    """Crawled page fields of a link bookmark."""

    __tablename__ = "bookmark_links"

    id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    url: Mapped[str] = mapped_column(sa.Text, nullable=False)

    title: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    favicon: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    html_content: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    author: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    publisher: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    date_published: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    date_modified: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    crawled_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    crawl_status: Mapped[str] = mapped_column(
        sa.String(16),
        nullable=False,
        server_default=CrawlStatus.PENDING.value,
    )
    crawl_status_code: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)


class BookmarkAsset(Base):
    """File fields of an asset bookmark (a link that turned out to be a PDF or image)."""

    __tablename__ = "bookmark_assets"

    id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    asset_type: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    asset_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)


class Asset(TimestampMixin, Base):
    """Bookkeeping row for one blob in the asset store."""

    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    bookmark_id: Mapped[Optional[str]] = mapped_column(
        sa.String(64),
        sa.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    asset_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    size: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, server_default="0")
    file_name: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
