"""Transactional persistence for crawled bookmarks.

:class:`BookmarkRepository` is the only place the crawler writes to the
database.  Each public method runs in exactly one transaction, so a crawl
never leaves link fields and their asset rows out of step with each other.

Superseded asset *rows* are deleted inside the same transaction; the
corresponding *files* are removed by the caller after commit (see
``AssetStore.silent_delete``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookmark_crawler.core.exceptions import CrawlValidationError
from bookmark_crawler.core.models import (
    Asset,
    AssetType,
    Bookmark,
    BookmarkAsset,
    BookmarkLink,
    BookmarkType,
    CrawlStatus,
)

logger = logging.getLogger(__name__)

#: Columns of ``bookmark_links`` the crawler is allowed to overwrite.
LINK_CONTENT_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "description",
        "image_url",
        "favicon",
        "content",
        "html_content",
        "author",
        "publisher",
        "date_published",
        "date_modified",
        "crawled_at",
        "crawl_status_code",
    }
)


@dataclass(frozen=True)
class BookmarkDetails:
    """What the crawler needs to know about a link bookmark before crawling it."""

    bookmark_id: str
    url: str
    user_id: str
    screenshot_asset_id: Optional[str] = None
    image_asset_id: Optional[str] = None
    full_page_archive_asset_id: Optional[str] = None
    precrawled_archive_asset_id: Optional[str] = None


@dataclass(frozen=True)
class AssetReplacement:
    """A freshly stored asset that supersedes ``previous_asset_id`` (if any)."""

    asset_id: str
    asset_type: AssetType
    user_id: str
    content_type: Optional[str]
    size: int
    file_name: Optional[str] = None
    previous_asset_id: Optional[str] = None


@dataclass(frozen=True)
class NewBookmarkAsset:
    """A downloaded file that turns a link bookmark into an asset bookmark.

    Attributes:
        asset_id: Id under which the file was stored.
        kind: ``"image"`` or ``"pdf"``.
        content_type: MIME type reported by the origin.
        size: File size in bytes.
        file_name: Last path segment of the source URL, if any.
        source_url: The URL the file was downloaded from.
    """

    asset_id: str
    kind: str
    content_type: str
    size: int
    file_name: Optional[str]
    source_url: str


class BookmarkRepository:
    """Async data access for bookmarks, their link fields and their assets.

    Args:
        session_factory: Factory producing :class:`AsyncSession` objects.
            Defaults to the process-wide factory from
            :func:`bookmark_crawler.core.database.get_session_factory`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        if session_factory is None:
            from bookmark_crawler.core.database import get_session_factory  # noqa: PLC0415

            session_factory = get_session_factory()
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_bookmark_details(self, bookmark_id: str) -> BookmarkDetails:
        """Load the url, owner and current crawl assets of a link bookmark.

        Raises:
            CrawlValidationError: If the bookmark does not exist or is not a link.
        """
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    sa.select(BookmarkLink.url, Bookmark.user_id)
                    .join(Bookmark, Bookmark.id == BookmarkLink.id)
                    .where(
                        BookmarkLink.id == bookmark_id,
                        Bookmark.type == BookmarkType.LINK.value,
                    )
                )
            ).one_or_none()
            if row is None:
                raise CrawlValidationError(
                    f"Bookmark {bookmark_id} either doesn't exist or is not a link"
                )

            assets = (
                await session.execute(
                    sa.select(Asset.id, Asset.asset_type).where(Asset.bookmark_id == bookmark_id)
                )
            ).all()

        by_type = {asset_type: asset_id for asset_id, asset_type in assets}
        return BookmarkDetails(
            bookmark_id=bookmark_id,
            url=row.url,
            user_id=row.user_id,
            screenshot_asset_id=by_type.get(AssetType.LINK_SCREENSHOT.value),
            image_asset_id=by_type.get(AssetType.LINK_BANNER_IMAGE.value),
            full_page_archive_asset_id=by_type.get(AssetType.LINK_FULL_PAGE_ARCHIVE.value),
            precrawled_archive_asset_id=by_type.get(AssetType.LINK_PRECRAWLED_ARCHIVE.value),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def convert_link_to_asset(
        self,
        bookmark_id: str,
        user_id: str,
        asset: NewBookmarkAsset,
    ) -> None:
        """Turn a link bookmark into an asset bookmark in one transaction."""
        async with self._session_factory() as session, session.begin():
            session.add(
                Asset(
                    id=asset.asset_id,
                    bookmark_id=bookmark_id,
                    user_id=user_id,
                    asset_type=AssetType.BOOKMARK_ASSET.value,
                    content_type=asset.content_type,
                    size=asset.size,
                    file_name=asset.file_name,
                )
            )
            session.add(
                BookmarkAsset(
                    id=bookmark_id,
                    asset_type=asset.kind,
                    asset_id=asset.asset_id,
                    content=None,
                    file_name=asset.file_name,
                    source_url=asset.source_url,
                )
            )
            await session.execute(
                sa.update(Bookmark)
                .where(Bookmark.id == bookmark_id)
                .values(type=BookmarkType.ASSET.value)
            )
            await session.execute(sa.delete(BookmarkLink).where(BookmarkLink.id == bookmark_id))
        logger.info("repository: converted bookmark %s to %s asset", bookmark_id, asset.kind)

    async def update_link_content(
        self,
        bookmark_id: str,
        fields: dict[str, Any],
        assets: Iterable[AssetReplacement] = (),
    ) -> None:
        """Write crawled link fields and swap in new asset rows atomically.

        Args:
            bookmark_id: The link bookmark being updated.
            fields: Column values keyed by :data:`LINK_CONTENT_FIELDS` names.
                Keys that are absent are left untouched; ``None`` values are
                written as ``NULL``.
            assets: Replacement assets.  Each one's ``previous_asset_id`` row
                is deleted in the same transaction.

        Raises:
            ValueError: If *fields* contains a column the crawler may not write.
        """
        unknown = set(fields) - LINK_CONTENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown link fields: {sorted(unknown)}")

        async with self._session_factory() as session, session.begin():
            if fields:
                await session.execute(
                    sa.update(BookmarkLink).where(BookmarkLink.id == bookmark_id).values(**fields)
                )
            for replacement in assets:
                await self._swap_asset(session, bookmark_id, replacement)

    async def replace_asset(self, bookmark_id: str, replacement: AssetReplacement) -> None:
        """Swap a single asset row (e.g. a new full-page archive) in one transaction."""
        async with self._session_factory() as session, session.begin():
            await self._swap_asset(session, bookmark_id, replacement)

    async def set_crawl_status(
        self,
        bookmark_id: str,
        status: CrawlStatus,
        status_code: Optional[int] = None,
    ) -> None:
        values: dict[str, Any] = {"crawl_status": status.value}
        if status_code is not None:
            values["crawl_status_code"] = status_code
        async with self._session_factory() as session, session.begin():
            await session.execute(
                sa.update(BookmarkLink).where(BookmarkLink.id == bookmark_id).values(**values)
            )

    @staticmethod
    async def _swap_asset(
        session: AsyncSession,
        bookmark_id: str,
        replacement: AssetReplacement,
    ) -> None:
        if replacement.previous_asset_id:
            await session.execute(sa.delete(Asset).where(Asset.id == replacement.previous_asset_id))
        session.add(
            Asset(
                id=replacement.asset_id,
                bookmark_id=bookmark_id,
                user_id=replacement.user_id,
                asset_type=replacement.asset_type.value,
                content_type=replacement.content_type,
                size=replacement.size,
                file_name=replacement.file_name,
            )
        )
