"""Unit tests for ``BookmarkRepository`` with a mocked ``AsyncSession``.

The session factory is replaced by a mock whose sessions record ``add`` and
``execute`` calls; statements are inspected rather than run.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from bookmark_crawler.core.exceptions import CrawlValidationError
from bookmark_crawler.core.models import Asset, AssetType, BookmarkAsset, CrawlStatus
from bookmark_crawler.core.repository import (
    AssetReplacement,
    BookmarkRepository,
    NewBookmarkAsset,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _async_cm(value: Any) -> MagicMock:
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=value)
    cm.__aexit__ = AsyncMock(return_value=False)
    return cm


def _session() -> MagicMock:
    session = MagicMock()
    session.execute = AsyncMock()
    session.add = MagicMock()
    session.begin = MagicMock(return_value=_async_cm(None))
    return session


def _repository(session: MagicMock) -> BookmarkRepository:
    return BookmarkRepository(session_factory=MagicMock(return_value=_async_cm(session)))


def _statements(session: MagicMock) -> list[Any]:
    return [c.args[0] for c in session.execute.await_args_list]


def _added(session: MagicMock) -> list[Any]:
    return [c.args[0] for c in session.add.call_args_list]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestGetBookmarkDetails:
    async def test_maps_asset_roles(self) -> None:
        session = _session()
        link_result = MagicMock()
        link_result.one_or_none.return_value = MagicMock(url="https://example.com", user_id="user1")
        assets_result = MagicMock()
        assets_result.all.return_value = [
            ("shot", AssetType.LINK_SCREENSHOT.value),
            ("banner", AssetType.LINK_BANNER_IMAGE.value),
            ("pre", AssetType.LINK_PRECRAWLED_ARCHIVE.value),
        ]
        session.execute.side_effect = [link_result, assets_result]

        details = await _repository(session).get_bookmark_details("bm1")

        assert details.url == "https://example.com"
        assert details.user_id == "user1"
        assert details.screenshot_asset_id == "shot"
        assert details.image_asset_id == "banner"
        assert details.precrawled_archive_asset_id == "pre"
        assert details.full_page_archive_asset_id is None

    async def test_missing_or_non_link_bookmark(self) -> None:
        session = _session()
        result = MagicMock()
        result.one_or_none.return_value = None
        session.execute.return_value = result

        with pytest.raises(CrawlValidationError):
            await _repository(session).get_bookmark_details("bm1")


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestUpdateLinkContent:
    async def test_unknown_fields_rejected_before_any_write(self) -> None:
        session = _session()
        with pytest.raises(ValueError, match="crawl_status"):
            await _repository(session).update_link_content("bm1", {"title": "t", "crawl_status": "x"})
        session.execute.assert_not_awaited()

    async def test_fields_and_asset_swap_in_one_session(self) -> None:
        session = _session()
        replacement = AssetReplacement(
            asset_id="new-shot",
            asset_type=AssetType.LINK_SCREENSHOT,
            user_id="user1",
            content_type="image/png",
            size=10,
            file_name="screenshot.png",
            previous_asset_id="old-shot",
        )

        await _repository(session).update_link_content("bm1", {"title": "Hello"}, [replacement])

        update, delete = _statements(session)
        assert update.is_update
        assert delete.is_delete
        (asset,) = _added(session)
        assert isinstance(asset, Asset)
        assert asset.id == "new-shot"
        assert asset.asset_type == "link_screenshot"
        assert asset.bookmark_id == "bm1"
        session.begin.assert_called_once()

    async def test_replacement_without_previous_asset(self) -> None:
        session = _session()
        replacement = AssetReplacement(
            asset_id="banner",
            asset_type=AssetType.LINK_BANNER_IMAGE,
            user_id="user1",
            content_type="image/jpeg",
            size=3,
        )

        await _repository(session).update_link_content("bm1", {}, [replacement])

        assert _statements(session) == []
        assert [a.id for a in _added(session)] == ["banner"]


@pytest.mark.asyncio
class TestConvertLinkToAsset:
    async def test_adds_asset_rows_and_retypes_bookmark(self) -> None:
        session = _session()
        new_asset = NewBookmarkAsset(
            asset_id="a1",
            kind="pdf",
            content_type="application/pdf",
            size=8,
            file_name="paper.pdf",
            source_url="https://example.com/paper.pdf",
        )

        await _repository(session).convert_link_to_asset("bm1", "user1", new_asset)

        asset, bookmark_asset = _added(session)
        assert isinstance(asset, Asset)
        assert asset.asset_type == AssetType.BOOKMARK_ASSET.value
        assert isinstance(bookmark_asset, BookmarkAsset)
        assert bookmark_asset.asset_type == "pdf"
        assert bookmark_asset.source_url == "https://example.com/paper.pdf"
        retype, drop_link = _statements(session)
        assert retype.is_update
        assert drop_link.is_delete


@pytest.mark.asyncio
class TestSetCrawlStatus:
    async def test_status_code_written_when_known(self) -> None:
        session = _session()
        await _repository(session).set_crawl_status("bm1", CrawlStatus.SUCCESS, 200)

        (stmt,) = _statements(session)
        params = stmt.compile().params
        assert params["crawl_status"] == "success"
        assert params["crawl_status_code"] == 200

    async def test_status_code_untouched_when_unknown(self) -> None:
        session = _session()
        await _repository(session).set_crawl_status("bm1", CrawlStatus.FAILURE)

        (stmt,) = _statements(session)
        params = stmt.compile().params
        assert params["crawl_status"] == "failure"
        assert "crawl_status_code" not in params
