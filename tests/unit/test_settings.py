"""Unit tests for ``Settings`` validation and defaults."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from bookmark_crawler.config.settings import MAX_DESCRIPTION_BATCH_SIZE, get_settings
from tests.conftest import make_settings


class TestDefaults:
    def test_crawler_defaults(self) -> None:
        settings = make_settings()
        assert settings.crawler_max_contexts == 5
        assert settings.crawler_navigate_timeout_sec == 30
        assert settings.crawler_screenshot_timeout_sec == 5
        assert settings.crawler_store_screenshot is True
        assert settings.crawler_full_page_archive is False

    def test_apify_disabled_by_default(self) -> None:
        settings = make_settings()
        assert settings.apify_enabled is False
        assert settings.apify_configured is False

    def test_apify_configured_with_key(self) -> None:
        assert make_settings(apify_api_key="apify_api_x").apify_configured is True


class TestValidation:
    def test_both_browser_endpoints_rejected(self) -> None:
        with pytest.raises(ValidationError, match="only one"):
            make_settings(
                crawler_browser_web_socket_url="ws://browser:3000",
                crawler_browser_web_url="http://browser:9222",
            )

    def test_batch_size_bounded_by_downstream_maximum(self) -> None:
        with pytest.raises(ValidationError):
            make_settings(batch_description_batch_size=MAX_DESCRIPTION_BATCH_SIZE + 1)

    def test_max_contexts_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            make_settings(crawler_max_contexts=0)


class TestGetSettings:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CRAWLER_MAX_CONTEXTS", "9")
        get_settings.cache_clear()
        try:
            assert get_settings().crawler_max_contexts == 9
        finally:
            get_settings.cache_clear()

    def test_is_cached(self) -> None:
        get_settings.cache_clear()
        assert get_settings() is get_settings()
