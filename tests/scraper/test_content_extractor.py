"""Unit tests for the readable-content extractor.

Tests extraction on a synthetic article, sanitization of active content and
edge cases (empty input, readability failure, NUL bytes, oversized text).
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from bookmark_crawler.scraper.config import MAX_CONTENT_BYTES
from bookmark_crawler.scraper.content_extractor import (
    ReadableContent,
    extract_readable_content,
    sanitize_html,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

_PARAGRAPH = (
    "Glaciers in the Alps have lost more than a third of their volume since the "
    "turn of the century, according to researchers who measured the ice sheets "
    "with airborne laser scanning over two decades of fieldwork."
)

_ARTICLE_HTML = f"""
<!DOCTYPE html>
<html lang="en">
<head><title>Glacier retreat | Example News</title></head>
<body>
  <nav><a href="/">Home</a> <a href="/world">World</a></nav>
  <article>
    <h1>Glaciers are shrinking faster than expected</h1>
    <p>{_PARAGRAPH}</p>
    <p onclick="steal()">{_PARAGRAPH}</p>
    <p>{_PARAGRAPH} <a href="javascript:alert(1)">more</a></p>
    <script>var tracking = true;</script>
  </article>
  <footer>Copyright Example News</footer>
</body>
</html>
"""


def _fake_document(summary: str) -> MagicMock:
    document = MagicMock()
    document.summary.return_value = summary
    return MagicMock(return_value=document)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestSanitizeHtml:
    def test_drops_scripts_and_embeds(self) -> None:
        result = sanitize_html("<div><p>ok</p><script>x()</script><iframe src='a'></iframe></div>")
        assert "<script" not in result
        assert "<iframe" not in result
        assert "<p>ok</p>" in result

    def test_drops_event_handlers(self) -> None:
        result = sanitize_html('<p onclick="x()" class="a">hi</p>')
        assert "onclick" not in result
        assert 'class="a"' in result

    def test_drops_javascript_urls(self) -> None:
        result = sanitize_html('<a href="javascript:alert(1)">x</a><a href="https://a.b/">y</a>')
        assert "javascript:" not in result
        assert 'href="https://a.b/"' in result

    def test_keeps_inline_images(self) -> None:
        result = sanitize_html('<img src="data:image/png;base64,AAAA">')
        assert "data:image/png;base64,AAAA" in result

    def test_drops_data_urls_elsewhere(self) -> None:
        result = sanitize_html('<a href="data:text/html,evil">x</a>')
        assert "data:text/html" not in result


class TestExtractReadableContent:
    def test_extracts_article(self) -> None:
        result = extract_readable_content(_ARTICLE_HTML, "https://news.example.com/glaciers")

        assert isinstance(result, ReadableContent)
        assert "Glaciers in the Alps" in result.text
        assert "Glaciers in the Alps" in result.html
        assert "<script" not in result.html
        assert "onclick" not in result.html
        assert "javascript:" not in result.html

    def test_empty_html_returns_none(self) -> None:
        assert extract_readable_content("", "https://example.com") is None

    def test_readability_failure_returns_none(self) -> None:
        with patch(
            "bookmark_crawler.scraper.content_extractor.Document",
            MagicMock(side_effect=ValueError("unparseable")),
        ):
            assert extract_readable_content("<html></html>", "https://example.com") is None

    def test_blank_summary_returns_none(self) -> None:
        with patch("bookmark_crawler.scraper.content_extractor.Document", _fake_document("   ")):
            assert extract_readable_content("<html></html>", "https://example.com") is None

    def test_falls_back_to_fragment_text(self) -> None:
        with patch(
            "bookmark_crawler.scraper.content_extractor.Document",
            _fake_document("<div><p>Short   note</p></div>"),
        ), patch("bookmark_crawler.scraper.content_extractor.trafilatura.extract", return_value=None):
            result = extract_readable_content("<html></html>", "https://example.com")

        assert result is not None
        assert result.text == "Short note"

    def test_nul_bytes_stripped(self) -> None:
        with patch(
            "bookmark_crawler.scraper.content_extractor.Document",
            _fake_document("<div><p>a\x00b</p></div>"),
        ), patch(
            "bookmark_crawler.scraper.content_extractor.trafilatura.extract",
            return_value="text\x00with\x00nul",
        ):
            result = extract_readable_content("<html></html>", "https://example.com")

        assert result is not None
        assert "\x00" not in result.text
        assert "\x00" not in result.html

    def test_oversized_text_is_capped(self) -> None:
        with patch(
            "bookmark_crawler.scraper.content_extractor.Document",
            _fake_document("<div><p>x</p></div>"),
        ), patch(
            "bookmark_crawler.scraper.content_extractor.trafilatura.extract",
            return_value="é" * MAX_CONTENT_BYTES,
        ):
            result = extract_readable_content("<html></html>", "https://example.com")

        assert result is not None
        assert len(result.text.encode("utf-8")) <= MAX_CONTENT_BYTES
