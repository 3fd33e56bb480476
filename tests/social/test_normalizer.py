"""Unit tests for the social item normalizer.

Covers the field-alias tables, the three media layouts and their merge,
timestamp parsing, hashtag/mention extraction, nesting depth and the
"no id and no text" skip rule.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone

import pytest

from bookmark_crawler.social.models import NormalizedSocialPost
from bookmark_crawler.social.normalizer import (
    ID_EXTRACTORS,
    MAX_NESTING_DEPTH,
    extract_hashtags,
    extract_media,
    extract_mentions,
    first_value,
    normalize_item,
    normalize_items,
    parse_timestamp,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

_CURRENT_SHAPE = {
    "id": "1789",
    "text": "  Launching today! #release cc @bob  ",
    "url": "https://x.com/acme/status/1789",
    "author": {
        "userName": "acme",
        "name": "Acme Corp",
        "profilePicture": "https://pbs.twimg.com/a.jpg",
        "isBlueVerified": True,
        "followers": 1200,
    },
    "likeCount": 10,
    "retweetCount": 3,
    "replyCount": 2,
    "viewCount": 500,
    "bookmarkCount": 4,
    "quoteCount": 1,
    "createdAt": "Mon Jan 15 12:34:56 +0000 2024",
}

_LEGACY_SHAPE = {
    "tweetId": 42,
    "fullText": "Legacy text",
    "username": "oldtimer",
    "displayName": "Old Timer",
    "favoriteCount": "7",
    "retweets": 1,
    "replies": 0,
    "timestamp": 1700000000000,
}


def _quote_chain(length: int) -> dict:
    item: dict = {"id": str(length), "text": f"level {length}"}
    for level in range(length - 1, -1, -1):
        item = {"id": str(level), "text": f"level {level}", "quotedTweet": item}
    return item


# ---------------------------------------------------------------------------
# Field aliases
# ---------------------------------------------------------------------------


class TestFieldAliases:
    def test_current_shape(self) -> None:
        post = normalize_item(_CURRENT_SHAPE)

        assert isinstance(post, NormalizedSocialPost)
        assert post.id == "1789"
        assert post.text == "Launching today! #release cc @bob"
        assert post.author.username == "acme"
        assert post.author.name == "Acme Corp"
        assert post.author.avatar_url == "https://pbs.twimg.com/a.jpg"
        assert post.author.verified is True
        assert post.author.follower_count == 1200
        assert post.metrics.likes == 10
        assert post.metrics.shares == 3
        assert post.metrics.replies == 2
        assert post.metrics.views == 500
        assert post.metrics.bookmarks == 4
        assert post.metrics.quotes == 1
        assert post.created_at == datetime(2024, 1, 15, 12, 34, 56, tzinfo=timezone.utc)
        assert post.title == "Acme Corp (@acme)"

    def test_legacy_shape(self) -> None:
        post = normalize_item(_LEGACY_SHAPE)

        assert post is not None
        assert post.id == "42"
        assert post.text == "Legacy text"
        assert post.author.username == "oldtimer"
        assert post.author.name == "Old Timer"
        assert post.metrics.likes == 7
        assert post.metrics.views is None
        assert post.created_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    def test_first_value_skips_unusable_candidates(self) -> None:
        assert first_value({"id": "", "tweetId": "9"}, ID_EXTRACTORS) == "9"

    def test_id_recovered_from_url(self) -> None:
        post = normalize_item({"url": "https://x.com/acme/status/555"})
        assert post is not None
        assert post.id == "555"
        assert post.text == ""

    def test_missing_metrics_default_to_zero(self) -> None:
        post = normalize_item({"id": "1", "text": "x"})
        assert post is not None
        assert (post.metrics.likes, post.metrics.shares, post.metrics.replies) == (0, 0, 0)
        assert post.author.username == ""


class TestSkippedItems:
    def test_no_id_and_no_text(self) -> None:
        assert normalize_item({"text": "   ", "likes": 3}) is None

    def test_non_dict(self) -> None:
        assert normalize_item(["not", "an", "item"]) is None

    def test_normalize_items_drops_unusable(self) -> None:
        posts = normalize_items([{"id": "1", "text": "a"}, {}, "junk", {"id": "2"}])
        assert [p.id for p in posts] == ["1", "2"]


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


class TestExtractMedia:
    def test_flat_lists(self) -> None:
        media = extract_media({"photos": ["https://p/1.jpg"], "videos": ["https://v/1.mp4"]})
        assert [(m.kind, m.url) for m in media] == [
            ("image", "https://p/1.jpg"),
            ("video", "https://v/1.mp4"),
        ]

    def test_unified_array(self) -> None:
        media = extract_media(
            {
                "media": [
                    "https://p/plain.jpg",
                    {"type": "animated_gif", "url": "https://p/anim.mp4", "durationMs": 3000},
                    {"type": "photo"},
                ]
            }
        )
        assert [(m.kind, m.url) for m in media] == [
            ("image", "https://p/plain.jpg"),
            ("gif", "https://p/anim.mp4"),
        ]
        assert media[1].duration_sec == 3

    def test_extended_entities(self) -> None:
        media = extract_media(
            {
                "extendedEntities": {
                    "media": [
                        {
                            "type": "video",
                            "media_url_https": "https://p/v.jpg",
                            "video_info": {"duration_millis": 12000},
                            "sizes": {"large": {"w": 1280, "h": 720}},
                        }
                    ]
                }
            }
        )
        assert len(media) == 1
        assert media[0].kind == "video"
        assert (media[0].width, media[0].height, media[0].duration_sec) == (1280, 720, 12)

    def test_same_url_is_merged_preferring_richer_entry(self) -> None:
        media = extract_media(
            {
                "photos": ["https://p/1.jpg"],
                "media": [{"type": "photo", "url": "https://p/1.jpg", "width": 800}],
                "extendedEntities": {
                    "media": [
                        {
                            "type": "photo",
                            "media_url_https": "https://p/1.jpg",
                            "sizes": {"large": {"w": 2048, "h": 1024}},
                        }
                    ]
                },
            }
        )
        assert len(media) == 1
        assert media[0].width == 2048
        assert media[0].height == 1024

    def test_first_seen_order(self) -> None:
        media = extract_media({"photos": ["https://p/b.jpg", "https://p/a.jpg", "https://p/b.jpg"]})
        assert [m.url for m in media] == ["https://p/b.jpg", "https://p/a.jpg"]


# ---------------------------------------------------------------------------
# Hashtags / mentions
# ---------------------------------------------------------------------------


class TestEntities:
    def test_hashtags_structured_and_inline(self) -> None:
        item = {"hashtags": ["python", {"text": "#asyncio"}], "entities": {"hashtags": [{"tag": "python"}]}}
        assert extract_hashtags(item, "Hello #python #new") == ("#python", "#asyncio", "#new")

    def test_mentions_structured_and_inline(self) -> None:
        item = {"entities": {"user_mentions": [{"screen_name": "alice"}]}}
        assert extract_mentions(item, "hi @bob and @alice") == ("@alice", "@bob")


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


class TestParseTimestamp:
    @pytest.mark.parametrize(
        "value",
        [
            "Mon Jan 15 12:34:56 +0000 2024",
            "2024-01-15T12:34:56Z",
            "2024-01-15T12:34:56",
            1705322096,
            1705322096000,
        ],
    )
    def test_supported_shapes(self, value: object) -> None:
        assert parse_timestamp(value) == datetime(2024, 1, 15, 12, 34, 56, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday", {"ts": 1}])
    def test_unparseable(self, value: object) -> None:
        assert parse_timestamp(value) is None


# ---------------------------------------------------------------------------
# Nesting
# ---------------------------------------------------------------------------


class TestNesting:
    def test_thread_and_quote(self) -> None:
        post = normalize_item(
            {
                "id": "1",
                "text": "first",
                "thread": [{"id": "2", "text": "second"}, {"text": ""}],
                "quote": {"id": "9", "text": "quoted"},
            }
        )
        assert post is not None
        assert [p.id for p in post.thread] == ["2"]
        assert post.is_thread is True
        assert post.quoted_post is not None
        assert post.quoted_post.id == "9"

    def test_depth_is_capped(self) -> None:
        post = normalize_item(_quote_chain(MAX_NESTING_DEPTH + 3))

        depth = 0
        current = post
        while current is not None and current.quoted_post is not None:
            current = current.quoted_post
            depth += 1
        assert depth == MAX_NESTING_DEPTH

    def test_normalizing_twice_gives_equal_posts(self) -> None:
        raw = {
            **_CURRENT_SHAPE,
            "photos": ["https://p/1.jpg"],
            "media": [{"type": "video", "url": "https://v/1.mp4", "durationMs": 3000}],
            "extendedEntities": {
                "media": [
                    {
                        "type": "photo",
                        "media_url_https": "https://p/1.jpg",
                        "sizes": {"large": {"w": 2048, "h": 1024}},
                    }
                ]
            },
            "thread": [{"id": "2", "text": "second #more"}],
            "quote": {"id": "9", "text": "quoted", "photos": ["https://p/q.jpg"]},
        }
        snapshot = copy.deepcopy(raw)

        first = normalize_item(raw)
        second = normalize_item(raw)

        assert first is not None
        assert first == second
        assert len(first.media) == 2
        assert first.thread and first.quoted_post is not None
        assert raw == snapshot
