"""Canonical social post model produced by :mod:`bookmark_crawler.social.normalizer`.

All classes are frozen dataclasses holding tuples rather than lists, so two
normalizations of the same raw item compare equal and can be hashed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

MediaKind = Literal["image", "video", "gif"]

#: Publisher name reported for every X post.
X_PUBLISHER: str = "X (formerly Twitter)"


@dataclass(frozen=True)
class SocialAuthor:
    username: str = ""
    name: str = ""
    avatar_url: Optional[str] = None
    verified: bool = False
    follower_count: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.name or self.username


@dataclass(frozen=True)
class SocialMetrics:
    """Engagement counters.  ``shares`` holds retweets/reposts."""

    likes: int = 0
    shares: int = 0
    replies: int = 0
    views: Optional[int] = None
    bookmarks: Optional[int] = None
    quotes: Optional[int] = None


@dataclass(frozen=True)
class SocialMedia:
    kind: MediaKind
    url: str
    thumbnail_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration_sec: Optional[int] = None

    @property
    def richness(self) -> int:
        """Number of optional metadata fields that are populated."""
        return sum(
            value is not None
            for value in (self.thumbnail_url, self.width, self.height, self.duration_sec)
        )


@dataclass(frozen=True)
class NormalizedSocialPost:
    """One post, with its thread continuation and quoted post, in canonical form.

    Attributes:
        id: Platform post id.  May be ``None`` when the upstream item carried
            text but no id.
        text: Post text, stripped.  May be empty when the item carried an id
            but no text.
        author: Who posted it.
        metrics: Engagement counters at scrape time.
        media: Attached media in upstream order, one entry per URL.
        hashtags: ``#tag`` strings, de-duplicated, first-seen order.
        mentions: ``@handle`` strings, de-duplicated, first-seen order.
        thread: Follow-up posts of the same thread, each normalized the same way.
        quoted_post: The quoted/retweeted post, if any.
        url: Canonical URL of the post (empty if unknown).
        created_at: Publication time, if it could be parsed.
        is_thread: Whether upstream flagged the post as part of a thread.
    """

    id: Optional[str]
    text: str
    author: SocialAuthor = SocialAuthor()
    metrics: SocialMetrics = SocialMetrics()
    media: tuple[SocialMedia, ...] = ()
    hashtags: tuple[str, ...] = ()
    mentions: tuple[str, ...] = ()
    thread: tuple["NormalizedSocialPost", ...] = ()
    quoted_post: Optional["NormalizedSocialPost"] = None
    url: str = ""
    created_at: Optional[datetime] = None
    is_thread: bool = False

    @property
    def title(self) -> str:
        """``"Display Name (@handle)"``."""
        return f"{self.author.display_name} (@{self.author.username})"

    @property
    def first_image(self) -> Optional[SocialMedia]:
        return next((m for m in self.media if m.kind == "image"), None)
