"""HTML rendering of normalized social posts.

The crawler stores :func:`render_post_html` output as the bookmark's HTML
content.  The document carries the post's fields as ``<title>`` and Open
Graph meta tags so the generic metadata rule chain can run over it unchanged.
"""

from __future__ import annotations

import html
import re

from bookmark_crawler.social.models import NormalizedSocialPost

_TOKEN_RE = re.compile(r"(?P<url>https?://[^\s<>\"']+)|#(?P<tag>\w+)|@(?P<handle>\w+)")


def _linkify(match: re.Match[str]) -> str:
    if match.group("url"):
        url = html.escape(match.group("url"), quote=True)
        return f'<a href="{url}" target="_blank">{url}</a>'
    if match.group("tag"):
        return f'<span class="hashtag">#{match.group("tag")}</span>'
    return f'<span class="mention">@{match.group("handle")}</span>'


def render_post_body(post: NormalizedSocialPost) -> str:
    """Return the post text as an escaped ``<div class="x-post">`` fragment.

    URLs become links, hashtags and mentions become classed spans and line
    breaks become ``<br>``.  Tokens are matched on the raw text and every
    piece is escaped on its own, so quotes never reach an attribute.
    """
    parts: list[str] = []
    pos = 0
    for match in _TOKEN_RE.finditer(post.text):
        parts.append(html.escape(post.text[pos : match.start()], quote=True))
        parts.append(_linkify(match))
        pos = match.end()
    parts.append(html.escape(post.text[pos:], quote=True))
    body = "".join(parts)
    return '<div class="x-post">' + body.replace("\n", "<br>") + "</div>"


def render_post_html(post: NormalizedSocialPost) -> str:
    """Return a minimal standalone HTML document for *post*."""
    title = post.title if post.author.username else "X Post"
    image = post.first_image.url if post.first_image else (post.author.avatar_url or "")

    def attr(value: str) -> str:
        return html.escape(value, quote=True)

    return (
        "<html>\n"
        "<head>\n"
        f"<title>{html.escape(title)}</title>\n"
        f'<meta property="og:title" content="{attr(title)}" />\n'
        f'<meta property="og:description" content="{attr(post.text)}" />\n'
        f'<meta property="og:image" content="{attr(image)}" />\n'
        f'<meta name="author" content="{attr(post.author.display_name)}" />\n'
        "</head>\n"
        "<body>\n"
        f"{render_post_body(post)}\n"
        "</body>\n"
        "</html>\n"
    )
