"""Full-page archival with the ``monolith`` command-line tool.

``monolith`` reads the crawled HTML on stdin, inlines every referenced
resource (images, CSS, fonts) relative to the page URL and writes one
self-contained HTML file.  JavaScript and iframes are stripped (``-j``,
``-I``) and errors on individual resources are ignored (``-e``).
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from bookmark_crawler.scraper.config import MONOLITH_BINARY

logger = logging.getLogger(__name__)

#: Per-resource network timeout passed to monolith, in seconds.
MONOLITH_RESOURCE_TIMEOUT_SEC: int = 5


class ArchiveError(Exception):
    """Raised when ``monolith`` fails or times out."""


async def archive_html(
    html: str,
    url: str,
    *,
    timeout_sec: float,
    binary: str = MONOLITH_BINARY,
) -> Path:
    """Produce a self-contained archive of *html* in a temporary file.

    The caller owns the returned file (normally it is moved into the asset
    store with ``AssetStore.save_asset_from_file``).

    Raises:
        ArchiveError: If the binary is missing, exits non-zero or exceeds
            *timeout_sec*.  The partial output file is removed.
    """
    fd, name = tempfile.mkstemp(prefix="archive-", suffix=".html")
    os.close(fd)
    output = Path(name)

    try:
        proc = await asyncio.create_subprocess_exec(
            binary,
            "-",
            "-Ije",
            "-t",
            str(MONOLITH_RESOURCE_TIMEOUT_SEC),
            "-b",
            url,
            "-o",
            str(output),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        output.unlink(missing_ok=True)
        raise ArchiveError(f"Failed to start {binary}: {exc}") from exc

    try:
        _, stderr = await asyncio.wait_for(
            proc.communicate(html.encode("utf-8")),
            timeout=timeout_sec,
        )
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        output.unlink(missing_ok=True)
        raise ArchiveError(f"{binary} timed out after {timeout_sec}s") from exc
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        output.unlink(missing_ok=True)
        raise

    if proc.returncode != 0:
        output.unlink(missing_ok=True)
        detail = stderr.decode("utf-8", errors="replace").strip()[:500]
        raise ArchiveError(f"{binary} exited with {proc.returncode}: {detail}")

    logger.debug("crawler: archived %s to %s", url, output)
    return output
