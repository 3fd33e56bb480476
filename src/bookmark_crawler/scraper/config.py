"""Constants and tuning parameters for the crawl pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Browser contexts
# ---------------------------------------------------------------------------

#: Viewport of every pooled browser context.
VIEWPORT: dict[str, int] = {"width": 1440, "height": 900}

#: User-agent string used by pooled contexts and plain HTTP fetches.
USER_AGENT: str = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

#: Idle time after which a pooled context is closed by the sweeper.
CONTEXT_IDLE_TTL_SEC: float = 5 * 60

#: How often the pool's background sweeper runs.
CONTEXT_SWEEP_INTERVAL_SEC: float = 60

#: Timeout for establishing the remote browser connection.
BROWSER_CONNECT_TIMEOUT_MS: int = 5000

#: Delay Playwright inserts between protocol operations on remote browsers.
BROWSER_SLOW_MO_MS: int = 100

# ---------------------------------------------------------------------------
# Reconnection
# ---------------------------------------------------------------------------

MAX_RECONNECT_ATTEMPTS: int = 10

#: First backoff delay; doubles per attempt.
RECONNECT_BASE_DELAY_SEC: float = 1.0

RECONNECT_MAX_DELAY_SEC: float = 30.0

#: Upper bound of the random jitter, as a fraction of the delay.
RECONNECT_JITTER_RATIO: float = 0.1

#: Pause before the next attempt after a failed reconnection.
RECONNECT_RETRY_PAUSE_SEC: float = 0.1

# ---------------------------------------------------------------------------
# Fetch timing
# ---------------------------------------------------------------------------

#: Content-type probe timeout (HEAD request).
PROBE_TIMEOUT_SEC: float = 5.0

#: Timeout of the plain HTTP GET used when no browser context is available.
BROWSERLESS_FETCH_TIMEOUT_SEC: float = 5.0

#: Ceiling on the post-navigation network-idle wait.  Pages that keep
#: connections open forever never reach network idle.
NETWORK_IDLE_CEILING_SEC: float = 5.0

#: Timeout for downloading banner images and asset files.
DOWNLOAD_TIMEOUT_SEC: float = 30.0

# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

PDF_CONTENT_TYPE: str = "application/pdf"

#: Image MIME types that turn a link bookmark into an image asset.
SUPPORTED_IMAGE_TYPES: frozenset[str] = frozenset({"image/jpeg", "image/png", "image/webp"})

#: Hostnames a crawl target may never resolve to by name.
DENIED_HOSTNAMES: frozenset[str] = frozenset({"localhost", "127.0.0.1", "0.0.0.0"})

# ---------------------------------------------------------------------------
# Content size guards
# ---------------------------------------------------------------------------

#: Maximum stored readable text/HTML size (bytes).  PostgreSQL's tsvector
#: limit is ~1 MB; staying below 900 KB leaves headroom for encoding overhead.
MAX_CONTENT_BYTES: int = 900 * 1024

# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

SCREENSHOT_FILE_NAME: str = "screenshot.png"
SCREENSHOT_CONTENT_TYPE: str = "image/png"

ARCHIVE_CONTENT_TYPE: str = "text/html"

#: Archiver binary invoked for full-page archives.
MONOLITH_BINARY: str = "monolith"
