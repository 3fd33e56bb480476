"""Configuration package for the bookmark crawler.

Re-exports the settings symbols so that callers can write::

    from bookmark_crawler.config import get_settings
"""

from __future__ import annotations

from bookmark_crawler.config.settings import (
    MAX_DESCRIPTION_BATCH_SIZE,
    Settings,
    get_settings,
)

__all__ = [
    "MAX_DESCRIPTION_BATCH_SIZE",
    "Settings",
    "get_settings",
]
