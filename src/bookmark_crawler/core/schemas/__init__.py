"""Pydantic schemas for payload validation.

Sub-modules:
    queues — CrawlLinkRequest and the downstream job payloads
"""

from __future__ import annotations
