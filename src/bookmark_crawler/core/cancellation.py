"""Cooperative cancellation for crawl jobs.

A :class:`CancellationToken` travels with each crawl job.  The orchestrator
calls :meth:`CancellationToken.raise_if_cancelled` at every stage boundary;
long waits can race against :meth:`CancellationToken.wait`.
"""

from __future__ import annotations

import asyncio

from bookmark_crawler.core.exceptions import JobCancelledError


class CancellationToken:
    """One-shot cancellation flag shared between a job and whoever may abort it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        """Raise :class:`JobCancelledError` if :meth:`cancel` was called."""
        if self._event.is_set():
            raise JobCancelledError(stage)

    async def wait(self) -> None:
        await self._event.wait()
