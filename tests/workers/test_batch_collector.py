"""Unit tests for ``EnrichmentBatchCollector``.

Timers are real asyncio tasks.  Tests that need a timer to fire await the
task exposed through ``flush_timer`` / ``retry_timer`` instead of sleeping.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from bookmark_crawler.workers.batch_collector import EnrichmentBatchCollector
from tests.conftest import make_settings


async def _drain_retries(collector: EnrichmentBatchCollector) -> None:
    while collector.retry_timer is not None:
        await collector.retry_timer


class TestConstruction:
    @pytest.mark.parametrize("size", [0, 41])
    def test_batch_size_bounds(self, size: int) -> None:
        with pytest.raises(ValueError):
            EnrichmentBatchCollector(AsyncMock(), batch_size=size)

    def test_from_settings(self) -> None:
        settings = make_settings(batch_description_batch_size=4, batch_description_timeout_sec=2.5)
        collector = EnrichmentBatchCollector.from_settings(AsyncMock(), settings)
        assert collector.pending_ids == []
        assert collector.closed is False


@pytest.mark.asyncio
class TestSizeTrigger:
    async def test_full_batch_is_submitted_once(self) -> None:
        submit = AsyncMock()
        collector = EnrichmentBatchCollector(submit, batch_size=3, timeout_sec=60)

        for bookmark_id in ("a", "b", "a", "c"):
            assert await collector.add(bookmark_id, "crawler") is True

        submit.assert_awaited_once_with(["a", "b", "c"], "crawler")
        assert collector.pending_ids == []
        assert collector.flush_timer is None
        await collector.shutdown()

    async def test_ids_added_during_submission_start_the_next_batch(self) -> None:
        gate = asyncio.Event()
        batches: list[list[str]] = []

        async def _submit(ids: list[str], source: str) -> None:
            batches.append(list(ids))
            if len(batches) == 1:
                await gate.wait()

        collector = EnrichmentBatchCollector(_submit, batch_size=2, timeout_sec=60)
        await collector.add("a", "crawler")
        flushing = asyncio.create_task(collector.add("b", "crawler"))
        while not batches:
            await asyncio.sleep(0)

        await collector.add("c", "crawler")
        assert collector.pending_ids == ["c"]

        gate.set()
        await flushing
        assert batches == [["a", "b"]]
        assert collector.pending_ids == ["c"]
        assert collector.flush_timer is not None

        await collector.shutdown()
        assert batches == [["a", "b"], ["c"]]


@pytest.mark.asyncio
class TestTimeTrigger:
    async def test_partial_batch_flushed_after_timeout(self) -> None:
        submit = AsyncMock()
        collector = EnrichmentBatchCollector(submit, batch_size=10, timeout_sec=0.01)

        await collector.add("a", "crawler")
        await collector.add("b", "crawler")
        timer = collector.flush_timer
        assert timer is not None
        await timer

        submit.assert_awaited_once_with(["a", "b"], "crawler")
        assert collector.pending_ids == []
        assert collector.flush_timer is None

    async def test_one_timer_per_batch(self) -> None:
        collector = EnrichmentBatchCollector(AsyncMock(), batch_size=10, timeout_sec=60)

        await collector.add("a", "crawler")
        first = collector.flush_timer
        await collector.add("b", "crawler")

        assert collector.flush_timer is first
        await collector.shutdown()


@pytest.mark.asyncio
class TestSources:
    @pytest.mark.parametrize("source", ["api", "admin"])
    async def test_non_crawler_sources_are_rejected(self, source: str) -> None:
        submit = AsyncMock()
        collector = EnrichmentBatchCollector(submit, batch_size=1)

        assert await collector.add("a", source) is False

        assert collector.pending_ids == []
        assert collector.flush_timer is None
        submit.assert_not_awaited()


@pytest.mark.asyncio
class TestRetry:
    async def test_failed_batch_is_retried(self) -> None:
        submit = AsyncMock(side_effect=[RuntimeError("broker down"), None])
        collector = EnrichmentBatchCollector(
            submit, batch_size=2, timeout_sec=60, max_retries=3, retry_base_delay_sec=0
        )

        await collector.add("a", "crawler")
        await collector.add("b", "crawler")
        assert collector.retry_timer is not None
        await _drain_retries(collector)

        assert submit.await_count == 2
        assert submit.await_args_list[1].args == (["a", "b"], "crawler")
        assert collector.pending_ids == []

    async def test_exhausted_batch_is_merged_back_not_dropped(self) -> None:
        submit = AsyncMock(side_effect=RuntimeError("broker down"))
        collector = EnrichmentBatchCollector(
            submit, batch_size=3, timeout_sec=60, max_retries=2, retry_base_delay_sec=0
        )

        await collector.add("a", "crawler")
        await collector.add("b", "crawler")
        await collector.flush()
        await _drain_retries(collector)

        # One initial attempt plus two retries.
        assert submit.await_count == 3
        assert collector.pending_ids == ["a", "b"]
        assert collector.flush_timer is not None

        submit.side_effect = None
        await collector.flush()
        assert submit.await_args.args == (["a", "b"], "crawler")
        assert collector.pending_ids == []
        await collector.shutdown()

    async def test_backoff_doubles(self, monkeypatch: pytest.MonkeyPatch) -> None:
        delays: list[float] = []
        real_sleep = asyncio.sleep

        async def _sleep(delay: float) -> None:
            delays.append(delay)
            # Retry delays are skipped; the re-armed flush timer keeps its real delay.
            await real_sleep(0 if delay < 60 else delay)

        monkeypatch.setattr("bookmark_crawler.workers.batch_collector.asyncio.sleep", _sleep)
        submit = AsyncMock(side_effect=RuntimeError("broker down"))
        collector = EnrichmentBatchCollector(
            submit, batch_size=5, timeout_sec=60, max_retries=3, retry_base_delay_sec=1.0
        )

        await collector.add("a", "crawler")
        await collector.flush()
        await _drain_retries(collector)

        assert delays[:3] == [1.0, 2.0, 4.0]
        await collector.shutdown()


@pytest.mark.asyncio
class TestShutdown:
    async def test_remaining_ids_are_flushed(self) -> None:
        submit = AsyncMock()
        collector = EnrichmentBatchCollector(submit, batch_size=10, timeout_sec=60)
        await collector.add("a", "crawler")
        timer = collector.flush_timer

        await collector.shutdown()

        submit.assert_awaited_once_with(["a"], "crawler")
        assert collector.closed is True
        assert collector.flush_timer is None
        await asyncio.sleep(0)
        assert timer is not None and timer.cancelled()

    async def test_add_after_shutdown_raises(self) -> None:
        collector = EnrichmentBatchCollector(AsyncMock())
        await collector.shutdown()
        with pytest.raises(RuntimeError):
            await collector.add("a", "crawler")

    async def test_pending_retry_batch_is_included(self) -> None:
        submit = AsyncMock(side_effect=[RuntimeError("broker down"), None])
        collector = EnrichmentBatchCollector(
            submit, batch_size=2, timeout_sec=60, retry_base_delay_sec=60
        )
        await collector.add("a", "crawler")
        await collector.add("b", "crawler")
        assert collector.retry_timer is not None

        await collector.shutdown()

        assert collector.retry_timer is None
        assert submit.await_args.args == (["a", "b"], "crawler")

    async def test_failed_final_flush_keeps_ids(self) -> None:
        submit = AsyncMock(side_effect=RuntimeError("broker down"))
        collector = EnrichmentBatchCollector(submit, batch_size=10, timeout_sec=60)
        await collector.add("a", "crawler")

        await collector.shutdown()

        assert collector.pending_ids == ["a"]
        assert collector.flush_timer is None
