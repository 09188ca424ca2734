"""
Unit tests for sync_engine/ops/batch.py

Tests chunking, per-item error isolation, progress reports and
cancellation at batch boundaries.
"""
import pytest

from sync_engine.errors import ItemSkipped
from sync_engine.ops.batch import BatchProcessor, chunked
from sync_engine.ops.cancellation import CancellationToken, CancelMode

# Mark all tests as async
pytestmark = pytest.mark.asyncio


def items(n):
    return [{"id": f"item-{i}"} for i in range(1, n + 1)]


async def succeed(item, token=None):
    return True


async def test_chunked_sizes():
    assert [len(c) for c in chunked(list(range(5)), 2)] == [2, 2, 1]
    assert list(chunked([], 3)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))


async def test_all_items_processed():
    result = await BatchProcessor().run(items(5), 2, succeed)

    assert result.processed == 5
    assert result.errors == 0
    assert result.total == 5
    assert not result.cancelled


async def test_errors_are_counted_not_raised():
    async def op(item, token=None):
        if item["id"] == "item-2":
            raise ValueError("bad record")
        if item["id"] == "item-4":
            return False
        return True

    result = await BatchProcessor().run(items(5), 2, op)

    assert result.processed == 3
    assert result.errors == 2
    assert result.last_error == "Operation reported failure for item item-4"


async def test_none_outcome_counts_as_processed():
    async def op(item, token=None):
        return None

    result = await BatchProcessor().run(items(3), 10, op)
    assert result.processed == 3


async def test_skipped_items():
    async def op(item, token=None):
        if item["id"] == "item-1":
            raise ItemSkipped("nothing to do")
        return True

    result = await BatchProcessor().run(items(3), 2, op)

    assert result.skipped == 1
    assert result.processed == 2
    assert result.handled == 3


async def test_progress_reported_per_chunk():
    reports = []

    result = await BatchProcessor().run(
        items(5), 2, succeed, on_progress=lambda done, total: reports.append((done, total))
    )

    assert reports == [(0, 5), (2, 5), (4, 5), (5, 5)]
    assert result.processed == 5


async def test_async_progress_callback():
    reports = []

    async def on_progress(done, total):
        reports.append(done)

    await BatchProcessor().run(items(3), 1, succeed, on_progress=on_progress)
    assert reports == [0, 1, 2, 3]


async def test_cancellation_checked_between_chunks():
    token = CancellationToken("sync-1")
    seen = []

    async def op(item, token=None):
        seen.append(item["id"])
        if item["id"] == "item-1":
            token.cancel(CancelMode.PAUSE)
        return True

    result = await BatchProcessor().run(items(6), 2, op, token=token)

    # The in-flight chunk finishes; the next one never starts
    assert seen == ["item-1", "item-2"]
    assert result.processed == 2
    assert result.cancelled


async def test_cancelled_before_start():
    token = CancellationToken("sync-1")
    token.cancel()

    result = await BatchProcessor().run(items(3), 2, succeed, token=token)

    assert result.processed == 0
    assert result.cancelled
