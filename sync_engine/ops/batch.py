"""
Batch processing of candidate items for one entity type.

Items are split into consecutive chunks and handled one at a time, in
provider order. A failing item is counted and skipped over; it never
aborts its chunk or the run. Cancellation is checked before each chunk.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..errors import ItemSkipped
from .cancellation import CancellationRegistry, CancellationToken

ItemOperation = Callable[[Any, Optional[CancellationToken]], Awaitable[Optional[bool]]]
ProgressCallback = Callable[[int, int], Any]


@dataclass
class BatchResult:
    """Aggregated outcome of a batch run."""

    processed: int = 0
    errors: int = 0
    skipped: int = 0
    last_error: Optional[str] = None
    total: int = 0
    cancelled: bool = False

    @property
    def handled(self) -> int:
        return self.processed + self.errors + self.skipped


def chunked(items: Sequence, size: int):
    """Yield consecutive slices of at most `size` items."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class BatchProcessor:
    """Applies an item operation over chunked items with progress reports."""

    async def run(
        self,
        items: Sequence,
        batch_size: int,
        item_operation: ItemOperation,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Process items chunk by chunk.

        Args:
            items: Candidate items in provider order
            batch_size: Items per chunk (>= 1)
            item_operation: Async callable (item, token) -> bool | None.
                Returning False or raising counts as an error; raising
                ItemSkipped counts as skipped.
            token: Cancellation token polled before each chunk
            on_progress: Called with (handled_so_far, total) before the
                first chunk and after every chunk; may be async

        Returns:
            BatchResult with partial counts if cancelled
        """
        items = list(items)
        result = BatchResult(total=len(items))

        if on_progress is not None:
            await _maybe_await(on_progress(0, result.total))

        for batch in chunked(items, batch_size):
            if CancellationRegistry.is_signaled(token):
                result.cancelled = True
                break

            for item in batch:
                try:
                    outcome = await item_operation(item, token)
                except ItemSkipped:
                    result.skipped += 1
                    continue
                except Exception as e:
                    result.errors += 1
                    result.last_error = str(e) or e.__class__.__name__
                    continue

                if outcome is False:
                    result.errors += 1
                    result.last_error = f"Operation reported failure for item {_item_id(item)}"
                else:
                    result.processed += 1

            if on_progress is not None:
                await _maybe_await(on_progress(result.handled, result.total))

        return result


def _item_id(item: Any) -> str:
    if isinstance(item, dict) and "id" in item:
        return str(item["id"])
    return repr(item)
