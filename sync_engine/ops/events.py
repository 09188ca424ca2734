"""
In-process publish/subscribe for job lifecycle events.

Each orchestrator owns its own bus, so separate engines (tests, for one)
never see each other's events. Delivery is best effort: a failing
subscriber is logged and skipped, and job execution never waits on it.
"""

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Optional

from ..telemetry import get_logger
from .jobs import utcnow

logger = get_logger(__name__)


class JobEventKind(str, Enum):
    STARTED = "started"
    ENTITY_COMPLETED = "entity-completed"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class JobEvent:
    """A lifecycle notification for one job."""

    kind: JobEventKind
    job_id: str
    data: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = JobEventKind(self.kind).value
        return data


Handler = Callable[[JobEvent], Any]


class EventBus:
    """Fire-and-forget event dispatch to registered handlers."""

    def __init__(self):
        self._handlers: dict[Optional[JobEventKind], list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, kind: JobEventKind | str, handler: Handler) -> Callable[[], None]:
        """
        Register a handler for one event kind.

        Handlers may be plain functions or coroutine functions.

        Returns:
            Callable that removes the subscription
        """
        kind = JobEventKind(kind)
        self._handlers[kind].append(handler)
        return lambda: self._remove(kind, handler)

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        """Register a handler that receives every event kind."""
        self._handlers[None].append(handler)
        return lambda: self._remove(None, handler)

    def _remove(self, kind: Optional[JobEventKind], handler: Handler) -> None:
        handlers = self._handlers.get(kind, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, kind: JobEventKind | str, job_id: str, **data) -> JobEvent:
        """
        Deliver an event to its subscribers.

        Sync handlers run inline; coroutine handlers are scheduled on the
        running loop. Handler errors are logged and swallowed.

        Returns:
            The published event
        """
        event = JobEvent(kind=JobEventKind(kind), job_id=job_id, data=data)
        handlers = list(self._handlers.get(event.kind, [])) + list(self._handlers.get(None, []))

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event)
            except Exception as e:
                logger.warning(
                    "event_handler_failed",
                    kind=event.kind.value,
                    job_id=job_id,
                    error=str(e),
                )
        return event

    def _schedule(self, awaitable, event: JobEvent) -> None:
        async def _guarded():
            try:
                await awaitable
            except Exception as e:
                logger.warning(
                    "event_handler_failed",
                    kind=event.kind.value,
                    job_id=event.job_id,
                    error=str(e),
                )

        task = asyncio.ensure_future(_guarded())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
