"""In-process observer list for job queue lifecycle events.

The :class:`~listing_harvester.workers.job_queue.JobQueue` publishes an event
at each admission and state change.  Consumers (structured logging, webhook
delivery) subscribe explicitly at application startup.

Event names and payload shapes::

    job_queued      {"job": QueueJob}
    job_started     {"job": QueueJob}
    job_completed   {"job": QueueJob, "result": WorkerResult}
    job_failed      {"job": QueueJob, "error": str}
    queue_paused    {}
    queue_resumed   {}

Handlers may be plain callables or coroutine functions.  Coroutine handlers
are scheduled as tasks so a slow subscriber (an unreachable webhook, say)
never blocks the dispatch path.  A handler that raises is logged at WARNING
and never propagates to the publisher.

Usage::

    from listing_harvester.core.event_bus import QueueEvent, QueueEventBus

    bus = QueueEventBus()
    bus.subscribe(QueueEvent.JOB_COMPLETED, notify_webhook)
    bus.publish(QueueEvent.JOB_COMPLETED, {"job": job, "result": result})
    await bus.drain()
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

EventHandler = Callable[["QueueEvent", dict[str, Any]], Union[None, Awaitable[None]]]


class QueueEvent(str, enum.Enum):
    """Lifecycle signals published by the job queue."""

    JOB_QUEUED = "job_queued"
    JOB_STARTED = "job_started"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    QUEUE_PAUSED = "queue_paused"
    QUEUE_RESUMED = "queue_resumed"


class QueueEventBus:
    """Explicit subscriber registry owned by one queue instance."""

    def __init__(self) -> None:
        self._subscribers: dict[QueueEvent, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(
        self,
        events: QueueEvent | tuple[QueueEvent, ...],
        handler: EventHandler,
    ) -> Callable[[], None]:
        """Register ``handler`` for one or more events.

        Returns:
            A zero-argument callable that removes the subscription again.
        """
        targets = events if isinstance(events, tuple) else (events,)
        for event in targets:
            self._subscribers[event].append(handler)

        def _unsubscribe() -> None:
            for event in targets:
                if handler in self._subscribers[event]:
                    self._subscribers[event].remove(handler)

        return _unsubscribe

    def publish(self, event: QueueEvent, payload: Optional[dict[str, Any]] = None) -> None:
        """Deliver ``event`` to every subscriber without awaiting them."""
        data = payload or {}
        for handler in list(self._subscribers.get(event, ())):
            try:
                result = handler(event, data)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "event_bus: subscriber %r failed on %s: %s",
                    handler,
                    event.value,
                    exc,
                    exc_info=True,
                )
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "event_bus: async subscriber failed: %s",
                exc,
                exc_info=exc,
            )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
