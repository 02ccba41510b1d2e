"""Event broadcaster: pub/sub for live clients.

Each subscriber owns a bounded asyncio.Queue. ``broadcast()`` only ever uses
``put_nowait`` so a slow consumer can never block a sync. Events sent with
``retry=True`` that could not be delivered are parked in a bounded retry queue
and re-delivered with backoff by the tick loop, which also sends heartbeats and
evicts subscribers that stopped reading.

All state is touched from the event loop thread only.
"""

import asyncio
import contextlib
import json
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..core.config import settings
from ..core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# EVENT TYPES
# =============================================================================

SYNC_STARTED = "sync-started"
SYNC_COMPLETED = "sync-completed"
SYNC_FAILED = "sync-failed"
MERGE_COMPLETED = "merge-completed"
MERGE_FAILED = "merge-failed"
MERGE_ROLLBACK = "merge-rollback"
TASK_UPDATE = "task-update"
CONFLICT_DETECTED = "conflict-detected"
CONFLICT_RESOLVED = "conflict-resolved"
ERROR = "error"
PING = "ping"


@dataclass
class Event:
    """Wire event: ``{type, projectId, data, timestamp}``."""

    type: str
    project_id: int | str | None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "projectId": str(self.project_id) if self.project_id is not None else None,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    def to_sse(self) -> str:
        """Server-Sent Events frame."""
        return f"event: {self.type}\ndata: {json.dumps(self.to_dict(), default=str)}\n\n"


@dataclass
class Subscriber:
    """One live connection."""

    id: str
    user_id: str
    projects: set[str]
    queue: asyncio.Queue
    last_seen: float

    def wants(self, event: Event) -> bool:
        return event.project_id is None or str(event.project_id) in self.projects


@dataclass
class RetryEntry:
    """Undelivered event waiting for another attempt."""

    event: Event
    subscriber_id: str
    next_at: float
    attempts: int = 0


class EventBroadcaster:
    """Registry of subscribers with explicit start/stop lifecycle."""

    def __init__(
        self,
        queue_size: int | None = None,
        retry_attempts: int | None = None,
        retry_base_delay: float | None = None,
        retry_queue_size: int | None = None,
        heartbeat_interval: float | None = None,
        subscriber_timeout: float | None = None,
        tick_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.queue_size = queue_size or settings.SUBSCRIBER_QUEUE_SIZE
        self.retry_attempts = retry_attempts or settings.BROADCAST_RETRY_ATTEMPTS
        self.retry_base_delay = retry_base_delay or settings.BROADCAST_RETRY_BASE_DELAY
        self.retry_queue_size = retry_queue_size or settings.BROADCAST_RETRY_QUEUE_SIZE
        self.heartbeat_interval = heartbeat_interval or settings.HEARTBEAT_INTERVAL
        self.subscriber_timeout = subscriber_timeout or settings.SUBSCRIBER_TIMEOUT
        self.tick_interval = tick_interval or settings.BROADCAST_TICK_INTERVAL
        self.clock = clock

        self._subscribers: dict[str, Subscriber] = {}
        self._retry_queue: deque[RetryEntry] = deque()
        self._last_heartbeat = clock()
        self._task: asyncio.Task | None = None

        # Counters for stats()
        self._sent = 0
        self._dropped = 0
        self._retried = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._last_heartbeat = self.clock()
        self._task = asyncio.create_task(self._run(), name="event-broadcaster")
        logger.info("Event broadcaster started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info(
            "Event broadcaster stopped",
            extra={"subscribers": len(self._subscribers), "pending_retries": len(self._retry_queue)},
        )

    async def _run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Broadcaster tick failed")
            await asyncio.sleep(self.tick_interval)

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, user_id: str, project_ids: list[int | str]) -> Subscriber:
        subscriber = Subscriber(
            id=str(uuid.uuid4()),
            user_id=user_id,
            projects={str(p) for p in project_ids},
            queue=asyncio.Queue(maxsize=self.queue_size),
            last_seen=self.clock(),
        )
        self._subscribers[subscriber.id] = subscriber
        logger.info(
            "Subscriber connected",
            extra={"subscriber_id": subscriber.id, "user_id": user_id, "projects": sorted(subscriber.projects)},
        )
        return subscriber

    def unsubscribe(self, subscriber_id: str) -> bool:
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is None:
            return False
        logger.info("Subscriber disconnected", extra={"subscriber_id": subscriber_id})
        return True

    def touch(self, subscriber_id: str) -> None:
        """Mark a subscriber as alive (called when it consumes an event)."""
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is not None:
            subscriber.last_seen = self.clock()

    def get_subscriber(self, subscriber_id: str) -> Subscriber | None:
        return self._subscribers.get(subscriber_id)

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def _deliver(self, subscriber: Subscriber, event: Event) -> bool:
        try:
            subscriber.queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        self._sent += 1
        return True

    def broadcast(self, event: Event, retry: bool = False) -> int:
        """Deliver to every interested subscriber without blocking.

        Returns:
            Number of subscribers the event was delivered to
        """
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if not subscriber.wants(event):
                continue
            if self._deliver(subscriber, event):
                delivered += 1
            elif retry:
                self._enqueue_retry(event, subscriber.id)
            else:
                self._dropped += 1
                logger.debug(
                    "Event dropped: subscriber queue full",
                    extra={"subscriber_id": subscriber.id, "event_type": event.type},
                )
        return delivered

    def _enqueue_retry(self, event: Event, subscriber_id: str) -> None:
        if len(self._retry_queue) >= self.retry_queue_size:
            self._dropped += 1
            logger.warning(
                "Retry queue full, event dropped",
                extra={"event_type": event.type, "project_id": event.project_id},
            )
            return
        self._retry_queue.append(
            RetryEntry(
                event=event,
                subscriber_id=subscriber_id,
                next_at=self.clock() + self.retry_base_delay,
            )
        )

    # =========================================================================
    # TICK: retries, heartbeat, eviction
    # =========================================================================

    def tick(self, now: float | None = None) -> None:
        now = self.clock() if now is None else now
        self._process_retries(now)
        if now - self._last_heartbeat >= self.heartbeat_interval:
            self._last_heartbeat = now
            self._send_heartbeat()
        self._evict_stale(now)

    def _process_retries(self, now: float) -> None:
        pending: deque[RetryEntry] = deque()
        while self._retry_queue:
            entry = self._retry_queue.popleft()
            subscriber = self._subscribers.get(entry.subscriber_id)
            if subscriber is None:
                continue
            if entry.next_at > now:
                pending.append(entry)
                continue

            self._retried += 1
            if self._deliver(subscriber, entry.event):
                continue

            entry.attempts += 1
            if entry.attempts >= self.retry_attempts:
                self._dropped += 1
                logger.warning(
                    "Event dropped after retries",
                    extra={
                        "event_type": entry.event.type,
                        "project_id": entry.event.project_id,
                        "subscriber_id": entry.subscriber_id,
                        "attempts": entry.attempts,
                    },
                )
                continue
            entry.next_at = now + self.retry_base_delay * (2**entry.attempts)
            pending.append(entry)
        self._retry_queue = pending

    def _send_heartbeat(self) -> None:
        for subscriber in self._subscribers.values():
            self._deliver(subscriber, Event(type=PING, project_id=None))

    def _evict_stale(self, now: float) -> None:
        stale = [
            s.id for s in self._subscribers.values() if now - s.last_seen > self.subscriber_timeout
        ]
        for subscriber_id in stale:
            self._subscribers.pop(subscriber_id, None)
            logger.info("Stale subscriber evicted", extra={"subscriber_id": subscriber_id})

    # =========================================================================
    # HELPERS
    # =========================================================================

    def broadcast_sync(self, project_id: int, status: str, details: dict | None = None) -> int:
        """sync-started / sync-completed / sync-failed."""
        return self.broadcast(
            Event(type=f"sync-{status}", project_id=project_id, data={"status": status, **(details or {})}),
            retry=status != "started",
        )

    def broadcast_merge(self, project_id: int, status: str, details: dict | None = None) -> int:
        """merge-completed / merge-failed / merge-rollback."""
        return self.broadcast(
            Event(type=f"merge-{status}", project_id=project_id, data=details or {}),
            retry=True,
        )

    def broadcast_task_update(self, project_id: int, change_type: str, tasks: list[dict]) -> int:
        return self.broadcast(
            Event(
                type=TASK_UPDATE,
                project_id=project_id,
                data={"changeType": change_type, "tasks": tasks, "taskCount": len(tasks)},
            )
        )

    def broadcast_error(self, project_id: int | None, error: Exception | str, context: str | None = None) -> int:
        message = getattr(error, "message", None) or str(error)
        return self.broadcast(
            Event(type=ERROR, project_id=project_id, data={"error": message, "context": context}),
            retry=True,
        )

    def stats(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "subscribers": len(self._subscribers),
            "pendingRetries": len(self._retry_queue),
            "sent": self._sent,
            "dropped": self._dropped,
            "retried": self._retried,
            "queued": {s.id: s.queue.qsize() for s in self._subscribers.values()},
        }
