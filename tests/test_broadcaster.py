"""
Тесты EventBroadcaster.

Покрывает:
- фильтрацию по проектам
- неблокирующую доставку при переполненной очереди
- повторную доставку с backoff и отказ после N попыток
- heartbeat и вытеснение неактивных подписчиков
"""

import json

import pytest

from tasksync.services import Event, EventBroadcaster


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broadcaster(clock):
    return EventBroadcaster(
        queue_size=2,
        retry_attempts=3,
        retry_base_delay=5.0,
        heartbeat_interval=30.0,
        subscriber_timeout=90.0,
        clock=clock,
    )


def drain(subscriber) -> list[Event]:
    events = []
    while not subscriber.queue.empty():
        events.append(subscriber.queue.get_nowait())
    return events


# =============================================================================
# ТЕСТЫ: Доставка
# =============================================================================


class TestDelivery:
    """Фильтрация и неблокирующая доставка."""

    @pytest.mark.asyncio
    async def test_only_interested_subscribers_receive(self, broadcaster):
        watcher = broadcaster.subscribe("alice", [1])
        other = broadcaster.subscribe("bob", [2])

        delivered = broadcaster.broadcast_sync(1, "started")

        assert delivered == 1
        assert [e.type for e in drain(watcher)] == ["sync-started"]
        assert drain(other) == []

    @pytest.mark.asyncio
    async def test_global_events_reach_everyone(self, broadcaster):
        first = broadcaster.subscribe("alice", [1])
        second = broadcaster.subscribe("bob", [2])

        assert broadcaster.broadcast(Event(type="error", project_id=None)) == 2
        assert len(drain(first)) == len(drain(second)) == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_retry(self, broadcaster):
        subscriber = broadcaster.subscribe("alice", [1])
        for _ in range(3):
            broadcaster.broadcast_task_update(1, "changed", [])

        assert subscriber.queue.qsize() == 2
        assert broadcaster.stats()["dropped"] == 1
        assert broadcaster.stats()["pendingRetries"] == 0

    @pytest.mark.asyncio
    async def test_unsubscribe(self, broadcaster):
        subscriber = broadcaster.subscribe("alice", [1])

        assert broadcaster.unsubscribe(subscriber.id)
        assert not broadcaster.unsubscribe(subscriber.id)
        assert broadcaster.broadcast_sync(1, "started") == 0

    def test_event_wire_format(self):
        event = Event(type="merge-completed", project_id=7, data={"added": 1}, timestamp="t")

        assert event.to_dict() == {
            "type": "merge-completed",
            "projectId": "7",
            "data": {"added": 1},
            "timestamp": "t",
        }
        frame = event.to_sse()
        assert frame.startswith("event: merge-completed\ndata: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame.split("data: ", 1)[1])["projectId"] == "7"


# =============================================================================
# ТЕСТЫ: Повторы
# =============================================================================


class TestRetries:
    """Повторная доставка важных событий."""

    @pytest.mark.asyncio
    async def test_retry_delivers_after_backoff(self, broadcaster, clock):
        subscriber = broadcaster.subscribe("alice", [1])
        broadcaster.broadcast_task_update(1, "changed", [])
        broadcaster.broadcast_task_update(1, "changed", [])

        broadcaster.broadcast_merge(1, "completed", {"added": 1})
        assert broadcaster.stats()["pendingRetries"] == 1

        drain(subscriber)
        clock.advance(4.9)
        broadcaster.tick()
        assert subscriber.queue.empty()

        clock.advance(0.2)
        broadcaster.tick()
        assert [e.type for e in drain(subscriber)] == ["merge-completed"]
        assert broadcaster.stats()["pendingRetries"] == 0

    @pytest.mark.asyncio
    async def test_dropped_after_attempts(self, broadcaster, clock):
        """Подписчик не читает → событие выброшено после 3 попыток."""
        subscriber = broadcaster.subscribe("alice", [1])
        broadcaster.broadcast_task_update(1, "changed", [])
        broadcaster.broadcast_task_update(1, "changed", [])
        broadcaster.broadcast_merge(1, "failed", {"code": "WRITE_ERROR"})

        # Попытки через 5, затем 10 и 20 секунд
        for delay in (5, 10, 20):
            clock.advance(delay)
            broadcaster.touch(subscriber.id)
            broadcaster.tick()

        stats = broadcaster.stats()
        assert stats["pendingRetries"] == 0
        assert stats["retried"] == 3
        assert stats["dropped"] == 1
        assert [e.type for e in drain(subscriber)] == ["task-update", "task-update"]

    @pytest.mark.asyncio
    async def test_retries_for_gone_subscriber_discarded(self, broadcaster, clock):
        subscriber = broadcaster.subscribe("alice", [1])
        broadcaster.broadcast_task_update(1, "changed", [])
        broadcaster.broadcast_task_update(1, "changed", [])
        broadcaster.broadcast_merge(1, "completed")
        broadcaster.unsubscribe(subscriber.id)

        clock.advance(5)
        broadcaster.tick()

        assert broadcaster.stats()["pendingRetries"] == 0

    @pytest.mark.asyncio
    async def test_retry_queue_is_bounded(self, clock):
        broadcaster = EventBroadcaster(queue_size=1, retry_queue_size=1, clock=clock)
        broadcaster.subscribe("alice", [1])
        broadcaster.broadcast_task_update(1, "changed", [])

        broadcaster.broadcast_merge(1, "completed")
        broadcaster.broadcast_merge(1, "completed")

        assert broadcaster.stats()["pendingRetries"] == 1
        assert broadcaster.stats()["dropped"] == 1


# =============================================================================
# ТЕСТЫ: Heartbeat и вытеснение
# =============================================================================


class TestHeartbeatAndEviction:
    """Ping каждые 30 секунд, вытеснение через 90 секунд тишины."""

    @pytest.mark.asyncio
    async def test_heartbeat_sent_on_interval(self, broadcaster, clock):
        subscriber = broadcaster.subscribe("alice", [1])

        clock.advance(29)
        broadcaster.tick()
        assert subscriber.queue.empty()

        clock.advance(1)
        broadcaster.tick()
        assert [e.type for e in drain(subscriber)] == ["ping"]

    @pytest.mark.asyncio
    async def test_stale_subscriber_evicted(self, broadcaster, clock):
        stale = broadcaster.subscribe("alice", [1])
        active = broadcaster.subscribe("bob", [1])

        clock.advance(60)
        broadcaster.touch(active.id)
        clock.advance(31)
        broadcaster.tick()

        assert broadcaster.get_subscriber(stale.id) is None
        assert broadcaster.get_subscriber(active.id) is not None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, broadcaster):
        await broadcaster.start()
        assert broadcaster.is_running

        await broadcaster.stop()
        assert not broadcaster.is_running
