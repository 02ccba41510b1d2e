"""
Тесты хранилища офлайн-конфликтов.

Покрывает:
- запись и обновление конфликта (один открытый на сущность)
- detect: одинаковые данные (кроме updatedAt) не конфликт
- разрешение local / remote / merged с записью в зеркало задач
- ошибки разрешения
"""

import pytest

from tasksync.core.errors import NotFoundError, ValidationError
from tasksync.models import ConflictStrategy, Project, TaskStatus
from tasksync.repositories import TaskMirrorRepository
from tasksync.services import ConflictStore, EventBroadcaster

LOCAL = {"id": 2, "title": "Schema (offline)", "status": "in-progress"}
REMOTE = {"id": 2, "title": "Schema", "status": "done"}


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def store(test_db, broadcaster):
    return ConflictStore(test_db, broadcaster)


# =============================================================================
# ТЕСТЫ: Запись
# =============================================================================


class TestRecord:
    """Запись конфликтов."""

    @pytest.mark.asyncio
    async def test_record_blocks_entity(self, store, sample_project):
        item = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)

        assert not item.resolved
        assert await store.is_blocked("task", "2", sample_project.id)
        assert not await store.is_blocked("task", "1", sample_project.id)

    @pytest.mark.asyncio
    async def test_second_pull_refreshes_remote(self, store, sample_project):
        """Повторный конфликт обновляет remote_data, local_data остаётся исходной."""
        first = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)
        newer = {**REMOTE, "title": "Schema v2"}

        second = await store.record_conflict("task", "2", {"title": "ignored"}, newer, sample_project.id)

        assert second.id == first.id
        assert second.local_data == LOCAL
        assert second.remote_data["title"] == "Schema v2"
        assert len(await store.list_unresolved(sample_project.id)) == 1

    @pytest.mark.asyncio
    async def test_detect_ignores_timestamps(self, store, sample_project):
        same = await store.detect(
            "task",
            "1",
            {**REMOTE, "updatedAt": "2026-01-01T00:00:00Z"},
            {**REMOTE, "updatedAt": "2026-02-01T00:00:00Z"},
            sample_project.id,
        )
        different = await store.detect("task", "2", LOCAL, REMOTE, sample_project.id)

        assert same is None
        assert different is not None

    @pytest.mark.asyncio
    async def test_record_broadcasts(self, store, broadcaster, sample_project):
        subscriber = broadcaster.subscribe("alice", [sample_project.id])

        item = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)

        event = subscriber.queue.get_nowait()
        assert event.type == "conflict-detected"
        assert event.data["conflictId"] == item.id

    @pytest.mark.asyncio
    async def test_same_task_id_in_two_projects(self, store, test_db, sample_project):
        """Одинаковый id задачи в разных проектах и тегах - разные конфликты."""
        other = Project(name="other", owner_id="bob", local_path="/srv/other")
        test_db.add(other)
        await test_db.commit()

        mine = await store.record_conflict("task", "1", {"title": "A-local"}, {"title": "A"}, sample_project.id)
        theirs = await store.record_conflict("task", "1", {"title": "B-local"}, {"title": "B"}, other.id)
        feature = await store.record_conflict(
            "task", "1", {"title": "F-local"}, {"title": "F"}, sample_project.id, tag="feature"
        )

        assert len({mine.id, theirs.id, feature.id}) == 3
        assert theirs.project_id == other.id
        assert theirs.local_data == {"title": "B-local"}
        assert [i.id for i in await store.list_unresolved(other.id)] == [theirs.id]

        await store.resolve(theirs.id, "remote")

        assert await store.is_blocked("task", "1", sample_project.id)
        assert not await store.is_blocked("task", "1", other.id)
        assert await TaskMirrorRepository(test_db).get_by_project(sample_project.id) == []
        row = await TaskMirrorRepository(test_db).get_by_task_id(other.id, "master", "1")
        assert row.title == "B"

    @pytest.mark.asyncio
    async def test_resolve_uses_item_tag(self, store, test_db, sample_project):
        item = await store.record_conflict(
            "task", "4", {"id": 4, "title": "mine"}, {"id": 4, "title": "theirs"}, sample_project.id, tag="feature"
        )

        await store.resolve(item.id, "local")

        row = await TaskMirrorRepository(test_db).get_by_task_id(sample_project.id, "feature", "4")
        assert row.title == "mine"


# =============================================================================
# ТЕСТЫ: Разрешение
# =============================================================================


class TestResolve:
    """Разрешение конфликтов."""

    @pytest.mark.asyncio
    async def test_resolve_remote_writes_mirror(self, store, test_db, sample_project):
        item = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)

        resolved = await store.resolve(item.id, "remote")

        assert resolved.resolved
        assert resolved.resolution == ConflictStrategy.REMOTE
        assert resolved.resolved_data == REMOTE
        row = await TaskMirrorRepository(test_db).get_by_task_id(sample_project.id, "master", "2")
        assert row.title == "Schema"
        assert row.status == TaskStatus.DONE
        assert not await store.is_blocked("task", "2", sample_project.id)

    @pytest.mark.asyncio
    async def test_resolve_local_updates_existing_row(self, store, test_db, sample_project):
        first = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)
        await store.resolve(first.id, ConflictStrategy.REMOTE)

        item = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)
        await store.resolve(item.id, ConflictStrategy.LOCAL)

        rows = await TaskMirrorRepository(test_db).get_by_project(sample_project.id)
        assert len(rows) == 1
        assert rows[0].title == "Schema (offline)"

    @pytest.mark.asyncio
    async def test_resolve_merged_uses_payload(self, store, test_db, sample_project):
        item = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)
        merged = {"id": 2, "title": "Schema (offline)", "status": "done", "tag": "master"}

        resolved = await store.resolve(item.id, "merged", merged)

        assert resolved.resolved_data == merged
        row = await TaskMirrorRepository(test_db).get_by_task_id(sample_project.id, "master", "2")
        assert (row.title, row.status) == ("Schema (offline)", TaskStatus.DONE)

    @pytest.mark.asyncio
    async def test_merged_requires_payload(self, store, sample_project):
        item = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)

        with pytest.raises(ValidationError, match="requires a payload"):
            await store.resolve(item.id, "merged")

    @pytest.mark.asyncio
    async def test_resolve_twice_rejected(self, store, sample_project):
        item = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)
        await store.resolve(item.id, "local")

        with pytest.raises(ValidationError, match="already resolved"):
            await store.resolve(item.id, "remote")

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, store, sample_project):
        item = await store.record_conflict("task", "2", LOCAL, REMOTE, sample_project.id)

        with pytest.raises(ValidationError, match="Unknown resolution strategy"):
            await store.resolve(item.id, "coin-flip")

    @pytest.mark.asyncio
    async def test_unknown_conflict(self, store):
        with pytest.raises(NotFoundError):
            await store.resolve(999, "local")

    @pytest.mark.asyncio
    async def test_non_task_entity_not_mirrored(self, store, test_db, sample_project):
        item = await store.record_conflict("project", "7", {"name": "a"}, {"name": "b"}, sample_project.id)

        await store.resolve(item.id, "remote")

        assert await TaskMirrorRepository(test_db).get_by_project(sample_project.id) == []
