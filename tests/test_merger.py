"""
Тесты слияния коллекций задач.

Покрывает:
- сценарий: одна задача изменилась удалённо, одна добавлена
- идемпотентность и аддитивность
- политики конфликтов (newer-wins, local-wins, remote-wins, merge, strict)
- pruneMissing, allowAdditions, repairDependencies
- preserveInProgress, mergeSubtasks
- несколько тегов
"""

import pytest
from conftest import make_task

from tasksync.core.errors import ConflictError, ValidationError
from tasksync.integrations.taskmaster.tasks_file import normalize
from tasksync.models import TaskStatus
from tasksync.services.merger import (
    ConflictPolicy,
    MergeBaseline,
    MergePolicy,
    merge,
)

OLD = "2026-01-01T00:00:00Z"
NEWER = "2026-02-01T00:00:00Z"
NEWEST = "2026-03-01T00:00:00Z"


def collection(*tasks, tag="master"):
    return normalize({tag: {"tasks": list(tasks)}})


def baseline_of(tasks):
    """Базовая точка: обе стороны совпадали с tasks."""
    return MergeBaseline(local=collection(*tasks), remote=collection(*tasks))


# =============================================================================
# ТЕСТЫ: Основной сценарий
# =============================================================================


class TestBasicMerge:
    """Удалённое изменение и добавление без базовой точки."""

    def test_remote_update_and_addition(self):
        """Локально [1 pending, 2 done], удалённо [1 done, 3 pending] → 1 updated, 1 added."""
        local = collection(make_task(1, "A", "pending"), make_task(2, "B", "done"))
        remote = collection(make_task(1, "A", "done"), make_task(3, "C", "pending"))

        result = merge(local, remote, MergePolicy())

        assert result.counts() == {"added": 1, "updated": 1, "removed": 0, "unchanged": 1}
        tasks = result.tasks.index("master")
        assert tasks["1"].status == TaskStatus.DONE
        assert set(tasks) == {"1", "2", "3"}
        assert result.summary() == "Merged 3 tasks: 1 added, 1 updated, 0 removed, 1 unchanged"

    def test_local_order_kept_additions_appended(self):
        local = collection(make_task(2), make_task(1))
        remote = collection(make_task(5), make_task(1))

        result = merge(local, remote)

        assert [t.key for t in result.tasks.tasks("master")] == ["2", "1", "5"]

    def test_ids_reported_per_bucket(self):
        local = collection(make_task(1, "A", "pending"))
        remote = collection(make_task(1, "A", "done"), make_task(2))

        result = merge(local, remote)

        assert result.ids_in("updated") == {"1"}
        assert result.ids_in("added") == {"2"}

    def test_updated_at_alone_is_not_a_change(self):
        """Отличие только в updatedAt не считается изменением."""
        local = collection(make_task(1, updated_at=OLD))
        remote = collection(make_task(1, updated_at=NEWER))

        result = merge(local, remote)

        assert result.unchanged == 1
        assert not result.has_changes

    def test_dependency_order_does_not_matter(self):
        local = collection(make_task(1), make_task(2), make_task(3, dependencies=[1, 2]))
        remote = collection(make_task(1), make_task(2), make_task(3, dependencies=["2", "1"]))

        assert merge(local, remote).unchanged == 3

    def test_counts_sum_to_local_plus_added(self):
        """added + updated + removed + unchanged = |local| + added."""
        local = collection(make_task(1), make_task(2, status="done"), make_task(3))
        remote = collection(make_task(2, status="pending"), make_task(4))

        result = merge(local, remote, MergePolicy(prune_missing=True))

        total = result.added + result.updated + result.removed + result.unchanged
        assert total == 3 + result.added


# =============================================================================
# ТЕСТЫ: Свойства слияния
# =============================================================================


class TestMergeProperties:
    """Идемпотентность и аддитивность."""

    def test_idempotent(self):
        """Повторное слияние с тем же remote ничего не меняет."""
        local = collection(make_task(1, "A", "pending"), make_task(2))
        remote = collection(make_task(1, "A", "done"), make_task(3))

        first = merge(local, remote)
        second = merge(first.tasks, remote)

        assert second.added == 0
        assert second.updated == 0
        assert second.removed == 0
        assert second.tasks.to_dict() == first.tasks.to_dict()

    def test_additive_without_prune(self):
        """Без pruneMissing каждая локальная задача остаётся."""
        local = collection(make_task(1), make_task(2), make_task(3))
        remote = collection(make_task(2))

        result = merge(local, remote)

        assert set(result.tasks.index("master")) >= {"1", "2", "3"}
        assert result.removed == 0

    def test_prune_missing_removes(self):
        local = collection(make_task(1), make_task(2))
        remote = collection(make_task(2))

        result = merge(local, remote, MergePolicy(prune_missing=True))

        assert set(result.tasks.index("master")) == {"2"}
        assert result.ids_in("removed") == {"1"}

    def test_additions_disallowed(self):
        """allowAdditions=false: новая удалённая задача не добавляется и считается unchanged."""
        local = collection(make_task(1))
        remote = collection(make_task(1), make_task(2))

        result = merge(local, remote, MergePolicy(allow_additions=False))

        assert set(result.tasks.index("master")) == {"1"}
        assert result.added == 0
        assert result.unchanged == 2

    def test_unknown_fields_survive_merge(self):
        local = collection(make_task(1, "A", "pending", estimate=3))
        remote = collection(make_task(1, "A", "done", estimate=3))

        result = merge(local, remote)

        assert result.tasks.get("master", 1).extra == {"estimate": 3}


# =============================================================================
# ТЕСТЫ: Базовая точка и конфликты
# =============================================================================


class TestBaselineAndConflicts:
    """Трёхстороннее слияние относительно последнего слияния."""

    def test_only_local_changed_keeps_local(self):
        base = [make_task(1, "A", "pending", OLD)]
        local = collection(make_task(1, "A", "done", NEWER))
        remote = collection(make_task(1, "A", "pending", OLD))

        result = merge(local, remote, MergePolicy(), baseline_of(base))

        assert result.tasks.get("master", 1).status == TaskStatus.DONE
        assert result.unchanged == 1
        assert result.conflicts == []

    def test_only_remote_changed_takes_remote(self):
        base = [make_task(1, "A", "pending", OLD)]
        local = collection(make_task(1, "A", "pending", OLD))
        remote = collection(make_task(1, "A", "review", NEWER))

        result = merge(local, remote, MergePolicy(), baseline_of(base))

        assert result.tasks.get("master", 1).status == TaskStatus.REVIEW
        assert result.updated == 1

    def _both_changed(self):
        base = [make_task(1, "A", "pending", OLD, description="d", dependencies=[])]
        local = collection(
            make_task(1, "A local", "pending", NEWER, description="d", dependencies=["2"]),
            make_task(2),
        )
        remote = collection(
            make_task(1, "A", "done", NEWEST, description="d", dependencies=["3"]),
            make_task(2),
            make_task(3),
        )
        return local, remote, baseline_of(base)

    def test_newer_wins_takes_newer_side(self):
        local, remote, baseline = self._both_changed()

        result = merge(local, remote, MergePolicy(conflict_policy="newer-wins"), baseline)

        task = result.tasks.get("master", 1)
        assert task.status == TaskStatus.DONE
        assert task.title == "A"
        assert len(result.conflicts) == 1
        assert result.conflicts[0].resolution == "remote"

    def test_newer_wins_tie_keeps_local(self):
        base = [make_task(1, "A", "pending", OLD)]
        local = collection(make_task(1, "A", "done", NEWER))
        remote = collection(make_task(1, "A", "review", NEWER))

        result = merge(local, remote, MergePolicy(), baseline_of(base))

        assert result.tasks.get("master", 1).status == TaskStatus.DONE
        assert result.conflicts[0].resolution == "local"

    def test_newer_wins_missing_timestamp_keeps_local(self):
        base = [make_task(1, "A", "pending")]
        local = collection(make_task(1, "A", "done"))
        remote = collection(make_task(1, "A", "review", NEWER))

        result = merge(local, remote, MergePolicy(), baseline_of(base))

        assert result.tasks.get("master", 1).status == TaskStatus.DONE

    def test_local_wins(self):
        local, remote, baseline = self._both_changed()

        result = merge(local, remote, MergePolicy(conflict_policy="local-wins"), baseline)

        assert result.tasks.get("master", 1).title == "A local"
        assert result.conflicts[0].resolution == "local"

    def test_remote_wins(self):
        local, remote, baseline = self._both_changed()

        result = merge(local, remote, MergePolicy(conflict_policy="remote-wins"), baseline)

        assert result.tasks.get("master", 1).status == TaskStatus.DONE
        assert result.conflicts[0].resolution == "remote"

    def test_merge_policy_combines_fields(self):
        """merge: одностороннее изменение каждого поля сохраняется, зависимости объединяются."""
        local, remote, baseline = self._both_changed()

        result = merge(local, remote, MergePolicy(conflict_policy="merge"), baseline)

        task = result.tasks.get("master", 1)
        assert task.title == "A local"  # изменено только локально
        assert task.status == TaskStatus.DONE  # изменено только удалённо
        assert {str(d) for d in task.dependencies} == {"2", "3"}
        assert result.conflicts[0].resolution == "merged"

    def test_conflict_descriptor_lists_fields(self):
        local, remote, baseline = self._both_changed()

        result = merge(local, remote, MergePolicy(), baseline)

        descriptor = result.conflicts[0].to_dict()
        assert descriptor["taskId"] == "1"
        assert set(descriptor["fields"]) == {"title", "status", "dependencies"}
        assert descriptor["localVersion"]["title"] == "A local"
        assert descriptor["remoteVersion"]["status"] == "done"

    def test_strict_raises_conflict(self):
        local, remote, baseline = self._both_changed()

        with pytest.raises(ConflictError) as exc_info:
            merge(local, remote, MergePolicy(conflict_policy="strict"), baseline)

        assert exc_info.value.details[0]["field"] == "master#1"

    def test_conflict_exclusive_bucket(self):
        """Конфликтная задача попадает ровно в один бакет."""
        local, remote, baseline = self._both_changed()

        result = merge(local, remote, MergePolicy(), baseline)

        buckets = [b for b in ("added", "updated", "removed", "unchanged") if "1" in result.ids_in(b, "master")]
        assert buckets == ["updated"]

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValidationError, match="Unknown conflict policy"):
            MergePolicy(conflict_policy="coin-flip")

    def test_policy_parse_accepts_enum(self):
        assert MergePolicy(conflict_policy=ConflictPolicy.MERGE).conflict_policy == ConflictPolicy.MERGE


# =============================================================================
# ТЕСТЫ: preserveInProgress и mergeSubtasks
# =============================================================================


class TestTaskOptions:
    """Опции, которые работают поверх выбранной версии задачи."""

    def test_in_progress_not_overwritten(self):
        """Локально задача в работе, удалённо done → статус остаётся in-progress."""
        local = collection(make_task(1, "A", "in-progress"))
        remote = collection(make_task(1, "A (renamed)", "done"))

        result = merge(local, remote, MergePolicy(preserve_in_progress=True))

        task = result.tasks.get("master", 1)
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.title == "A (renamed)"
        assert result.updated == 1

    def test_only_status_differs_is_unchanged(self):
        local = collection(make_task(1, "A", "in-progress"))
        remote = collection(make_task(1, "A", "done"))

        result = merge(local, remote, MergePolicy(preserve_in_progress=True))

        assert result.counts()["unchanged"] == 1
        assert result.tasks.get("master", 1).status == TaskStatus.IN_PROGRESS

    def test_in_progress_overwritten_by_default(self):
        local = collection(make_task(1, "A", "in-progress"))
        remote = collection(make_task(1, "A", "done"))

        result = merge(local, remote, MergePolicy())

        assert result.tasks.get("master", 1).status == TaskStatus.DONE

    def test_in_progress_kept_under_remote_wins_conflict(self):
        base = [make_task(1, "A", "pending")]
        local = collection(make_task(1, "A", "in-progress"))
        remote = collection(make_task(1, "A", "done", description="remote text"))

        result = merge(
            local,
            remote,
            MergePolicy(conflict_policy="remote-wins", preserve_in_progress=True),
            baseline_of(base),
        )

        task = result.tasks.get("master", 1)
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.description == "remote text"

    def test_merge_subtasks_union_by_id(self):
        """Общие подзадачи берутся с выигравшей стороны, локальные не теряются."""
        local = collection(
            make_task(1, "A", subtasks=[{"id": 1, "title": "a"}, {"id": 2, "title": "b"}])
        )
        remote = collection(
            make_task(1, "A", subtasks=[{"id": 1, "title": "a2"}, {"id": 3, "title": "c"}])
        )

        result = merge(local, remote, MergePolicy(merge_subtasks=True))

        subtasks = result.tasks.get("master", 1).subtasks
        assert [(s.key, s.title) for s in subtasks] == [("1", "a2"), ("3", "c"), ("2", "b")]

    def test_subtasks_replaced_by_default(self):
        local = collection(make_task(1, "A", subtasks=[{"id": 2, "title": "b"}]))
        remote = collection(make_task(1, "A", subtasks=[{"id": 3, "title": "c"}]))

        result = merge(local, remote, MergePolicy())

        assert [s.key for s in result.tasks.get("master", 1).subtasks] == ["3"]

    def test_one_sided_subtask_removal_respected(self):
        """При известной базе удаление подзадачи на одной стороне не откатывается объединением."""
        base = [make_task(1, "A", subtasks=[{"id": 1, "title": "a"}, {"id": 2, "title": "b"}])]
        local = collection(*base)
        remote = collection(make_task(1, "A", subtasks=[{"id": 1, "title": "a"}]))

        result = merge(local, remote, MergePolicy(merge_subtasks=True), baseline_of(base))

        assert [s.key for s in result.tasks.get("master", 1).subtasks] == ["1"]


# =============================================================================
# ТЕСТЫ: Теги и зависимости
# =============================================================================


class TestTagsAndDependencies:
    """Теги сливаются независимо, висячие зависимости сообщаются."""

    def test_tags_merged_independently(self):
        local = normalize({"master": {"tasks": [make_task(1)]}, "dev": {"tasks": [make_task(1, "Dev")]}})
        remote = normalize({"dev": {"tasks": [make_task(1, "Dev", "done")]}, "ops": {"tasks": [make_task(9)]}})

        result = merge(local, remote)

        assert result.tasks.tag_names() == ["master", "dev", "ops"]
        assert result.per_tag()["dev"]["updated"] == 1
        assert result.per_tag()["ops"]["added"] == 1
        assert result.tasks.get("master", 1).title == "Task"

    def test_metadata_prefers_local(self):
        local = normalize({"master": {"tasks": [make_task(1)], "metadata": {"owner": "local"}}})
        remote = normalize({"master": {"tasks": [make_task(1)], "metadata": {"owner": "remote"}}})

        result = merge(local, remote)

        assert result.tasks.metadata["master"] == {"metadata": {"owner": "local"}}

    def test_dangling_dependency_reported(self):
        local = collection(make_task(1, dependencies=[7]))
        remote = collection(make_task(1, dependencies=[7]))

        result = merge(local, remote)

        assert result.dangling_dependencies == {"master": {"1": ["7"]}}
        assert result.tasks.get("master", 1).dependencies == [7]
        assert result.unchanged == 1

    def test_subtask_dependency_is_not_dangling(self):
        """Зависимость "2.1" указывает на подзадачу задачи 2."""
        local = collection(make_task(1, dependencies=["2.1"]), make_task(2))

        result = merge(local, local)

        assert result.dangling_dependencies == {}

    def test_repair_dependencies(self):
        """repairDependencies удаляет висячие id, задача становится updated."""
        local = collection(make_task(1, dependencies=[7, 2]), make_task(2))
        remote = collection(make_task(1, dependencies=[7, 2]), make_task(2))

        result = merge(local, remote, MergePolicy(repair_dependencies=True))

        assert result.tasks.get("master", 1).dependencies == [2]
        assert result.ids_in("updated") == {"1"}
        assert result.dangling_dependencies == {"master": {"1": ["7"]}}

    def test_to_dict_shape(self):
        result = merge(collection(make_task(1)), collection(make_task(1), make_task(2)))

        data = result.to_dict()
        assert set(data) == {
            "added",
            "updated",
            "removed",
            "unchanged",
            "conflicts",
            "perTag",
            "danglingDependencies",
            "tasks",
        }
        assert "tasks" not in result.to_dict(include_tasks=False)
