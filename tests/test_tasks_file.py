"""
Тесты кодека tasks.json.

Покрывает:
- три формата файла (массив, {"tasks": [...]}, теги)
- нормализацию статусов и приоритетов
- дубликаты id
- битые файлы
- запись в каноническом виде с сохранением неизвестных полей
"""

import json

import pytest
from conftest import make_task, write_tasks

from tasksync.core.errors import NotFoundError, ReadError
from tasksync.integrations.taskmaster.records import TaskRecord, parse_timestamp
from tasksync.integrations.taskmaster.tasks_file import dumps, loads, normalize, read_tasks_file
from tasksync.models import TaskPriority, TaskStatus

# =============================================================================
# ТЕСТЫ: Форматы файла
# =============================================================================


class TestShapes:
    """Все три формата приводятся к одной коллекции."""

    def test_bare_array_is_master(self):
        """Массив задач → тег master."""
        collection = normalize([make_task(1), make_task(2)])

        assert collection.tag_names() == ["master"]
        assert [t.key for t in collection.tasks("master")] == ["1", "2"]

    def test_single_object_is_master(self):
        """{"tasks": [...]} → тег master, остальные ключи в metadata."""
        collection = normalize({"tasks": [make_task(1)], "metadata": {"version": 2}})

        assert collection.tag_names() == ["master"]
        assert collection.metadata["master"] == {"metadata": {"version": 2}}

    def test_tagged_object(self):
        """Несколько тегов читаются независимо."""
        collection = normalize(
            {
                "master": {"tasks": [make_task(1)]},
                "feature-x": {"tasks": [make_task(1, "Other"), make_task(5)]},
            }
        )

        assert collection.tag_names() == ["master", "feature-x"]
        assert collection.total == 3
        assert collection.get("feature-x", 1).title == "Other"

    def test_top_level_extra_keys_preserved(self):
        """Ключи верхнего уровня, не являющиеся тегами, не теряются."""
        collection = normalize({"master": {"tasks": []}, "schemaVersion": 3})

        assert collection.extra == {"schemaVersion": 3}
        assert collection.to_dict()["schemaVersion"] == 3

    def test_empty_object_is_empty_collection(self):
        """{} → пустая коллекция."""
        assert normalize({}).is_empty()

    def test_unknown_shape_raises(self):
        """Объект без тегов → ReadError."""
        with pytest.raises(ReadError):
            normalize({"foo": "bar"})

    def test_scalar_raises(self):
        with pytest.raises(ReadError):
            normalize(42)


# =============================================================================
# ТЕСТЫ: Нормализация полей
# =============================================================================


class TestFieldNormalization:
    """Статусы и приоритеты без учёта регистра."""

    def test_status_case_insensitive(self):
        record = TaskRecord.from_dict({"id": 1, "status": "In_Progress"})
        assert record.status == TaskStatus.IN_PROGRESS

    def test_unknown_status_is_pending(self):
        record = TaskRecord.from_dict({"id": 1, "status": "someday"})
        assert record.status == TaskStatus.PENDING

    def test_priority_case_insensitive(self):
        record = TaskRecord.from_dict({"id": 1, "priority": "HIGH"})
        assert record.priority == TaskPriority.HIGH

    def test_unknown_priority_is_medium(self):
        record = TaskRecord.from_dict({"id": 1, "priority": "urgent!!"})
        assert record.priority == TaskPriority.MEDIUM

    def test_numeric_and_string_ids_match(self):
        """Id 3 и "3" - одна и та же задача."""
        collection = normalize([make_task("3")])
        assert collection.get("master", 3) is not None

    def test_naive_timestamp_is_utc(self):
        parsed = parse_timestamp("2026-01-01T10:00:00")
        assert parsed.utcoffset().total_seconds() == 0

    def test_invalid_timestamp_is_none(self):
        assert parse_timestamp("yesterday") is None


# =============================================================================
# ТЕСТЫ: Дубликаты и ошибки
# =============================================================================


class TestDuplicatesAndErrors:
    """Дубликаты id и битые данные."""

    def test_duplicate_task_last_wins(self):
        """Последнее вхождение побеждает и стоит на своей позиции."""
        collection = normalize([make_task(1, "First"), make_task(2), make_task(1, "Second")])

        tasks = collection.tasks("master")
        assert [t.key for t in tasks] == ["2", "1"]
        assert tasks[1].title == "Second"

    def test_duplicate_subtask_last_wins(self):
        record = TaskRecord.from_dict(
            {
                "id": 1,
                "subtasks": [
                    {"id": 1, "title": "a"},
                    {"id": 2, "title": "b"},
                    {"id": 1, "title": "c"},
                ],
            }
        )
        assert [(s.key, s.title) for s in record.subtasks] == [("2", "b"), ("1", "c")]

    def test_task_without_id_raises(self):
        with pytest.raises(ReadError, match="missing id"):
            normalize([{"title": "No id"}])

    def test_malformed_json_raises(self):
        with pytest.raises(ReadError, match="Malformed JSON"):
            loads('{"master": {"tasks": [', source="tasks.json")

    def test_invalid_utf8_raises(self):
        with pytest.raises(ReadError, match="UTF-8"):
            loads(b"\xff\xfe{}", source="tasks.json")

    def test_missing_file_raises_not_found(self, tmp_path):
        with pytest.raises(NotFoundError, match="Tasks file not found"):
            read_tasks_file(tmp_path / "nope" / "tasks.json")


# =============================================================================
# ТЕСТЫ: Запись
# =============================================================================


class TestDumps:
    """Запись в каноническом виде."""

    def test_legacy_array_written_tagged(self):
        """Массив записывается как {"master": {"tasks": [...]}}."""
        data = json.loads(dumps(normalize([make_task(1)])))
        assert list(data) == ["master"]
        assert data["master"]["tasks"][0]["id"] == 1

    def test_two_space_indent_and_newline(self):
        text = dumps(normalize([make_task(1)]))
        assert text.endswith("\n")
        assert '\n  "master"' in text

    def test_unknown_fields_survive(self):
        """Неизвестные поля задачи и подзадачи сохраняются."""
        raw = make_task(1, customField={"x": 1}, subtasks=[{"id": 1, "title": "s", "owner": "bob"}])
        data = json.loads(dumps(normalize([raw])))

        task = data["master"]["tasks"][0]
        assert task["customField"] == {"x": 1}
        assert task["subtasks"][0]["owner"] == "bob"

    def test_non_ascii_kept(self):
        text = dumps(normalize([make_task(1, "Задача")]))
        assert "Задача" in text

    def test_read_write_read_is_stable(self, tmp_path):
        """Прочитать → записать → прочитать даёт ту же коллекцию."""
        path = write_tasks(tmp_path, {"tasks": [make_task(1), make_task(2, dependencies=[1])]})
        first = read_tasks_file(path)
        path.write_text(dumps(first), encoding="utf-8")
        second = read_tasks_file(path)

        assert second.to_dict() == first.to_dict()
