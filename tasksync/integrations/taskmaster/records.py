"""In-memory task records read from Task Master tasks files.

A TaskCollection holds every tag of one tasks file. Records keep the keys they
do not understand in ``extra`` so that writing a collection back never drops
data added by other tools.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ...models.task import TaskPriority, TaskStatus

DEFAULT_TAG = "master"

# Keys of a task object that are mapped onto TaskRecord attributes
TASK_KEYS = {
    "id",
    "title",
    "description",
    "status",
    "priority",
    "complexity",
    "details",
    "testStrategy",
    "dependencies",
    "subtasks",
    "updatedAt",
}

SUBTASK_KEYS = {"id", "title", "description", "status", "dependencies", "details"}

# Fields compared when deciding whether two versions of a task differ
CONTENT_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "dependencies",
    "subtasks",
    "details",
    "test_strategy",
)

# Attribute name -> key in the tasks file
WIRE_NAMES = {
    "test_strategy": "testStrategy",
    "updated_at": "updatedAt",
}


def normalize_status(value: Any) -> TaskStatus:
    """Parse a status case-insensitively. Unknown values become pending."""
    if isinstance(value, str):
        text = value.strip().lower().replace("_", "-").replace(" ", "-")
        try:
            return TaskStatus(text)
        except ValueError:
            pass
    return TaskStatus.PENDING


def normalize_priority(value: Any) -> TaskPriority:
    """Parse a priority case-insensitively. Unknown values become medium."""
    if isinstance(value, str):
        try:
            return TaskPriority(value.strip().lower())
        except ValueError:
            pass
    return TaskPriority.MEDIUM


def id_key(value: Any) -> str:
    """Ids may be ints or strings in the file; they are compared by string form."""
    return str(value).strip()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_complexity(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


@dataclass
class Subtask:
    """Nested task. Its id is unique within the parent task."""

    id: Any
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[Any] = field(default_factory=list)
    details: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return id_key(self.id)

    def content_key(self) -> tuple:
        return (
            self.key,
            self.title,
            self.description,
            self.status.value,
            tuple(sorted(id_key(d) for d in self.dependencies)),
            self.details,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=data.get("id"),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            status=normalize_status(data.get("status")),
            dependencies=list(data.get("dependencies") or []),
            details=data.get("details"),
            extra={k: v for k, v in data.items() if k not in SUBTASK_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
        }
        if self.details is not None:
            result["details"] = self.details
        result.update(self.extra)
        return result


@dataclass
class TaskRecord:
    """One task of one tag."""

    id: Any
    tag: str = DEFAULT_TAG
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    complexity: int | None = None
    details: str | None = None
    test_strategy: str | None = None
    dependencies: list[Any] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    updated_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return id_key(self.id)

    @property
    def updated(self) -> datetime | None:
        return parse_timestamp(self.updated_at)

    def field_value(self, name: str) -> Any:
        """Comparable value of a content field (lists compared as sets)."""
        if name == "dependencies":
            return frozenset(id_key(d) for d in self.dependencies)
        if name == "subtasks":
            return frozenset(s.content_key() for s in self.subtasks)
        if name in ("status", "priority"):
            return getattr(self, name).value
        return getattr(self, name)

    def content_key(self) -> tuple:
        return tuple(self.field_value(name) for name in CONTENT_FIELDS)

    def differing_fields(self, other: "TaskRecord") -> list[str]:
        """Content fields whose values differ between the two versions."""
        return [
            WIRE_NAMES.get(name, name)
            for name in CONTENT_FIELDS
            if self.field_value(name) != other.field_value(name)
        ]

    def same_content(self, other: "TaskRecord") -> bool:
        return self.content_key() == other.content_key()

    @classmethod
    def from_dict(cls, data: dict[str, Any], tag: str = DEFAULT_TAG) -> "TaskRecord":
        subtasks: dict[str, Subtask] = {}
        for raw in data.get("subtasks") or []:
            if isinstance(raw, dict) and raw.get("id") is not None:
                subtask = Subtask.from_dict(raw)
                # Last duplicate wins, at its own position
                subtasks.pop(subtask.key, None)
                subtasks[subtask.key] = subtask

        return cls(
            id=data.get("id"),
            tag=tag,
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            status=normalize_status(data.get("status")),
            priority=normalize_priority(data.get("priority")),
            complexity=_parse_complexity(data.get("complexity")),
            details=data.get("details"),
            test_strategy=data.get("testStrategy"),
            dependencies=list(data.get("dependencies") or []),
            subtasks=list(subtasks.values()),
            updated_at=data.get("updatedAt"),
            extra={k: v for k, v in data.items() if k not in TASK_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize in tasks file form, unknown keys included."""
        result: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "dependencies": list(self.dependencies),
        }
        if self.complexity is not None:
            result["complexity"] = self.complexity
        if self.details is not None:
            result["details"] = self.details
        if self.test_strategy is not None:
            result["testStrategy"] = self.test_strategy
        result["subtasks"] = [s.to_dict() for s in self.subtasks]
        if self.updated_at is not None:
            result["updatedAt"] = self.updated_at
        result.update(self.extra)
        return result


@dataclass
class TaskCollection:
    """All tags of one tasks file.

    ``metadata`` keeps the non-task keys of each tag block (usually the
    ``metadata`` object), ``extra`` keeps top-level keys that are not tags.
    """

    tags: dict[str, list[TaskRecord]] = field(default_factory=dict)
    metadata: dict[str, dict[str, Any]] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def tasks(self, tag: str) -> list[TaskRecord]:
        return self.tags.get(tag, [])

    def tag_names(self) -> list[str]:
        return list(self.tags)

    def index(self, tag: str) -> dict[str, TaskRecord]:
        return {task.key: task for task in self.tasks(tag)}

    def get(self, tag: str, task_id: Any) -> TaskRecord | None:
        return self.index(tag).get(id_key(task_id))

    @property
    def total(self) -> int:
        return sum(len(tasks) for tasks in self.tags.values())

    def is_empty(self) -> bool:
        return self.total == 0

    def to_dict(self) -> dict[str, Any]:
        """Canonical tagged form: ``{tag: {"tasks": [...], ...metadata}}``."""
        result: dict[str, Any] = dict(self.extra)
        for tag, tasks in self.tags.items():
            block: dict[str, Any] = {"tasks": [task.to_dict() for task in tasks]}
            block.update(self.metadata.get(tag, {}))
            result[tag] = block
        return result

    def summary(self) -> dict[str, int]:
        """Task count per tag."""
        return {tag: len(tasks) for tag, tasks in self.tags.items()}
