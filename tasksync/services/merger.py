"""Differ/merger for task collections.

``merge()`` is a pure function: it never touches disk, database or events, and
returns the same MergeResult for the same inputs.

Counting is relative to the local target: every id in the union of both sides
lands in exactly one of added / updated / removed / unchanged.

Change detection needs a baseline (the last merged snapshot and the last remote
snapshot seen). Without one, any difference on a shared id is taken as a remote
change.
"""

import copy
import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from ..core.errors import ConflictError, ValidationError
from ..models.task import TaskStatus
from ..integrations.taskmaster.records import (
    CONTENT_FIELDS,
    Subtask,
    TaskCollection,
    TaskRecord,
    id_key,
)

ADDED = "added"
UPDATED = "updated"
REMOVED = "removed"
UNCHANGED = "unchanged"
BUCKETS = (ADDED, UPDATED, REMOVED, UNCHANGED)


class ConflictPolicy(str, enum.Enum):
    """How a task changed independently on both sides is resolved."""

    NEWER_WINS = "newer-wins"  # Compare updatedAt, ties keep local
    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"
    MERGE = "merge"  # Field-wise, list fields unioned
    STRICT = "strict"  # Refuse with ConflictError

    @classmethod
    def parse(cls, value: "str | ConflictPolicy") -> "ConflictPolicy":
        try:
            return cls(value)
        except ValueError as e:
            allowed = ", ".join(p.value for p in cls)
            raise ValidationError(
                f"Unknown conflict policy '{value}'. Allowed: {allowed}"
            ) from e


@dataclass
class MergePolicy:
    """Options of one merge run."""

    dry_run: bool = False
    prune_missing: bool = False
    conflict_policy: ConflictPolicy = ConflictPolicy.NEWER_WINS
    allow_additions: bool = True
    repair_dependencies: bool = False
    preserve_in_progress: bool = False  # A local in-progress status is never overwritten
    merge_subtasks: bool = False  # Union subtasks by id when both sides changed
    def __post_init__(self):
        self.conflict_policy = ConflictPolicy.parse(self.conflict_policy)


@dataclass
class MergeBaseline:
    """Last known common state: what was written locally and what remote looked like."""

    local: TaskCollection
    remote: TaskCollection


@dataclass
class ConflictDescriptor:
    """One task changed independently on both sides."""

    task_id: str
    tag: str
    local_version: dict[str, Any]
    remote_version: dict[str, Any]
    fields: list[str]
    reason: str
    resolution: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "tag": self.tag,
            "localVersion": self.local_version,
            "remoteVersion": self.remote_version,
            "fields": self.fields,
            "reason": self.reason,
            "resolution": self.resolution,
        }


@dataclass
class MergeResult:
    """Merged collection plus per-bucket task ids."""

    tasks: TaskCollection
    ids: dict[str, list[tuple[str, str]]] = field(
        default_factory=lambda: {bucket: [] for bucket in BUCKETS}
    )
    conflicts: list[ConflictDescriptor] = field(default_factory=list)
    dangling_dependencies: dict[str, dict[str, list[str]]] = field(default_factory=dict)

    @property
    def added(self) -> int:
        return len(self.ids[ADDED])

    @property
    def updated(self) -> int:
        return len(self.ids[UPDATED])

    @property
    def removed(self) -> int:
        return len(self.ids[REMOVED])

    @property
    def unchanged(self) -> int:
        return len(self.ids[UNCHANGED])

    def ids_in(self, bucket: str, tag: str | None = None) -> set[str]:
        return {task_id for t, task_id in self.ids[bucket] if tag is None or t == tag}

    def per_tag(self) -> dict[str, dict[str, int]]:
        counts: dict[str, dict[str, int]] = {}
        for bucket in BUCKETS:
            for tag, _ in self.ids[bucket]:
                counts.setdefault(tag, {b: 0 for b in BUCKETS})[bucket] += 1
        return counts

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.updated or self.removed)

    def summary(self) -> str:
        message = (
            f"Merged {self.tasks.total} tasks: {self.added} added, {self.updated} updated, "
            f"{self.removed} removed, {self.unchanged} unchanged"
        )
        if self.conflicts:
            message += f", {len(self.conflicts)} conflicts resolved"
        return message

    def counts(self) -> dict[str, int]:
        return {bucket: len(self.ids[bucket]) for bucket in BUCKETS}

    def to_dict(self, include_tasks: bool = True) -> dict[str, Any]:
        result: dict[str, Any] = {
            **self.counts(),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "perTag": self.per_tag(),
            "danglingDependencies": self.dangling_dependencies,
        }
        if include_tasks:
            result["tasks"] = self.tasks.to_dict()
        return result


# =============================================================================
# MERGE
# =============================================================================


def merge(
    local: TaskCollection,
    remote: TaskCollection,
    policy: MergePolicy | None = None,
    baseline: MergeBaseline | None = None,
) -> MergeResult:
    """Reconcile local and remote collections.

    Raises:
        ConflictError: conflicts found under the strict policy
    """
    policy = policy or MergePolicy()
    result = MergeResult(tasks=TaskCollection(extra={**remote.extra, **local.extra}))
    buckets: dict[tuple[str, str], str] = {}
    strict_conflicts: list[ConflictDescriptor] = []

    tags = local.tag_names() + [t for t in remote.tag_names() if t not in local.tags]
    for tag in tags:
        merged = _merge_tag(tag, local, remote, policy, baseline, buckets, result, strict_conflicts)
        result.tasks.tags[tag] = merged
        meta = {**remote.metadata.get(tag, {}), **local.metadata.get(tag, {})}
        if meta:
            result.tasks.metadata[tag] = meta

    if strict_conflicts:
        raise ConflictError(
            f"{len(strict_conflicts)} task(s) changed on both sides under strict policy",
            details=[
                {"field": f"{c.tag}#{c.task_id}", "message": ", ".join(c.fields)}
                for c in strict_conflicts
            ],
        )

    _check_dependencies(result, local, policy, buckets)

    for (tag, task_id), bucket in buckets.items():
        result.ids[bucket].append((tag, task_id))

    return result


def _merge_tag(
    tag: str,
    local: TaskCollection,
    remote: TaskCollection,
    policy: MergePolicy,
    baseline: MergeBaseline | None,
    buckets: dict[tuple[str, str], str],
    result: MergeResult,
    strict_conflicts: list[ConflictDescriptor],
) -> list[TaskRecord]:
    remote_index = remote.index(tag)
    base_local = baseline.local.index(tag) if baseline else {}
    base_remote = baseline.remote.index(tag) if baseline else {}
    merged: list[TaskRecord] = []

    for record in local.tasks(tag):
        key = (tag, record.key)
        other = remote_index.get(record.key)

        if other is None:
            if policy.prune_missing:
                buckets[key] = REMOVED
            else:
                buckets[key] = UNCHANGED
                merged.append(copy.deepcopy(record))
            continue

        if record.same_content(other):
            buckets[key] = UNCHANGED
            merged.append(copy.deepcopy(record))
            continue

        if baseline is None:
            local_changed, remote_changed = False, True
        else:
            local_changed = _changed(record, base_local.get(record.key))
            remote_changed = _changed(other, base_remote.get(record.key))

        if local_changed and remote_changed:
            chosen, descriptor = _resolve_conflict(
                record, other, base_local.get(record.key), policy.conflict_policy
            )
            if policy.conflict_policy == ConflictPolicy.STRICT:
                strict_conflicts.append(descriptor)
                continue
            result.conflicts.append(descriptor)
        elif local_changed:
            chosen = copy.deepcopy(record)
        else:
            # Remote changed (or nothing is known about the common state)
            chosen = _retag(other, tag)

        contested = baseline is None or (local_changed and remote_changed)
        chosen = _apply_task_options(chosen, record, other, policy, contested)
        buckets[key] = UNCHANGED if chosen.same_content(record) else UPDATED
        merged.append(chosen)

    local_keys = {r.key for r in local.tasks(tag)}
    for other in remote.tasks(tag):
        if other.key in local_keys:
            continue
        key = (tag, other.key)
        if policy.allow_additions:
            buckets[key] = ADDED
            merged.append(_retag(other, tag))
        else:
            buckets[key] = UNCHANGED

    return merged


def _apply_task_options(
    chosen: TaskRecord,
    local: TaskRecord,
    remote: TaskRecord,
    policy: MergePolicy,
    contested: bool,
) -> TaskRecord:
    """Apply the opt-in status and subtask rules on top of the chosen version."""
    if policy.merge_subtasks and contested and local.subtasks != remote.subtasks:
        # The winning side keeps its version of shared subtasks
        if chosen.subtasks == remote.subtasks:
            chosen.subtasks = _union_subtasks(remote.subtasks, local.subtasks, prefer_second=False)
        elif chosen.subtasks == local.subtasks:
            chosen.subtasks = _union_subtasks(local.subtasks, remote.subtasks, prefer_second=False)
    if policy.preserve_in_progress and local.status == TaskStatus.IN_PROGRESS:
        chosen.status = local.status
    return chosen


def _changed(record: TaskRecord, base: TaskRecord | None) -> bool:
    return base is None or not record.same_content(base)


def _retag(record: TaskRecord, tag: str) -> TaskRecord:
    clone = copy.deepcopy(record)
    clone.tag = tag
    return clone


# =============================================================================
# CONFLICT RESOLUTION
# =============================================================================


def _newer_is_remote(local: TaskRecord, remote: TaskRecord) -> bool:
    """True only when remote has a strictly newer updatedAt."""
    local_ts: datetime | None = local.updated
    remote_ts: datetime | None = remote.updated
    if local_ts is None or remote_ts is None:
        return False
    return remote_ts > local_ts


def _resolve_conflict(
    local: TaskRecord,
    remote: TaskRecord,
    base: TaskRecord | None,
    conflict_policy: ConflictPolicy,
) -> tuple[TaskRecord, ConflictDescriptor]:
    fields = local.differing_fields(remote)

    if conflict_policy == ConflictPolicy.LOCAL_WINS:
        chosen, resolution = copy.deepcopy(local), "local"
    elif conflict_policy == ConflictPolicy.REMOTE_WINS:
        chosen, resolution = _retag(remote, local.tag), "remote"
    elif conflict_policy == ConflictPolicy.MERGE:
        chosen, resolution = _merge_fields(local, remote, base), "merged"
    elif conflict_policy == ConflictPolicy.NEWER_WINS:
        if _newer_is_remote(local, remote):
            chosen, resolution = _retag(remote, local.tag), "remote"
        else:
            chosen, resolution = copy.deepcopy(local), "local"
    else:
        chosen, resolution = copy.deepcopy(local), "rejected"

    descriptor = ConflictDescriptor(
        task_id=local.key,
        tag=local.tag,
        local_version=local.to_dict(),
        remote_version=remote.to_dict(),
        fields=fields,
        reason="changed independently on both sides since last merge",
        resolution=resolution,
    )
    return chosen, descriptor


def _union(first: list[Any], second: list[Any]) -> list[Any]:
    seen = {id_key(item) for item in first}
    result = list(first)
    for item in second:
        if id_key(item) not in seen:
            seen.add(id_key(item))
            result.append(item)
    return result


def _union_subtasks(first: list[Subtask], second: list[Subtask], prefer_second: bool) -> list[Subtask]:
    by_id = {s.key: s for s in second}
    result = []
    for subtask in first:
        chosen = by_id.get(subtask.key, subtask) if prefer_second else subtask
        result.append(copy.deepcopy(chosen))
    seen = {s.key for s in first}
    result.extend(copy.deepcopy(s) for s in second if s.key not in seen)
    return result


def _merge_fields(local: TaskRecord, remote: TaskRecord, base: TaskRecord | None) -> TaskRecord:
    """Field-wise merge: one-sided changes kept, lists unioned, scalars by newer side."""
    remote_newer = _newer_is_remote(local, remote)
    merged = copy.deepcopy(local)

    for name in CONTENT_FIELDS:
        local_value = local.field_value(name)
        remote_value = remote.field_value(name)
        if local_value == remote_value:
            continue

        if base is not None:
            base_value = base.field_value(name)
            if local_value == base_value:
                setattr(merged, name, copy.deepcopy(getattr(remote, name)))
                continue
            if remote_value == base_value:
                continue

        if name == "dependencies":
            merged.dependencies = _union(local.dependencies, remote.dependencies)
        elif name == "subtasks":
            merged.subtasks = _union_subtasks(local.subtasks, remote.subtasks, remote_newer)
        elif remote_newer:
            setattr(merged, name, copy.deepcopy(getattr(remote, name)))

    if local.complexity is None:
        merged.complexity = remote.complexity
    if remote_newer:
        merged.updated_at = remote.updated_at
    merged.extra = {**remote.extra, **local.extra}
    return merged


# =============================================================================
# DEPENDENCIES
# =============================================================================


def _dependency_exists(dep: Any, ids: set[str]) -> bool:
    key = id_key(dep)
    if key in ids:
        return True
    # "3.2" points at subtask 2 of task 3
    parent = key.split(".", 1)[0]
    return "." in key and parent in ids


def _check_dependencies(
    result: MergeResult,
    local: TaskCollection,
    policy: MergePolicy,
    buckets: dict[tuple[str, str], str],
) -> None:
    """Report dependency ids that point nowhere; drop them when repair is on."""
    for tag, tasks in result.tasks.tags.items():
        ids = {task.key for task in tasks}
        local_index = local.index(tag)
        for position, task in enumerate(tasks):
            dangling = [id_key(d) for d in task.dependencies if not _dependency_exists(d, ids)]
            if not dangling:
                continue
            result.dangling_dependencies.setdefault(tag, {})[task.key] = dangling
            if not policy.repair_dependencies:
                continue

            repaired = replace(
                task,
                dependencies=[d for d in task.dependencies if _dependency_exists(d, ids)],
            )
            tasks[position] = repaired
            key = (tag, task.key)
            original = local_index.get(task.key)
            if buckets.get(key) == UNCHANGED and original is not None:
                if not repaired.same_content(original):
                    buckets[key] = UPDATED

