"""Offline conflict store.

When an offline client pushes a change for an entity whose remote version also
moved, the two payloads are parked as a ConflictItem until a user picks a side.
While an item is unresolved the entity is blocked from automatic sync.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ValidationError
from ..core.logging import get_logger
from ..integrations.taskmaster.records import DEFAULT_TAG, TaskRecord
from ..models import ConflictItem, ConflictStrategy, TaskMirror
from ..models.base import utc_now
from ..repositories import ConflictItemRepository, TaskMirrorRepository
from .broadcaster import CONFLICT_DETECTED, CONFLICT_RESOLVED, Event, EventBroadcaster

logger = get_logger(__name__)

TASK_ENTITY = "task"


def _strip_volatile(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in ("updatedAt", "updated_at")}


class ConflictStore:
    """Records and resolves offline conflicts."""

    def __init__(self, db: AsyncSession, broadcaster: EventBroadcaster | None = None):
        self.db = db
        self.broadcaster = broadcaster
        self.conflict_repo = ConflictItemRepository(db)
        self.task_repo = TaskMirrorRepository(db)

    async def record_conflict(
        self,
        entity_type: str,
        entity_id: str,
        local_data: dict[str, Any],
        remote_data: dict[str, Any],
        project_id: int | None = None,
        tag: str = DEFAULT_TAG,
    ) -> ConflictItem:
        """Create or refresh the single unresolved item of an entity.

        An entity is identified by (project, tag, type, id). A newer pull
        refreshes remote_data; the original local_data is kept.
        """
        existing = await self.conflict_repo.get_unresolved_for(
            entity_type, str(entity_id), project_id, tag
        )
        if existing is not None:
            item = await self.conflict_repo.update(
                existing.id, remote_data=remote_data, conflicted_at=utc_now()
            )
            logger.info(
                "Conflict refreshed",
                extra={"conflict_id": item.id, "entity": f"{entity_type}:{entity_id}"},
            )
            return item

        item = await self.conflict_repo.create(
            ConflictItem(
                project_id=project_id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                tag=tag,
                local_data=local_data,
                remote_data=remote_data,
                conflicted_at=utc_now(),
            )
        )
        logger.info(
            "Conflict recorded",
            extra={"conflict_id": item.id, "entity": f"{entity_type}:{entity_id}"},
        )
        if self.broadcaster is not None:
            self.broadcaster.broadcast(
                Event(
                    type=CONFLICT_DETECTED,
                    project_id=project_id,
                    data={
                        "conflictId": item.id,
                        "entityType": entity_type,
                        "entityId": str(entity_id),
                        "tag": tag,
                    },
                ),
                retry=True,
            )
        return item

    async def detect(
        self,
        entity_type: str,
        entity_id: str,
        local_data: dict[str, Any],
        remote_data: dict[str, Any],
        project_id: int | None = None,
        tag: str = DEFAULT_TAG,
    ) -> ConflictItem | None:
        """Record a conflict only when the payloads actually differ."""
        if _strip_volatile(local_data) == _strip_volatile(remote_data):
            return None
        return await self.record_conflict(
            entity_type, entity_id, local_data, remote_data, project_id, tag
        )

    async def get(self, conflict_id: int) -> ConflictItem:
        item = await self.conflict_repo.get_by_id(conflict_id)
        if item is None:
            raise NotFoundError(f"Conflict {conflict_id} not found")
        return item

    async def list_unresolved(self, project_id: int | None = None) -> list[ConflictItem]:
        return await self.conflict_repo.get_unresolved(project_id)

    async def is_blocked(
        self,
        entity_type: str,
        entity_id: str,
        project_id: int | None = None,
        tag: str = DEFAULT_TAG,
    ) -> bool:
        item = await self.conflict_repo.get_unresolved_for(
            entity_type, str(entity_id), project_id, tag
        )
        return item is not None

    async def resolve(
        self,
        conflict_id: int,
        strategy: ConflictStrategy | str,
        merged_payload: dict[str, Any] | None = None,
    ) -> ConflictItem:
        """Apply the chosen payload as the new local state and close the item.

        Raises:
            NotFoundError: unknown conflict
            ValidationError: already resolved, or merged strategy without payload
        """
        try:
            strategy = ConflictStrategy(strategy)
        except ValueError as e:
            raise ValidationError(f"Unknown resolution strategy: {strategy}") from e

        item = await self.get(conflict_id)
        if item.resolved:
            raise ValidationError(f"Conflict {conflict_id} is already resolved")

        if strategy == ConflictStrategy.LOCAL:
            payload = item.local_data
        elif strategy == ConflictStrategy.REMOTE:
            payload = item.remote_data
        else:
            if not merged_payload:
                raise ValidationError(
                    "Merged resolution requires a payload",
                    details=[{"field": "mergedData", "message": "required for merged strategy"}],
                )
            payload = merged_payload

        if item.entity_type == TASK_ENTITY and item.project_id is not None:
            await self._apply_task_payload(item.project_id, item.tag, item.entity_id, payload)

        item = await self.conflict_repo.update(
            item.id,
            resolved=True,
            resolution=strategy,
            resolved_data=payload,
            resolved_at=utc_now(),
        )
        logger.info(
            "Conflict resolved",
            extra={"conflict_id": item.id, "strategy": strategy.value},
        )
        if self.broadcaster is not None:
            self.broadcaster.broadcast(
                Event(
                    type=CONFLICT_RESOLVED,
                    project_id=item.project_id,
                    data={"conflictId": item.id, "strategy": strategy.value},
                ),
                retry=True,
            )
        return item

    async def _apply_task_payload(
        self, project_id: int, tag: str, task_id: str, payload: dict[str, Any]
    ) -> None:
        """Write a task payload into the mirror table (insert when missing)."""
        tag = payload.get("tag") or tag
        data = {k: v for k, v in payload.items() if k != "tag"}
        record = TaskRecord.from_dict({**data, "id": data.get("id", task_id)}, tag=tag)
        fields = mirror_fields(record)

        row = await self.task_repo.get_by_task_id(project_id, tag, record.key)
        if row is None:
            await self.task_repo.create(TaskMirror(project_id=project_id, tag=tag, task_id=record.key, **fields))
        else:
            await self.task_repo.update(row.id, **fields)


def mirror_fields(record: TaskRecord) -> dict[str, Any]:
    """Column values of a TaskMirror row for a record."""
    return dict(
        title=record.title,
        description=record.description,
        status=record.status,
        priority=record.priority,
        complexity=record.complexity,
        details=record.details,
        test_strategy=record.test_strategy,
        data=record.to_dict(),
    )
