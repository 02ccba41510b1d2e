"""Task mirror repository."""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import TaskMirror
from .base import BaseRepository


class TaskMirrorRepository(BaseRepository[TaskMirror]):
    """Репозиторий зеркала задач (таблица tasks)."""

    def __init__(self, db: AsyncSession):
        super().__init__(TaskMirror, db)

    async def get_by_project(self, project_id: int, tag: str | None = None) -> list[TaskMirror]:
        """Задачи проекта в порядке вставки, опционально одного тега."""
        query = select(TaskMirror).where(TaskMirror.project_id == project_id)
        if tag is not None:
            query = query.where(TaskMirror.tag == tag)
        result = await self.db.execute(query.order_by(TaskMirror.id))
        return list(result.scalars().all())

    async def get_by_task_id(self, project_id: int, tag: str, task_id: str) -> TaskMirror | None:
        result = await self.db.execute(
            select(TaskMirror).where(
                TaskMirror.project_id == project_id,
                TaskMirror.tag == tag,
                TaskMirror.task_id == task_id,
            )
        )
        return result.scalar_one_or_none()

    async def delete_missing(self, project_id: int, tag: str, keep_ids: set[str]) -> int:
        """Удалить задачи тега, которых больше нет в источнике."""
        query = delete(TaskMirror).where(
            TaskMirror.project_id == project_id, TaskMirror.tag == tag
        )
        if keep_ids:
            query = query.where(TaskMirror.task_id.not_in(keep_ids))
        result = await self.db.execute(query)
        return result.rowcount
