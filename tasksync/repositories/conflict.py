"""Offline conflict repository."""

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ConflictItem
from .base import BaseRepository


class ConflictItemRepository(BaseRepository[ConflictItem]):
    """Repository for offline conflict items."""

    def __init__(self, db: AsyncSession):
        super().__init__(ConflictItem, db)

    async def get_unresolved(self, project_id: int | None = None) -> list[ConflictItem]:
        query = select(ConflictItem).where(ConflictItem.resolved.is_(False))
        if project_id is not None:
            query = query.where(ConflictItem.project_id == project_id)
        result = await self.db.execute(query.order_by(desc(ConflictItem.conflicted_at)))
        return list(result.scalars().all())

    async def get_unresolved_for(
        self, entity_type: str, entity_id: str, project_id: int | None, tag: str = "master"
    ) -> ConflictItem | None:
        """The open conflict of one entity, if any.

        Entity ids repeat across projects and tags, so both are part of the key.
        """
        project_filter = (
            ConflictItem.project_id.is_(None)
            if project_id is None
            else ConflictItem.project_id == project_id
        )
        result = await self.db.execute(
            select(ConflictItem).where(
                project_filter,
                ConflictItem.tag == tag,
                ConflictItem.entity_type == entity_type,
                ConflictItem.entity_id == entity_id,
                ConflictItem.resolved.is_(False),
            )
        )
        return result.scalars().first()

    async def unresolved_entity_ids(
        self, project_id: int, tag: str = "master", entity_type: str = "task"
    ) -> set[str]:
        result = await self.db.execute(
            select(ConflictItem.entity_id).where(
                ConflictItem.project_id == project_id,
                ConflictItem.tag == tag,
                ConflictItem.entity_type == entity_type,
                ConflictItem.resolved.is_(False),
            )
        )
        return set(result.scalars().all())
