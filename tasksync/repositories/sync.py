"""Sync repositories: per-user sync state and append-only history."""

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utc_now
from ..models.sync_history import SyncHistory, SyncStatus, SyncType
from ..models.sync_state import SyncState, SyncStateStatus
from .base import BaseRepository


class SyncStateRepository(BaseRepository[SyncState]):
    """Repository for the (project, user) sync state rows."""

    def __init__(self, db: AsyncSession):
        super().__init__(SyncState, db)

    async def get_for(self, project_id: int, user_id: str) -> SyncState | None:
        """Get the state row of one user for one project."""
        result = await self.db.execute(
            select(SyncState).where(
                SyncState.project_id == project_id, SyncState.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def upsert(self, project_id: int, user_id: str, **fields) -> SyncState:
        """Create the state row on first use, otherwise update the given fields."""
        state = await self.get_for(project_id, user_id)
        if state is None:
            state = SyncState(project_id=project_id, user_id=user_id, **fields)
            return await self.create(state)
        return await self.update(state.id, **fields)

    async def mark_running(self, project_id: int, user_id: str, source_kind: str) -> SyncState:
        return await self.upsert(
            project_id,
            user_id,
            status=SyncStateStatus.RUNNING,
            source_kind=source_kind,
            error_message=None,
        )

    async def mark_failed(self, project_id: int, user_id: str, error_message: str) -> SyncState:
        return await self.upsert(
            project_id, user_id, status=SyncStateStatus.FAILED, error_message=error_message
        )


class SyncHistoryRepository(BaseRepository[SyncHistory]):
    """Repository for sync history rows."""

    def __init__(self, db: AsyncSession):
        super().__init__(SyncHistory, db)

    async def start(
        self,
        sync_type: SyncType,
        project_id: int | None = None,
        user_id: str | None = None,
        sync_data: dict | None = None,
        status: SyncStatus = SyncStatus.RUNNING,
    ) -> SyncHistory:
        """Create a history row (RUNNING unless queued as PENDING)."""
        row = SyncHistory(
            project_id=project_id,
            user_id=user_id,
            sync_type=sync_type,
            status=status,
            sync_data=sync_data,
            started_at=utc_now(),
        )
        return await self.create(row)

    async def mark_running(self, history_id: int) -> SyncHistory | None:
        return await self.update(history_id, status=SyncStatus.RUNNING)

    async def complete(
        self,
        history_id: int,
        tasks_added: int = 0,
        tasks_updated: int = 0,
        tasks_removed: int = 0,
        sync_data: dict | None = None,
    ) -> SyncHistory | None:
        """Finalize as COMPLETED. A row that is already final is left untouched."""
        row = await self.get_by_id(history_id)
        if row is None or row.is_final:
            return row
        fields = dict(
            status=SyncStatus.COMPLETED,
            tasks_added=tasks_added,
            tasks_updated=tasks_updated,
            tasks_removed=tasks_removed,
            completed_at=utc_now(),
        )
        if sync_data is not None:
            fields["sync_data"] = sync_data
        return await self.update(history_id, **fields)

    async def fail(self, history_id: int, error_message: str) -> SyncHistory | None:
        """Finalize as FAILED. A row that is already final is left untouched."""
        row = await self.get_by_id(history_id)
        if row is None or row.is_final:
            return row
        return await self.update(
            history_id,
            status=SyncStatus.FAILED,
            error_message=error_message,
            completed_at=utc_now(),
        )

    async def get_recent(self, project_id: int | None = None, limit: int = 10) -> list[SyncHistory]:
        """Newest rows first, optionally for one project."""
        query = select(SyncHistory)
        if project_id is not None:
            query = query.where(SyncHistory.project_id == project_id)
        result = await self.db.execute(
            query.order_by(desc(SyncHistory.started_at), desc(SyncHistory.id)).limit(limit)
        )
        return list(result.scalars().all())

    async def get_by_status(self, status: SyncStatus) -> list[SyncHistory]:
        result = await self.db.execute(
            select(SyncHistory).where(SyncHistory.status == status).order_by(SyncHistory.id)
        )
        return list(result.scalars().all())
