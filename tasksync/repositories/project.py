"""Project and remote server repositories."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Project, RemoteServer
from ..models.base import utc_now
from .base import BaseRepository


class ProjectRepository(BaseRepository[Project]):
    """Репозиторий проектов (проект = один тег tasks.json)."""

    def __init__(self, db: AsyncSession):
        super().__init__(Project, db)

    async def get_by_owner(self, owner_id: str) -> list[Project]:
        """Все проекты пользователя."""
        result = await self.db.execute(
            select(Project).where(Project.owner_id == owner_id).order_by(Project.id)
        )
        return list(result.scalars().all())

    async def get_by_local_path(self, local_path: str, tag: str) -> Project | None:
        """Найти проект по локальному корню и тегу (используется сканером)."""
        result = await self.db.execute(
            select(Project).where(Project.local_path == local_path, Project.tag == tag)
        )
        return result.scalars().first()

    async def search_by_name(self, name: str) -> list[Project]:
        """Поиск по подстроке в названии (без учёта регистра)."""
        result = await self.db.execute(
            select(Project).where(Project.name.ilike(f"%{name}%")).order_by(Project.id)
        )
        return list(result.scalars().all())


class RemoteServerRepository(BaseRepository[RemoteServer]):
    """Репозиторий SSH-серверов."""

    def __init__(self, db: AsyncSession):
        super().__init__(RemoteServer, db)

    async def mark_reachable(self, server_id: int, reachable: bool) -> RemoteServer | None:
        """Отметить результат последнего подключения."""
        return await self.update(server_id, is_reachable=reachable, last_ping_at=utc_now())
