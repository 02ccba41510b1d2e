"""Base repository with common CRUD operations."""

from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import Base

# TypeVar для Generic класса - позволяет работать с любой моделью
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Базовый репозиторий с CRUD операциями.

    Репозитории только делают flush(): commit остаётся за вызывающим кодом
    (сервис синхронизации коммитит на границах шагов state machine).

    Пример использования:
        repo = BaseRepository[Project](Project, db_session)
        project = await repo.get_by_id(1)
    """

    def __init__(self, model: type[ModelType], db: AsyncSession):
        """
        Args:
            model: Класс модели SQLAlchemy (например, Project, SyncHistory)
            db: Асинхронная сессия базы данных
        """
        self.model = model
        self.db = db

    async def create(self, obj: ModelType) -> ModelType:
        """
        Создать новую запись в БД.

        flush() отправляет INSERT, refresh() подтягивает ID и значения по умолчанию.
        """
        self.db.add(obj)
        await self.db.flush()
        await self.db.refresh(obj)
        return obj

    async def get_by_id(self, id: int) -> ModelType | None:
        """Получить объект по первичному ключу или None."""
        result = await self.db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_all(self, skip: int = 0, limit: int = 100) -> list[ModelType]:
        """Получить записи с пагинацией (OFFSET/LIMIT)."""
        result = await self.db.execute(
            select(self.model).order_by(self.model.id).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def update(self, id: int, **kwargs: Any) -> ModelType | None:
        """
        Обновить запись по ID.

        Меняются только колонки таблицы, прочие ключи игнорируются:
        сервисы передают сюда сводки целиком.

        Пример:
            await repo.update(1, status=SyncStatus.COMPLETED, error_message=None)
        """
        obj = await self.get_by_id(id)
        if obj is None:
            return None

        columns = self.model.__table__.columns.keys()
        for key, value in kwargs.items():
            if key in columns:
                setattr(obj, key, value)

        await self.db.flush()
        await self.db.refresh(obj)
        return obj

    async def delete(self, id: int) -> bool:
        """Удалить запись по ID. True если что-то удалено."""
        result = await self.db.execute(delete(self.model).where(self.model.id == id))
        return result.rowcount > 0

    async def exists(self, id: int) -> bool:
        """Проверить существование записи без загрузки объекта."""
        result = await self.db.execute(select(self.model.id).where(self.model.id == id))
        return result.first() is not None

    async def count(self) -> int:
        """Подсчитать количество записей."""
        result = await self.db.execute(select(func.count()).select_from(self.model))
        return result.scalar_one()
