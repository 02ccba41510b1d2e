"""
Dependencies для FastAPI endpoints.

Сервисы создаются через Depends():
    async def merge(
        coordinator: SyncCoordinator = Depends(get_coordinator)
    ):
        ...

Общие для процесса объекты (EventBroadcaster, JobScheduler, SyncLockRegistry)
живут в app.state и создаются один раз в main.py.
"""

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import get_db
from ..core.errors import AuthError
from ..services import (
    ConflictStore,
    EventBroadcaster,
    JobScheduler,
    ProjectService,
    SyncCoordinator,
    SyncLockRegistry,
)

__all__ = [
    "get_db",
    "verify_api_key",
    "get_user_id",
    "get_broadcaster",
    "get_scheduler",
    "get_locks",
    "get_coordinator",
    "get_conflict_store",
    "get_project_service",
]

# ============================================================================
# API KEY AUTHENTICATION
# ============================================================================

api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,  # Не выбрасывать ошибку автоматически, мы сами обработаем
    description="API ключ для авторизации. Передавайте в заголовке X-API-Key",
)


async def verify_api_key(api_key: str = Depends(api_key_header)) -> str:
    """
    Dependency для проверки API ключа.

    Пример запроса:
        curl -H "X-API-Key: your-secret-key" -H "X-User-Id: alice" \\
            http://localhost:8000/api/v1/projects
    """
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key is missing. Add header: X-API-Key: your-key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key


async def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """
    Идентификатор пользователя из заголовка X-User-Id.

    Аутентификация пользователя выполняется снаружи (шлюз),
    сюда приходит уже проверенный id.
    """
    if not x_user_id or not x_user_id.strip():
        raise AuthError("User id is missing. Add header: X-User-Id: <user>")
    return x_user_id.strip()


# ============================================================================
# PROCESS-WIDE OBJECTS
# ============================================================================


def get_broadcaster(request: Request) -> EventBroadcaster:
    return request.app.state.broadcaster


def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.scheduler


def get_locks(request: Request) -> SyncLockRegistry:
    return request.app.state.locks


# ============================================================================
# SERVICE DEPENDENCIES
# ============================================================================


async def get_coordinator(
    db: AsyncSession = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
    locks: SyncLockRegistry = Depends(get_locks),
) -> SyncCoordinator:
    """
    Dependency для SyncCoordinator.

    Цепочка зависимостей:
        get_coordinator зависит от get_db, get_broadcaster, get_locks
        → блокировки общие для всех запросов процесса
    """
    return SyncCoordinator(db, broadcaster=broadcaster, locks=locks)


async def get_conflict_store(
    db: AsyncSession = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
) -> ConflictStore:
    return ConflictStore(db, broadcaster=broadcaster)


async def get_project_service(db: AsyncSession = Depends(get_db)) -> ProjectService:
    return ProjectService(db)
