"""
FastAPI приложение Task Sync Engine.

Запуск:
    uvicorn tasksync.main:app --reload

Документация:
    /docs  - Swagger UI
    /redoc - ReDoc

Ресурсы живут под /api/v1 и требуют заголовков X-API-Key и X-User-Id.
Корень (/) и /health открыты.
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .api import conflicts_router, events_router, jobs_router, projects_router, sync_router
from .api.dependencies import verify_api_key
from .api.errors import register_error_handlers
from .api.middleware import RequestLoggingMiddleware
from .core.config import settings
from .core.database import AsyncSessionLocal
from .core.logging import get_logger, setup_logging
from .services import (
    EventBroadcaster,
    JobScheduler,
    SyncLockRegistry,
    make_scan_handler,
    make_sync_handler,
)
from .services.scheduler import SCAN_QUEUE, SYNC_QUEUE

setup_logging(log_level=settings.LOG_LEVEL, log_format=settings.LOG_FORMAT)

logger = get_logger(__name__)

RATE_LIMIT = "100/minute"

limiter = Limiter(key_func=get_remote_address)


# ============================================================================
# RUNTIME (один экземпляр на процесс)
# ============================================================================


@dataclass
class SyncRuntime:
    """Блокировки целей, подписчики событий и очереди фоновых задач."""

    locks: SyncLockRegistry
    broadcaster: EventBroadcaster
    scheduler: JobScheduler
    started_at: float = 0.0

    def attach(self, app: FastAPI) -> None:
        # Зависимости API читают объекты из app.state, тесты подменяют их там же
        app.state.locks = self.locks
        app.state.broadcaster = self.broadcaster
        app.state.scheduler = self.scheduler


def build_runtime() -> SyncRuntime:
    locks = SyncLockRegistry()
    broadcaster = EventBroadcaster()
    scheduler = JobScheduler(
        AsyncSessionLocal,
        handlers={
            SYNC_QUEUE: make_sync_handler(AsyncSessionLocal, broadcaster, locks),
            SCAN_QUEUE: make_scan_handler(AsyncSessionLocal),
        },
    )
    return SyncRuntime(locks=locks, broadcaster=broadcaster, scheduler=scheduler)


runtime = build_runtime()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Broadcaster и воркеры стартуют вместе с приложением, останавливаются в обратном порядке."""
    runtime.started_at = time.time()
    await app.state.broadcaster.start()
    await app.state.scheduler.start()
    logger.info(
        "Application started",
        extra={
            "version": __version__,
            "database": settings.DATABASE_URL.split("://", 1)[0],
            "sync_workers": settings.SYNC_WORKERS,
            "scan_workers": settings.SCAN_WORKERS,
            "schedule_interval": settings.SYNC_SCHEDULE_INTERVAL,
        },
    )

    yield

    await app.state.scheduler.stop()
    await app.state.broadcaster.stop()
    logger.info(
        "Application stopped", extra={"uptime_seconds": int(time.time() - runtime.started_at)}
    )


# ============================================================================
# APPLICATION
# ============================================================================

app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=__version__,
    description="""
    Синхронизация и слияние задач Task Master между локальной и удалённой копией проекта.

    * **Слияние** - трёхстороннее слияние tasks.json с политиками конфликтов
    * **Бэкапы** - снимок перед каждой записью, откат одним запросом
    * **Импорт** - зеркало задач в БД (локально или по SSH)
    * **Офлайн-конфликты** - ручное разрешение расхождений
    * **События** - Server-Sent Events о ходе синхронизации
    * **Фоновые задачи** - очереди импорта и сканирования с приоритетами

    Лимит: 100 запросов в минуту на корневые endpoints.
    """,
)

app.state.limiter = limiter
runtime.attach(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # в продакшене ограничить
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

api_v1_router = APIRouter(prefix="/api/v1")
for router in (projects_router, sync_router, conflicts_router, jobs_router, events_router):
    api_v1_router.include_router(router)
app.include_router(api_v1_router, dependencies=[Depends(verify_api_key)])

register_error_handlers(app)


# ============================================================================
# ROOT И HEALTH
# ============================================================================


@app.get("/", tags=["root"], summary="Информация о API")
@limiter.limit(RATE_LIMIT)
async def root(request: Request):
    return {
        "name": settings.APP_NAME,
        "version": __version__,
        "api_version": "v1",
        "docs": "/docs",
        "endpoints": {
            name: f"/api/v1/{name}"
            for name in ("projects", "servers", "sync", "conflicts", "jobs", "events")
        },
        "rate_limit": RATE_LIMIT,
    }


async def _database_status() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Health check: database unavailable", extra={"error": str(e)})
        return "disconnected"
    return "connected"


@app.get("/health", tags=["health"], summary="Проверка работоспособности")
@limiter.limit(RATE_LIMIT)
async def health_check(request: Request):
    """
    Состояние БД, broadcaster и планировщика.

    200, если БД доступна, иначе 503:
    ```json
    {
        "status": "ok",
        "checks": {
            "database": "connected",
            "broadcaster": "running",
            "scheduler": "running",
            "subscribers": 2,
            "version": "1.0.0",
            "uptime_seconds": 3600
        },
        "timestamp": "2026-03-01T12:00:00+00:00"
    }
    ```
    """
    state = request.app.state
    database = await _database_status()
    checks = {
        "database": database,
        "broadcaster": "running" if state.broadcaster.is_running else "stopped",
        "scheduler": "running" if state.scheduler.is_running else "stopped",
        "subscribers": state.broadcaster.stats()["subscribers"],
        "version": __version__,
        "uptime_seconds": int(time.time() - runtime.started_at) if runtime.started_at else 0,
    }
    healthy = database == "connected"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ok" if healthy else "error",
            "checks": checks,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )
