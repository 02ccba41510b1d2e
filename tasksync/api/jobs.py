"""
API endpoints для фоновых задач.

URL структура:
- POST   /jobs/sync     - поставить импорт проекта в очередь
- POST   /jobs/scan     - поставить сканирование корней в очередь
- GET    /jobs          - список задач
- GET    /jobs/stats    - состояние очередей
- GET    /jobs/{id}     - одна задача
- DELETE /jobs/{id}     - отменить задачу
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from ..services import JobScheduler, SyncCoordinator
from ..services.scheduler import SCAN_QUEUE, SYNC_QUEUE
from .dependencies import get_coordinator, get_scheduler, get_user_id
from .schemas import ErrorResponse, JobResponse, ScanJobRequest, SyncJobRequest

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post(
    "/sync",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Импорт в фоне",
    description="Импорт идёт с приоритетом пользователя: раньше плановых задач.",
    responses={404: {"model": ErrorResponse, "description": "Проект не найден"}},
)
async def submit_sync_job(
    data: SyncJobRequest,
    user_id: str = Depends(get_user_id),
    scheduler: JobScheduler = Depends(get_scheduler),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> JobResponse:
    # Проверяем доступ сразу, а не в воркере
    await coordinator.get_project(data.project_id, user_id)
    job = await scheduler.submit(
        SYNC_QUEUE, {"project_id": data.project_id, "user_id": user_id}, provider="api"
    )
    return JobResponse.model_validate(job.to_dict())


@router.post(
    "/scan",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Сканирование в фоне",
    description="Найти проекты Task Master под корнями и зарегистрировать новые.",
)
async def submit_scan_job(
    data: ScanJobRequest | None = None,
    user_id: str = Depends(get_user_id),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> JobResponse:
    payload: dict[str, Any] = {"user_id": user_id}
    if data is not None and data.roots:
        payload["roots"] = data.roots
    job = await scheduler.submit(SCAN_QUEUE, payload, provider="api")
    return JobResponse.model_validate(job.to_dict())


@router.get("", response_model=list[JobResponse], summary="Список задач")
async def list_jobs(
    queue: str | None = Query(None, description="sync | scan"),
    user_id: str = Depends(get_user_id),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> list[JobResponse]:
    jobs = [j for j in scheduler.list_jobs(queue) if j.user_id == user_id]
    return [JobResponse.model_validate(j.to_dict()) for j in jobs]


@router.get("/stats", summary="Состояние очередей")
async def get_job_stats(scheduler: JobScheduler = Depends(get_scheduler)) -> dict[str, Any]:
    return scheduler.stats()


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Получить задачу",
    responses={404: {"model": ErrorResponse, "description": "Задача не найдена"}},
)
async def get_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> JobResponse:
    return JobResponse.model_validate(scheduler.get(job_id).to_dict())


@router.delete(
    "/{job_id}",
    response_model=JobResponse,
    summary="Отменить задачу",
    responses={
        400: {"model": ErrorResponse, "description": "Задача уже завершена"},
        404: {"model": ErrorResponse, "description": "Задача не найдена"},
    },
)
async def cancel_job(job_id: str, scheduler: JobScheduler = Depends(get_scheduler)) -> JobResponse:
    job = await scheduler.cancel(job_id)
    return JobResponse.model_validate(job.to_dict())
