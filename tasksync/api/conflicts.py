"""
API endpoints для офлайн-конфликтов.

URL структура:
- GET    /conflicts                 - нерешённые конфликты
- POST   /conflicts                 - сообщить о конфликте
- GET    /conflicts/{id}            - один конфликт
- POST   /conflicts/{id}/resolve    - разрешить конфликт (local / remote / merged)
"""

from fastapi import APIRouter, Depends, Query, status

from ..services import ConflictStore
from .dependencies import get_conflict_store, get_user_id
from .schemas import ConflictCreate, ConflictResolveRequest, ConflictResponse, ErrorResponse

router = APIRouter(prefix="/conflicts", tags=["conflicts"], dependencies=[Depends(get_user_id)])


@router.get(
    "",
    response_model=list[ConflictResponse],
    summary="Нерешённые конфликты",
)
async def list_conflicts(
    project_id: int | None = Query(None, alias="projectId"),
    store: ConflictStore = Depends(get_conflict_store),
) -> list[ConflictResponse]:
    items = await store.list_unresolved(project_id)
    return [ConflictResponse.model_validate(item) for item in items]


@router.post(
    "",
    response_model=ConflictResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Сообщить о конфликте",
    description="""
    Офлайн-клиент сообщает, что его версия сущности и версия с сервера разошлись.

    Для одной сущности (проект, тег, тип, id) хранится не больше одного нерешённого конфликта:
    повторный вызов обновляет remoteData существующего.
    """,
)
async def create_conflict(
    data: ConflictCreate,
    store: ConflictStore = Depends(get_conflict_store),
) -> ConflictResponse:
    item = await store.record_conflict(
        data.entity_type,
        data.entity_id,
        data.local_data,
        data.remote_data,
        project_id=data.project_id,
        tag=data.tag,
    )
    return ConflictResponse.model_validate(item)


@router.get(
    "/{conflict_id}",
    response_model=ConflictResponse,
    summary="Получить конфликт",
    responses={404: {"model": ErrorResponse, "description": "Конфликт не найден"}},
)
async def get_conflict(
    conflict_id: int,
    store: ConflictStore = Depends(get_conflict_store),
) -> ConflictResponse:
    return ConflictResponse.model_validate(await store.get(conflict_id))


@router.post(
    "/{conflict_id}/resolve",
    response_model=ConflictResponse,
    summary="Разрешить конфликт",
    description="""
    Стратегии:
    - **local** - оставить версию клиента
    - **remote** - принять версию с сервера
    - **merged** - применить переданный mergedData
    """,
    responses={
        400: {"model": ErrorResponse, "description": "Уже решён или нет mergedData"},
        404: {"model": ErrorResponse, "description": "Конфликт не найден"},
    },
)
async def resolve_conflict(
    conflict_id: int,
    data: ConflictResolveRequest,
    store: ConflictStore = Depends(get_conflict_store),
) -> ConflictResponse:
    item = await store.resolve(conflict_id, data.strategy, data.merged_data)
    return ConflictResponse.model_validate(item)
