"""
API endpoints для проектов и SSH-серверов.

URL структура:
- POST   /projects              - зарегистрировать проект
- GET    /projects              - проекты текущего пользователя
- GET    /projects/{id}         - один проект
- GET    /projects/{id}/tasks   - зеркало задач проекта
- POST   /projects/{id}/sync    - импорт задач проекта в зеркало
- POST   /servers               - зарегистрировать SSH-сервер
- GET    /servers               - список серверов
- POST   /servers/{id}/test     - проверить SSH-подключение и tasks.json
"""

from fastapi import APIRouter, Depends, Query, status

from ..services import ProjectService, SyncCoordinator
from .dependencies import get_coordinator, get_project_service, get_user_id
from .schemas import (
    ErrorResponse,
    ImportResponse,
    ProjectCreate,
    ProjectResponse,
    ServerCreate,
    ServerResponse,
    ServerTestResponse,
    TaskMirrorResponse,
)

router = APIRouter(tags=["projects"])


# ============================================================================
# PROJECTS
# ============================================================================


@router.post(
    "/projects",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Создать проект",
    description="""
    Зарегистрировать проект Task Master.

    Бизнес-правила:
    - Название обязательно
    - Пара (localPath, tag) уникальна
    - serverId, если указан, должен существовать
    """,
    responses={
        400: {"model": ErrorResponse, "description": "Ошибка валидации"},
        404: {"model": ErrorResponse, "description": "Сервер не найден"},
    },
)
async def create_project(
    data: ProjectCreate,
    user_id: str = Depends(get_user_id),
    service: ProjectService = Depends(get_project_service),
) -> ProjectResponse:
    project = await service.create_project(
        owner_id=user_id,
        name=data.name,
        description=data.description,
        tag=data.tag,
        local_path=data.local_path,
        server_id=data.server_id,
    )
    return ProjectResponse.model_validate(project)


@router.get(
    "/projects",
    response_model=list[ProjectResponse],
    summary="Список проектов",
    description="Проекты, принадлежащие пользователю из X-User-Id.",
)
async def list_projects(
    user_id: str = Depends(get_user_id),
    service: ProjectService = Depends(get_project_service),
) -> list[ProjectResponse]:
    projects = await service.list_projects(user_id)
    return [ProjectResponse.model_validate(p) for p in projects]


@router.get(
    "/projects/{project_id}",
    response_model=ProjectResponse,
    summary="Получить проект",
    responses={
        403: {"model": ErrorResponse, "description": "Чужой проект"},
        404: {"model": ErrorResponse, "description": "Проект не найден"},
    },
)
async def get_project(
    project_id: int,
    user_id: str = Depends(get_user_id),
    service: ProjectService = Depends(get_project_service),
) -> ProjectResponse:
    project = await service.get_project(project_id, user_id)
    return ProjectResponse.model_validate(project)


@router.get(
    "/projects/{project_id}/tasks",
    response_model=list[TaskMirrorResponse],
    summary="Задачи проекта",
    description="Зеркало задач, заполненное последним импортом (POST /projects/{id}/sync).",
)
async def get_project_tasks(
    project_id: int,
    tag: str | None = Query(None, description="Фильтр по тегу"),
    user_id: str = Depends(get_user_id),
    service: ProjectService = Depends(get_project_service),
) -> list[TaskMirrorResponse]:
    tasks = await service.get_tasks(project_id, user_id, tag)
    return [TaskMirrorResponse.model_validate(t) for t in tasks]


@router.post(
    "/projects/{project_id}/sync",
    response_model=ImportResponse,
    summary="Импортировать задачи проекта",
    description="""
    Прочитать tasks.json проекта (локально или по SSH) и обновить зеркало задач.

    Задачи с нерешённым офлайн-конфликтом пропускаются.
    """,
    responses={
        404: {"model": ErrorResponse, "description": "Проект или файл задач не найден"},
        409: {"model": ErrorResponse, "description": "Импорт уже идёт"},
    },
)
async def sync_project(
    project_id: int,
    user_id: str = Depends(get_user_id),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> ImportResponse:
    result = await coordinator.trigger_sync(project_id, user_id)
    return ImportResponse(
        sync_history_id=result.sync_history_id,
        source=result.source.value,
        tasks_imported=result.tasks_imported,
        tasks_updated=result.tasks_updated,
        tasks_skipped=result.tasks_skipped,
        tasks_removed=result.tasks_removed,
        errors=result.errors,
    )


# ============================================================================
# SERVERS
# ============================================================================


@router.post(
    "/servers",
    response_model=ServerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Зарегистрировать SSH-сервер",
    description="Нужен ровно один способ авторизации: privateKey или password.",
    responses={400: {"model": ErrorResponse, "description": "Ошибка валидации"}},
)
async def create_server(
    data: ServerCreate,
    service: ProjectService = Depends(get_project_service),
) -> ServerResponse:
    server = await service.create_server(
        name=data.name,
        host=data.host,
        username=data.username,
        project_path=data.project_path,
        port=data.port,
        private_key=data.private_key,
        password=data.password,
    )
    return ServerResponse.model_validate(server)


@router.get("/servers", response_model=list[ServerResponse], summary="Список серверов")
async def list_servers(
    service: ProjectService = Depends(get_project_service),
) -> list[ServerResponse]:
    servers = await service.list_servers()
    return [ServerResponse.model_validate(s) for s in servers]


@router.post(
    "/servers/{server_id}/test",
    response_model=ServerTestResponse,
    summary="Проверить подключение к серверу",
    description=(
        "Подключается по SSH, выполняет `hostname` и проверяет наличие "
        ".taskmaster/tasks/tasks.json. Обновляет isReachable и lastPingAt. "
        "Ошибка подключения возвращается в поле error со статусом 200."
    ),
    responses={404: {"model": ErrorResponse, "description": "Сервер не найден"}},
)
async def check_server(
    server_id: int,
    service: ProjectService = Depends(get_project_service),
) -> ServerTestResponse:
    result = await service.check_server(server_id)
    return ServerTestResponse(**result)
