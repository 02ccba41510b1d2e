"""
Pydantic схемы для API.

DTOs (Data Transfer Objects) - объекты для передачи данных через HTTP.
Поля на проводе в camelCase (как в tasks.json), в Python - snake_case:
    MergeOptions(dry_run=True)  ⇄  {"dryRun": true}
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import ConflictStrategy, SyncStateStatus, SyncStatus, SyncType, TaskPriority, TaskStatus


class CamelModel(BaseModel):
    """Базовая схема: camelCase на проводе, snake_case в коде."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelORMModel(CamelModel):
    """Схема ответа, собираемая из ORM-объекта."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================================
# ERROR SCHEMAS
# ============================================================================


class ErrorDetail(BaseModel):
    """
    Детали ошибки для конкретного поля.

    Пример:
    {
        "field": "options.conflictPolicy",
        "message": "Unknown conflict policy"
    }
    """

    field: str = Field(..., description="Название поля с ошибкой")
    message: str = Field(..., description="Описание ошибки")


class ErrorBody(BaseModel):
    """
    Тело ошибки с кодом и деталями.

    Примеры кодов:
    - VALIDATION_ERROR: ошибка валидации полей
    - NOT_FOUND: проект, бэкап или файл задач не найден
    - READ_ERROR / TIMEOUT: источник не читается
    - ALREADY_RUNNING: синхронизация уже идёт
    - CONFLICT: конфликт при политике strict
    """

    code: str = Field(..., description="Код ошибки (VALIDATION_ERROR, NOT_FOUND, etc.)")
    message: str = Field(..., description="Человекочитаемое сообщение")
    details: list[ErrorDetail] | None = Field(
        default=None, description="Список ошибок по полям (для валидации)"
    )


class ErrorResponse(BaseModel):
    """
    Единый формат ответа для всех ошибок API.

    Пример:
    {
        "error": {
            "code": "ALREADY_RUNNING",
            "message": "A sync is already running for project 1 (...)",
            "details": null
        }
    }
    """

    error: ErrorBody


# ============================================================================
# PROJECT & SERVER SCHEMAS
# ============================================================================


class ProjectCreate(CamelModel):
    """
    Схема для создания проекта (POST /projects).

    Пример запроса:
    {
        "name": "api-gateway",
        "tag": "master",
        "localPath": "/srv/projects/api-gateway"
    }
    """

    name: str = Field(..., min_length=1, max_length=200, description="Название проекта")
    description: str | None = Field(None, description="Описание проекта")
    tag: str | None = Field(None, max_length=100, description="Тег Task Master (master)")
    local_path: str | None = Field(None, max_length=1000, description="Корень проекта на диске")
    server_id: int | None = Field(None, description="SSH-сервер с копией проекта")


class ProjectResponse(CamelORMModel):
    id: int
    name: str
    description: str | None
    tag: str
    owner_id: str
    local_path: str | None
    server_id: int | None
    last_sync_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ServerCreate(CamelModel):
    """
    Схема для регистрации SSH-сервера (POST /servers).

    Ровно один из privateKey / password.
    """

    name: str = Field(..., min_length=1, max_length=200)
    host: str = Field(..., min_length=1, max_length=255)
    port: int = Field(22, ge=1, le=65535)
    username: str = Field(..., min_length=1, max_length=100)
    private_key: str | None = None
    password: str | None = None
    project_path: str = Field(..., min_length=1, max_length=1000)


class ServerResponse(CamelORMModel):
    """Сервер без секретов: ключ и пароль наружу не отдаются."""

    id: int
    name: str
    host: str
    port: int
    username: str
    project_path: str
    is_reachable: bool
    last_ping_at: datetime | None


class ServerTestResponse(CamelModel):
    """Результат проверки подключения (POST /servers/{id}/test)."""

    reachable: bool
    hostname: str | None = None
    tasks_file_exists: bool
    tasks_path: str
    error: str | None = None
    checked_at: datetime | None = None


class TaskMirrorResponse(CamelORMModel):
    id: int
    project_id: int
    tag: str
    task_id: str
    title: str
    description: str
    status: TaskStatus
    priority: TaskPriority
    complexity: int | None
    data: dict[str, Any]


# ============================================================================
# SYNC SCHEMAS
# ============================================================================


class MergeOptions(CamelModel):
    dry_run: bool = False
    prune_missing: bool = False
    conflict_policy: str | None = Field(
        None, description="newer-wins | local-wins | remote-wins | merge | strict"
    )
    allow_additions: bool = True
    repair_dependencies: bool = False
    preserve_in_progress: bool = False
    merge_subtasks: bool = False


class MergeRequestBody(CamelModel):
    """
    Схема запроса слияния (POST /sync/merge).

    Источник remote:
    - remoteTasks передан → он и используется (inline)
    - useCachedRemote → снимок из последнего импорта
    - иначе → чтение по SSH с сервера проекта

    Пример запроса:
    {
        "projectId": 1,
        "remoteTasks": {"master": {"tasks": [...]}},
        "options": {"dryRun": true, "conflictPolicy": "merge"}
    }
    """

    project_id: int
    remote_tasks: Any = None
    options: MergeOptions = Field(default_factory=MergeOptions)
    use_cached_remote: bool = False


class ConflictDescriptorResponse(CamelModel):
    task_id: str
    tag: str
    local_version: dict[str, Any]
    remote_version: dict[str, Any]
    fields: list[str]
    reason: str
    resolution: str


class MergeResponse(CamelModel):
    success: bool = True
    dry_run: bool
    source: str
    message: str
    added: int
    updated: int
    removed: int
    unchanged: int
    conflicts: list[ConflictDescriptorResponse]
    per_tag: dict[str, dict[str, int]]
    dangling_dependencies: dict[str, dict[str, list[str]]]
    backup_path: str | None = None
    sync_history_id: int | None = None
    tasks: dict[str, Any] | None = None


class RollbackRequest(CamelModel):
    project_id: int
    backup_path: str = Field(..., min_length=1)


class RollbackResponse(CamelModel):
    success: bool = True
    message: str
    backup_path: str
    sync_history_id: int


class SyncHistoryResponse(CamelORMModel):
    id: int
    project_id: int | None
    user_id: str | None
    sync_type: SyncType
    status: SyncStatus
    tasks_added: int
    tasks_updated: int
    tasks_removed: int
    error_message: str | None
    started_at: datetime
    completed_at: datetime | None


class SyncStateResponse(CamelORMModel):
    status: SyncStateStatus
    source_kind: str | None
    last_sync_at: datetime | None
    error_message: str | None


class SyncStatusResponse(CamelModel):
    project_id: int
    is_syncing: bool
    state: SyncStateResponse | None
    last_sync: SyncHistoryResponse | None
    unresolved_conflicts: int


class BackupResponse(CamelModel):
    path: str
    created_at: datetime
    size_bytes: int


class ImportResponse(CamelModel):
    """Ответ POST /projects/{id}/sync."""

    sync_history_id: int
    source: str
    tasks_imported: int
    tasks_updated: int
    tasks_skipped: int
    tasks_removed: int
    errors: list[str]


# ============================================================================
# CONFLICT SCHEMAS
# ============================================================================


class ConflictCreate(CamelModel):
    """Офлайн-клиент сообщает о расхождении своей версии и версии с сервера."""

    project_id: int | None = None
    tag: str = Field("master", min_length=1, max_length=100)
    entity_type: str = Field("task", min_length=1, max_length=50)
    entity_id: str = Field(..., min_length=1, max_length=100)
    local_data: dict[str, Any]
    remote_data: dict[str, Any]


class ConflictResolveRequest(CamelModel):
    strategy: ConflictStrategy
    merged_data: dict[str, Any] | None = None


class ConflictResponse(CamelORMModel):
    id: int
    project_id: int | None
    tag: str
    entity_type: str
    entity_id: str
    local_data: dict[str, Any]
    remote_data: dict[str, Any]
    conflicted_at: datetime
    resolved: bool
    resolution: ConflictStrategy | None
    resolved_data: dict[str, Any] | None
    resolved_at: datetime | None


# ============================================================================
# JOB SCHEMAS
# ============================================================================


class SyncJobRequest(CamelModel):
    project_id: int


class ScanJobRequest(CamelModel):
    roots: list[str] | None = Field(None, description="Корни для сканирования (по умолчанию из YAML)")


class JobResponse(CamelModel):
    id: str
    queue: str
    state: str
    priority: str
    provider: str | None
    attempts: int
    sync_history_id: int | None
    payload: dict[str, Any]
    error: str | None
    result: dict[str, Any] | None
    created_at: datetime
