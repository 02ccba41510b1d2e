"""
API endpoints for task file merge operations.

REST API structure:
- POST   /sync/merge              - Merge remote tasks into the local tasks file
- POST   /sync/rollback           - Restore the tasks file from a backup
- GET    /sync/status             - Current sync status of a project
- GET    /sync/history            - Sync history of a project
- GET    /sync/backups            - Backups of a project's tasks file
"""

from fastapi import APIRouter, Depends, Query

from ..integrations.taskmaster.path_resolver import get_config
from ..services import MergePolicy, MergeRequest, SyncCoordinator
from .dependencies import get_coordinator, get_user_id
from .schemas import (
    BackupResponse,
    ErrorResponse,
    MergeRequestBody,
    MergeResponse,
    RollbackRequest,
    RollbackResponse,
    SyncHistoryResponse,
    SyncStateResponse,
    SyncStatusResponse,
)

router = APIRouter(prefix="/sync", tags=["sync"])


# ============================================================================
# MERGE
# ============================================================================


@router.post(
    "/merge",
    response_model=MergeResponse,
    summary="Merge remote tasks",
    description="""
    Merge a remote task collection into the project's local tasks.json.

    The remote side is the inline `remoteTasks` payload, the cached snapshot of the
    last import (`useCachedRemote`), or the project's SSH server.
    With `dryRun` nothing is written and no history is recorded.
    """,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed source or request"},
        404: {"model": ErrorResponse, "description": "Project or tasks file not found"},
        409: {"model": ErrorResponse, "description": "Already running or strict conflict"},
    },
)
async def merge_tasks(
    data: MergeRequestBody,
    user_id: str = Depends(get_user_id),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> MergeResponse:
    """Run one merge."""
    options = data.options
    policy = MergePolicy(
        dry_run=options.dry_run,
        prune_missing=options.prune_missing,
        conflict_policy=options.conflict_policy or get_config().default_conflict_policy,
        allow_additions=options.allow_additions,
        repair_dependencies=options.repair_dependencies,
        preserve_in_progress=options.preserve_in_progress,
        merge_subtasks=options.merge_subtasks,
    )
    outcome = await coordinator.merge(
        user_id,
        MergeRequest(
            project_id=data.project_id,
            remote_tasks=data.remote_tasks,
            use_cached_remote=data.use_cached_remote,
            policy=policy,
        ),
    )
    return MergeResponse(
        **outcome.result.to_dict(),
        dry_run=outcome.dry_run,
        source=outcome.source.value,
        message=outcome.message,
        backup_path=outcome.backup_path,
        sync_history_id=outcome.sync_history_id,
    )


# ============================================================================
# ROLLBACK
# ============================================================================


@router.post(
    "/rollback",
    response_model=RollbackResponse,
    summary="Rollback a merge",
    description="Restore the project's tasks file byte-for-byte from one of its backups.",
    responses={
        400: {"model": ErrorResponse, "description": "Path is not a backup of this project"},
        404: {"model": ErrorResponse, "description": "Backup not found"},
    },
)
async def rollback_merge(
    data: RollbackRequest,
    user_id: str = Depends(get_user_id),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> RollbackResponse:
    outcome = await coordinator.rollback(data.project_id, user_id, data.backup_path)
    return RollbackResponse(
        message=outcome.message,
        backup_path=outcome.backup_path,
        sync_history_id=outcome.sync_history_id,
    )


# ============================================================================
# QUERIES
# ============================================================================


@router.get(
    "/status",
    response_model=SyncStatusResponse,
    summary="Get sync status",
    description="Current state, last history entry and unresolved conflicts of a project.",
)
async def get_sync_status(
    project_id: int = Query(..., alias="projectId"),
    user_id: str = Depends(get_user_id),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> SyncStatusResponse:
    info = await coordinator.get_status(project_id, user_id)
    return SyncStatusResponse(
        project_id=info.project_id,
        is_syncing=info.is_syncing,
        state=SyncStateResponse.model_validate(info.state) if info.state else None,
        last_sync=SyncHistoryResponse.model_validate(info.last_sync) if info.last_sync else None,
        unresolved_conflicts=info.unresolved_conflicts,
    )


@router.get(
    "/history",
    response_model=list[SyncHistoryResponse],
    summary="Get sync history",
    description="Sync operations of a project, newest first.",
)
async def get_sync_history(
    project_id: int = Query(..., alias="projectId"),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> list[SyncHistoryResponse]:
    history = await coordinator.get_history(project_id, user_id, limit=limit)
    return [SyncHistoryResponse.model_validate(entry) for entry in history]


@router.get(
    "/backups",
    response_model=list[BackupResponse],
    summary="List backups",
    description="Backups next to the project's tasks file, newest first.",
)
async def list_backups(
    project_id: int = Query(..., alias="projectId"),
    user_id: str = Depends(get_user_id),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> list[BackupResponse]:
    backups = await coordinator.list_backups(project_id, user_id)
    return [
        BackupResponse(path=b.path, created_at=b.created_at, size_bytes=b.size_bytes)
        for b in backups
    ]
