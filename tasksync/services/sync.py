"""Sync coordinator: merge, rollback and mirror import for task collections.

Every non-dry-run operation follows the same state machine per (project, user):

    IDLE -> RUNNING -> COMPLETED | FAILED

A RUNNING history row is committed before any I/O, so an operation that dies
half-way still leaves an audit trail. The coordinator commits explicitly at
each step because the request session rolls back on error.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import (
    AccessDeniedError,
    AuthError,
    NotFoundError,
    ReadError,
    SyncError,
    ValidationError,
    WriteError,
    as_sync_error,
)
from ..core.logging import get_logger, sync_id_var
from ..integrations.taskmaster.path_resolver import PathResolver
from ..integrations.taskmaster.records import TaskCollection, TaskRecord
from ..integrations.taskmaster.source_reader import SourceKind, SourceReader
from ..integrations.taskmaster.ssh_client import SSHTaskClient
from ..integrations.taskmaster.tasks_file import dumps, normalize
from ..models import Project, SyncHistory, SyncState, SyncStateStatus, SyncType, TaskMirror
from ..models.base import utc_now
from ..repositories import (
    ConflictItemRepository,
    ProjectRepository,
    RemoteServerRepository,
    SyncHistoryRepository,
    SyncStateRepository,
    TaskMirrorRepository,
)
from .backup import BackupInfo, BackupManager
from .broadcaster import EventBroadcaster
from .conflicts import mirror_fields
from .locks import SyncLockRegistry
from .merger import MergeBaseline, MergePolicy, MergeResult, merge

logger = get_logger(__name__)


@dataclass
class MergeRequest:
    """Input of one merge."""

    project_id: int
    remote_tasks: Any = None
    use_cached_remote: bool = False
    policy: MergePolicy = field(default_factory=MergePolicy)

    @property
    def remote_kind(self) -> SourceKind:
        if self.remote_tasks is not None:
            return SourceKind.INLINE
        if self.use_cached_remote:
            return SourceKind.CACHED
        return SourceKind.SSH


@dataclass
class MergeOutcome:
    """Result of a merge operation."""

    result: MergeResult
    dry_run: bool
    source: SourceKind
    message: str
    backup_path: str | None = None
    sync_history_id: int | None = None


@dataclass
class RollbackOutcome:
    """Result of a rollback operation."""

    backup_path: str
    sync_history_id: int
    message: str


@dataclass
class ImportResult:
    """Result of a mirror import (sync trigger)."""

    sync_history_id: int
    source: SourceKind
    tasks_imported: int = 0
    tasks_updated: int = 0
    tasks_skipped: int = 0
    tasks_removed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class SyncStatusInfo:
    """Current sync status information."""

    project_id: int
    is_syncing: bool
    state: SyncState | None
    last_sync: SyncHistory | None
    unresolved_conflicts: int


class SyncCoordinator:
    """Service for reconciling a project's task sources."""

    def __init__(
        self,
        db: AsyncSession,
        broadcaster: EventBroadcaster | None = None,
        locks: SyncLockRegistry | None = None,
        resolver: PathResolver | None = None,
        ssh_client: SSHTaskClient | None = None,
        backups: BackupManager | None = None,
    ):
        """Initialize sync coordinator.

        Args:
            db: Async database session
            broadcaster: Event registry for live clients
            locks: Shared per-target lock registry (one per process)
            resolver: Project root resolver (YAML config by default)
            ssh_client: SSH transport (fakes in tests)
            backups: Backup manager
        """
        self.db = db
        self.broadcaster = broadcaster or EventBroadcaster()
        self.locks = locks or SyncLockRegistry()
        self.backups = backups or BackupManager()
        self.reader = SourceReader(db, resolver=resolver, ssh_client=ssh_client)

        # Repositories
        self.project_repo = ProjectRepository(db)
        self.server_repo = RemoteServerRepository(db)
        self.state_repo = SyncStateRepository(db)
        self.history_repo = SyncHistoryRepository(db)
        self.task_repo = TaskMirrorRepository(db)
        self.conflict_repo = ConflictItemRepository(db)

    # =========================================================================
    # ACCESS
    # =========================================================================

    async def get_project(self, project_id: int, user_id: str) -> Project:
        """Load a project the user may sync.

        Raises:
            NotFoundError: no such project
            AccessDeniedError: project belongs to another user
        """
        project = await self.project_repo.get_by_id(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        if project.owner_id != user_id:
            raise AccessDeniedError(f"Access to project {project_id} denied")
        return project

    async def _baseline(self, project_id: int, user_id: str) -> MergeBaseline | None:
        """Last merged snapshot and the remote snapshot it was merged against."""
        state = await self.state_repo.get_for(project_id, user_id)
        if state is None or not state.sync_data:
            return None
        merged = state.sync_data.get("merged")
        base_remote = state.sync_data.get("baseRemote")
        if merged is None or base_remote is None:
            return None
        return MergeBaseline(
            local=normalize(merged, source="baseline"),
            remote=normalize(base_remote, source="baseline"),
        )

    # =========================================================================
    # MERGE
    # =========================================================================

    async def merge(self, user_id: str, request: MergeRequest) -> MergeOutcome:
        """Merge the remote (or cached / inline) collection into the local tasks file.

        Raises:
            SyncError subclasses; unknown failures are wrapped in a plain SyncError
        """
        project = await self.get_project(request.project_id, user_id)
        target = self.reader.local_tasks_path(project)
        policy = request.policy
        kind = request.remote_kind

        if policy.dry_run:
            try:
                result = await self._compute(project, user_id, request)
            except (SyncError, asyncio.CancelledError):
                raise
            except Exception as e:
                logger.exception("Dry-run merge failed", extra={"project_id": project.id})
                raise as_sync_error(e) from e
            return MergeOutcome(
                result=result,
                dry_run=True,
                source=kind,
                message=f"Dry run: {result.summary()}",
            )

        async with self.locks.hold(project.id, str(target)):
            return await self._merge_locked(project, user_id, request, target)

    async def _compute(
        self, project: Project, user_id: str, request: MergeRequest
    ) -> MergeResult:
        local = await self.reader.read(project, SourceKind.LOCAL, user_id)
        remote = await self.reader.read(project, request.remote_kind, user_id, request.remote_tasks)
        baseline = await self._baseline(project.id, user_id)
        return merge(local, remote, request.policy, baseline)

    async def _merge_locked(
        self, project: Project, user_id: str, request: MergeRequest, target: Path
    ) -> MergeOutcome:
        project_id = project.id
        kind = request.remote_kind

        history = await self.history_repo.start(
            SyncType.MERGE,
            project_id=project_id,
            user_id=user_id,
            sync_data={
                "source": kind.value,
                "target": str(target),
                "policy": request.policy.conflict_policy.value,
            },
        )
        history_id = history.id
        history_data = dict(history.sync_data or {})
        await self.state_repo.mark_running(project_id, user_id, kind.value)
        await self.db.commit()

        token = sync_id_var.set(str(history_id))
        backup_path: Path | None = None
        write: asyncio.Task | None = None
        try:
            logger.info(
                "Merge started",
                extra={"project_id": project_id, "source": kind.value, "target": str(target)},
            )
            self.broadcaster.broadcast_sync(project_id, "started", {"syncHistoryId": history_id})

            local = await self.reader.read(project, SourceKind.LOCAL, user_id)
            remote = await self.reader.read(project, kind, user_id, request.remote_tasks)
            if remote.is_empty():
                raise ValidationError(
                    "Remote collection is empty; refusing to merge",
                    details=[{"field": "remoteTasks", "message": "no tasks in remote source"}],
                )
            baseline = await self._baseline(project_id, user_id)
            result = merge(local, remote, request.policy, baseline)

            backup_path = await self.backups.snapshot(target)
            # The write runs in a thread that cancellation cannot stop; shielding
            # keeps a handle so the failure path can wait for it before restoring.
            write = asyncio.create_task(
                self.backups.write_atomic(target, dumps(result.tasks).encode("utf-8"))
            )
            await asyncio.shield(write)

            now = utc_now()
            summary = result.to_dict(include_tasks=False)
            await self.state_repo.upsert(
                project_id,
                user_id,
                status=SyncStateStatus.COMPLETED,
                source_kind=kind.value,
                last_sync_at=now,
                error_message=None,
                sync_data={
                    "tasks": remote.to_dict(),
                    "baseRemote": remote.to_dict(),
                    "merged": result.tasks.to_dict(),
                    "mergeResult": summary,
                    "backupPath": str(backup_path),
                    "mergedAt": now.isoformat(),
                },
            )
            await self.history_repo.complete(
                history_id,
                tasks_added=result.added,
                tasks_updated=result.updated,
                tasks_removed=result.removed,
                sync_data={
                    **history_data,
                    "backupPath": str(backup_path),
                    "unchanged": result.unchanged,
                    "conflicts": len(result.conflicts),
                },
            )
            await self.project_repo.update(project_id, last_sync_at=now)
            await self.db.commit()

        except (Exception, asyncio.CancelledError) as exc:
            error = as_sync_error(exc)
            if write is not None and not write.done():
                await asyncio.wait({write})
            if backup_path is not None:
                error = await self._restore_after_failure(backup_path, target, error)
            await self._record_failure(project_id, user_id, history_id, error, SyncType.MERGE)
            self.broadcaster.broadcast_merge(project_id, "failed", error.to_dict())
            if isinstance(exc, asyncio.CancelledError) or error is exc:
                raise
            if not isinstance(exc, SyncError):
                logger.exception("Unexpected merge failure", extra={"project_id": project_id})
            raise error from exc
        finally:
            sync_id_var.reset(token)

        message = result.summary()
        logger.info(
            "Merge completed",
            extra={"project_id": project_id, **result.counts(), "conflicts": len(result.conflicts)},
        )
        self.broadcaster.broadcast_merge(
            project_id,
            "completed",
            {**result.counts(), "conflicts": len(result.conflicts), "backupPath": str(backup_path)},
        )
        self.broadcaster.broadcast_task_update(
            project_id,
            "changed",
            [task.to_dict() for tasks in result.tasks.tags.values() for task in tasks],
        )
        return MergeOutcome(
            result=result,
            dry_run=False,
            source=kind,
            message=message,
            backup_path=str(backup_path),
            sync_history_id=history_id,
        )

    async def _restore_after_failure(
        self, backup_path: Path, target: Path, error: SyncError
    ) -> SyncError:
        """Put the backup back. A failed restore becomes the reported error."""
        try:
            await self.backups.restore(backup_path, target)
        except SyncError as restore_error:
            logger.critical(
                "Restore after failed merge did not complete",
                extra={"target": str(target), "backup": str(backup_path)},
                exc_info=True,
            )
            return WriteError(
                f"{error.message}; restoring {backup_path.name} also failed: "
                f"{restore_error.message}"
            )
        logger.warning(
            "Target restored from backup after failure",
            extra={"target": str(target), "backup": str(backup_path)},
        )
        return error

    async def _record_failure(
        self,
        project_id: int,
        user_id: str,
        history_id: int,
        error: SyncError,
        sync_type: SyncType,
        finalize_history: bool = True,
    ) -> None:
        """Persist FAILED on the state and, unless a job owns it, on the history row."""
        if not self.db.is_active:
            await self.db.rollback()
        message = f"{error.code}: {error.message}"
        await self.state_repo.mark_failed(project_id, user_id, message)
        if finalize_history:
            await self.history_repo.fail(history_id, message)
        await self.db.commit()
        logger.warning(
            "Sync operation failed",
            extra={
                "project_id": project_id,
                "sync_type": sync_type.value,
                "error_code": error.code,
                "error": error.message,
            },
        )

    # =========================================================================
    # ROLLBACK
    # =========================================================================

    async def rollback(self, project_id: int, user_id: str, backup_path: str) -> RollbackOutcome:
        """Restore the tasks file from a backup.

        Raises:
            ValidationError: path is not a backup of this project's tasks file
            NotFoundError: backup does not exist
        """
        project = await self.get_project(project_id, user_id)
        target = self.reader.local_tasks_path(project)
        backup = self.backups.validate_backup_path(backup_path, target)
        if not await asyncio.to_thread(backup.is_file):
            raise NotFoundError(f"Backup not found: {backup}")

        async with self.locks.hold(project_id, str(target)):
            history = await self.history_repo.start(
                SyncType.ROLLBACK,
                project_id=project_id,
                user_id=user_id,
                sync_data={"backupPath": str(backup), "target": str(target)},
            )
            history_id = history.id
            await self.db.commit()

            token = sync_id_var.set(str(history_id))
            try:
                await self.backups.restore(backup, target)

                state = await self.state_repo.get_for(project_id, user_id)
                sync_data = dict(state.sync_data or {}) if state else {}
                sync_data.pop("merged", None)
                sync_data.pop("baseRemote", None)
                sync_data["rolledBackFrom"] = str(backup)
                await self.state_repo.upsert(
                    project_id,
                    user_id,
                    status=SyncStateStatus.IDLE,
                    error_message=None,
                    sync_data=sync_data,
                )
                await self.history_repo.complete(history_id)
                await self.db.commit()
            except (Exception, asyncio.CancelledError) as exc:
                error = as_sync_error(exc)
                await self._record_failure(project_id, user_id, history_id, error, SyncType.ROLLBACK)
                self.broadcaster.broadcast_error(project_id, error, context="rollback")
                if isinstance(exc, asyncio.CancelledError) or error is exc:
                    raise
                raise error from exc
            finally:
                sync_id_var.reset(token)

        logger.info("Rollback completed", extra={"project_id": project_id, "backup": str(backup)})
        self.broadcaster.broadcast_merge(project_id, "rollback", {"backupPath": str(backup)})
        return RollbackOutcome(
            backup_path=str(backup),
            sync_history_id=history_id,
            message=f"Restored {target.name} from {backup.name}",
        )

    # =========================================================================
    # MIRROR IMPORT
    # =========================================================================

    async def trigger_sync(
        self, project_id: int, user_id: str, history_id: int | None = None
    ) -> ImportResult:
        """Import the project's own source into the task mirror table.

        Reads LOCAL when a local root resolves, otherwise SSH. Tasks with an
        unresolved offline conflict are skipped.

        Args:
            history_id: Existing history row owned by a background job. The job
                finalizes it on failure, so retries can reuse the row.
        """
        project = await self.get_project(project_id, user_id)
        kind = SourceKind.LOCAL if self.reader.resolver.tasks_path(project) else SourceKind.SSH
        server_id = project.server_id

        async with self.locks.hold(project_id, f"mirror:{project_id}"):
            owns_history = history_id is None
            if owns_history:
                history = await self.history_repo.start(
                    SyncType.IMPORT,
                    project_id=project_id,
                    user_id=user_id,
                    sync_data={"source": kind.value},
                )
                history_id = history.id
            else:
                await self.history_repo.mark_running(history_id)
            await self.state_repo.mark_running(project_id, user_id, kind.value)
            await self.db.commit()

            token = sync_id_var.set(str(history_id))
            try:
                self.broadcaster.broadcast_sync(project_id, "started", {"syncHistoryId": history_id})
                collection = await self.reader.read(project, kind, user_id)
                if kind == SourceKind.SSH and server_id is not None:
                    await self.server_repo.mark_reachable(server_id, True)

                result = await self._import(project_id, collection, history_id, kind)

                now = utc_now()
                state = await self.state_repo.get_for(project_id, user_id)
                sync_data = dict(state.sync_data or {}) if state else {}
                if kind == SourceKind.SSH:
                    sync_data["tasks"] = collection.to_dict()
                    sync_data["fetchedAt"] = now.isoformat()
                await self.state_repo.upsert(
                    project_id,
                    user_id,
                    status=SyncStateStatus.COMPLETED,
                    last_sync_at=now,
                    error_message=None,
                    sync_data=sync_data or None,
                )
                await self.history_repo.complete(
                    history_id,
                    tasks_added=result.tasks_imported,
                    tasks_updated=result.tasks_updated,
                    tasks_removed=result.tasks_removed,
                    sync_data={
                        "source": kind.value,
                        "skipped": result.tasks_skipped,
                        "errors": result.errors,
                    },
                )
                await self.project_repo.update(project_id, last_sync_at=now)
                await self.db.commit()
            except (Exception, asyncio.CancelledError) as exc:
                error = as_sync_error(exc)
                await self._record_failure(
                    project_id,
                    user_id,
                    history_id,
                    error,
                    SyncType.IMPORT,
                    finalize_history=owns_history,
                )
                if kind == SourceKind.SSH and server_id is not None and isinstance(
                    error, (AuthError, ReadError)
                ):
                    await self.server_repo.mark_reachable(server_id, False)
                    await self.db.commit()
                self.broadcaster.broadcast_sync(project_id, "failed", error.to_dict())
                if isinstance(exc, asyncio.CancelledError) or error is exc:
                    raise
                logger.exception("Unexpected import failure", extra={"project_id": project_id})
                raise error from exc
            finally:
                sync_id_var.reset(token)

        logger.info(
            "Mirror import completed",
            extra={
                "project_id": project_id,
                "imported": result.tasks_imported,
                "updated": result.tasks_updated,
                "skipped": result.tasks_skipped,
                "removed": result.tasks_removed,
            },
        )
        self.broadcaster.broadcast_sync(
            project_id,
            "completed",
            {
                "tasksImported": result.tasks_imported,
                "tasksUpdated": result.tasks_updated,
                "tasksSkipped": result.tasks_skipped,
            },
        )
        return result

    async def _import(
        self, project_id: int, collection: TaskCollection, history_id: int, kind: SourceKind
    ) -> ImportResult:
        result = ImportResult(sync_history_id=history_id, source=kind)

        for tag, tasks in collection.tags.items():
            blocked = await self.conflict_repo.unresolved_entity_ids(project_id, tag)
            existing = {row.task_id: row for row in await self.task_repo.get_by_project(project_id, tag)}
            keep: set[str] = set(blocked)

            for record in tasks:
                keep.add(record.key)
                if record.key in blocked:
                    result.tasks_skipped += 1
                    continue
                if not record.title.strip():
                    result.errors.append(f"{tag}#{record.key}: task has no title")
                    continue
                await self._upsert_mirror(project_id, tag, record, existing.get(record.key), result)

            result.tasks_removed += await self.task_repo.delete_missing(project_id, tag, keep)

        # Tags that disappeared from the source
        stale_tags = {row.tag for row in await self.task_repo.get_by_project(project_id)} - set(
            collection.tags
        )
        for tag in stale_tags:
            blocked = await self.conflict_repo.unresolved_entity_ids(project_id, tag)
            result.tasks_removed += await self.task_repo.delete_missing(project_id, tag, blocked)

        return result

    async def _upsert_mirror(
        self,
        project_id: int,
        tag: str,
        record: TaskRecord,
        row: TaskMirror | None,
        result: ImportResult,
    ) -> None:
        fields = mirror_fields(record)
        if row is None:
            await self.task_repo.create(
                TaskMirror(project_id=project_id, tag=tag, task_id=record.key, **fields)
            )
            result.tasks_imported += 1
        elif row.data == fields["data"]:
            result.tasks_skipped += 1
        else:
            await self.task_repo.update(row.id, **fields)
            result.tasks_updated += 1

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_status(self, project_id: int, user_id: str) -> SyncStatusInfo:
        """Get current sync status of a project for a user."""
        project = await self.get_project(project_id, user_id)
        state = await self.state_repo.get_for(project_id, user_id)
        recent = await self.history_repo.get_recent(project_id, limit=1)
        unresolved = await self.conflict_repo.get_unresolved(project_id)

        path = self.reader.resolver.tasks_path(project)
        is_syncing = self.locks.is_locked(project_id, f"mirror:{project_id}") or (
            path is not None and self.locks.is_locked(project_id, str(path))
        )
        return SyncStatusInfo(
            project_id=project_id,
            is_syncing=is_syncing,
            state=state,
            last_sync=recent[0] if recent else None,
            unresolved_conflicts=len(unresolved),
        )

    async def get_history(self, project_id: int, user_id: str, limit: int = 10) -> list[SyncHistory]:
        """Get sync history of a project, newest first."""
        await self.get_project(project_id, user_id)
        return await self.history_repo.get_recent(project_id, limit=limit)

    async def list_backups(self, project_id: int, user_id: str) -> list[BackupInfo]:
        """Backups of the project's local tasks file, newest first."""
        project = await self.get_project(project_id, user_id)
        return await self.backups.list_backups(self.reader.local_tasks_path(project))
