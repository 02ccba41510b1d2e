"""Background job scheduler with two named queues.

sync  - mirror import of one project (3 workers, 3 attempts, 2s exponential backoff)
scan  - discovery of Task Master checkouts for one user (1 worker, 2 attempts, 5s backoff)

Jobs are ordered by (priority, submission order): user-triggered jobs run
before scheduled ones, FIFO within the same priority. Each job carries the id
of the SyncHistory row it updates. After the last failed attempt the job and
its history row are FAILED for good; a new job must be submitted explicitly.
"""

import asyncio
import enum
import itertools
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import settings
from ..core.errors import NotFoundError, ValidationError
from ..core.logging import get_logger
from ..integrations.taskmaster.path_resolver import SyncConfig, get_config
from ..integrations.taskmaster.project_scanner import ProjectScanner
from ..models import Project, SyncType
from ..models.base import utc_now
from ..models.sync_history import SyncStatus
from ..repositories import ProjectRepository, SyncHistoryRepository
from .broadcaster import EventBroadcaster
from .locks import SyncLockRegistry
from .sync import SyncCoordinator

logger = get_logger(__name__)

SYNC_QUEUE = "sync"
SCAN_QUEUE = "scan"

# Error recorded on jobs interrupted by stop()
SHUTDOWN_MESSAGE = "Scheduler stopped before the job finished"


class JobPriority(enum.IntEnum):
    """Lower runs first."""

    USER = 0
    SCHEDULED = 10


class JobState(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINAL_STATES = (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


@dataclass
class QueueConfig:
    """Limits of one named queue."""

    name: str
    workers: int
    attempts: int
    backoff: float
    sync_type: SyncType
    keep_completed: int
    keep_failed: int
    completed_ttl: float = 24 * 3600
    failed_ttl: float = 7 * 24 * 3600

    def retry_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        return self.backoff * (2 ** (attempt - 1))


def default_queue_configs() -> dict[str, QueueConfig]:
    return {
        SYNC_QUEUE: QueueConfig(
            name=SYNC_QUEUE,
            workers=settings.SYNC_WORKERS,
            attempts=3,
            backoff=2.0,
            sync_type=SyncType.IMPORT,
            keep_completed=10,
            keep_failed=50,
        ),
        SCAN_QUEUE: QueueConfig(
            name=SCAN_QUEUE,
            workers=settings.SCAN_WORKERS,
            attempts=2,
            backoff=5.0,
            sync_type=SyncType.SCAN,
            keep_completed=5,
            keep_failed=20,
        ),
    }


@dataclass
class Job:
    """One unit of background work."""

    id: str
    queue: str
    payload: dict[str, Any]
    priority: JobPriority = JobPriority.USER
    provider: str | None = None
    sync_history_id: int | None = None
    state: JobState = JobState.QUEUED
    attempts: int = 0
    error: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utc_now)
    finished_at: float | None = None

    @property
    def project_id(self) -> int | None:
        return self.payload.get("project_id")

    @property
    def user_id(self) -> str | None:
        return self.payload.get("user_id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "state": self.state.value,
            "priority": self.priority.name.lower(),
            "provider": self.provider,
            "attempts": self.attempts,
            "syncHistoryId": self.sync_history_id,
            "payload": self.payload,
            "error": self.error,
            "result": self.result,
            "createdAt": self.created_at.isoformat(),
        }


JobHandler = Callable[[Job], Awaitable[dict[str, Any] | None]]


class JobScheduler:
    """Priority job queues backed by asyncio workers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        handlers: dict[str, JobHandler] | None = None,
        configs: dict[str, QueueConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            session_factory: Sessions for history bookkeeping
            handlers: Coroutine per queue name, receives the Job
            configs: Queue limits (defaults: sync 3/3/2s, scan 1/2/5s)
            clock: Monotonic clock for pruning (replaced in tests)
        """
        self.session_factory = session_factory
        self.handlers: dict[str, JobHandler] = dict(handlers or {})
        self.configs = configs or default_queue_configs()
        self.clock = clock

        self._jobs: dict[str, Job] = {}
        self._queues: dict[str, asyncio.PriorityQueue] = {}
        self._workers: list[asyncio.Task] = []
        self._running: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._seq = itertools.count()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    def _queue(self, name: str) -> asyncio.PriorityQueue:
        if name not in self._queues:
            self._queues[name] = asyncio.PriorityQueue()
        return self._queues[name]

    async def start(self) -> None:
        if self.is_running:
            return
        for name, config in self.configs.items():
            queue = self._queue(name)
            for index in range(config.workers):
                self._workers.append(
                    asyncio.create_task(self._worker(name, queue), name=f"job-{name}-{index}")
                )
        self._workers.append(asyncio.create_task(self._maintenance(), name="job-maintenance"))
        logger.info(
            "Job scheduler started",
            extra={"queues": {n: c.workers for n, c in self.configs.items()}},
        )

    async def stop(self) -> None:
        """Stop the workers and close every unfinished job.

        Running handlers are cancelled; their jobs and the queued or retrying
        ones end CANCELLED with a FAILED history row, so nothing stays
        PENDING or RUNNING after shutdown.
        """
        tasks = self._workers + list(self._background) + list(self._running.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._background.clear()

        unfinished = [job for job in self._jobs.values() if job.state not in FINAL_STATES]
        for job in unfinished:
            self._mark_stopped(job)
            await self._fail_history(job, SHUTDOWN_MESSAGE)
        logger.info(
            "Job scheduler stopped",
            extra={"jobs": len(self._jobs), "interrupted": len(unfinished)},
        )

    def _mark_stopped(self, job: Job) -> None:
        job.state = JobState.CANCELLED
        job.error = SHUTDOWN_MESSAGE
        job.finished_at = self.clock()

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def submit(
        self,
        queue: str,
        payload: dict[str, Any],
        priority: JobPriority = JobPriority.USER,
        provider: str | None = None,
    ) -> Job:
        """Create the history row (PENDING) and enqueue the job."""
        config = self.configs.get(queue)
        if config is None:
            raise ValidationError(f"Unknown job queue: {queue}")

        async with self.session_factory() as db:
            history = await SyncHistoryRepository(db).start(
                config.sync_type,
                project_id=payload.get("project_id"),
                user_id=payload.get("user_id"),
                sync_data={"queue": queue, "provider": provider},
                status=SyncStatus.PENDING,
            )
            await db.commit()
            history_id = history.id

        job = Job(
            id=str(uuid.uuid4()),
            queue=queue,
            payload=payload,
            priority=priority,
            provider=provider,
            sync_history_id=history_id,
        )
        self._jobs[job.id] = job
        self._enqueue(job)
        logger.info(
            "Job submitted",
            extra={"job_id": job.id, "queue": queue, "priority": priority.name, "history_id": history_id},
        )
        return job

    def _enqueue(self, job: Job) -> None:
        self._queue(job.queue).put_nowait((int(job.priority), next(self._seq), job.id))

    def get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def cancel(self, job_id: str) -> Job:
        """Cancel a queued, retrying or running job.

        Raises:
            NotFoundError: unknown job
            ValidationError: job already finished
        """
        job = self.get(job_id)
        if job.state in FINAL_STATES:
            raise ValidationError(f"Job {job_id} is already {job.state.value}")

        previous = job.state
        job.state = JobState.CANCELLED
        job.finished_at = self.clock()
        task = self._running.get(job.id)
        if previous == JobState.RUNNING and task is not None:
            task.cancel()
        else:
            await self._fail_history(job, "Cancelled")
        logger.info("Job cancelled", extra={"job_id": job.id, "previous_state": previous.value})
        return job

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def _worker(self, name: str, queue: asyncio.PriorityQueue) -> None:
        while True:
            _, _, job_id = await queue.get()
            try:
                job = self._jobs.get(job_id)
                if job is None or job.state in FINAL_STATES:
                    continue
                await self._run_job(job)
            finally:
                queue.task_done()

    async def _run_job(self, job: Job) -> None:
        config = self.configs[job.queue]
        handler = self.handlers.get(job.queue)
        job.state = JobState.RUNNING
        job.attempts += 1

        if job.attempts == 1:
            await self._mark_history_running(job)

        if handler is None:
            job.error = f"No handler registered for queue '{job.queue}'"
            await self._finish_failed(job)
            return

        task = asyncio.create_task(handler(job))
        self._running[job.id] = task
        try:
            result = await task
        except asyncio.CancelledError:
            if job.state == JobState.CANCELLED:
                await self._fail_history(job, "Cancelled")
                return
            # The worker itself is being cancelled (scheduler shutdown)
            self._mark_stopped(job)
            await self._fail_history(job, SHUTDOWN_MESSAGE)
            raise
        except Exception as exc:
            job.error = getattr(exc, "message", None) or str(exc) or type(exc).__name__
            if job.attempts < config.attempts:
                delay = config.retry_delay(job.attempts)
                job.state = JobState.RETRYING
                logger.warning(
                    "Job attempt failed, retrying",
                    extra={
                        "job_id": job.id,
                        "queue": job.queue,
                        "attempt": job.attempts,
                        "delay": delay,
                        "error": job.error,
                    },
                )
                self._spawn(self._requeue_later(job, delay))
            else:
                await self._finish_failed(job)
            return
        finally:
            self._running.pop(job.id, None)

        job.state = JobState.COMPLETED
        job.result = result or {}
        job.error = None
        job.finished_at = self.clock()
        await self._complete_history(job)
        logger.info(
            "Job completed",
            extra={"job_id": job.id, "queue": job.queue, "attempts": job.attempts},
        )

    async def _requeue_later(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        if job.state == JobState.RETRYING:
            job.state = JobState.QUEUED
            self._enqueue(job)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _finish_failed(self, job: Job) -> None:
        job.state = JobState.FAILED
        job.finished_at = self.clock()
        await self._fail_history(job, job.error or "Job failed")
        logger.error(
            "Job failed",
            extra={"job_id": job.id, "queue": job.queue, "attempts": job.attempts, "error": job.error},
        )

    # =========================================================================
    # HISTORY
    # =========================================================================

    async def _mark_history_running(self, job: Job) -> None:
        if job.sync_history_id is None:
            return
        async with self.session_factory() as db:
            await SyncHistoryRepository(db).mark_running(job.sync_history_id)
            await db.commit()

    async def _complete_history(self, job: Job) -> None:
        if job.sync_history_id is None:
            return
        result = job.result or {}
        async with self.session_factory() as db:
            await SyncHistoryRepository(db).complete(
                job.sync_history_id,
                tasks_added=int(result.get("tasksImported", result.get("projectsRegistered", 0))),
                tasks_updated=int(result.get("tasksUpdated", 0)),
                tasks_removed=int(result.get("tasksRemoved", 0)),
                sync_data={"queue": job.queue, "attempts": job.attempts, **result},
            )
            await db.commit()

    async def _fail_history(self, job: Job, message: str) -> None:
        if job.sync_history_id is None:
            return
        async with self.session_factory() as db:
            await SyncHistoryRepository(db).fail(job.sync_history_id, message)
            await db.commit()

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    async def _maintenance(self) -> None:
        last_prune = self.clock()
        last_schedule = self.clock()
        while True:
            await asyncio.sleep(min(settings.JOB_PRUNE_INTERVAL, 60.0))
            now = self.clock()
            if now - last_prune >= settings.JOB_PRUNE_INTERVAL:
                last_prune = now
                self.prune(now)
            interval = settings.SYNC_SCHEDULE_INTERVAL
            if interval > 0 and now - last_schedule >= interval:
                last_schedule = now
                try:
                    await self.enqueue_scheduled_syncs()
                except Exception:
                    logger.exception("Scheduled sync enqueue failed")

    def prune(self, now: float | None = None) -> int:
        """Forget old finished jobs, keeping the most recent ones per queue.

        Returns:
            Number of jobs removed
        """
        now = self.clock() if now is None else now
        removed = 0
        for name, config in self.configs.items():
            groups = (
                ((JobState.COMPLETED,), config.completed_ttl, config.keep_completed),
                ((JobState.FAILED, JobState.CANCELLED), config.failed_ttl, config.keep_failed),
            )
            for states, ttl, keep in groups:
                finished = sorted(
                    (j for j in self._jobs.values() if j.queue == name and j.state in states),
                    key=lambda j: j.finished_at or 0.0,
                )
                for job in finished[: max(len(finished) - keep, 0)]:
                    if now - (job.finished_at or 0.0) > ttl:
                        del self._jobs[job.id]
                        removed += 1
        if removed:
            logger.info("Pruned finished jobs", extra={"removed": removed})
        return removed

    async def enqueue_scheduled_syncs(self) -> int:
        """Submit a low-priority sync job for every project not already queued."""
        pending = {
            j.project_id
            for j in self._jobs.values()
            if j.queue == SYNC_QUEUE and j.state not in FINAL_STATES
        }
        async with self.session_factory() as db:
            projects = await ProjectRepository(db).get_all(limit=10_000)
            targets = [(p.id, p.owner_id) for p in projects if p.id not in pending]

        for project_id, owner_id in targets:
            await self.submit(
                SYNC_QUEUE,
                {"project_id": project_id, "user_id": owner_id},
                priority=JobPriority.SCHEDULED,
                provider="schedule",
            )
        return len(targets)

    def list_jobs(self, queue: str | None = None) -> list[Job]:
        jobs = [j for j in self._jobs.values() if queue is None or j.queue == queue]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def stats(self) -> dict[str, Any]:
        result: dict[str, Any] = {"running": self.is_running, "queues": {}}
        for name, config in self.configs.items():
            jobs = [j for j in self._jobs.values() if j.queue == name]
            counts = {state.value: 0 for state in JobState}
            for job in jobs:
                counts[job.state.value] += 1
            result["queues"][name] = {
                "workers": config.workers,
                "attempts": config.attempts,
                "backoff": config.backoff,
                **counts,
            }
        return result


# =============================================================================
# DEFAULT HANDLERS
# =============================================================================


def make_sync_handler(
    session_factory: async_sessionmaker[AsyncSession],
    broadcaster: EventBroadcaster,
    locks: SyncLockRegistry,
) -> JobHandler:
    """Sync job -> SyncCoordinator.trigger_sync on a fresh session."""

    async def handle(job: Job) -> dict[str, Any]:
        async with session_factory() as db:
            coordinator = SyncCoordinator(db, broadcaster=broadcaster, locks=locks)
            result = await coordinator.trigger_sync(
                job.payload["project_id"], job.payload["user_id"], history_id=job.sync_history_id
            )
            await db.commit()
        return {
            "tasksImported": result.tasks_imported,
            "tasksUpdated": result.tasks_updated,
            "tasksSkipped": result.tasks_skipped,
            "tasksRemoved": result.tasks_removed,
            "errors": result.errors,
        }

    return handle


def make_scan_handler(
    session_factory: async_sessionmaker[AsyncSession],
    config: SyncConfig | None = None,
) -> JobHandler:
    """Scan job -> register every found checkout the user does not have yet."""

    async def handle(job: Job) -> dict[str, Any]:
        sync_config = config or get_config()
        roots = job.payload.get("roots") or sync_config.scan_roots
        scanner = ProjectScanner(max_depth=sync_config.scan_max_depth)
        found = await asyncio.to_thread(scanner.scan, roots)

        registered = []
        async with session_factory() as db:
            repo = ProjectRepository(db)
            for item in found:
                existing = await repo.get_by_local_path(item.root, item.tag)
                if existing is not None:
                    continue
                project = await repo.create(
                    Project(
                        name=item.name,
                        tag=item.tag,
                        owner_id=job.payload["user_id"],
                        local_path=item.root,
                    )
                )
                registered.append(project.id)
            await db.commit()

        logger.info(
            "Project scan finished",
            extra={"roots": roots, "found": len(found), "registered": len(registered)},
        )
        return {
            "projectsFound": len(found),
            "projectsRegistered": len(registered),
            "projectIds": registered,
        }

    return handle
