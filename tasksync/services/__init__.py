"""Service layer with business logic."""

from .backup import BackupInfo, BackupManager
from .broadcaster import Event, EventBroadcaster
from .conflicts import ConflictStore
from .locks import SyncLockRegistry
from .merger import ConflictPolicy, MergeBaseline, MergePolicy, MergeResult, merge
from .project import ProjectService
from .scheduler import JobPriority, JobScheduler, make_scan_handler, make_sync_handler
from .sync import ImportResult, MergeOutcome, MergeRequest, SyncCoordinator, SyncStatusInfo

__all__ = [
    "merge",
    "MergePolicy",
    "MergeBaseline",
    "MergeResult",
    "ConflictPolicy",
    "BackupManager",
    "BackupInfo",
    "SyncLockRegistry",
    "Event",
    "EventBroadcaster",
    "ConflictStore",
    "ProjectService",
    "SyncCoordinator",
    "MergeRequest",
    "MergeOutcome",
    "ImportResult",
    "SyncStatusInfo",
    "JobScheduler",
    "JobPriority",
    "make_sync_handler",
    "make_scan_handler",
]
