"""SQLAlchemy models for the task sync engine."""

from .base import Base, TimestampMixin
from .conflict_item import ConflictItem, ConflictStrategy
from .project import Project
from .remote_server import RemoteServer
from .sync_history import SyncHistory, SyncStatus, SyncType
from .sync_state import SyncState, SyncStateStatus
from .task import TaskMirror, TaskPriority, TaskStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "Project",
    "RemoteServer",
    "TaskMirror",
    "TaskStatus",
    "TaskPriority",
    "SyncState",
    "SyncStateStatus",
    "SyncHistory",
    "SyncType",
    "SyncStatus",
    "ConflictItem",
    "ConflictStrategy",
]
