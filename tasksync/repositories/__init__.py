"""Repository layer for data access."""

from .base import BaseRepository
from .conflict import ConflictItemRepository
from .project import ProjectRepository, RemoteServerRepository
from .sync import SyncHistoryRepository, SyncStateRepository
from .task import TaskMirrorRepository

__all__ = [
    "BaseRepository",
    "ProjectRepository",
    "RemoteServerRepository",
    "TaskMirrorRepository",
    "SyncStateRepository",
    "SyncHistoryRepository",
    "ConflictItemRepository",
]
