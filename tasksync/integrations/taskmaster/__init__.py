"""Task Master integration: tasks.json codec, path resolution, SSH and source reading."""

from .path_resolver import ConfiguredPathResolver, PathResolver, SyncConfig, get_config
from .project_scanner import ProjectScanner, ScannedProject
from .records import DEFAULT_TAG, Subtask, TaskCollection, TaskRecord
from .source_reader import SourceKind, SourceReader
from .ssh_client import ConnectionCheck, SSHCredentials, SSHTaskClient

__all__ = [
    "DEFAULT_TAG",
    "TaskRecord",
    "Subtask",
    "TaskCollection",
    "SyncConfig",
    "PathResolver",
    "ConfiguredPathResolver",
    "get_config",
    "ProjectScanner",
    "ScannedProject",
    "SSHCredentials",
    "ConnectionCheck",
    "SSHTaskClient",
    "SourceKind",
    "SourceReader",
]
