"""Resolution of project roots and tasks file locations.

Root lookup order for a project:
1. The project's own ``local_path``
2. ``project_roots`` mapping in config/sync_config.yaml (by project name or id)
3. ``PROJECT_ROOT`` setting

The tasks file lives at ``<root>/.taskmaster/tasks/tasks.json``. Projects bound to
a non-master tag use ``<root>/.taskmaster-<tag>/`` when that directory exists.
"""

import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import yaml

from ...core.config import settings
from ...core.logging import get_logger
from ...models import Project
from .records import DEFAULT_TAG

logger = get_logger(__name__)

TASKMASTER_DIR = ".taskmaster"
TASKS_RELATIVE = ("tasks", "tasks.json")


@dataclass
class SyncConfig:
    """Configuration for path mappings and project discovery."""

    project_roots: dict[str, str] = field(default_factory=dict)
    scan_roots: list[str] = field(default_factory=list)
    scan_max_depth: int = 3
    default_conflict_policy: str = "newer-wins"


class PathResolver(Protocol):
    """Anything that can tell where a project's tasks file is."""

    def resolve_root(self, project: Project) -> Path | None: ...

    def tasks_path(self, project: Project) -> Path | None: ...


def taskmaster_dir_name(tag: str) -> str:
    """Directory name for a tag: ``.taskmaster`` or ``.taskmaster-<tag>``."""
    if not tag or tag == DEFAULT_TAG:
        return TASKMASTER_DIR
    return f"{TASKMASTER_DIR}-{tag}"


def tasks_file_under(root: str | Path, tag: str = DEFAULT_TAG) -> Path:
    """Tasks file below a root, preferring the tag directory when it exists."""
    root = Path(root)
    tag_dir = root / taskmaster_dir_name(tag)
    if tag_dir != root / TASKMASTER_DIR and tag_dir.is_dir():
        return tag_dir.joinpath(*TASKS_RELATIVE)
    return root.joinpath(TASKMASTER_DIR, *TASKS_RELATIVE)


def remote_tasks_path(project_path: str) -> str:
    """Tasks file path on a remote (POSIX) host."""
    return posixpath.join(project_path, TASKMASTER_DIR, *TASKS_RELATIVE)


class ConfiguredPathResolver:
    """Default resolver: project path, then YAML mapping, then PROJECT_ROOT."""

    def __init__(self, config: SyncConfig | None = None, default_root: str | None = None):
        self.config = config or SyncConfig()
        self.default_root = default_root if default_root is not None else settings.PROJECT_ROOT

    def resolve_root(self, project: Project) -> Path | None:
        if project.local_path:
            return Path(project.local_path)

        mapped = self.config.project_roots.get(project.name) or self.config.project_roots.get(
            str(project.id)
        )
        if mapped:
            return Path(mapped)

        if self.default_root:
            return Path(self.default_root)

        return None

    def tasks_path(self, project: Project) -> Path | None:
        root = self.resolve_root(project)
        if root is None:
            return None
        return tasks_file_under(root, project.tag)


def load_sync_config(config_path: str | Path) -> SyncConfig:
    """Load sync configuration from YAML file.

    Args:
        config_path: Path to sync_config.yaml

    Returns:
        SyncConfig instance
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return SyncConfig(
        project_roots={str(k): str(v) for k, v in (data.get("project_roots") or {}).items()},
        scan_roots=[str(root) for root in data.get("scan_roots") or []],
        scan_max_depth=int(data.get("scan_max_depth", 3)),
        default_conflict_policy=data.get(
            "default_conflict_policy", settings.DEFAULT_CONFLICT_POLICY
        ),
    )


def get_config() -> SyncConfig:
    """Sync configuration from SYNC_CONFIG_PATH, or defaults when the file is absent."""
    config_path = Path(settings.SYNC_CONFIG_PATH)
    if not config_path.exists():
        logger.debug("Sync config not found, using defaults", extra={"path": str(config_path)})
        return SyncConfig(default_conflict_policy=settings.DEFAULT_CONFLICT_POLICY)
    return load_sync_config(config_path)
