"""Project scanner for finding Task Master checkouts on disk.

Scans configured roots for ``.taskmaster*/tasks/tasks.json`` files up to a
maximum directory depth. Used by scan jobs to register missing projects.
"""

import glob
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from ...core.logging import get_logger
from .path_resolver import TASKMASTER_DIR
from .records import DEFAULT_TAG

logger = get_logger(__name__)


@dataclass
class ScannedProject:
    """A tasks file found on disk."""

    root: str
    tag: str
    tasks_path: str
    modified_at: datetime
    size_bytes: int

    @property
    def name(self) -> str:
        base = Path(self.root).name or self.root
        return base if self.tag == DEFAULT_TAG else f"{base} [{self.tag}]"


def tag_from_dir(dir_name: str) -> str:
    """``.taskmaster`` -> master, ``.taskmaster-feature`` -> feature."""
    if dir_name.startswith(f"{TASKMASTER_DIR}-"):
        return dir_name[len(TASKMASTER_DIR) + 1 :] or DEFAULT_TAG
    return DEFAULT_TAG


class ProjectScanner:
    """Scans directory trees for Task Master projects."""

    def __init__(self, max_depth: int = 3):
        """Initialize scanner.

        Args:
            max_depth: How many directory levels below each root to search
        """
        self.max_depth = max_depth

    def scan(self, roots: list[str | Path]) -> list[ScannedProject]:
        """Scan roots for tasks files.

        Missing roots are skipped with a warning.

        Returns:
            List of ScannedProject, newest first
        """
        found: list[ScannedProject] = []
        seen_paths: set[str] = set()

        for root in roots:
            root_path = Path(root).expanduser()
            if not root_path.is_dir():
                logger.warning("Scan root does not exist", extra={"root": str(root_path)})
                continue

            for depth in range(self.max_depth + 1):
                pattern = str(
                    root_path.joinpath(*(["*"] * depth), f"{TASKMASTER_DIR}*", "tasks", "tasks.json")
                )
                for file_path in glob.glob(pattern):
                    path = Path(file_path)

                    # Patterns of different depths never overlap, roots may
                    if str(path) in seen_paths or not path.is_file():
                        continue
                    seen_paths.add(str(path))

                    taskmaster_dir = path.parent.parent
                    try:
                        stat = path.stat()
                    except OSError:
                        logger.warning("Cannot stat tasks file", extra={"path": str(path)})
                        continue

                    found.append(
                        ScannedProject(
                            root=str(taskmaster_dir.parent),
                            tag=tag_from_dir(taskmaster_dir.name),
                            tasks_path=str(path),
                            modified_at=datetime.fromtimestamp(stat.st_mtime),
                            size_bytes=stat.st_size,
                        )
                    )

        found.sort(key=lambda p: p.modified_at, reverse=True)
        return found
