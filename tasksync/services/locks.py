"""In-process mutual exclusion for sync targets."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from ..core.errors import AlreadyRunningError
from ..core.logging import get_logger

logger = get_logger(__name__)


class SyncLockRegistry:
    """One writer per (project_id, target_path). A second caller is rejected, not queued."""

    def __init__(self):
        self._held: set[tuple[int, str]] = set()

    def is_locked(self, project_id: int, target: str) -> bool:
        return (project_id, target) in self._held

    @property
    def held(self) -> list[tuple[int, str]]:
        return sorted(self._held)

    @asynccontextmanager
    async def hold(self, project_id: int, target: str) -> AsyncIterator[None]:
        """Hold the lock for the duration of the block.

        Raises:
            AlreadyRunningError: another sync holds the same target
        """
        key = (project_id, target)
        if key in self._held:
            logger.warning(
                "Sync rejected: target busy",
                extra={"project_id": project_id, "target": target},
            )
            raise AlreadyRunningError(
                f"A sync is already running for project {project_id} ({target})"
            )
        self._held.add(key)
        try:
            yield
        finally:
            self._held.discard(key)
