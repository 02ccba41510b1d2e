"""Reading task collections from the places they live.

LOCAL   - tasks file on this host, located through a PathResolver
SSH     - tasks file on the project's remote server
CACHED  - last remote snapshot persisted in SyncState.sync_data
INLINE  - raw payload supplied by the caller
"""

import asyncio
import enum
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...core.errors import NotFoundError, ValidationError
from ...core.logging import get_logger
from ...models import Project
from ...repositories import SyncStateRepository
from .path_resolver import ConfiguredPathResolver, PathResolver, get_config, remote_tasks_path
from .records import TaskCollection
from .ssh_client import SSHCredentials, SSHTaskClient
from .tasks_file import loads, normalize, read_tasks_file

logger = get_logger(__name__)


class SourceKind(str, enum.Enum):
    """Where a task collection is read from."""

    LOCAL = "local"
    SSH = "ssh"
    CACHED = "cached"
    INLINE = "inline"


class SourceReader:
    """Reads TaskCollections for a project from any supported source."""

    def __init__(
        self,
        db: AsyncSession,
        resolver: PathResolver | None = None,
        ssh_client: SSHTaskClient | None = None,
    ):
        self.db = db
        self.resolver = resolver or ConfiguredPathResolver(get_config())
        self.ssh_client = ssh_client or SSHTaskClient()
        self.sync_state_repo = SyncStateRepository(db)

    def local_tasks_path(self, project: Project) -> Path:
        """Expected local tasks file of a project.

        Raises:
            NotFoundError: no root resolves for the project
        """
        path = self.resolver.tasks_path(project)
        if path is None:
            raise NotFoundError(f"No local path configured for project '{project.name}'")
        return path

    async def read(
        self,
        project: Project,
        kind: SourceKind,
        user_id: str | None = None,
        payload: Any = None,
    ) -> TaskCollection:
        """Read a collection.

        Raises:
            NotFoundError, ReadError, AuthError, SyncTimeoutError
        """
        if kind == SourceKind.LOCAL:
            collection = await self.read_local(project)
        elif kind == SourceKind.SSH:
            collection = await self.read_ssh(project)
        elif kind == SourceKind.CACHED:
            collection = await self.read_cached(project, user_id)
        elif kind == SourceKind.INLINE:
            collection = self.read_inline(payload)
        else:
            raise ValidationError(f"Unknown source kind: {kind}")

        logger.debug(
            "Source read",
            extra={
                "project_id": project.id,
                "source": kind.value,
                "tasks": collection.total,
                "tags": collection.tag_names(),
            },
        )
        return collection

    async def read_local(self, project: Project) -> TaskCollection:
        path = self.local_tasks_path(project)
        return await asyncio.to_thread(read_tasks_file, path)

    async def read_ssh(self, project: Project) -> TaskCollection:
        server = project.server
        if server is None:
            raise NotFoundError(f"Project '{project.name}' has no remote server configured")

        path = remote_tasks_path(server.project_path)
        content = await self.ssh_client.read_file(SSHCredentials.from_server(server), path)
        return loads(content, source=f"{server.host}:{path}")

    async def read_cached(self, project: Project, user_id: str | None) -> TaskCollection:
        """Last persisted remote snapshot, or an empty collection."""
        if user_id is None:
            return TaskCollection()
        state = await self.sync_state_repo.get_for(project.id, user_id)
        if state is None or not state.sync_data or state.sync_data.get("tasks") is None:
            return TaskCollection()
        return normalize(state.sync_data["tasks"], source="cached snapshot")

    def read_inline(self, payload: Any) -> TaskCollection:
        if payload is None:
            raise ValidationError("Inline source requires a tasks payload")
        if isinstance(payload, (str, bytes)):
            return loads(payload, source="request payload")
        return normalize(payload, source="request payload")
