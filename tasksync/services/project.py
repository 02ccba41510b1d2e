"""Project and remote server service with business logic."""

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import AccessDeniedError, AuthError, NotFoundError, SyncError, ValidationError
from ..core.logging import get_logger
from ..integrations.taskmaster.records import DEFAULT_TAG
from ..integrations.taskmaster.path_resolver import remote_tasks_path
from ..integrations.taskmaster.ssh_client import SSHCredentials, SSHTaskClient
from ..models import Project, RemoteServer, TaskMirror
from ..repositories import ProjectRepository, RemoteServerRepository, TaskMirrorRepository

logger = get_logger(__name__)


class ProjectService:
    """
    Сервис для работы с проектами и удалёнными серверами.

    Содержит бизнес-логику:
    - Валидация правил
    - Проверка владельца проекта
    - Проверка SSH-учётных данных сервера
    """

    def __init__(self, db: AsyncSession, ssh_client: SSHTaskClient | None = None):
        """
        Инициализация сервиса.

        Args:
            db: Асинхронная сессия БД
            ssh_client: SSH транспорт для проверки серверов (фейки в тестах)
        """
        self.db = db
        self.ssh_client = ssh_client or SSHTaskClient()
        self.project_repo = ProjectRepository(db)
        self.server_repo = RemoteServerRepository(db)
        self.task_repo = TaskMirrorRepository(db)

    async def create_project(
        self,
        owner_id: str,
        name: str,
        description: str | None = None,
        tag: str | None = None,
        local_path: str | None = None,
        server_id: int | None = None,
    ) -> Project:
        """
        Создать проект.

        Raises:
            ValidationError: пустое название или нет ни локального пути, ни сервера
            NotFoundError: сервер не найден

        Бизнес-правила:
        1. Название обязательно и не пустое
        2. Пара (local_path, tag) уникальна
        3. Сервер, если указан, должен существовать
        """
        if not name or not name.strip():
            raise ValidationError(
                "Project name cannot be empty",
                details=[{"field": "name", "message": "required"}],
            )
        tag = (tag or DEFAULT_TAG).strip()

        if local_path:
            existing = await self.project_repo.get_by_local_path(local_path, tag)
            if existing is not None:
                raise ValidationError(
                    f"Project for {local_path} ({tag}) already exists",
                    details=[{"field": "localPath", "message": "already registered"}],
                )

        if server_id is not None and not await self.server_repo.exists(server_id):
            raise NotFoundError(f"Server {server_id} not found")

        project = await self.project_repo.create(
            Project(
                name=name.strip(),
                description=description.strip() if description else None,
                tag=tag,
                owner_id=owner_id,
                local_path=local_path,
                server_id=server_id,
            )
        )
        logger.info(
            "Project created",
            extra={"project_id": project.id, "owner_id": owner_id, "tag": tag},
        )
        return project

    async def get_project(self, project_id: int, owner_id: str) -> Project:
        """
        Получить проект пользователя.

        Raises:
            NotFoundError: проект не найден
            AccessDeniedError: проект принадлежит другому пользователю
        """
        project = await self.project_repo.get_by_id(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        if project.owner_id != owner_id:
            raise AccessDeniedError(f"Access to project {project_id} denied")
        return project

    async def list_projects(self, owner_id: str) -> list[Project]:
        return await self.project_repo.get_by_owner(owner_id)

    async def get_tasks(self, project_id: int, owner_id: str, tag: str | None = None) -> list[TaskMirror]:
        """Зеркало задач проекта (результат последнего импорта)."""
        await self.get_project(project_id, owner_id)
        return await self.task_repo.get_by_project(project_id, tag)

    # =========================================================================
    # REMOTE SERVERS
    # =========================================================================

    async def create_server(
        self,
        name: str,
        host: str,
        username: str,
        project_path: str,
        port: int = 22,
        private_key: str | None = None,
        password: str | None = None,
    ) -> RemoteServer:
        """
        Зарегистрировать SSH-сервер.

        Raises:
            ValidationError: учётные данные неполные или неоднозначные
        """
        credentials = SSHCredentials(
            host=host, username=username, port=port, private_key=private_key, password=password
        )
        try:
            credentials.validate()
        except AuthError as e:
            raise ValidationError(e.message) from e
        if not project_path or not project_path.strip():
            raise ValidationError(
                "Remote project path cannot be empty",
                details=[{"field": "projectPath", "message": "required"}],
            )

        server = await self.server_repo.create(
            RemoteServer(
                name=name.strip() if name else host,
                host=host,
                port=port,
                username=username,
                private_key=private_key,
                password=password,
                project_path=project_path.strip(),
            )
        )
        logger.info("Server registered", extra={"server_id": server.id, "host": host})
        return server

    async def list_servers(self) -> list[RemoteServer]:
        return await self.server_repo.get_all()

    async def check_server(self, server_id: int) -> dict:
        """
        Проверить подключение к серверу и наличие tasks.json.

        Результат пишется в is_reachable / last_ping_at в любом случае,
        ошибка подключения возвращается в поле error, а не поднимается.

        Raises:
            NotFoundError: сервер не найден
        """
        server = await self.server_repo.get_by_id(server_id)
        if server is None:
            raise NotFoundError(f"Server {server_id} not found")

        path = remote_tasks_path(server.project_path)
        result = {
            "reachable": False,
            "hostname": None,
            "tasks_file_exists": False,
            "tasks_path": path,
            "error": None,
        }
        try:
            check = await self.ssh_client.check_connection(SSHCredentials.from_server(server), path)
        except SyncError as e:
            result["error"] = f"{e.code}: {e.message}"
            logger.warning(
                "Server connection check failed",
                extra={"server_id": server_id, "host": server.host, "error_code": e.code},
            )
        else:
            result.update(
                reachable=True, hostname=check.hostname, tasks_file_exists=check.tasks_file_exists
            )

        server = await self.server_repo.mark_reachable(server_id, result["reachable"])
        result["checked_at"] = server.last_ping_at
        return result
