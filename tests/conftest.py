"""
Pytest fixtures для тестов.

Предоставляет:
- test_db: изолированная SQLite in-memory БД для каждого теста
- session_factory: фабрика сессий той же БД (для планировщика и обработчиков)
- test_client: HTTP клиент для тестирования API endpoints
- project_dir / write_tasks: временный проект с .taskmaster/tasks/tasks.json
- FakeSSHClient / fake_factory: paramiko клиент над словарём файлов
"""

import json
import shlex
import time
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tasksync.api.dependencies import get_db
from tasksync.core.config import settings
from tasksync.core.database import build_engine, drop_db, init_db, make_session_factory
from tasksync.main import app
from tasksync.models import Project
from tasksync.services import EventBroadcaster, JobScheduler, SyncLockRegistry

# Test database URL (SQLite in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

USER_ID = "alice"
AUTH_HEADERS = {"X-API-Key": settings.API_KEY, "X-User-Id": USER_ID}


@pytest_asyncio.fixture
async def test_engine():
    """
    Создаёт async engine для тестовой БД (SQLite in-memory).

    StaticPool обеспечивает что используется одно и то же соединение,
    что критично для in-memory БД (иначе данные теряются).
    """
    engine = build_engine(TEST_DATABASE_URL)
    await init_db(engine)

    yield engine

    await drop_db(engine)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    """Фабрика сессий тестовой БД."""
    return make_session_factory(test_engine)


@pytest_asyncio.fixture
async def test_db(session_factory):
    """
    Предоставляет async session для работы с тестовой БД.

    Каждый тест получает чистую БД.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def test_client(session_factory):
    """
    Предоставляет HTTP клиент для тестирования API endpoints.

    Использует тестовую БД вместо production БД, свежие блокировки,
    broadcaster и планировщик (воркеры не запущены).
    Заголовки X-API-Key и X-User-Id выставлены по умолчанию.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db

    saved_state = (app.state.locks, app.state.broadcaster, app.state.scheduler)
    app.state.locks = SyncLockRegistry()
    app.state.broadcaster = EventBroadcaster()
    app.state.scheduler = JobScheduler(session_factory)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers=AUTH_HEADERS,
    ) as client:
        yield client

    app.state.locks, app.state.broadcaster, app.state.scheduler = saved_state
    app.dependency_overrides.clear()


# =============================================================================
# TASK FILES
# =============================================================================


def make_task(task_id, title="Task", status="pending", updated_at=None, **fields) -> dict:
    """Задача в формате tasks.json."""
    task = {
        "id": task_id,
        "title": title,
        "description": fields.pop("description", f"{title} description"),
        "status": status,
        "priority": fields.pop("priority", "medium"),
        "dependencies": fields.pop("dependencies", []),
        "subtasks": fields.pop("subtasks", []),
    }
    if updated_at is not None:
        task["updatedAt"] = updated_at
    task.update(fields)
    return task


def tasks_path_of(root: Path) -> Path:
    return root / ".taskmaster" / "tasks" / "tasks.json"


def write_tasks(root: Path, data) -> Path:
    """Записать tasks.json под корнем проекта (data - любой поддерживаемый формат)."""
    path = tasks_path_of(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """Корень проекта с tasks.json из двух задач (тег master)."""
    root = tmp_path / "demo"
    write_tasks(
        root,
        {
            "master": {
                "tasks": [
                    make_task(1, "Setup", "done", "2026-01-01T00:00:00Z"),
                    make_task(2, "Schema", "pending", "2026-01-01T00:00:00Z", dependencies=[1]),
                ],
                "metadata": {"created": "2026-01-01"},
            }
        },
    )
    return root


@pytest_asyncio.fixture
async def sample_project(test_db, project_dir) -> Project:
    """Проект пользователя alice, указывающий на project_dir."""
    project = Project(name="demo", tag="master", owner_id=USER_ID, local_path=str(project_dir))
    test_db.add(project)
    await test_db.commit()
    return project


# =============================================================================
# FAKE SSH
# =============================================================================


class FakeChannel:
    def __init__(self, exit_status: int):
        self.exit_status = exit_status

    def recv_exit_status(self) -> int:
        return self.exit_status


class FakeStream:
    def __init__(self, data: bytes = b"", exit_status: int = 0):
        self.data = data
        self.channel = FakeChannel(exit_status)

    def read(self) -> bytes:
        return self.data


class FakeSSHClient:
    """Имитирует paramiko.SSHClient над словарём файлов."""

    instances: list["FakeSSHClient"] = []

    def __init__(self, files=None, connect_error=None, connect_delay=0.0, hostname="build-01"):
        self.files = files or {}
        self.hostname = hostname
        self.connect_error = connect_error
        self.connect_delay = connect_delay
        self.commands: list[str] = []
        self.connect_kwargs: dict = {}
        self.closed = False
        FakeSSHClient.instances.append(self)

    def set_missing_host_key_policy(self, policy):
        self.policy = policy

    def connect(self, **kwargs):
        self.connect_kwargs = kwargs
        if self.connect_delay:
            time.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error

    def exec_command(self, command, timeout=None):
        self.commands.append(command)
        parts = shlex.split(command)
        if parts[:2] == ["test", "-f"]:
            exists = parts[2] in self.files
            return None, FakeStream(b"exists\n" if exists else b"missing\n"), FakeStream()
        if parts == ["hostname"]:
            return None, FakeStream(f"{self.hostname}\n".encode()), FakeStream()
        if parts[0] == "cat":
            return None, FakeStream(self.files[parts[1]]), FakeStream()
        return None, FakeStream(exit_status=127), FakeStream(b"command not found")

    def close(self):
        self.closed = True


def fake_factory(**kwargs):
    def factory():
        return FakeSSHClient(**kwargs)

    return factory


