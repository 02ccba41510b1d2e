"""Application configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# tasksync/core/config.py -> repository root; .env and sync_config.yaml live in config/
BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BASE_DIR / "config" / ".env"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Все настройки можно переопределить через переменные окружения.
    Пример: PROJECT_ROOT=/srv/projects uvicorn tasksync.main:app
    """

    # =========================================================================
    # Database
    # =========================================================================
    # DATABASE_URL - БД зеркала задач, истории и состояния синхронизации.
    # По умолчанию локальный SQLite файл; другой backend требует своего async драйвера.
    DATABASE_URL: str = "sqlite+aiosqlite:///./tasksync.db"

    # DATABASE_ECHO - выводить SQL запросы в логи (для отладки)
    DATABASE_ECHO: bool = False

    # =========================================================================
    # Application
    # =========================================================================
    APP_NAME: str = "Task Sync Engine"
    DEBUG: bool = False

    # =========================================================================
    # Logging
    # =========================================================================
    # LOG_LEVEL - уровень логирования: DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_LEVEL: str = "INFO"

    # LOG_FORMAT - "json" (production) или "simple" (разработка)
    LOG_FORMAT: str = "json"

    # =========================================================================
    # Authentication
    # =========================================================================
    # API_KEY - ключ для авторизации запросов
    # В продакшене ОБЯЗАТЕЛЬНО установить через переменную окружения!
    API_KEY: str = "dev-api-key-change-in-production"

    # =========================================================================
    # Task files
    # =========================================================================
    # PROJECT_ROOT - корень по умолчанию, если у проекта нет своего пути
    PROJECT_ROOT: str | None = None

    # SYNC_CONFIG_PATH - YAML с маппингом проектов и корнями для сканирования
    SYNC_CONFIG_PATH: str = str(BASE_DIR / "config" / "sync_config.yaml")

    # DEFAULT_CONFLICT_POLICY - newer-wins | local-wins | remote-wins | merge | strict
    DEFAULT_CONFLICT_POLICY: str = "newer-wins"

    # =========================================================================
    # SSH
    # =========================================================================
    SSH_CONNECT_TIMEOUT: float = 20.0
    # Общий таймаут на чтение удалённого файла (обязателен)
    SSH_READ_TIMEOUT: float = 30.0

    # =========================================================================
    # Event broadcasting
    # =========================================================================
    BROADCAST_TICK_INTERVAL: float = 1.0
    BROADCAST_RETRY_ATTEMPTS: int = 3
    BROADCAST_RETRY_BASE_DELAY: float = 5.0
    BROADCAST_RETRY_QUEUE_SIZE: int = 1000
    SUBSCRIBER_QUEUE_SIZE: int = 100
    HEARTBEAT_INTERVAL: float = 30.0
    SUBSCRIBER_TIMEOUT: float = 90.0

    # =========================================================================
    # Background jobs
    # =========================================================================
    SYNC_WORKERS: int = 3
    SCAN_WORKERS: int = 1
    JOB_PRUNE_INTERVAL: float = 3600.0
    # SYNC_SCHEDULE_INTERVAL - период фоновой синхронизации всех проектов (0 = выключено)
    SYNC_SCHEDULE_INTERVAL: float = 0.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", case_sensitive=True
    )


settings = Settings()
