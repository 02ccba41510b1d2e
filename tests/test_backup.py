"""
Тесты BackupManager.

Покрывает:
- снимок рядом с файлом с проверкой содержимого
- восстановление из бэкапа
- атомарную запись (при ошибке файл не трогается)
- проверку пути бэкапа
- список бэкапов (новые первыми)
"""

import pytest

from tasksync.core.errors import NotFoundError, ValidationError, WriteError
from tasksync.services import BackupManager


class FakeClock:
    """Часы, которые идут только вручную."""

    def __init__(self, now: float = 1_760_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backups(clock):
    return BackupManager(clock=clock)


@pytest.fixture
def target(tmp_path):
    path = tmp_path / "tasks.json"
    path.write_bytes(b'{"master": {"tasks": []}}\n')
    return path


# =============================================================================
# ТЕСТЫ: Снимок
# =============================================================================


class TestSnapshot:
    """Создание бэкапа."""

    @pytest.mark.asyncio
    async def test_snapshot_next_to_target(self, backups, target, clock):
        """Бэкап лежит рядом, имя <stem>.backup-<millis>.json, содержимое совпадает."""
        backup = await backups.snapshot(target)

        assert backup.parent == target.parent
        assert backup.name == f"tasks.backup-{int(clock.now * 1000)}.json"
        assert backup.read_bytes() == target.read_bytes()

    @pytest.mark.asyncio
    async def test_snapshot_same_millisecond_gets_unique_name(self, backups, target):
        """Два снимка в одну миллисекунду не перезаписывают друг друга."""
        first = await backups.snapshot(target)
        second = await backups.snapshot(target)

        assert first != second
        assert first.exists() and second.exists()

    @pytest.mark.asyncio
    async def test_snapshot_missing_target(self, backups, tmp_path):
        with pytest.raises(NotFoundError):
            await backups.snapshot(tmp_path / "absent.json")

    @pytest.mark.asyncio
    async def test_snapshot_never_deletes_old_backups(self, backups, target, clock):
        await backups.snapshot(target)
        clock.now += 5
        await backups.snapshot(target)

        assert len(await backups.list_backups(target)) == 2


# =============================================================================
# ТЕСТЫ: Восстановление и атомарная запись
# =============================================================================


class TestRestoreAndWrite:
    """Восстановление и атомарная запись."""

    @pytest.mark.asyncio
    async def test_restore_replaces_content(self, backups, target):
        original = target.read_bytes()
        backup = await backups.snapshot(target)
        target.write_bytes(b"changed")

        await backups.restore(backup, target)

        assert target.read_bytes() == original

    @pytest.mark.asyncio
    async def test_restore_missing_backup(self, backups, target):
        with pytest.raises(NotFoundError, match="Backup not found"):
            await backups.restore(target.parent / "tasks.backup-1.json", target)

    @pytest.mark.asyncio
    async def test_write_atomic_leaves_no_temp_files(self, backups, target):
        await backups.write_atomic(target, b"new content")

        assert target.read_bytes() == b"new content"
        assert sorted(p.name for p in target.parent.iterdir()) == ["tasks.json"]

    @pytest.mark.asyncio
    async def test_write_atomic_failure_keeps_target(self, backups, tmp_path):
        """Запись в несуществующую директорию → WriteError."""
        with pytest.raises(WriteError):
            await backups.write_atomic(tmp_path / "missing-dir" / "tasks.json", b"x")


# =============================================================================
# ТЕСТЫ: Проверка пути и список
# =============================================================================


class TestValidateAndList:
    """Проверка пути бэкапа и список бэкапов."""

    def test_relative_name_resolved_next_to_target(self, backups, target):
        backup = backups.validate_backup_path("tasks.backup-123.json", target)
        assert backup == target.parent / "tasks.backup-123.json"

    def test_foreign_stem_rejected(self, backups, target):
        with pytest.raises(ValidationError, match="Invalid backup path"):
            backups.validate_backup_path("other.backup-123.json", target)

    def test_other_directory_rejected(self, backups, target, tmp_path):
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        with pytest.raises(ValidationError):
            backups.validate_backup_path(elsewhere / "tasks.backup-123.json", target)

    def test_arbitrary_file_rejected(self, backups, target):
        with pytest.raises(ValidationError):
            backups.validate_backup_path("/etc/passwd", target)

    @pytest.mark.asyncio
    async def test_list_newest_first(self, backups, target, clock):
        first = await backups.snapshot(target)
        clock.now += 10
        second = await backups.snapshot(target)
        (target.parent / "notes.backup-1.json").write_text("{}")

        listed = await backups.list_backups(target)

        assert [b.path for b in listed] == [str(second), str(first)]
        assert listed[0].size_bytes == target.stat().st_size

    @pytest.mark.asyncio
    async def test_list_missing_directory(self, backups, tmp_path):
        assert await backups.list_backups(tmp_path / "nope" / "tasks.json") == []
