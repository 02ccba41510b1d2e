"""
Скрипт для инициализации базы данных.

Создаёт все таблицы напрямую через SQLAlchemy.
Используется для разработки и тестирования вместо Alembic миграций.

Запуск:
    python init_db.py           - создать таблицы
    python init_db.py --reset   - удалить и создать заново
"""

import asyncio
import sys

from tasksync.core.database import drop_db, init_db


async def main(reset: bool = False):
    """Создать все таблицы."""
    if reset:
        print("Удаление таблиц...")
        await drop_db()
    print("Создание таблиц...")
    await init_db()
    print("✓ Таблицы созданы успешно!")


if __name__ == "__main__":
    asyncio.run(main(reset="--reset" in sys.argv))
