"""Sync history model: append-only audit of sync operations."""

import enum
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utc_now


class SyncType(str, enum.Enum):
    """Type of sync operation."""

    MERGE = "MERGE"
    ROLLBACK = "ROLLBACK"
    SCAN = "SCAN"
    IMPORT = "IMPORT"


class SyncStatus(str, enum.Enum):
    """Status of a history row."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SyncHistory(Base):
    """One sync operation. Created RUNNING before any I/O, finalized once."""

    __tablename__ = "sync_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    project_id: Mapped[int | None] = mapped_column(
        ForeignKey("projects.id"), nullable=True, index=True
    )
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sync_type: Mapped[SyncType] = mapped_column(
        SQLEnum(SyncType, native_enum=False), nullable=False
    )
    status: Mapped[SyncStatus] = mapped_column(
        SQLEnum(SyncStatus, native_enum=False), default=SyncStatus.PENDING, nullable=False
    )

    # Statistics
    tasks_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def is_final(self) -> bool:
        return self.status in (SyncStatus.COMPLETED, SyncStatus.FAILED)

    def __repr__(self) -> str:
        return (
            f"<SyncHistory(id={self.id}, type={self.sync_type.value}, "
            f"status={self.status.value})>"
        )
