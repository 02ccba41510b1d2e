"""Sync state model: current status per (project, user)."""

import enum
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class SyncStateStatus(str, enum.Enum):
    """Status of the sync state machine."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SyncState(Base, TimestampMixin):
    """Latest sync outcome and cached snapshot for one user of one project."""

    __tablename__ = "sync_states"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_sync_state"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[SyncStateStatus] = mapped_column(
        SQLEnum(SyncStateStatus, native_enum=False),
        default=SyncStateStatus.IDLE,
        nullable=False,
    )
    source_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # {"tasks": remote snapshot, "merged": last merged snapshot, "mergeResult": {...}, ...}
    sync_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SyncState(project={self.project_id}, user='{self.user_id}', "
            f"status={self.status.value})>"
        )
