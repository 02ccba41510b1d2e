"""Offline conflict model: local vs. pulled remote payload for one entity."""

import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utc_now


class ConflictStrategy(str, enum.Enum):
    """Resolution choice for an offline conflict."""

    LOCAL = "local"  # Keep the offline client's payload
    REMOTE = "remote"  # Take the pulled remote payload
    MERGED = "merged"  # Caller supplies a merged payload


class ConflictItem(Base):
    """Unresolved local/remote disagreement awaiting manual resolution."""

    __tablename__ = "conflict_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id"), nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), default="task", nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # Task ids are unique only within (project, tag)
    tag: Mapped[str] = mapped_column(String(100), default="master", nullable=False)

    local_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    remote_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    conflicted_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    # Resolution
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolution: Mapped[ConflictStrategy | None] = mapped_column(
        SQLEnum(ConflictStrategy, native_enum=False), nullable=True
    )
    resolved_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        status = "resolved" if self.resolved else "unresolved"
        return f"<ConflictItem(id={self.id}, {self.entity_type}:{self.tag}:{self.entity_id}, {status})>"
