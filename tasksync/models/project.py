"""Project model."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin


class Project(Base, TimestampMixin):
    """Task Master project: one tag of a tasks.json, local and/or remote."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tag: Mapped[str] = mapped_column(String(100), default="master", nullable=False)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Локальный корень проекта (где лежит .taskmaster/)
    local_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    server_id: Mapped[int | None] = mapped_column(ForeignKey("remote_servers.id"), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Relationships
    server: Mapped["RemoteServer | None"] = relationship(
        "RemoteServer", back_populates="projects", lazy="selectin"
    )
    tasks: Mapped[list["TaskMirror"]] = relationship(
        "TaskMirror", back_populates="project", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}', tag='{self.tag}')>"
