"""Remote server model (SSH access to a Task Master checkout)."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin


class RemoteServer(Base, TimestampMixin):
    """SSH host holding a project root with .taskmaster/ inside."""

    __tablename__ = "remote_servers"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, default=22, nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    # Ровно один из двух способов авторизации
    private_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    password: Mapped[str | None] = mapped_column(String(255), nullable=True)

    project_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    is_reachable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_ping_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    projects: Mapped[list["Project"]] = relationship("Project", back_populates="server")

    def __repr__(self) -> str:
        return f"<RemoteServer(id={self.id}, {self.username}@{self.host}:{self.port})>"
