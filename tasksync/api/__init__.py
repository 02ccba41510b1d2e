"""API layer - FastAPI endpoints."""

from .conflicts import router as conflicts_router
from .events import router as events_router
from .jobs import router as jobs_router
from .projects import router as projects_router
from .sync import router as sync_router

__all__ = [
    "projects_router",
    "sync_router",
    "conflicts_router",
    "jobs_router",
    "events_router",
]
