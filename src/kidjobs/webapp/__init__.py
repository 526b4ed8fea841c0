"""KidJobs web API package.

Table definitions are re-exported directly. The FastAPI application binds to
the configured database and seeds it when imported, so its objects are only
loaded on first access; ``uvicorn kidjobs.webapp:app`` still resolves.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any, List

from .persistence import (
    AccountTypes,
    Achievement,
    AllocationSettings,
    Child,
    Family,
    Job,
    LearningProgress,
    Lesson,
    Payment,
    Quiz,
    User,
    build_engine,
    create_db_and_tables,
    engine,
    open_session,
    run_migrations,
    utcnow,
)

_APP_EXPORTS = ("app", "auth_manager", "event_log", "health_monitor", "initialise_storage", "seed_demo_family")


def __getattr__(name: str) -> Any:
    if name in _APP_EXPORTS:
        return getattr(import_module(".application", __name__), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> List[str]:
    return sorted(set(globals()) | set(_APP_EXPORTS))


__all__ = [
    "AccountTypes",
    "Achievement",
    "AllocationSettings",
    "Child",
    "Family",
    "Job",
    "LearningProgress",
    "Lesson",
    "Payment",
    "Quiz",
    "User",
    "build_engine",
    "create_db_and_tables",
    "engine",
    "open_session",
    "run_migrations",
    "utcnow",
    *_APP_EXPORTS,
]
