"""KidJobs package: paid jobs for kids with money split across sub-accounts."""

from .allocation import (
    ACCOUNT_KEYS,
    EnabledAccounts,
    Percentages,
    Split,
    redistribute,
    split_by_percentages,
    validate_percentages,
    validate_split,
)
from .exceptions import (
    AuthenticationError,
    ForbiddenError,
    KidJobsError,
    NotFoundError,
    ValidationError,
)
from .learning import LearningService, LessonResult
from .models import Actor, JobStatus, LessonCategory, Recurrence, Role
from .ops import HealthMonitor, StructuredLogger
from .repository import Repository
from .security import AuthManager
from .service import Bookkeeper, DashboardStats

__all__ = [
    "ACCOUNT_KEYS",
    "Actor",
    "AuthManager",
    "AuthenticationError",
    "Bookkeeper",
    "DashboardStats",
    "EnabledAccounts",
    "ForbiddenError",
    "HealthMonitor",
    "JobStatus",
    "KidJobsError",
    "LearningService",
    "LessonCategory",
    "LessonResult",
    "NotFoundError",
    "Percentages",
    "Recurrence",
    "Repository",
    "Role",
    "Split",
    "StructuredLogger",
    "ValidationError",
    "redistribute",
    "split_by_percentages",
    "validate_percentages",
    "validate_split",
]
