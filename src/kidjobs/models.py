"""Domain enumerations shared by the KidJobs service and web layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class Role(str, Enum):
    """Roles a logged-in user can hold within a family."""

    PARENT = "parent"
    CHILD = "child"


class JobStatus(str, Enum):
    """Lifecycle of a job, from assignment to approved payment."""

    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, target: "JobStatus") -> bool:
        """Return ``True`` when moving to ``target`` keeps the lifecycle moving forward."""

        if self is JobStatus.APPROVED:
            return False
        return target.rank > self.rank


_STATUS_ORDER: Tuple[JobStatus, ...] = (
    JobStatus.ASSIGNED,
    JobStatus.IN_PROGRESS,
    JobStatus.COMPLETED,
    JobStatus.APPROVED,
)

# Statuses a child may set on their own job.
CHILD_SETTABLE_STATUSES = frozenset({JobStatus.IN_PROGRESS, JobStatus.COMPLETED})


class Recurrence(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LessonCategory(str, Enum):
    """Topics covered by the learning module."""

    EARNING = "earning"
    SAVING = "saving"
    SPENDING = "spending"
    INVESTING = "investing"
    DONATING = "donating"


@dataclass(slots=True, frozen=True)
class Actor:
    """The logged-in user on whose behalf an operation runs."""

    user_id: int
    role: Role
    family_id: int

    @property
    def is_parent(self) -> bool:
        return self.role is Role.PARENT


__all__ = [
    "Actor",
    "CHILD_SETTABLE_STATUSES",
    "JobStatus",
    "LessonCategory",
    "Recurrence",
    "Role",
]
