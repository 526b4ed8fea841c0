"""Request schemas and JSON serialisers for the KidJobs web API."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..allocation import ACCOUNT_KEYS, EnabledAccounts, Split
from ..learning import LessonResult, QuizItem
from ..models import LessonCategory, Recurrence
from ..money import cents_str, to_cents, to_decimal
from ..service import DashboardStats, split_of
from .persistence import (
    AccountTypes,
    Achievement,
    AllocationSettings,
    Child,
    Job,
    LearningProgress,
    Lesson,
    Payment,
    User,
)

_CAMEL_KEYS = {"spending": "spending", "savings": "savings", "roth_ira": "rothIra", "brokerage": "brokerage"}


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _amount(value: Any) -> Decimal:
    try:
        return to_decimal(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
class LoginRequest(ApiModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ChildCreate(ApiModel):
    name: str = Field(min_length=1, max_length=80)
    age: int = Field(ge=0, le=25)


class ChildUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    age: Optional[int] = Field(default=None, ge=0, le=25)


class AllocationAmounts(ApiModel):
    """Dollar amounts for each sub-account, e.g. a custom approval split."""

    spending_amount: Decimal = Field(ge=0)
    savings_amount: Decimal = Field(ge=0)
    roth_ira_amount: Decimal = Field(ge=0)
    brokerage_amount: Decimal = Field(ge=0)

    @field_validator("spending_amount", "savings_amount", "roth_ira_amount", "brokerage_amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Decimal:
        return _amount(value)

    def to_split(self) -> Split:
        return Split(**{key: to_cents(getattr(self, f"{key}_amount")) for key in ACCOUNT_KEYS})


class JobCreate(ApiModel):
    title: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    amount: Decimal = Field(gt=0)
    recurrence: Recurrence = Recurrence.ONCE
    assigned_to_id: int
    icon: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Decimal:
        return _amount(value)


class JobUpdate(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    recurrence: Optional[str] = None
    assigned_to_id: Optional[int] = None
    icon: Optional[str] = None
    status: Optional[str] = None
    custom_allocation: Optional[AllocationAmounts] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Optional[Decimal]:
        return None if value is None else _amount(value)

    def to_changes(self) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        for key in ("title", "description", "recurrence", "assigned_to_id", "icon"):
            value = getattr(self, key)
            if value is not None:
                changes[key] = value
        if self.amount is not None:
            changes["amount_cents"] = to_cents(self.amount)
        if self.status is not None:
            changes["status"] = self.status
        return changes


class AllocationUpdate(ApiModel):
    spending_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    savings_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    roth_ira_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    brokerage_percentage: Optional[int] = Field(default=None, ge=0, le=100)

    def to_updates(self) -> Dict[str, Optional[int]]:
        return {key: getattr(self, f"{key}_percentage") for key in ACCOUNT_KEYS}


class AccountTypesUpdate(ApiModel):
    spending_enabled: bool
    savings_enabled: bool
    roth_ira_enabled: bool
    brokerage_enabled: bool

    def to_enabled(self) -> EnabledAccounts:
        return EnabledAccounts(**{key: getattr(self, f"{key}_enabled") for key in ACCOUNT_KEYS})


class QuizCreate(ApiModel):
    question: str = Field(min_length=1)
    options: List[str] = Field(min_length=2)
    correct_answer: int = Field(ge=0)


class LessonCreate(ApiModel):
    category: LessonCategory
    title: str = Field(min_length=1, max_length=120)
    content: str = Field(min_length=1)
    video_url: Optional[str] = None
    quizzes: List[QuizCreate] = Field(default_factory=list)


class LessonSubmission(ApiModel):
    answers: List[int] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
def _iso(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    # SQLite hands stored timestamps back without an offset; they are UTC.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "role": user.role,
        "familyId": user.family_id,
        "name": user.name,
    }


def serialize_child(child: Child) -> Dict[str, Any]:
    payload = {
        "id": child.id,
        "userId": child.user_id,
        "familyId": child.family_id,
        "name": child.name,
        "age": child.age,
        "totalEarned": cents_str(child.total_earned_cents),
        "completedJobs": child.completed_jobs,
        "learningStreak": child.learning_streak,
    }
    for key in ACCOUNT_KEYS:
        payload[f"{_CAMEL_KEYS[key]}Balance"] = cents_str(getattr(child, f"{key}_balance_cents"))
    return payload


def serialize_job(job: Job) -> Dict[str, Any]:
    return {
        "id": job.id,
        "title": job.title,
        "description": job.description,
        "amount": cents_str(job.amount_cents),
        "status": job.status,
        "recurrence": job.recurrence,
        "assignedToId": job.assigned_to_id,
        "familyId": job.family_id,
        "icon": job.icon,
        "createdAt": _iso(job.created_at),
    }


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    payload = {
        "id": payment.id,
        "jobId": payment.job_id,
        "childId": payment.child_id,
        "amount": cents_str(payment.amount_cents),
        "createdAt": _iso(payment.created_at),
    }
    for key, value in split_of(payment):
        payload[f"{_CAMEL_KEYS[key]}Amount"] = cents_str(value)
    return payload


def serialize_allocation(settings: AllocationSettings) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"id": settings.id, "childId": settings.child_id}
    for key in ACCOUNT_KEYS:
        payload[f"{_CAMEL_KEYS[key]}Percentage"] = getattr(settings, f"{key}_percentage")
    return payload


def serialize_account_types(account_types: AccountTypes) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"id": account_types.id, "familyId": account_types.family_id}
    for key in ACCOUNT_KEYS:
        payload[f"{_CAMEL_KEYS[key]}Enabled"] = bool(getattr(account_types, f"{key}_enabled"))
    return payload


def serialize_lesson(lesson: Lesson) -> Dict[str, Any]:
    return {
        "id": lesson.id,
        "category": lesson.category,
        "title": lesson.title,
        "content": lesson.content,
        "videoUrl": lesson.video_url,
        "isCustom": lesson.is_custom,
        "familyId": lesson.family_id,
    }


def serialize_quiz(item: QuizItem, *, reveal_answer: bool) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": item.quiz.id,
        "lessonId": item.quiz.lesson_id,
        "question": item.quiz.question,
        "options": item.options,
    }
    if reveal_answer:
        payload["correctAnswer"] = item.quiz.correct_answer
    return payload


def serialize_progress(progress: LearningProgress) -> Dict[str, Any]:
    return {
        "id": progress.id,
        "childId": progress.child_id,
        "lessonId": progress.lesson_id,
        "completed": progress.completed,
        "quizScore": progress.quiz_score,
        "completedAt": _iso(progress.completed_at),
    }


def serialize_achievement(achievement: Achievement) -> Dict[str, Any]:
    return {
        "id": achievement.id,
        "childId": achievement.child_id,
        "title": achievement.title,
        "description": achievement.description,
        "icon": achievement.icon,
        "earnedAt": _iso(achievement.earned_at),
    }


def serialize_lesson_result(result: LessonResult) -> Dict[str, Any]:
    return {
        "lessonId": result.lesson_id,
        "score": result.score,
        "total": result.total,
        "percent": result.percent,
        "passed": result.passed,
        "learningStreak": result.learning_streak,
        "progress": serialize_progress(result.progress) if result.progress else None,
        "newAchievements": [serialize_achievement(item) for item in result.new_achievements],
    }


def serialize_dashboard(stats: DashboardStats) -> Dict[str, Any]:
    return {
        "child": serialize_child(stats.child),
        "allocation": serialize_allocation(stats.allocation) if stats.allocation else None,
        "activeJobs": [serialize_job(job) for job in stats.active_jobs],
        "totalEarned": cents_str(stats.total_earned_cents),
        "completedJobs": stats.completed_jobs,
        "learningStreak": stats.learning_streak,
        "achievements": [serialize_achievement(item) for item in stats.achievements],
        "learningProgress": [serialize_progress(item) for item in stats.learning_progress],
    }


__all__ = [
    "AccountTypesUpdate",
    "AllocationAmounts",
    "AllocationUpdate",
    "ChildCreate",
    "ChildUpdate",
    "JobCreate",
    "JobUpdate",
    "LessonCreate",
    "LessonSubmission",
    "LoginRequest",
    "QuizCreate",
    "serialize_account_types",
    "serialize_achievement",
    "serialize_allocation",
    "serialize_child",
    "serialize_dashboard",
    "serialize_job",
    "serialize_lesson",
    "serialize_lesson_result",
    "serialize_payment",
    "serialize_progress",
    "serialize_quiz",
    "serialize_user",
]
