"""Persistence and SQLModel definitions for the KidJobs web API."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import UniqueConstraint, inspect, text
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine

from .config import DATABASE_URL, DEFAULT_ACCOUNT_TYPES, DEFAULT_ALLOCATION

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------


def build_engine(url: str = DATABASE_URL) -> Engine:
    connect_args: Dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=False, connect_args=connect_args)


engine = build_engine()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Family(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    role: str  # parent|child
    family_id: int = Field(index=True)
    name: str
    age: Optional[int] = None


class Child(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, index=True)
    family_id: int = Field(index=True)
    name: str
    age: int = 0
    total_earned_cents: int = 0
    completed_jobs: int = 0
    learning_streak: int = 0
    last_lesson_date: Optional[date] = None
    spending_balance_cents: int = 0
    savings_balance_cents: int = 0
    roth_ira_balance_cents: int = 0
    brokerage_balance_cents: int = 0


class AllocationSettings(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(index=True, unique=True)
    spending_percentage: int = DEFAULT_ALLOCATION["spending"]
    savings_percentage: int = DEFAULT_ALLOCATION["savings"]
    roth_ira_percentage: int = DEFAULT_ALLOCATION["roth_ira"]
    brokerage_percentage: int = DEFAULT_ALLOCATION["brokerage"]


class AccountTypes(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(index=True, unique=True)
    spending_enabled: bool = DEFAULT_ACCOUNT_TYPES["spending"]
    savings_enabled: bool = DEFAULT_ACCOUNT_TYPES["savings"]
    roth_ira_enabled: bool = DEFAULT_ACCOUNT_TYPES["roth_ira"]
    brokerage_enabled: bool = DEFAULT_ACCOUNT_TYPES["brokerage"]


class Job(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    amount_cents: int
    status: str = "assigned"  # assigned|in_progress|completed|approved
    recurrence: str = "once"  # once|daily|weekly|monthly
    assigned_to_id: int = Field(index=True)
    family_id: int = Field(index=True)
    icon: str = "briefcase"
    created_at: datetime = Field(default_factory=utcnow)


class Payment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(index=True, unique=True)
    child_id: int = Field(index=True)
    amount_cents: int
    spending_cents: int
    savings_cents: int
    roth_ira_cents: int
    brokerage_cents: int
    created_at: datetime = Field(default_factory=utcnow)


class Lesson(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    category: str  # earning|saving|spending|investing|donating
    title: str
    content: str
    video_url: Optional[str] = None
    is_custom: bool = False
    family_id: Optional[int] = Field(default=None, index=True)


class Quiz(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    lesson_id: int = Field(index=True)
    question: str
    options: str  # JSON encoded list of answer strings
    correct_answer: int


class LearningProgress(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("child_id", "lesson_id", name="uq_learningprogress_child_lesson"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(index=True)
    lesson_id: int
    completed: bool = False
    quiz_score: Optional[int] = None
    completed_at: Optional[datetime] = None


class Achievement(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(index=True)
    title: str
    description: str
    icon: str
    earned_at: datetime = Field(default_factory=utcnow)


def open_session(bind: Engine | None = None) -> Session:
    """Return a session whose objects stay readable after commit."""

    return Session(bind or engine, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Database initialisation & migrations
# ---------------------------------------------------------------------------
def create_db_and_tables(bind: Engine | None = None) -> None:
    SQLModel.metadata.create_all(bind or engine)


def _column_exists(bind: Engine, table: str, column: str) -> bool:
    return any(col["name"] == column for col in inspect(bind).get_columns(table))


def run_migrations(bind: Engine | None = None) -> List[str]:
    """Bring databases created by earlier releases up to the current schema.

    Returns the names of the migrations that are in effect.
    """

    target = bind or engine
    if target.dialect.name != "sqlite":
        return []
    applied: List[str] = []
    with target.begin() as conn:
        if not _column_exists(target, "child", "last_lesson_date"):
            conn.execute(text("ALTER TABLE child ADD COLUMN last_lesson_date TEXT;"))
        applied.append("child_last_lesson_date")
        if not _column_exists(target, "job", "icon"):
            conn.execute(text("ALTER TABLE job ADD COLUMN icon TEXT DEFAULT 'briefcase';"))
        applied.append("job_icon")
        if not _column_exists(target, "learningprogress", "completed_at"):
            conn.execute(text("ALTER TABLE learningprogress ADD COLUMN completed_at TEXT;"))
        applied.append("learningprogress_completed_at")
        conn.execute(
            text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_payment_job_unique
                ON payment(job_id);
                """
            )
        )
        applied.append("payment_job_unique")
    return applied


__all__ = [
    "engine",
    "build_engine",
    "open_session",
    "utcnow",
    "Family",
    "User",
    "Child",
    "AllocationSettings",
    "AccountTypes",
    "Job",
    "Payment",
    "Lesson",
    "Quiz",
    "LearningProgress",
    "Achievement",
    "create_db_and_tables",
    "run_migrations",
]
