"""FastAPI JSON API for KidJobs.

Parents assign paid jobs to their children; approving a job pays the child and
splits the money across the family's enabled sub-accounts.  The module is
import-compatible with ``kidjobs.webapp`` so ``uvicorn kidjobs.webapp:app``
serves it directly.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from ..allocation import Percentages
from ..exceptions import AuthenticationError, KidJobsError
from ..learning import LearningService
from ..models import Actor, JobStatus, Role
from ..money import to_cents
from ..ops import HealthMonitor, StructuredLogger
from ..repository import Repository
from ..security import AuthManager, hash_password, verify_password
from ..service import Bookkeeper, write_percentages
from .config import (
    DEMO_PASSWORD,
    EVENT_LOG_PATH,
    LOGIN_LOCKOUT_MINUTES,
    LOGIN_MAX_ATTEMPTS,
    SEED_DEMO_DATA,
    SESSION_SECRET,
)
from .persistence import (
    AccountTypes,
    AllocationSettings,
    Child,
    Family,
    Job,
    User,
    create_db_and_tables,
    open_session,
    run_migrations,
)
from .schemas import (
    AccountTypesUpdate,
    AllocationAmounts,
    AllocationUpdate,
    ChildCreate,
    ChildUpdate,
    JobCreate,
    JobUpdate,
    LessonCreate,
    LessonSubmission,
    LoginRequest,
    serialize_account_types,
    serialize_achievement,
    serialize_allocation,
    serialize_child,
    serialize_dashboard,
    serialize_job,
    serialize_lesson,
    serialize_lesson_result,
    serialize_payment,
    serialize_progress,
    serialize_quiz,
    serialize_user,
)

logger = logging.getLogger("kidjobs.webapp")

# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
app = FastAPI(title="KidJobs")
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    same_site="lax",
    max_age=None,
)

event_log = StructuredLogger(path=EVENT_LOG_PATH)
health_monitor = HealthMonitor()
auth_manager = AuthManager(max_attempts=LOGIN_MAX_ATTEMPTS, lockout_minutes=LOGIN_LOCKOUT_MINUTES)


# ---------------------------------------------------------------------------
# Error responses
# ---------------------------------------------------------------------------
def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "code": code})


@app.exception_handler(KidJobsError)
async def kidjobs_error_handler(request: Request, exc: KidJobsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return _error(400, "; ".join(problems) or "Invalid request", "INVALID_REQUEST")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    event_log.log("server_error", level=logging.ERROR, path=request.url.path, error=repr(exc))
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_repo() -> Iterator[Repository]:
    with open_session() as session:
        yield Repository(session)


def get_bookkeeper(repo: Repository = Depends(get_repo)) -> Bookkeeper:
    return Bookkeeper(repo, logger=event_log)


def get_learning(repo: Repository = Depends(get_repo)) -> LearningService:
    return LearningService(repo, logger=event_log)


def current_user(request: Request, repo: Repository = Depends(get_repo)) -> User:
    user_id = request.session.get("user_id")
    if user_id is None:
        raise AuthenticationError("Not authenticated")
    user = repo.get_user(user_id)
    if user is None:
        request.session.clear()
        raise AuthenticationError("Not authenticated")
    return user


def current_actor(user: User = Depends(current_user)) -> Actor:
    return Actor(user_id=user.id, role=Role(user.role), family_id=user.family_id)


# ---------------------------------------------------------------------------
# Storage bootstrap
# ---------------------------------------------------------------------------
def seed_demo_family(repo: Repository) -> Optional[Family]:
    """Create the demo household unless a ``parent`` login already exists."""

    if repo.get_user_by_username("parent") is not None:
        return None
    password_hash = hash_password(DEMO_PASSWORD)
    demo_split = Percentages(spending=20, savings=30, roth_ira=25, brokerage=25)
    with repo.transaction():
        family = Family(name="Demo Family")
        repo.add(family)
        repo.flush()
        repo.add(
            User(username="parent", password_hash=password_hash, role=Role.PARENT.value, family_id=family.id, name="Parent"),
            AccountTypes(family_id=family.id, spending_enabled=True, savings_enabled=True, roth_ira_enabled=True, brokerage_enabled=True),
        )
        children: List[Child] = []
        for username, name, age in (("emma", "Emma", 10), ("jake", "Jake", 8)):
            user = User(username=username, password_hash=password_hash, role=Role.CHILD.value, family_id=family.id, name=name, age=age)
            repo.add(user)
            repo.flush()
            child = Child(user_id=user.id, family_id=family.id, name=name, age=age)
            repo.add(child)
            repo.flush()
            repo.add(write_percentages(AllocationSettings(child_id=child.id), demo_split))
            children.append(child)
        emma, jake = children
        for title, amount, child, icon in (
            ("Clean your room", "5.00", emma, "home"),
            ("Walk the dog", "3.00", emma, "dog"),
            ("Do the dishes", "4.00", jake, "utensils"),
            ("Take out trash", "2.00", jake, "trash"),
        ):
            repo.add(
                Job(
                    title=title,
                    amount_cents=to_cents(amount),
                    status=JobStatus.ASSIGNED.value,
                    assigned_to_id=child.id,
                    family_id=family.id,
                    icon=icon,
                )
            )
    event_log.log("demo_family_seeded", family=family.id)
    return family


def initialise_storage() -> None:
    create_db_and_tables()
    for name in run_migrations():
        health_monitor.add_migration(name)
    with open_session() as session:
        repo = Repository(session)
        LearningService(repo, logger=event_log).ensure_default_content()
        if SEED_DEMO_DATA:
            seed_demo_family(repo)


initialise_storage()


# ---------------------------------------------------------------------------
# Health & authentication
# ---------------------------------------------------------------------------
@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", **health_monitor.status()}


@app.post("/api/auth/login")
def login(payload: LoginRequest, request: Request, repo: Repository = Depends(get_repo)) -> Dict[str, Any]:
    username = payload.username.strip().lower()
    if auth_manager.is_locked(username):
        event_log.warning("login_locked", username=username)
        raise AuthenticationError("Too many failed attempts. Try again later.", code="LOCKED_OUT")
    user = repo.get_user_by_username(username)
    if user is None or not verify_password(payload.password, user.password_hash):
        auth_manager.record_login_attempt(username, success=False)
        event_log.warning("login_failed", username=username)
        raise AuthenticationError("Invalid username or password")
    auth_manager.record_login_attempt(username, success=True)
    request.session["user_id"] = user.id
    event_log.log("login", user=user.id, role=user.role)
    return serialize_user(user)


@app.post("/api/auth/logout")
def logout(request: Request) -> Dict[str, Any]:
    request.session.clear()
    return {"success": True}


@app.get("/api/auth/me")
def me(user: User = Depends(current_user)) -> Dict[str, Any]:
    return serialize_user(user)


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------
@app.get("/api/children")
def list_children(actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> List[Dict[str, Any]]:
    return [serialize_child(child) for child in books.list_children(actor)]


@app.get("/api/children/{child_id}")
def get_child(child_id: int, actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> Dict[str, Any]:
    return serialize_child(books.get_child(actor, child_id))


@app.post("/api/children", status_code=201)
def create_child(
    payload: ChildCreate,
    actor: Actor = Depends(current_actor),
    books: Bookkeeper = Depends(get_bookkeeper),
) -> Dict[str, Any]:
    child, user = books.create_child(actor, name=payload.name, age=payload.age)
    return {**serialize_child(child), "username": user.username}


@app.patch("/api/children/{child_id}")
def update_child(
    child_id: int,
    payload: ChildUpdate,
    actor: Actor = Depends(current_actor),
    books: Bookkeeper = Depends(get_bookkeeper),
) -> Dict[str, Any]:
    return serialize_child(books.update_child(actor, child_id, name=payload.name, age=payload.age))


@app.delete("/api/children/{child_id}")
def delete_child(child_id: int, actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> Dict[str, Any]:
    books.delete_child(actor, child_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------
@app.get("/api/jobs")
def list_jobs(actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> List[Dict[str, Any]]:
    return [serialize_job(job) for job in books.list_jobs(actor)]


@app.post("/api/jobs", status_code=201)
def create_job(payload: JobCreate, actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> Dict[str, Any]:
    job = books.create_job(
        actor,
        title=payload.title,
        amount_cents=to_cents(payload.amount),
        assigned_to_id=payload.assigned_to_id,
        description=payload.description,
        recurrence=payload.recurrence,
        icon=payload.icon,
    )
    return serialize_job(job)


@app.patch("/api/jobs/{job_id}")
def update_job(
    job_id: int,
    payload: JobUpdate,
    actor: Actor = Depends(current_actor),
    books: Bookkeeper = Depends(get_bookkeeper),
) -> Dict[str, Any]:
    custom = payload.custom_allocation.to_split() if payload.custom_allocation else None
    job = books.update_job(actor, job_id, payload.to_changes(), custom_allocation=custom)
    return serialize_job(job)


@app.delete("/api/jobs/{job_id}")
def delete_job(job_id: int, actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> Dict[str, Any]:
    books.delete_job(actor, job_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
@app.get("/api/payments")
def list_payments(actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> List[Dict[str, Any]]:
    return [serialize_payment(payment) for payment in books.list_payments(actor)]


@app.get("/api/payments/job/{job_id}")
def get_job_payment(job_id: int, actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> Dict[str, Any]:
    return serialize_payment(books.get_payment_for_job(actor, job_id))


@app.patch("/api/payments/job/{job_id}")
def update_job_payment(
    job_id: int,
    payload: AllocationAmounts,
    actor: Actor = Depends(current_actor),
    books: Bookkeeper = Depends(get_bookkeeper),
) -> Dict[str, Any]:
    return serialize_payment(books.update_payment_allocation(actor, job_id, payload.to_split()))


# ---------------------------------------------------------------------------
# Account types & allocation settings
# ---------------------------------------------------------------------------
@app.get("/api/account-types/{family_id}")
def get_account_types(family_id: int, actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> Dict[str, Any]:
    return serialize_account_types(books.get_account_types(actor, family_id))


@app.put("/api/account-types/{family_id}")
def update_account_types(
    family_id: int,
    payload: AccountTypesUpdate,
    actor: Actor = Depends(current_actor),
    books: Bookkeeper = Depends(get_bookkeeper),
) -> Dict[str, Any]:
    return serialize_account_types(books.update_account_types(actor, family_id, payload.to_enabled()))


@app.get("/api/allocation/{child_id}")
def get_allocation(child_id: int, actor: Actor = Depends(current_actor), books: Bookkeeper = Depends(get_bookkeeper)) -> Dict[str, Any]:
    return serialize_allocation(books.get_allocation(actor, child_id))


@app.patch("/api/allocation/{child_id}")
def update_allocation(
    child_id: int,
    payload: AllocationUpdate,
    actor: Actor = Depends(current_actor),
    books: Bookkeeper = Depends(get_bookkeeper),
) -> Dict[str, Any]:
    return serialize_allocation(books.update_allocation(actor, child_id, payload.to_updates()))


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
@app.get("/api/dashboard-stats")
def dashboard_stats(
    child_id: Optional[int] = Query(default=None, alias="childId"),
    actor: Actor = Depends(current_actor),
    books: Bookkeeper = Depends(get_bookkeeper),
) -> Dict[str, Any]:
    return serialize_dashboard(books.dashboard_stats(actor, child_id))


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------
@app.get("/api/lessons")
def list_lessons(
    category: Optional[str] = Query(default=None),
    actor: Actor = Depends(current_actor),
    learning: LearningService = Depends(get_learning),
) -> List[Dict[str, Any]]:
    return [serialize_lesson(lesson) for lesson in learning.list_lessons(actor, category=category)]


@app.post("/api/lessons", status_code=201)
def create_lesson(
    payload: LessonCreate,
    actor: Actor = Depends(current_actor),
    learning: LearningService = Depends(get_learning),
) -> Dict[str, Any]:
    lesson = learning.create_lesson(
        actor,
        category=payload.category.value,
        title=payload.title,
        content=payload.content,
        video_url=payload.video_url,
        quizzes=[(quiz.question, quiz.options, quiz.correct_answer) for quiz in payload.quizzes],
    )
    return serialize_lesson(lesson)


@app.get("/api/lessons/{lesson_id}/quizzes")
def list_quizzes(
    lesson_id: int,
    actor: Actor = Depends(current_actor),
    learning: LearningService = Depends(get_learning),
) -> List[Dict[str, Any]]:
    return [serialize_quiz(item, reveal_answer=actor.is_parent) for item in learning.list_quizzes(actor, lesson_id)]


@app.post("/api/lessons/{lesson_id}/complete")
def complete_lesson(
    lesson_id: int,
    payload: LessonSubmission,
    actor: Actor = Depends(current_actor),
    learning: LearningService = Depends(get_learning),
) -> Dict[str, Any]:
    return serialize_lesson_result(learning.complete_lesson(actor, lesson_id, payload.answers))


@app.get("/api/learning-progress")
def learning_progress(
    child_id: Optional[int] = Query(default=None, alias="childId"),
    actor: Actor = Depends(current_actor),
    learning: LearningService = Depends(get_learning),
) -> List[Dict[str, Any]]:
    return [serialize_progress(item) for item in learning.list_progress(actor, child_id)]


@app.get("/api/achievements")
def achievements(
    child_id: Optional[int] = Query(default=None, alias="childId"),
    actor: Actor = Depends(current_actor),
    learning: LearningService = Depends(get_learning),
) -> List[Dict[str, Any]]:
    return [serialize_achievement(item) for item in learning.list_achievements(actor, child_id)]


__all__ = [
    "app",
    "auth_manager",
    "event_log",
    "health_monitor",
    "initialise_storage",
    "seed_demo_family",
]
