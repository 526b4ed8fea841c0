"""Data access for KidJobs over a SQLModel session."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import case, update
from sqlmodel import Session, col, select

from .webapp.persistence import (
    AccountTypes,
    Achievement,
    AllocationSettings,
    Child,
    Job,
    LearningProgress,
    Lesson,
    Payment,
    Quiz,
    User,
)


class Repository:
    """Thin query layer used by the bookkeeping and learning services.

    Writes are staged on the wrapped session; :meth:`transaction` commits them
    together or rolls every staged change back when an error escapes.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator["Repository"]:
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def add(self, *rows: object) -> None:
        for row in rows:
            self.session.add(row)

    def delete(self, row: object) -> None:
        self.session.delete(row)

    def flush(self) -> None:
        self.session.flush()

    def refresh(self, row: object) -> None:
        self.session.refresh(row)

    # ------------------------------------------------------------------
    # Families & users
    # ------------------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.username == username)).first()

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------
    def get_child(self, child_id: int) -> Optional[Child]:
        return self.session.get(Child, child_id)

    def get_child_for_user(self, user_id: int) -> Optional[Child]:
        return self.session.exec(select(Child).where(Child.user_id == user_id)).first()

    def list_children(self, family_id: int) -> List[Child]:
        return list(self.session.exec(select(Child).where(Child.family_id == family_id).order_by(Child.id)).all())

    def increment_child(self, child: Child, deltas: Mapping[str, int], *, floor_at_zero: Iterable[str] = ()) -> None:
        """Add ``deltas`` to the child's counters in SQL and reload ``child``.

        The arithmetic runs against the stored row, so concurrent writers
        cannot overwrite each other's totals with stale values.
        """

        floored = set(floor_at_zero)
        values = {}
        for name, delta in deltas.items():
            if not delta:
                continue
            column = col(getattr(Child, name))
            values[name] = case((column + delta < 0, 0), else_=column + delta) if name in floored else column + delta
        if values:
            self.session.exec(update(Child).where(col(Child.id) == child.id).values(**values))
        self.refresh(child)

    # ------------------------------------------------------------------
    # Jobs & payments
    # ------------------------------------------------------------------
    def get_job(self, job_id: int) -> Optional[Job]:
        return self.session.get(Job, job_id)

    def list_jobs_for_family(self, family_id: int) -> List[Job]:
        return list(self.session.exec(select(Job).where(Job.family_id == family_id).order_by(Job.id)).all())

    def list_jobs_for_child(self, child_id: int) -> List[Job]:
        return list(self.session.exec(select(Job).where(Job.assigned_to_id == child_id).order_by(Job.id)).all())

    def get_payment_for_job(self, job_id: int) -> Optional[Payment]:
        return self.session.exec(select(Payment).where(Payment.job_id == job_id)).first()

    def list_payments_for_child(self, child_id: int) -> List[Payment]:
        query = select(Payment).where(Payment.child_id == child_id).order_by(Payment.id)
        return list(self.session.exec(query).all())

    def list_payments_for_family(self, family_id: int) -> List[Payment]:
        child_ids = [child.id for child in self.list_children(family_id)]
        if not child_ids:
            return []
        query = select(Payment).where(col(Payment.child_id).in_(child_ids)).order_by(Payment.id)
        return list(self.session.exec(query).all())

    def delete_payments_for_job(self, job_id: int) -> int:
        payments = self.session.exec(select(Payment).where(Payment.job_id == job_id)).all()
        for payment in payments:
            self.session.delete(payment)
        return len(payments)

    # ------------------------------------------------------------------
    # Allocation & account types
    # ------------------------------------------------------------------
    def get_allocation(self, child_id: int) -> Optional[AllocationSettings]:
        return self.session.exec(select(AllocationSettings).where(AllocationSettings.child_id == child_id)).first()

    def get_account_types(self, family_id: int) -> Optional[AccountTypes]:
        return self.session.exec(select(AccountTypes).where(AccountTypes.family_id == family_id)).first()

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------
    def get_lesson(self, lesson_id: int) -> Optional[Lesson]:
        return self.session.get(Lesson, lesson_id)

    def has_default_lessons(self) -> bool:
        return self.session.exec(select(Lesson.id).where(Lesson.is_custom == False).limit(1)).first() is not None  # noqa: E712

    def list_lessons(self, family_id: int, *, category: Optional[str] = None) -> List[Lesson]:
        query = select(Lesson).where(
            (Lesson.is_custom == False) | (Lesson.family_id == family_id)  # noqa: E712
        )
        if category:
            query = query.where(Lesson.category == category)
        return list(self.session.exec(query.order_by(Lesson.id)).all())

    def list_quizzes(self, lesson_id: int) -> List[Quiz]:
        return list(self.session.exec(select(Quiz).where(Quiz.lesson_id == lesson_id).order_by(Quiz.id)).all())

    def get_progress(self, child_id: int, lesson_id: int) -> Optional[LearningProgress]:
        query = select(LearningProgress).where(
            LearningProgress.child_id == child_id,
            LearningProgress.lesson_id == lesson_id,
        )
        return self.session.exec(query).first()

    def list_progress(self, child_id: int) -> List[LearningProgress]:
        query = select(LearningProgress).where(LearningProgress.child_id == child_id).order_by(LearningProgress.id)
        return list(self.session.exec(query).all())

    def list_achievements(self, child_id: int) -> List[Achievement]:
        query = (
            select(Achievement)
            .where(Achievement.child_id == child_id)
            .order_by(col(Achievement.earned_at).desc(), col(Achievement.id).desc())
        )
        return list(self.session.exec(query).all())

    def achievement_titles(self, child_id: int) -> Sequence[str]:
        return [achievement.title for achievement in self.list_achievements(child_id)]

    # ------------------------------------------------------------------
    # Cascades
    # ------------------------------------------------------------------
    def delete_child_records(self, child: Child) -> None:
        """Stage deletion of a child and everything that hangs off it."""

        for job in self.list_jobs_for_child(child.id):
            self.session.delete(job)
        for payment in self.list_payments_for_child(child.id):
            self.session.delete(payment)
        allocation = self.get_allocation(child.id)
        if allocation:
            self.session.delete(allocation)
        for progress in self.list_progress(child.id):
            self.session.delete(progress)
        for achievement in self.list_achievements(child.id):
            self.session.delete(achievement)
        if child.user_id is not None:
            user = self.get_user(child.user_id)
            if user:
                self.session.delete(user)
        self.session.delete(child)


__all__ = ["Repository"]
