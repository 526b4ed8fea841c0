"""Bookkeeping service for jobs, payments and sub-account balances."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from .access import family_child, family_job, own_child, require_family, require_parent
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
from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .learning import JOB_MILESTONES, award_milestones
from .models import CHILD_SETTABLE_STATUSES, Actor, JobStatus, Recurrence, Role
from .ops import StructuredLogger
from .repository import Repository
from .security import hash_password
from .webapp.config import DEFAULT_ACCOUNT_TYPES, DEFAULT_ALLOCATION, DEFAULT_CHILD_PASSWORD, DEFAULT_JOB_ICON
from .webapp.persistence import (
    AccountTypes,
    Achievement,
    AllocationSettings,
    Child,
    Job,
    LearningProgress,
    Payment,
    User,
)

_JOB_FIELDS = frozenset({"title", "description", "amount_cents", "recurrence", "icon", "assigned_to_id", "status"})


# ---------------------------------------------------------------------------
# Row <-> value conversions
# ---------------------------------------------------------------------------
def percentages_of(settings: AllocationSettings) -> Percentages:
    return Percentages(**{key: getattr(settings, f"{key}_percentage") or 0 for key in ACCOUNT_KEYS})


def write_percentages(settings: AllocationSettings, percentages: Percentages) -> AllocationSettings:
    for key, value in percentages:
        setattr(settings, f"{key}_percentage", value)
    return settings


def enabled_of(account_types: AccountTypes) -> EnabledAccounts:
    return EnabledAccounts(**{key: bool(getattr(account_types, f"{key}_enabled")) for key in ACCOUNT_KEYS})


def split_of(payment: Payment) -> Split:
    return Split(**{key: getattr(payment, f"{key}_cents") for key in ACCOUNT_KEYS})


def balances_of(child: Child) -> Split:
    return Split(**{key: getattr(child, f"{key}_balance_cents") for key in ACCOUNT_KEYS})


def balance_deltas(split: Split) -> Dict[str, int]:
    """Key each account amount in ``split`` by its ``Child`` balance column."""

    return {f"{key}_balance_cents": value for key, value in split}


@dataclass(slots=True)
class DashboardStats:
    child: Child
    allocation: Optional[AllocationSettings]
    active_jobs: List[Job]
    total_earned_cents: int
    completed_jobs: int
    learning_streak: int
    achievements: List[Achievement] = field(default_factory=list)
    learning_progress: List[LearningProgress] = field(default_factory=list)


class Bookkeeper:
    """Coordinate job approval, payment allocation and balance reconciliation.

    Every mutating operation validates its input first and then stages all of
    its writes inside a single repository transaction, so a payment and the
    balance change it implies are committed or discarded together.
    """

    def __init__(self, repo: Repository, *, logger: StructuredLogger | None = None) -> None:
        self.repo = repo
        self.logger = logger or StructuredLogger()

    # ------------------------------------------------------------------
    # Account types & allocation settings
    # ------------------------------------------------------------------
    def enabled_accounts(self, family_id: int) -> Optional[EnabledAccounts]:
        account_types = self.repo.get_account_types(family_id)
        return enabled_of(account_types) if account_types else None

    def default_percentages(self, family_id: int) -> Percentages:
        enabled = self.enabled_accounts(family_id)
        if enabled is None or enabled.all_enabled:
            return Percentages.from_mapping(DEFAULT_ALLOCATION)
        return redistribute(enabled)

    def _ensure_allocation(self, child: Child) -> AllocationSettings:
        settings = self.repo.get_allocation(child.id)
        if settings is None:
            settings = write_percentages(AllocationSettings(child_id=child.id), self.default_percentages(child.family_id))
            self.repo.add(settings)
        return settings

    def get_allocation(self, actor: Actor, child_id: int) -> AllocationSettings:
        child = self._readable_child(actor, child_id)
        settings = self.repo.get_allocation(child.id)
        if settings is None:
            with self.repo.transaction():
                settings = self._ensure_allocation(child)
        return settings

    def update_allocation(self, actor: Actor, child_id: int, updates: Mapping[str, Optional[int]]) -> AllocationSettings:
        """Overwrite a child's percentage split after validating it."""

        require_parent(actor, "Only parents can update allocation settings")
        child = family_child(self.repo, actor, child_id)
        current = self.repo.get_allocation(child.id)
        base = percentages_of(current) if current else self.default_percentages(child.family_id)
        merged = base.as_dict()
        for key, value in updates.items():
            if key not in merged:
                raise ValidationError(f"Unknown account: {key}", code="INVALID_PERCENTAGES")
            if value is not None:
                merged[key] = value
        percentages = validate_percentages(Percentages(**merged), self.enabled_accounts(child.family_id))
        with self.repo.transaction():
            settings = current or AllocationSettings(child_id=child.id)
            write_percentages(settings, percentages)
            self.repo.add(settings)
        self.logger.log("allocation_updated", child=child.id, **percentages.as_dict())
        return settings

    def get_account_types(self, actor: Actor, family_id: int) -> AccountTypes:
        require_family(actor, family_id)
        account_types = self.repo.get_account_types(family_id)
        if account_types is None:
            # Existing children are rebalanced to the default toggles as well.
            account_types = self._set_account_types(family_id, EnabledAccounts(**DEFAULT_ACCOUNT_TYPES))
        return account_types

    def update_account_types(self, actor: Actor, family_id: int, enabled: EnabledAccounts) -> AccountTypes:
        """Persist new account toggles and rebalance every child's split to match."""

        require_parent(actor, "Only parents can update account types")
        require_family(actor, family_id)
        return self._set_account_types(family_id, enabled)

    def _set_account_types(self, family_id: int, enabled: EnabledAccounts) -> AccountTypes:
        percentages = redistribute(enabled)
        children = self.repo.list_children(family_id)
        with self.repo.transaction():
            for child in children:
                settings = self.repo.get_allocation(child.id) or AllocationSettings(child_id=child.id)
                write_percentages(settings, percentages)
                self.repo.add(settings)
            account_types = self.repo.get_account_types(family_id) or AccountTypes(family_id=family_id)
            for key in ACCOUNT_KEYS:
                setattr(account_types, f"{key}_enabled", getattr(enabled, key))
            self.repo.add(account_types)
        self.logger.log(
            "allocation_redistributed",
            family=family_id,
            children=[child.id for child in children],
            **percentages.as_dict(),
        )
        return account_types

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------
    def _readable_child(self, actor: Actor, child_id: int) -> Child:
        child = family_child(self.repo, actor, child_id)
        if not actor.is_parent and child.user_id != actor.user_id:
            raise ForbiddenError("Children can only view their own records.")
        return child

    def list_children(self, actor: Actor) -> List[Child]:
        return self.repo.list_children(actor.family_id)

    def get_child(self, actor: Actor, child_id: int) -> Child:
        return family_child(self.repo, actor, child_id)

    def _unique_username(self, name: str) -> str:
        base = re.sub(r"\s+", "", name.lower()) or "child"
        candidate, suffix = base, 2
        while self.repo.get_user_by_username(candidate) is not None:
            candidate = f"{base}{suffix}"
            suffix += 1
        return candidate

    def create_child(self, actor: Actor, *, name: str, age: int) -> Tuple[Child, User]:
        """Add a child profile with its login user and default allocation."""

        require_parent(actor, "Only parents can add children")
        name = name.strip()
        if not name:
            raise ValidationError("Child name is required.")
        percentages = self.default_percentages(actor.family_id)
        with self.repo.transaction():
            user = User(
                username=self._unique_username(name),
                password_hash=hash_password(DEFAULT_CHILD_PASSWORD),
                role=Role.CHILD.value,
                family_id=actor.family_id,
                name=name,
                age=age,
            )
            self.repo.add(user)
            self.repo.flush()
            child = Child(user_id=user.id, family_id=actor.family_id, name=name, age=age)
            self.repo.add(child)
            self.repo.flush()
            self.repo.add(write_percentages(AllocationSettings(child_id=child.id), percentages))
        self.logger.log("child_created", child=child.id, family=actor.family_id, username=user.username)
        return child, user

    def update_child(self, actor: Actor, child_id: int, *, name: Optional[str] = None, age: Optional[int] = None) -> Child:
        require_parent(actor, "Only parents can update children")
        child = family_child(self.repo, actor, child_id)
        if name is not None and not name.strip():
            raise ValidationError("Child name is required.")
        with self.repo.transaction():
            if name is not None:
                child.name = name.strip()
            if age is not None:
                child.age = age
            self.repo.add(child)
            if child.user_id is not None:
                user = self.repo.get_user(child.user_id)
                if user is not None:
                    user.name = child.name
                    user.age = child.age
                    self.repo.add(user)
        return child

    def delete_child(self, actor: Actor, child_id: int) -> None:
        require_parent(actor, "Only parents can remove children")
        child = family_child(self.repo, actor, child_id)
        with self.repo.transaction():
            self.repo.delete_child_records(child)
        self.logger.log("child_deleted", child=child_id, family=actor.family_id)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    def list_jobs(self, actor: Actor) -> List[Job]:
        if actor.is_parent:
            return self.repo.list_jobs_for_family(actor.family_id)
        return self.repo.list_jobs_for_child(own_child(self.repo, actor).id)

    def create_job(
        self,
        actor: Actor,
        *,
        title: str,
        amount_cents: int,
        assigned_to_id: int,
        description: Optional[str] = None,
        recurrence: Recurrence = Recurrence.ONCE,
        icon: Optional[str] = None,
    ) -> Job:
        require_parent(actor, "Only parents can create jobs")
        if amount_cents <= 0:
            raise ValidationError("Job amount must be greater than zero.")
        if not title.strip():
            raise ValidationError("Job title is required.")
        child = family_child(self.repo, actor, assigned_to_id)
        job = Job(
            title=title.strip(),
            description=description,
            amount_cents=amount_cents,
            status=JobStatus.ASSIGNED.value,
            recurrence=Recurrence(recurrence).value,
            assigned_to_id=child.id,
            family_id=actor.family_id,
            icon=icon or DEFAULT_JOB_ICON,
        )
        with self.repo.transaction():
            self.repo.add(job)
        self.logger.log("job_created", job=job.id, child=child.id, amount_cents=amount_cents)
        return job

    def update_job(
        self,
        actor: Actor,
        job_id: int,
        changes: Mapping[str, Any],
        *,
        custom_allocation: Optional[Split] = None,
    ) -> Job:
        """Apply field and status changes; moving to ``approved`` pays the child."""

        unknown = set(changes) - _JOB_FIELDS
        if unknown:
            raise ValidationError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        job = family_job(self.repo, actor, job_id)
        current = JobStatus(job.status)
        try:
            target = JobStatus(changes["status"]) if changes.get("status") is not None else current
            if changes.get("recurrence") is not None:
                Recurrence(changes["recurrence"])
        except ValueError as exc:
            raise ValidationError(str(exc), code="INVALID_STATUS") from exc
        status_changes = target is not current
        if actor.is_parent and current is JobStatus.APPROVED and changes.get("status") == JobStatus.APPROVED.value:
            if self.repo.get_payment_for_job(job.id) is not None:
                raise ValidationError("This job has already been paid.", code="DUPLICATE_PAYMENT")
            raise ValidationError("Job is already approved.", code="INVALID_STATUS")

        if actor.is_parent:
            if status_changes and not current.can_advance_to(target):
                raise ValidationError(
                    f"Cannot move a job from {current.value} to {target.value}.", code="INVALID_STATUS"
                )
        else:
            child = own_child(self.repo, actor)
            if job.assigned_to_id != child.id:
                raise NotFoundError("Job not found")
            if set(changes) - {"status"}:
                raise ForbiddenError("Children can only update the status of their jobs.")
            if status_changes and target not in CHILD_SETTABLE_STATUSES:
                raise ForbiddenError("Only parents can approve jobs.")
            if status_changes and not current.can_advance_to(target):
                raise ValidationError(
                    f"Cannot move a job from {current.value} to {target.value}.", code="INVALID_STATUS"
                )

        approving = status_changes and target is JobStatus.APPROVED
        if custom_allocation is not None and not approving:
            raise ValidationError("A custom allocation can only be supplied when approving a job.")
        if current is JobStatus.APPROVED:
            for locked in ("amount_cents", "assigned_to_id"):
                if changes.get(locked) is not None and changes[locked] != getattr(job, locked):
                    raise ValidationError("Approved jobs cannot change amount or assignee.", code="INVALID_STATUS")

        amount_cents = changes.get("amount_cents")
        if amount_cents is not None and amount_cents <= 0:
            raise ValidationError("Job amount must be greater than zero.")
        assignee_id = changes.get("assigned_to_id")
        if assignee_id is not None:
            family_child(self.repo, actor, assignee_id)
        if custom_allocation is not None:
            validate_split(amount_cents or job.amount_cents, custom_allocation)
        if approving and self.repo.get_payment_for_job(job.id) is not None:
            raise ValidationError("This job has already been paid.", code="DUPLICATE_PAYMENT")

        try:
            with self.repo.transaction():
                for key in ("title", "description", "amount_cents", "recurrence", "icon", "assigned_to_id"):
                    if changes.get(key) is not None:
                        value = changes[key]
                        setattr(job, key, value.value if isinstance(value, Recurrence) else value)
                payment = self._create_payment(job, custom_allocation) if approving else None
                job.status = target.value
                self.repo.add(job)
        except IntegrityError as exc:
            raise ValidationError("This job has already been paid.", code="DUPLICATE_PAYMENT") from exc
        if payment is not None:
            self.logger.log(
                "payment_created",
                job=job.id,
                child=payment.child_id,
                amount_cents=payment.amount_cents,
                custom=custom_allocation is not None,
                **{f"{key}_cents": value for key, value in split_of(payment)},
            )
        elif status_changes:
            self.logger.log("job_status_changed", job=job.id, status=target.value, by=actor.role.value)
        return job

    def approve_job(self, actor: Actor, job_id: int, *, custom_allocation: Optional[Split] = None) -> Job:
        return self.update_job(actor, job_id, {"status": JobStatus.APPROVED.value}, custom_allocation=custom_allocation)

    def _create_payment(self, job: Job, custom_allocation: Optional[Split]) -> Payment:
        """Stage the payment for ``job`` and credit the child's balances."""

        if self.repo.get_payment_for_job(job.id) is not None:
            raise ValidationError("This job has already been paid.", code="DUPLICATE_PAYMENT")
        child = self.repo.get_child(job.assigned_to_id)
        if child is None:
            raise NotFoundError("Child not found")
        if custom_allocation is not None:
            split = validate_split(job.amount_cents, custom_allocation)
        else:
            split = split_by_percentages(job.amount_cents, percentages_of(self._ensure_allocation(child)))
        payment = Payment(
            job_id=job.id,
            child_id=child.id,
            amount_cents=job.amount_cents,
            **{f"{key}_cents": value for key, value in split},
        )
        self.repo.add(payment)
        self.repo.flush()
        self.repo.increment_child(
            child,
            {"total_earned_cents": job.amount_cents, "completed_jobs": 1, **balance_deltas(split)},
        )
        award_milestones(self.repo, child.id, child.completed_jobs, JOB_MILESTONES)
        return payment

    def delete_job(self, actor: Actor, job_id: int) -> None:
        """Delete a job, reversing its payment first when it was approved."""

        require_parent(actor, "Only parents can delete jobs")
        job = family_job(self.repo, actor, job_id)
        reversed_payment: Optional[Payment] = None
        with self.repo.transaction():
            if job.status == JobStatus.APPROVED.value:
                payment = self.repo.get_payment_for_job(job.id)
                child = self.repo.get_child(payment.child_id) if payment else None
                if payment is None or child is None:
                    self.logger.warning(
                        "payment_missing_for_approved_job",
                        job=job.id,
                        payment=payment.id if payment else None,
                        child=job.assigned_to_id,
                    )
                else:
                    self.repo.increment_child(
                        child,
                        {
                            "total_earned_cents": -payment.amount_cents,
                            "completed_jobs": -1,
                            **balance_deltas(split_of(payment).negated()),
                        },
                        floor_at_zero=("completed_jobs",),
                    )
                    reversed_payment = payment
            self.repo.delete_payments_for_job(job.id)
            self.repo.delete(job)
        if reversed_payment is not None:
            self.logger.log(
                "job_reversed",
                job=job_id,
                child=reversed_payment.child_id,
                amount_cents=reversed_payment.amount_cents,
            )
        else:
            self.logger.log("job_deleted", job=job_id)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------
    def list_payments(self, actor: Actor) -> List[Payment]:
        if actor.is_parent:
            return self.repo.list_payments_for_family(actor.family_id)
        return self.repo.list_payments_for_child(own_child(self.repo, actor).id)

    def get_payment_for_job(self, actor: Actor, job_id: int) -> Payment:
        job = family_job(self.repo, actor, job_id)
        if not actor.is_parent and own_child(self.repo, actor).id != job.assigned_to_id:
            raise NotFoundError("Job not found")
        payment = self.repo.get_payment_for_job(job.id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    def update_payment_allocation(self, actor: Actor, job_id: int, split: Split) -> Payment:
        """Retroactively change how an approved job's payment is split."""

        require_parent(actor, "Only parents can edit payments")
        job = family_job(self.repo, actor, job_id)
        payment = self.repo.get_payment_for_job(job.id)
        if payment is None or job.status != JobStatus.APPROVED.value:
            raise NotFoundError("Payment not found")
        validate_split(job.amount_cents, split)
        child = self.repo.get_child(payment.child_id)
        if child is None:
            raise NotFoundError("Child not found")
        delta = split.minus(split_of(payment))
        with self.repo.transaction():
            self.repo.increment_child(child, balance_deltas(delta))
            for key, value in split:
                setattr(payment, f"{key}_cents", value)
            self.repo.add(payment)
        self.logger.log(
            "payment_updated",
            job=job.id,
            child=child.id,
            **{f"{key}_delta_cents": value for key, value in delta},
        )
        return payment

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    def dashboard_stats(self, actor: Actor, child_id: Optional[int] = None) -> DashboardStats:
        if actor.is_parent:
            if child_id is None:
                children = self.repo.list_children(actor.family_id)
                if not children:
                    raise NotFoundError("No child found")
                child = children[0]
            else:
                child = family_child(self.repo, actor, child_id)
        else:
            child = own_child(self.repo, actor)
        jobs = self.repo.list_jobs_for_child(child.id)
        return DashboardStats(
            child=child,
            allocation=self.repo.get_allocation(child.id),
            active_jobs=[job for job in jobs if job.status != JobStatus.APPROVED.value],
            total_earned_cents=child.total_earned_cents,
            completed_jobs=child.completed_jobs,
            learning_streak=child.learning_streak,
            achievements=self.repo.list_achievements(child.id)[:3],
            learning_progress=self.repo.list_progress(child.id),
        )


__all__ = [
    "Bookkeeper",
    "DashboardStats",
    "balance_deltas",
    "balances_of",
    "enabled_of",
    "percentages_of",
    "split_of",
    "write_percentages",
]
