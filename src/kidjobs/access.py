"""Role and family scoping checks shared by the KidJobs services."""

from __future__ import annotations

from typing import Optional

from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .models import Actor
from .repository import Repository
from .webapp.persistence import Child, Job


def require_parent(actor: Actor, message: str = "Only parents can do that.") -> None:
    if not actor.is_parent:
        raise ForbiddenError(message)


def require_family(actor: Actor, family_id: int) -> None:
    if actor.family_id != family_id:
        raise ForbiddenError("Access denied")


def family_child(repo: Repository, actor: Actor, child_id: int) -> Child:
    """Return the child when it belongs to the caller's family.

    Children of other families are reported as missing rather than forbidden.
    """

    child = repo.get_child(child_id)
    if child is None or child.family_id != actor.family_id:
        raise NotFoundError("Child not found")
    return child


def own_child(repo: Repository, actor: Actor) -> Child:
    """Return the child profile linked to a child-role user."""

    child = repo.get_child_for_user(actor.user_id)
    if child is None or child.family_id != actor.family_id:
        raise NotFoundError("Child profile not found")
    return child


def target_child(repo: Repository, actor: Actor, child_id: Optional[int]) -> Child:
    """Resolve the child a read should be scoped to.

    Parents must name the child; children always get their own profile.
    """

    if actor.is_parent:
        if child_id is None:
            raise ValidationError("Child ID required for parents")
        return family_child(repo, actor, child_id)
    child = own_child(repo, actor)
    if child_id is not None and child_id != child.id:
        raise ForbiddenError("Children can only view their own records.")
    return child


def family_job(repo: Repository, actor: Actor, job_id: int) -> Job:
    job = repo.get_job(job_id)
    if job is None or job.family_id != actor.family_id:
        raise NotFoundError("Job not found")
    return job


__all__ = [
    "family_child",
    "family_job",
    "own_child",
    "require_family",
    "require_parent",
    "target_child",
]
