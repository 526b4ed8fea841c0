"""Custom exception hierarchy for the KidJobs package."""

from __future__ import annotations


class KidJobsError(Exception):
    """Base class for all KidJobs specific errors."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ValidationError(KidJobsError):
    """Raised when a request is rejected before any write takes place."""

    status_code = 400
    default_code = "INVALID_REQUEST"


class NotFoundError(KidJobsError):
    """Raised when a job, child, payment or lesson lookup fails."""

    status_code = 404
    default_code = "NOT_FOUND"


class ForbiddenError(KidJobsError):
    """Raised when the caller's role or family does not permit an action."""

    status_code = 403
    default_code = "FORBIDDEN"


class AuthenticationError(KidJobsError):
    """Raised when no user is logged in or the credentials are wrong."""

    status_code = 401
    default_code = "UNAUTHENTICATED"
