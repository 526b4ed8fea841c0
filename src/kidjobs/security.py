"""Password hashing and login throttling for KidJobs users."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash


def hash_password(password: str) -> str:
    """Return a salted hash of ``password`` suitable for the ``User`` table."""

    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        # Unknown or malformed hash method.
        return False


class AuthManager:
    """Throttle repeated failed logins per username."""

    def __init__(self, *, max_attempts: int = 5, lockout_minutes: int = 15) -> None:
        self._max_attempts = max_attempts
        self._lockout_window = timedelta(minutes=lockout_minutes)
        self._login_attempts: Dict[str, Deque[datetime]] = {}

    def record_login_attempt(self, username: str, *, success: bool, at: Optional[datetime] = None) -> bool:
        """Record a login attempt and return whether further attempts are allowed."""

        now = at or datetime.now(timezone.utc)
        bucket = self._login_attempts.setdefault(username, deque())
        self._prune(bucket, now)
        if success:
            bucket.clear()
            return True
        bucket.append(now)
        return len(bucket) < self._max_attempts

    def is_locked(self, username: str, *, at: Optional[datetime] = None) -> bool:
        """Return ``True`` when ``username`` is currently locked out."""

        now = at or datetime.now(timezone.utc)
        bucket = self._login_attempts.get(username)
        if not bucket:
            return False
        self._prune(bucket, now)
        return len(bucket) >= self._max_attempts

    def reset(self) -> None:
        self._login_attempts.clear()

    def _prune(self, bucket: Deque[datetime], now: datetime) -> None:
        while bucket and now - bucket[0] > self._lockout_window:
            bucket.popleft()


__all__ = ["AuthManager", "hash_password", "verify_password"]
