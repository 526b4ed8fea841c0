from datetime import datetime, timedelta, timezone

from kidjobs.security import AuthManager, hash_password, verify_password


def test_password_hash_verifies_only_the_original_password() -> None:
    stored = hash_password("kidpass123")

    assert stored != "kidpass123"
    assert verify_password("kidpass123", stored)
    assert not verify_password("kidpass124", stored)
    assert hash_password("kidpass123") != stored


def test_malformed_hash_never_verifies() -> None:
    assert not verify_password("anything", "")
    assert not verify_password("anything", "unused")
    assert not verify_password("anything", "rot13$salt$digest")


def test_lockout_expires_after_window() -> None:
    auth = AuthManager(max_attempts=2, lockout_minutes=15)
    start = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

    assert auth.record_login_attempt("emma", success=False, at=start)
    assert not auth.record_login_attempt("emma", success=False, at=start + timedelta(minutes=1))
    assert auth.is_locked("emma", at=start + timedelta(minutes=2))
    assert not auth.is_locked("emma", at=start + timedelta(minutes=17))
    assert not auth.is_locked("jake", at=start)
