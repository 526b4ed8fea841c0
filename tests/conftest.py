import os
import tempfile
from pathlib import Path
from typing import Iterator

import pytest

# The web package reads its configuration at import time.
_DB_DIR = Path(tempfile.mkdtemp(prefix="kidjobs-tests-"))
os.environ["KIDJOBS_DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'kidjobs-test.db'}"
os.environ["KIDJOBS_SEED_DEMO"] = "0"
os.environ["KIDJOBS_DEFAULT_CHILD_PASSWORD"] = "kidpass123"
os.environ.setdefault("SESSION_SECRET", "test-session-secret")

from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import create_engine  # noqa: E402

from kidjobs.models import Actor, Role  # noqa: E402
from kidjobs.ops import StructuredLogger  # noqa: E402
from kidjobs.repository import Repository  # noqa: E402
from kidjobs.webapp.persistence import Family, User, create_db_and_tables, open_session  # noqa: E402


@pytest.fixture()
def repo() -> Iterator[Repository]:
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(engine)
    with open_session(engine) as session:
        yield Repository(session)
    engine.dispose()


@pytest.fixture()
def event_log() -> StructuredLogger:
    return StructuredLogger()


def make_parent(repo: Repository, name: str = "Test Family") -> Actor:
    with repo.transaction():
        family = Family(name=name)
        repo.add(family)
        repo.flush()
        parent = User(
            username=f"parent-{family.id}",
            password_hash="unused",
            role=Role.PARENT.value,
            family_id=family.id,
            name="Parent",
        )
        repo.add(parent)
    return Actor(user_id=parent.id, role=Role.PARENT, family_id=family.id)


def child_actor(user: User) -> Actor:
    return Actor(user_id=user.id, role=Role.CHILD, family_id=user.family_id)
