from datetime import datetime
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, delete

from kidjobs.models import Role
from kidjobs.security import hash_password
from kidjobs.webapp import (
    AccountTypes,
    Achievement,
    AllocationSettings,
    Child,
    Family,
    Job,
    LearningProgress,
    Lesson,
    Payment,
    Quiz,
    User,
    app,
    auth_manager,
    engine,
    event_log,
    initialise_storage,
)

PARENT_PASSWORD = "parent-pass"
CHILD_PASSWORD = "kidpass123"


@pytest.fixture(autouse=True)
def clean_database() -> None:
    with Session(engine) as session:
        for model in (
            Achievement,
            LearningProgress,
            Quiz,
            Lesson,
            Payment,
            Job,
            AllocationSettings,
            AccountTypes,
            Child,
            User,
            Family,
        ):
            session.exec(delete(model))
        session.commit()
    auth_manager.reset()
    event_log.clear()
    initialise_storage()


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


def _create_parent(username: str = "mom", family_name: str = "Rivera") -> Dict[str, int]:
    with Session(engine) as session:
        family = Family(name=family_name)
        session.add(family)
        session.commit()
        session.refresh(family)
        user = User(
            username=username,
            password_hash=hash_password(PARENT_PASSWORD),
            role=Role.PARENT.value,
            family_id=family.id,
            name="Mom",
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return {"family_id": family.id, "user_id": user.id}


def _login(client: TestClient, username: str, password: str = PARENT_PASSWORD) -> Dict[str, Any]:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def _setup_family(client: TestClient) -> Dict[str, Any]:
    ids = _create_parent()
    _login(client, "mom")
    response = client.put(
        f"/api/account-types/{ids['family_id']}",
        json={"spendingEnabled": True, "savingsEnabled": True, "rothIraEnabled": True, "brokerageEnabled": True},
    )
    assert response.status_code == 200, response.text
    child = client.post("/api/children", json={"name": "Emma", "age": 10}).json()
    response = client.patch(
        f"/api/allocation/{child['id']}",
        json={"spendingPercentage": 20, "savingsPercentage": 30, "rothIraPercentage": 25, "brokeragePercentage": 25},
    )
    assert response.status_code == 200, response.text
    job = client.post(
        "/api/jobs",
        json={"title": "Clean your room", "amount": "10.00", "assignedToId": child["id"]},
    ).json()
    return {**ids, "child": child, "job": job}


def test_health_reports_migrations(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "ok"
    assert "payment_job_unique" in body["migrations"]


def test_requires_login(client: TestClient) -> None:
    response = client.get("/api/jobs")

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"


def test_login_me_logout(client: TestClient) -> None:
    ids = _create_parent()

    user = _login(client, "mom")
    assert user["role"] == "parent"
    assert client.get("/api/auth/me").json()["familyId"] == ids["family_id"]

    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401


def test_login_lockout(client: TestClient) -> None:
    _create_parent()

    for _ in range(5):
        response = client.post("/api/auth/login", json={"username": "mom", "password": "nope"})
        assert response.status_code == 401
    response = client.post("/api/auth/login", json={"username": "mom", "password": PARENT_PASSWORD})

    assert response.status_code == 401
    assert response.json()["code"] == "LOCKED_OUT"
    assert event_log.events("login_locked")


def test_approve_job_splits_payment(client: TestClient) -> None:
    family = _setup_family(client)
    job_id = family["job"]["id"]
    child_id = family["child"]["id"]

    response = client.patch(f"/api/jobs/{job_id}", json={"status": "approved"})
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "approved"

    payment = client.get(f"/api/payments/job/{job_id}").json()
    assert payment["amount"] == "10.00"
    assert [payment[key] for key in ("spendingAmount", "savingsAmount", "rothIraAmount", "brokerageAmount")] == [
        "2.00",
        "3.00",
        "2.50",
        "2.50",
    ]
    child = client.get(f"/api/children/{child_id}").json()
    assert child["totalEarned"] == "10.00"
    assert child["completedJobs"] == 1
    assert child["rothIraBalance"] == "2.50"

    again = client.patch(f"/api/jobs/{job_id}", json={"status": "approved"})
    assert again.status_code == 400
    assert again.json()["code"] == "DUPLICATE_PAYMENT"


def test_created_job_keeps_its_timestamp(client: TestClient) -> None:
    family = _setup_family(client)
    created_at = family["job"]["createdAt"]

    assert datetime.fromisoformat(created_at).tzinfo is not None
    listed = client.get("/api/jobs").json()
    assert [job["createdAt"] for job in listed] == [created_at]

    client.patch(f"/api/jobs/{family['job']['id']}", json={"status": "approved"})
    payment = client.get(f"/api/payments/job/{family['job']['id']}").json()
    assert datetime.fromisoformat(payment["createdAt"]) >= datetime.fromisoformat(created_at)


def test_custom_allocation_on_approval(client: TestClient) -> None:
    family = _setup_family(client)
    job_id = family["job"]["id"]

    bad = client.patch(
        f"/api/jobs/{job_id}",
        json={
            "status": "approved",
            "customAllocation": {
                "spendingAmount": "1.00",
                "savingsAmount": "1.00",
                "rothIraAmount": "1.00",
                "brokerageAmount": "1.00",
            },
        },
    )
    assert bad.status_code == 400
    assert bad.json()["code"] == "INVALID_ALLOCATION"
    assert "must equal job amount" in bad.json()["message"]
    assert client.get(f"/api/payments/job/{job_id}").status_code == 404

    good = client.patch(
        f"/api/jobs/{job_id}",
        json={
            "status": "approved",
            "customAllocation": {
                "spendingAmount": "5.00",
                "savingsAmount": "5.00",
                "rothIraAmount": "0",
                "brokerageAmount": 0,
            },
        },
    )
    assert good.status_code == 200, good.text
    assert client.get(f"/api/payments/job/{job_id}").json()["savingsAmount"] == "5.00"


def test_edit_payment_allocation(client: TestClient) -> None:
    family = _setup_family(client)
    job_id = family["job"]["id"]
    child_id = family["child"]["id"]
    client.patch(f"/api/jobs/{job_id}", json={"status": "approved"})

    response = client.patch(
        f"/api/payments/job/{job_id}",
        json={"spendingAmount": "0.00", "savingsAmount": "5.00", "rothIraAmount": "2.50", "brokerageAmount": "2.50"},
    )

    assert response.status_code == 200, response.text
    child = client.get(f"/api/children/{child_id}").json()
    assert child["spendingBalance"] == "0.00"
    assert child["savingsBalance"] == "5.00"
    assert child["totalEarned"] == "10.00"


def test_delete_approved_job_reverses_balances(client: TestClient) -> None:
    family = _setup_family(client)
    job_id = family["job"]["id"]
    child_id = family["child"]["id"]
    client.patch(f"/api/jobs/{job_id}", json={"status": "approved"})

    response = client.delete(f"/api/jobs/{job_id}")

    assert response.status_code == 200
    child = client.get(f"/api/children/{child_id}").json()
    assert child["totalEarned"] == "0.00"
    assert child["completedJobs"] == 0
    assert child["spendingBalance"] == "0.00"
    assert client.get(f"/api/payments/job/{job_id}").status_code == 404
    assert client.get("/api/payments").json() == []


def test_allocation_validation_messages(client: TestClient) -> None:
    family = _setup_family(client)
    child_id = family["child"]["id"]

    response = client.patch(f"/api/allocation/{child_id}", json={"spendingPercentage": 10})

    assert response.status_code == 400
    assert response.json() == {"message": "Percentages must sum to 100 (got 90).", "code": "INVALID_PERCENTAGES"}
    assert client.get(f"/api/allocation/{child_id}").json()["spendingPercentage"] == 20

    out_of_range = client.patch(f"/api/allocation/{child_id}", json={"spendingPercentage": 150})
    assert out_of_range.status_code == 400
    assert out_of_range.json()["code"] == "INVALID_REQUEST"


def test_account_type_toggle(client: TestClient) -> None:
    family = _setup_family(client)
    family_id = family["family_id"]
    child_id = family["child"]["id"]

    response = client.put(
        f"/api/account-types/{family_id}",
        json={"spendingEnabled": True, "savingsEnabled": True, "rothIraEnabled": False, "brokerageEnabled": False},
    )
    assert response.status_code == 200
    assert response.json()["rothIraEnabled"] is False
    allocation = client.get(f"/api/allocation/{child_id}").json()
    assert [allocation[key] for key in ("spendingPercentage", "savingsPercentage", "rothIraPercentage", "brokeragePercentage")] == [
        50,
        50,
        0,
        0,
    ]

    none = client.put(
        f"/api/account-types/{family_id}",
        json={"spendingEnabled": False, "savingsEnabled": False, "rothIraEnabled": False, "brokerageEnabled": False},
    )
    assert none.status_code == 400
    assert none.json()["code"] == "NO_ACCOUNTS_ENABLED"

    other = _create_parent(username="dad", family_name="Other")
    foreign = client.put(
        f"/api/account-types/{other['family_id']}",
        json={"spendingEnabled": True, "savingsEnabled": True, "rothIraEnabled": True, "brokerageEnabled": True},
    )
    assert foreign.status_code == 403


def test_child_job_workflow(client: TestClient) -> None:
    family = _setup_family(client)
    job_id = family["job"]["id"]
    username = family["child"]["username"]
    assert username == "emma"
    client.post("/api/auth/logout")

    me = _login(client, username, CHILD_PASSWORD)
    assert me["role"] == "child"
    assert [job["id"] for job in client.get("/api/jobs").json()] == [job_id]

    assert client.patch(f"/api/jobs/{job_id}", json={"status": "completed"}).status_code == 200
    forbidden = client.patch(f"/api/jobs/{job_id}", json={"status": "approved"})
    assert forbidden.status_code == 403
    assert client.delete(f"/api/jobs/{job_id}").status_code == 403

    dashboard = client.get("/api/dashboard-stats").json()
    assert dashboard["child"]["name"] == "Emma"
    assert [job["status"] for job in dashboard["activeJobs"]] == ["completed"]


def test_invalid_request_bodies(client: TestClient) -> None:
    family = _setup_family(client)

    response = client.post(
        "/api/jobs",
        json={"title": "Rake leaves", "amount": "lots", "assignedToId": family["child"]["id"]},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"

    bad_status = client.patch(f"/api/jobs/{family['job']['id']}", json={"status": "done"})
    assert bad_status.status_code == 400
    assert bad_status.json()["code"] == "INVALID_STATUS"

    missing = client.patch("/api/jobs/999999", json={"status": "completed"})
    assert missing.status_code == 404


def test_learning_endpoints(client: TestClient) -> None:
    family = _setup_family(client)
    child_id = family["child"]["id"]
    lessons = client.get("/api/lessons").json()
    assert len(lessons) == 5
    lesson_id = lessons[0]["id"]
    answers = [quiz["correctAnswer"] for quiz in client.get(f"/api/lessons/{lesson_id}/quizzes").json()]

    created = client.post(
        "/api/lessons",
        json={
            "category": "saving",
            "title": "Saving for a bike",
            "content": "Set a goal and save a little each week.",
            "quizzes": [{"question": "What helps you save?", "options": ["A goal", "Candy"], "correctAnswer": 0}],
        },
    )
    assert created.status_code == 201, created.text
    assert created.json()["isCustom"] is True

    client.post("/api/auth/logout")
    _login(client, "emma", CHILD_PASSWORD)
    quizzes = client.get(f"/api/lessons/{lesson_id}/quizzes").json()
    assert all("correctAnswer" not in quiz for quiz in quizzes)

    result = client.post(f"/api/lessons/{lesson_id}/complete", json={"answers": answers})
    assert result.status_code == 200, result.text
    body = result.json()
    assert body["passed"] is True
    assert body["learningStreak"] == 1
    assert [item["title"] for item in body["newAchievements"]] == ["First Lesson"]

    assert [item["lessonId"] for item in client.get("/api/learning-progress").json()] == [lesson_id]
    assert client.get(f"/api/achievements?childId={child_id}").status_code == 200
    assert len(client.get("/api/lessons?category=saving").json()) == 2


def test_parent_progress_requires_child_id(client: TestClient) -> None:
    _setup_family(client)

    response = client.get("/api/learning-progress")

    assert response.status_code == 400
    assert response.json()["message"] == "Child ID required for parents"


def test_children_crud(client: TestClient) -> None:
    family = _setup_family(client)
    child_id = family["child"]["id"]

    second = client.post("/api/children", json={"name": "Emma", "age": 6})
    assert second.status_code == 201
    assert second.json()["username"] == "emma2"
    assert len(client.get("/api/children").json()) == 2

    renamed = client.patch(f"/api/children/{child_id}", json={"name": "Emmy"})
    assert renamed.json()["name"] == "Emmy"

    assert client.delete(f"/api/children/{child_id}").status_code == 200
    assert client.get(f"/api/children/{child_id}").status_code == 404
    assert client.get("/api/jobs").json() == []


def test_web_package_exports() -> None:
    import kidjobs.webapp as webapp

    assert webapp.app is app
    assert "seed_demo_family" in dir(webapp)
    with pytest.raises(AttributeError):
        getattr(webapp, "not_a_table")
