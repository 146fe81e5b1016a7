"""
HTTP adapter tests
Requests go through the real routers with the test database session
"""

import runpy

import uvicorn
from fastapi.testclient import TestClient

import app as app_module
from app import app
from services.subscriptions import open_subscription


def _webhook(client, user, course=None, plan=None, txn="txn-api-1", status="completed", amount=1999, **extra):
    payload = {
        "transaction_id": txn,
        "user_id": str(user.id),
        "amount": amount,
        "method": "paypal",
        "status": status,
    }
    if course is not None:
        payload["course_id"] = str(course.id)
    if plan is not None:
        payload["plan_id"] = str(plan.id)
    payload.update(extra)
    return client.post("/api/v1/payments/webhook", json=payload)


class TestAuthentication:
    def test_missing_api_key(self, test_db):
        with TestClient(app) as anonymous:
            response = anonymous.post("/api/v1/payments/webhook", json={})
        assert response.status_code == 401

    def test_wrong_api_key(self, test_db):
        with TestClient(app, headers={"Authorization": "Bearer nope"}) as stranger:
            response = stranger.get("/api/v1/access/00000000-0000-0000-0000-000000000000/00000000-0000-0000-0000-000000000000")
        assert response.status_code == 401

    def test_health_needs_no_key(self, test_db):
        with TestClient(app) as anonymous:
            response = anonymous.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "ok"


class TestEntrypoint:
    def test_main_serves_with_uvicorn(self, monkeypatch):
        served = []
        monkeypatch.setattr(uvicorn, "run", lambda target, **options: served.append(options))

        runpy.run_path(app_module.__file__, run_name="__main__")

        assert served == [{"host": "0.0.0.0", "port": 8000}]


class TestPaymentWebhook:
    def test_apply_then_replay(self, client, make_user, make_course):
        user = make_user()
        course, _ = make_course()

        first = _webhook(client, user, course=course)
        second = _webhook(client, user, course=course)

        assert first.status_code == 200
        assert first.json()["applied"] is True
        assert first.json()["enrollment_id"] is not None
        assert second.status_code == 200
        assert second.json()["applied"] is False
        assert second.json()["message"] == "duplicate"

    def test_both_targets_rejected(self, client, make_user, make_course, make_plan):
        user = make_user()
        course, _ = make_course()
        plan = make_plan()

        response = _webhook(client, user, course=course, plan=plan)

        assert response.status_code == 422
        assert response.json()["error"] == "Validation Error"

    def test_unknown_course(self, client, make_user):
        user = make_user()
        response = client.post(
            "/api/v1/payments/webhook",
            json={
                "transaction_id": "txn-api-missing",
                "user_id": str(user.id),
                "amount": 100,
                "status": "completed",
                "course_id": "00000000-0000-0000-0000-000000000000",
            },
        )
        assert response.status_code == 404
        assert response.json()["entity"] == "course"

    def test_backwards_transition(self, client, make_user, make_course):
        user = make_user()
        course, _ = make_course()
        _webhook(client, user, course=course, txn="txn-api-2")

        response = _webhook(client, user, course=course, txn="txn-api-2", status="pending")

        assert response.status_code == 409

    def test_access_after_payment(self, client, make_user, make_course):
        user = make_user()
        course, _ = make_course()
        url = f"/api/v1/access/{user.id}/{course.id}"

        assert client.get(url).json()["has_access"] is False
        _webhook(client, user, course=course, txn="txn-api-3")
        assert client.get(url).json()["has_access"] is True


class TestProgressEndpoint:
    def test_lesson_report(self, client, make_user, make_course):
        user = make_user()
        course, lessons = make_course(lessons_per_module=(4,))

        response = client.post(
            "/api/v1/progress/lessons",
            json={"user_id": str(user.id), "lesson_id": str(lessons[0].id), "completed": True},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["course_id"] == str(course.id)
        assert body["completed_lessons"] == 1
        assert body["total_lessons"] == 4
        assert body["progress_percentage"] == 25.0

    def test_fraction_out_of_range(self, client, make_user, make_course):
        user = make_user()
        _, lessons = make_course()

        response = client.post(
            "/api/v1/progress/lessons",
            json={"user_id": str(user.id), "lesson_id": str(lessons[0].id), "fraction": 1.5},
        )
        assert response.status_code == 422


class TestSubscriptionEndpoints:
    def test_renew_and_cancel(self, client, test_db, make_user, make_plan):
        user = make_user()
        plan = make_plan()
        open_subscription(test_db, user.id, plan.id, "I-API-1")

        renewed = client.post("/api/v1/subscriptions/I-API-1/renew", json={"new_end_time": "2099-01-01T00:00:00"})
        assert renewed.status_code == 200
        assert renewed.json()["status"] == "active"
        assert renewed.json()["end_time"].startswith("2099-01-01")

        cancelled = client.post("/api/v1/subscriptions/I-API-1/cancel", json={})
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "canceled"

    def test_terminal_row_answers_ok(self, client, test_db, make_user, make_plan):
        user = make_user()
        plan = make_plan()
        open_subscription(test_db, user.id, plan.id, "I-API-2")
        client.post("/api/v1/subscriptions/I-API-2/cancel", json={})

        response = client.post("/api/v1/subscriptions/I-API-2/renew", json={"new_end_time": "2099-01-01T00:00:00"})

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["error"] == "AlreadyTerminal"

    def test_unknown_subscription(self, client):
        response = client.post("/api/v1/subscriptions/I-NOPE/cancel", json={})
        assert response.status_code == 404


class TestPasswordResetEndpoints:
    def test_issue_and_redeem_once(self, client, make_user):
        user = make_user()

        issued = client.post("/api/v1/auth/password-reset", json={"user_id": str(user.id)})
        assert issued.status_code == 200
        token = issued.json()["token"]
        assert issued.json()["version"] == 1

        body = {"user_id": str(user.id), "token": token, "new_password": "brand-new-secret"}
        first = client.post("/api/v1/auth/password-reset/redeem", json=body)
        second = client.post("/api/v1/auth/password-reset/redeem", json=body)

        assert first.status_code == 200
        assert first.json()["success"] is True
        assert second.status_code == 409

    def test_unknown_token(self, client, make_user):
        user = make_user()
        client.post("/api/v1/auth/password-reset", json={"user_id": str(user.id)})

        response = client.post(
            "/api/v1/auth/password-reset/redeem", json={"user_id": str(user.id), "token": "guess"}
        )
        assert response.status_code == 404
