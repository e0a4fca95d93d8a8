"""
API tests for submission, progress and health endpoints.

The lifespan is not started; services are wired onto app.state directly.
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.core.config import Settings
from app.domain.grading.entities import TerminationReason
from app.infrastructure.persistence import SqlAlchemyGradingStore
from app.main import create_app
from tests.fixtures.grading_fixtures import BrokenDatabase, FakeExecutor

SECRET = "test-secret-key-for-grading-api-tests"


@pytest.fixture
def settings():
    return Settings(
        secret_key=SECRET,
        environment="development",
        grading_store="memory",
        battery_cache_enabled=False,
    )


@pytest.fixture
def build_client(settings, make_service, grading_store):
    def _build(**service_kwargs) -> TestClient:
        app = create_app(settings)
        app.state.grading = make_service(**service_kwargs)
        app.state.store = grading_store
        app.state.cache = None
        return TestClient(app)
    return _build


@pytest.fixture
def auth_headers(user_id):
    token = jwt.encode({"sub": str(user_id), "type": "access"}, SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def submission_body(challenge_id, **overrides):
    body = {
        "challenge_id": str(challenge_id),
        "markup": "<h1>Hello</h1>",
        "style": "h1 { color: red; }",
        "script": "",
    }
    body.update(overrides)
    return body


class TestSubmissionEndpoints:

    def test_submit_returns_attempt(self, build_client, auth_headers, challenge_id):
        client = build_client()

        response = client.post(
            "/api/v1/submissions", json=submission_body(challenge_id), headers=auth_headers
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pass"
        assert data["score"] == 100.0
        assert data["content_version"] == "v1"
        assert [o["passed"] for o in data["outcomes"]] == [True, True, True]
        assert "X-Request-ID" in response.headers

    def test_requires_bearer_token(self, build_client, challenge_id):
        client = build_client()
        response = client.post("/api/v1/submissions", json=submission_body(challenge_id))
        assert response.status_code == 401

    def test_rejects_token_signed_with_other_key(self, build_client, user_id, challenge_id):
        client = build_client()
        token = jwt.encode({"sub": str(user_id)}, "another-key-another-key-another-key", algorithm="HS256")

        response = client.post(
            "/api/v1/submissions",
            json=submission_body(challenge_id),
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 401

    def test_rejects_refresh_token(self, build_client, user_id, challenge_id):
        client = build_client()
        token = jwt.encode({"sub": str(user_id), "type": "refresh"}, SECRET, algorithm="HS256")

        response = client.post(
            "/api/v1/submissions",
            json=submission_body(challenge_id),
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 401

    def test_mismatch_hides_diff(self, build_client, auth_headers, challenge_id, grading_store):
        client = build_client(trusted=FakeExecutor(passed=[True, True, False]))
        body = submission_body(
            challenge_id,
            client_verdict={"status": "pass", "score": 100, "passed": [True, True, True]},
        )

        response = client.post("/api/v1/submissions", json=body, headers=auth_headers)

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "VALIDATION_FAILED"
        assert data["detail"] == "Submission could not be validated"
        assert data["retryable"] is False
        assert "indices" not in response.text
        assert grading_store.attempt_count == 0

    def test_timeout_is_retryable(self, build_client, auth_headers, challenge_id):
        client = build_client(
            trusted=FakeExecutor(passed=[False] * 3, termination_reason=TerminationReason.TIMEOUT)
        )

        response = client.post(
            "/api/v1/submissions", json=submission_body(challenge_id), headers=auth_headers
        )

        assert response.status_code == 408
        assert response.json()["retryable"] is True

    def test_unknown_challenge(self, build_client, auth_headers):
        client = build_client()
        response = client.post(
            "/api/v1/submissions", json=submission_body(uuid4()), headers=auth_headers
        )
        assert response.status_code == 404
        assert response.json()["error"] == "BATTERY_NOT_FOUND"

    def test_too_large(self, build_client, auth_headers, challenge_id):
        client = build_client(max_bytes={"markup": 8})
        response = client.post(
            "/api/v1/submissions", json=submission_body(challenge_id), headers=auth_headers
        )
        assert response.status_code == 413
        assert response.json()["error"] == "SUBMISSION_TOO_LARGE"

    def test_invalid_client_verdict(self, build_client, auth_headers, challenge_id):
        client = build_client()
        body = submission_body(
            challenge_id,
            client_verdict={"status": "pass", "score": 120, "passed": []},
        )
        response = client.post("/api/v1/submissions", json=body, headers=auth_headers)
        assert response.status_code == 422

    def test_history(self, build_client, auth_headers, challenge_id):
        client = build_client()
        for _ in range(3):
            client.post(
                "/api/v1/submissions", json=submission_body(challenge_id), headers=auth_headers
            )

        response = client.get("/api/v1/submissions/history?limit=2", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["count"] == 2


class TestProgressEndpoints:

    def test_not_started(self, build_client, auth_headers, challenge_id):
        client = build_client()
        response = client.get(f"/api/v1/progress/{challenge_id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "not_started"
        assert response.json()["total_attempts"] == 0

    def test_after_submission(self, build_client, auth_headers, challenge_id):
        client = build_client()
        client.post("/api/v1/submissions", json=submission_body(challenge_id), headers=auth_headers)

        data = client.get(f"/api/v1/progress/{challenge_id}", headers=auth_headers).json()

        assert data["status"] == "completed"
        assert data["best_score"] == 100.0
        assert data["total_attempts"] == 1
        assert data["completed_at"] is not None

    def test_storage_failure_hides_backend_detail(
        self, build_client, auth_headers, challenge_id, grading_store, monkeypatch
    ):
        broken = SqlAlchemyGradingStore(BrokenDatabase())
        monkeypatch.setattr(grading_store, "get_progress", broken.get_progress)
        client = build_client()

        response = client.get(f"/api/v1/progress/{challenge_id}", headers=auth_headers)

        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "PERSISTENCE_UNAVAILABLE"
        assert data["detail"] == "Progress storage is unavailable"
        assert data["retryable"] is True
        assert "secret script" not in response.text
        assert "INSERT" not in response.text


class TestHealthEndpoints:

    def test_liveness(self, build_client):
        assert build_client().get("/api/v1/health/live").json() == {"status": "alive"}

    def test_readiness(self, build_client):
        assert build_client().get("/api/v1/health/ready").json() == {"status": "ready"}

    def test_health_reports_store_and_scratch(self, build_client):
        data = build_client().get("/api/v1/health").json()

        assert data["checks"]["store"]["status"] == "healthy"
        assert "sandbox_scratch" in data["checks"]
        assert "redis" not in data["checks"]
