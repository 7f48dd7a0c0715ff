"""Tests for the FastAPI surface."""

import pytest
from fastapi.testclient import TestClient

from src.domain.exceptions import RepositoryError
from src.presentation.http_api import create_app


@pytest.fixture
def client(settings, repo) -> TestClient:
    return TestClient(create_app(settings, repository=repo))


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "service": "bpal-scoring",
        "version": "0.1.0",
    }


def test_missing_fields_return_400(client: TestClient) -> None:
    response = client.post("/award-points", json={"eventType": "NOTE_ADDED", "userId": "u-1"})

    assert response.status_code == 400
    assert response.json() == {
        "error": "Missing required parameters: eventType, userId, or username."
    }


def test_non_json_body_returns_400(client: TestClient) -> None:
    response = client.post(
        "/award-points",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert "error" in response.json()


def test_non_object_body_returns_400(client: TestClient) -> None:
    response = client.post("/award-points", json=["NOTE_ADDED"])

    assert response.status_code == 400


def test_award_and_immediate_repeat(client: TestClient) -> None:
    payload = {
        "eventType": "NOTE_ADDED",
        "userId": 17,
        "username": "alice",
        "data": {"ticketId": "42"},
    }

    first = client.post("/award-points", json=payload)
    second = client.post("/award-points", json=payload)

    assert first.status_code == 200
    assert first.json() == {"success": True, "pointsAwarded": 1}
    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["pointsAwarded"] == 0


def test_correlation_header_is_accepted(client: TestClient) -> None:
    response = client.post(
        "/award-points",
        json={"eventType": "TAG_ADDED", "userId": "u-1", "username": "alice", "data": {}},
        headers={"X-Correlation-ID": "req-123"},
    )

    assert response.status_code == 200
    assert response.json()["pointsAwarded"] == 1


def test_client_hero_check_runs_badge_cycle(client: TestClient) -> None:
    response = client.post("/award-points", json={"eventType": "CLIENT_HERO_CHECK"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] in {"skipped_weekend", "no_winner", "already_processed"}


def test_storage_failure_returns_500(client: TestClient, mocker) -> None:
    mocker.patch(
        "src.presentation.http_api.award_points_use_case",
        side_effect=RepositoryError("database is locked"),
    )

    response = client.post(
        "/award-points",
        json={"eventType": "NOTE_ADDED", "userId": "u-1", "username": "alice"},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "database is locked"}


def test_metrics_endpoint_exposes_counters(client: TestClient) -> None:
    client.post(
        "/award-points",
        json={"eventType": "KB_CREATED", "userId": "u-1", "username": "alice"},
    )

    response = client.get("/metrics/")

    assert response.status_code == 200
    assert "bpal_award_requests_total" in response.text


def test_unexpected_error_returns_json_500(settings, repo, mocker) -> None:
    mocker.patch(
        "src.presentation.http_api.award_points_use_case",
        side_effect=TypeError("unsupported operand type(s)"),
    )
    client = TestClient(create_app(settings, repository=repo), raise_server_exceptions=False)

    response = client.post(
        "/award-points",
        json={"eventType": "NOTE_ADDED", "userId": "u-1", "username": "alice"},
    )

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"error": "unsupported operand type(s)"}


def test_score_adjusted_with_string_complexity(client: TestClient) -> None:
    response = client.post(
        "/award-points",
        json={
            "eventType": "SCORE_ADJUSTED",
            "userId": "u-1",
            "username": "alice",
            "data": {
                "ticketId": 7,
                "oldPriority": "Low",
                "oldComplexity": "1",
                "newPriority": "Low",
                "newComplexity": "2",
            },
        },
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "pointsAwarded": 13}
