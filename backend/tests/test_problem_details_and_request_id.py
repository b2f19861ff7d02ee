from __future__ import annotations

from fastapi.testclient import TestClient

from campus_connect.main import create_app


def test_request_id_is_generated_and_returned():
    client = TestClient(create_app())

    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "running"
    assert r.headers.get("X-Request-Id")


def test_request_id_is_propagated_from_client():
    client = TestClient(create_app())

    r = client.get("/", headers={"X-Request-Id": "abc-123"})
    assert r.status_code == 200
    assert r.headers.get("X-Request-Id") == "abc-123"


def test_404_is_problem_json():
    client = TestClient(create_app())

    r = client.get("/this-route-does-not-exist")
    assert r.status_code == 404
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 404
    assert body.get("requestId")


def test_missing_bearer_token_is_problem_json():
    client = TestClient(create_app())

    r = client.get("/api/notifications")
    assert r.status_code == 401
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["title"] == "Unauthorized"
    assert body["status"] == 401
    assert body.get("requestId")
