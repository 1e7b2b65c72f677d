from __future__ import annotations

from fastapi.testclient import TestClient


def _view(client: TestClient, user_id: str, course_id: str) -> None:
    client.post("/v1/activity/views", json={"user_id": user_id, "course_id": course_id})


def test_recommendations_from_neighbours(client: TestClient) -> None:
    for course_id in ("bio101", "chem101"):
        _view(client, "A", course_id)
    for course_id in ("bio101", "chem101", "phys101"):
        _view(client, "B", course_id)
    _view(client, "C", "bio101")

    resp = client.get("/v1/users/A/recommendations")

    assert resp.status_code == 200
    data = resp.json()
    assert data["user_id"] == "A"
    assert data["course_ids"][0] == "phys101"
    assert "bio101" not in data["course_ids"]
    assert "chem101" not in data["course_ids"]


def test_cold_start_uses_refreshed_popularity(client: TestClient) -> None:
    for user_id in ("u1", "u2", "u3"):
        _view(client, user_id, "popular")
    _view(client, "u1", "niche")

    # Nothing ranked until the periodic refresh runs.
    assert client.get("/v1/users/newcomer/recommendations").json()["course_ids"] == []

    resp = client.post("/v1/recommendations/popularity/refresh")
    assert resp.status_code == 200
    assert resp.json() == {"updated": 2}

    data = client.get("/v1/users/newcomer/recommendations?limit=1").json()
    assert data["course_ids"] == ["popular"]


def test_recommendations_limit_is_validated(client: TestClient) -> None:
    assert client.get("/v1/users/A/recommendations?limit=0").status_code == 422
    assert client.get("/v1/users/A/recommendations?limit=51").status_code == 422
