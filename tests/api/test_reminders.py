from __future__ import annotations

from fastapi.testclient import TestClient

from engagement.services.scheduler import scheduler


def _schedule_course(client: TestClient, user_id: str = "u1", delay_hours: int = 24):
    return client.post(
        "/v1/reminders/schedule",
        json={
            "type": "course",
            "user_id": user_id,
            "course_id": "bio101",
            "course_title": "Biology",
            "delay_hours": delay_hours,
        },
    )


def test_schedule_course_reminder(client: TestClient) -> None:
    resp = _schedule_course(client, delay_hours=2)

    assert resp.status_code == 201
    data = resp.json()
    assert data["subject_key"] == "course:bio101"
    published = scheduler.messages[data["message_id"]]  # type: ignore[attr-defined]
    assert published.delay_seconds == 7200
    assert published.url.endswith("/v1/reminders/course")

    (job,) = client.get("/v1/users/u1/reminders").json()
    assert job["message_id"] == data["message_id"]
    assert job["mode"] == "delay"


def test_schedule_course_reminder_requires_course_fields(client: TestClient) -> None:
    resp = client.post(
        "/v1/reminders/schedule", json={"type": "course", "user_id": "u1"}
    )
    assert resp.status_code == 400


def test_schedule_weekly_digest(client: TestClient) -> None:
    resp = client.post(
        "/v1/reminders/schedule", json={"type": "weekly-digest", "user_id": "u1"}
    )
    assert resp.status_code == 201
    assert resp.json()["subject_key"] == "digest:weekly"
    published = scheduler.messages[resp.json()["message_id"]]  # type: ignore[attr-defined]
    assert published.cron == "0 9 * * 1"


def test_cancel_reminder(client: TestClient) -> None:
    message_id = _schedule_course(client).json()["message_id"]

    resp = client.delete("/v1/users/u1/reminders/course:bio101")

    assert resp.status_code == 204
    assert message_id not in scheduler.messages  # type: ignore[attr-defined]
    assert client.get("/v1/users/u1/reminders").json() == []


def test_cancel_unknown_reminder_is_404(client: TestClient) -> None:
    assert client.delete("/v1/users/u1/reminders/course:nope").status_code == 404


def test_course_reminder_delivery_is_deduplicated(client: TestClient) -> None:
    body = {"userId": "u1", "courseId": "bio101", "courseTitle": "Biology"}
    headers = {"Upstash-Message-Id": "msg_123"}

    first = client.post("/v1/reminders/course", json=body, headers=headers)
    second = client.post("/v1/reminders/course", json=body, headers=headers)

    assert first.status_code == 200
    assert first.json()["duplicate"] is False
    assert first.json()["notification_id"]
    assert second.status_code == 200
    assert second.json() == {"success": True, "duplicate": True, "notification_id": None}
    unread = client.get("/v1/users/u1/notifications/unread-count").json()["unread"]
    assert unread == 1


def test_course_reminder_delivery_clears_job(client: TestClient) -> None:
    message_id = _schedule_course(client).json()["message_id"]

    client.post(
        "/v1/reminders/course",
        json={"userId": "u1", "courseId": "bio101", "courseTitle": "Biology"},
        headers={"Upstash-Message-Id": message_id},
    )

    assert client.get("/v1/users/u1/reminders").json() == []


def test_weekly_digest_delivery(client: TestClient) -> None:
    for user_id in ("u2", "u3"):
        client.post(
            "/v1/activity/views",
            json={
                "user_id": user_id,
                "course_id": "ds101",
                "course_title": "Data Science",
            },
        )
    client.post("/v1/recommendations/popularity/refresh")

    resp = client.post("/v1/digest/weekly", json={"userId": "u1"})

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    (notification,) = client.get("/v1/users/u1/notifications").json()
    assert notification["type"] == "announcement"
    assert '"Data Science"' in notification["message"]


def test_delivery_rejects_malformed_payload(client: TestClient) -> None:
    resp = client.post("/v1/reminders/course", json={"userId": "u1"})
    assert resp.status_code == 422
