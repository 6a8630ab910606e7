"""Tests for interfaces.api.routes."""

import json

import pytest
from fastapi.testclient import TestClient

from core.config import EduManageConfig
from core.storage import today_iso
from interfaces.dashboard.server import create_app


STUDENT = {
    "student_id": "STU100",
    "first_name": "Asha",
    "last_name": "Rao",
    "parent_phone": "+919800000001",
    "class": "10",
    "section": "A",
    "roll_number": 1,
}


@pytest.fixture
def student(client):
    resp = client.post("/api/students", json=STUDENT)
    assert resp.status_code == 201
    return resp.json()


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def test_open_access_without_configured_key(client):
    assert client.get("/api/dashboard/metrics").status_code == 200


def test_api_key_required_when_configured(tmp_path, monkeypatch, storage, ai, whatsapp):
    monkeypatch.setenv("EDUMANAGE_API_KEY", "s3cret")
    config = EduManageConfig(config_path=tmp_path / "nope.toml")
    app = create_app(config=config, storage=storage, ai=ai, whatsapp=whatsapp)

    with TestClient(app) as c:
        assert c.get("/api/students").status_code == 403
        assert c.get("/api/students", headers={"X-API-Key": "wrong"}).status_code == 403
        assert c.get("/api/students", headers={"X-API-Key": "s3cret"}).status_code == 200
        # Webhook and chat history stay open
        assert c.get("/api/ai/chat/history/s1").status_code == 200
        assert c.post("/api/whatsapp/webhook", json={}).status_code == 200


# ---------------------------------------------------------------------------
# Students / teachers
# ---------------------------------------------------------------------------

def test_student_crud(client, student):
    assert student["class"] == "10"
    assert client.get(f"/api/students/{student['id']}").json()["student_id"] == "STU100"

    resp = client.put(f"/api/students/{student['id']}", json={"section": "B"})
    assert resp.status_code == 200
    assert resp.json()["section"] == "B"
    assert resp.json()["first_name"] == "Asha"

    assert len(client.get("/api/students").json()) == 1
    assert len(client.get("/api/students", params={"class": "10", "section": "B"}).json()) == 1


def test_student_not_found(client):
    assert client.get("/api/students/999").status_code == 404
    assert client.put("/api/students/999", json={"section": "B"}).status_code == 404


def test_student_validation_error(client):
    assert client.post("/api/students", json={"first_name": "Only"}).status_code == 422


def test_duplicate_student_is_500(client, student):
    resp = client.post("/api/students", json=STUDENT)
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Failed to create student"}


def test_teachers(client):
    resp = client.post("/api/teachers", json={"employee_id": "EMP1", "subjects": ["Maths"]})
    assert resp.status_code == 201
    assert resp.json()["subjects"] == ["Maths"]
    assert len(client.get("/api/teachers").json()) == 1


def test_teacher_lookup_and_update(client):
    client.put("/api/users/u1", json={"first_name": "Meera", "role": "teacher"})
    teacher = client.post("/api/teachers", json={"employee_id": "EMP1", "user_id": "u1"}).json()

    assert client.get("/api/teachers/by-user/u1").json()["id"] == teacher["id"]
    assert client.get("/api/teachers/by-user/nobody").status_code == 404

    resp = client.put(f"/api/teachers/{teacher['id']}", json={"status": "ON_LEAVE", "subjects": ["Maths"]})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ON_LEAVE"
    assert resp.json()["subjects"] == ["Maths"]
    assert resp.json()["employee_id"] == "EMP1"
    assert client.put("/api/teachers/999", json={"status": "ACTIVE"}).status_code == 404


def test_user_profile_upsert(client):
    assert client.get("/api/users/u1").status_code == 404

    created = client.put("/api/users/u1", json={"email": "m@example.com", "first_name": "Meera"})
    assert created.status_code == 200
    assert created.json()["role"] == "teacher"

    updated = client.put("/api/users/u1", json={"role": "principal"}).json()
    assert updated["first_name"] == "Meera"
    assert updated["role"] == "principal"
    assert client.get("/api/users/u1").json()["email"] == "m@example.com"


# ---------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------

def test_absent_attendance_alerts_parent(client, student, whatsapp_requests, storage):
    resp = client.post("/api/attendance", json={
        "student_id": student["id"], "date": "2026-10-19", "status": "absent",
    })

    assert resp.status_code == 201
    assert len(whatsapp_requests) == 1
    body = json.loads(whatsapp_requests[0].content)
    assert body["to"] == "+919800000001"
    assert "ABSENT" in body["text"]["body"]

    recorded = storage.get_whatsapp_notifications()
    assert recorded[0]["message_type"] == "attendance_alert"
    assert recorded[0]["status"] == "sent"


def test_present_attendance_sends_nothing(client, student, whatsapp_requests):
    client.post("/api/attendance", json={"student_id": student["id"], "status": "present"})
    assert whatsapp_requests == []


def test_failed_parent_alert_does_not_fail_request(client, student, whatsapp_status, storage):
    whatsapp_status["code"] = 500
    resp = client.post("/api/attendance", json={
        "student_id": student["id"], "date": "2026-10-19", "status": "absent",
    })

    assert resp.status_code == 201
    assert storage.get_whatsapp_notifications("failed")[0]["message_type"] == "attendance_alert"


def test_attendance_queries(client, student):
    client.post("/api/attendance", json={"student_id": student["id"], "status": "present"})
    client.post("/api/attendance", json={
        "student_id": student["id"], "date": "2026-01-05", "status": "absent",
    })

    assert len(client.get("/api/attendance").json()) == 1
    assert len(client.get("/api/attendance", params={"date": "2026-01-05"}).json()) == 1
    by_student = client.get("/api/attendance", params={"student_id": student["id"]}).json()
    assert by_student[0]["date"] == today_iso()

    stats = client.get("/api/attendance/stats", params={"class": "10"}).json()
    assert stats["total"] == 2
    assert stats["attendance_rate"] == 50.0


def test_attendance_for_unknown_student_is_500(client):
    resp = client.post("/api/attendance", json={"student_id": 424242, "status": "present"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to mark attendance"


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

def test_fee_paid_sends_receipt_and_broadcasts(client, student, whatsapp_requests):
    fee = client.post("/api/fees", json={
        "student_id": student["id"], "amount": 1500, "fee_type": "tuition",
    }).json()

    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        resp = client.put(f"/api/fees/{fee['id']}", json={"status": "paid", "transaction_id": "TX1"})
        frame = ws.receive_json()

    assert resp.status_code == 200
    assert resp.json()["paid_date"] == today_iso()
    assert frame["type"] == "fee_update"
    assert frame["data"]["status"] == "paid"
    assert len(whatsapp_requests) == 1
    assert "Fee Receipt" in json.loads(whatsapp_requests[0].content)["text"]["body"]

    stats = client.get("/api/fees/stats").json()
    assert stats["total_collected"] == 1500
    assert len(client.get("/api/fees", params={"student_id": student["id"]}).json()) == 1


def test_update_missing_fee_is_404(client):
    assert client.put("/api/fees/999", json={"status": "paid"}).status_code == 404


# ---------------------------------------------------------------------------
# Timetable, exams, invigilation, behavior, substitutions
# ---------------------------------------------------------------------------

PERIOD = {
    "class": "10", "section": "A", "day": "Monday", "period": 1,
    "start_time": "09:00", "end_time": "09:45", "subject": "Maths",
}


def test_timetable_lifecycle_broadcasts(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        entry = client.post("/api/timetable", json=PERIOD).json()
        assert ws.receive_json()["type"] == "timetable_update"

        client.put(f"/api/timetable/{entry['id']}", json={"room": "Lab 1"})
        assert ws.receive_json()["data"]["room"] == "Lab 1"

        resp = client.delete(f"/api/timetable/{entry['id']}")
        assert resp.json() == {"ok": True, "id": entry["id"]}
        assert ws.receive_json()["data"]["is_active"] is False

    assert client.get("/api/timetable").json() == []
    assert client.delete("/api/timetable/999").status_code == 404


def test_exams(client):
    resp = client.post("/api/exams", json={
        "exam_name": "Midterm", "subject": "Physics", "class": "10",
        "date": "2026-11-01", "start_time": "10:00", "end_time": "12:00",
    })
    assert resp.status_code == 201
    assert client.get("/api/exams").json()[0]["subject"] == "Physics"


@pytest.mark.parametrize("path, payload, event", [
    ("/api/invigilation", {
        "teacher_id": "u1", "room": "101", "date": "2026-11-01",
        "start_time": "10:00", "end_time": "12:00",
    }, "invigilation_update"),
    ("/api/substitutions", {
        "absent_teacher_id": "u1", "substitute_teacher_id": "u2", "class": "9",
        "section": "B", "subject": "English", "period": 2, "date": "2026-10-20",
    }, "substitution_update"),
])
def test_create_broadcasts(client, path, payload, event):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        resp = client.post(path, json=payload)
        frame = ws.receive_json()

    assert resp.status_code == 201
    assert frame["type"] == event
    assert frame["data"]["id"] == resp.json()["id"]
    assert len(client.get(path).json()) == 1


def test_behavior_record_broadcast_and_metrics(client, student):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        resp = client.post("/api/behavior", json={
            "student_id": student["id"], "type": "negative",
            "description": "Skipped class", "follow_up_required": True,
        })
        assert ws.receive_json()["type"] == "behavior_update"

    assert resp.json()["follow_up_required"] is True
    assert client.get("/api/dashboard/metrics").json()["pendingTasks"] == 1
    assert len(client.get("/api/behavior", params={"student_id": student["id"]}).json()) == 1


# ---------------------------------------------------------------------------
# WhatsApp
# ---------------------------------------------------------------------------

def test_whatsapp_send_records_and_broadcasts(client, whatsapp_requests):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        resp = client.post("/api/whatsapp/send", json={"to": "+91", "message": "Hello"})
        frame = ws.receive_json()

    assert resp.status_code == 200
    assert resp.json()["status"] == "sent"
    assert frame["type"] == "whatsapp_update"
    assert len(whatsapp_requests) == 1
    assert client.get("/api/whatsapp/notifications", params={"status": "sent"}).json()[0]["message"] == "Hello"


def test_whatsapp_send_failure_is_502_and_recorded(client, whatsapp_status):
    whatsapp_status["code"] = 400
    resp = client.post("/api/whatsapp/send", json={"to": "+91", "message": "Hello"})

    assert resp.status_code == 502
    failed = client.get("/api/whatsapp/notifications", params={"status": "failed"}).json()
    assert len(failed) == 1
    assert "400" in failed[0]["error_message"]


def test_whatsapp_webhook_verification(client):
    ok = client.get("/api/whatsapp/webhook", params={
        "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "abc123",
    })
    assert ok.status_code == 200
    assert ok.text == "abc123"

    bad = client.get("/api/whatsapp/webhook", params={
        "hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "abc123",
    })
    assert bad.status_code == 403


def test_whatsapp_webhook_broadcasts_inbound(client):
    payload = {"entry": [{"changes": [{"value": {"messages": [
        {"from": "919800000001", "timestamp": "1760860800", "text": {"body": "Hi school"}},
    ]}}]}]}

    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        resp = client.post("/api/whatsapp/webhook", json=payload)
        frame = ws.receive_json()

    assert resp.status_code == 200
    assert resp.text == "OK"
    assert frame["type"] == "whatsapp_update"
    assert frame["data"] == {
        "direction": "inbound", "from": "919800000001",
        "text": "Hi school", "timestamp": "1760860800",
    }


def test_whatsapp_webhook_tolerates_garbage(client):
    resp = client.post("/api/whatsapp/webhook", content=b"not json",
                       headers={"Content-Type": "application/json"})
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Assistant
# ---------------------------------------------------------------------------

def test_ai_chat(client, fake_openai):
    fake_openai.queue('{"intent": "general_info", "confidence": 0.7}', "School opens at 8am.")

    resp = client.post("/api/ai/chat", json={"message": "When does school open?", "session_id": "s1"})

    assert resp.json() == {"response": "School opens at 8am.", "session_id": "s1"}
    history = client.get("/api/ai/chat/history/s1").json()
    assert history[0]["intent"] == "general_info"


def test_ai_question_paper(client, fake_openai):
    fake_openai.queue(json.dumps({"title": "Maths Test", "instructions": [], "sections": []}))

    resp = client.post("/api/ai/generate-question-paper", json={
        "subject": "Maths", "class": "8", "exam_type": "unit test", "duration": 40,
    })

    assert resp.status_code == 200
    assert resp.json()["title"] == "Maths Test"
    assert client.get("/api/question-papers").json()[0]["tags"] == ["Maths", "8", "unit test"]


def test_ai_question_paper_failure_is_500(client, fake_openai):
    fake_openai.queue(RuntimeError("quota exceeded"))
    resp = client.post("/api/ai/generate-question-paper", json={
        "subject": "Maths", "class": "8", "exam_type": "unit test", "duration": 40,
    })
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to generate question paper"


def test_ai_analyze_behavior_without_records(client):
    resp = client.post("/api/ai/analyze-behavior/5")
    assert resp.json()["recommendations"] == []


def test_ai_invitation(client, fake_openai):
    fake_openai.queue("Dear parents, ...")
    resp = client.post("/api/ai/generate-invitation", json={
        "event_type": "Annual Day", "details": {"date": "2026-12-01"},
    })
    assert resp.json() == {"text": "Dear parents, ..."}


# ---------------------------------------------------------------------------
# Question papers / analytics
# ---------------------------------------------------------------------------

def test_question_paper_create(client):
    resp = client.post("/api/question-papers", json={
        "title": "Science Final", "subject": "Science", "class": "7",
        "questions": {"sections": []}, "tags": ["final"],
    })
    assert resp.status_code == 201
    assert resp.json()["questions"] == {"sections": []}


def test_analytics_export_is_bi_shaped(client):
    client.post("/api/analytics", json={
        "metric_type": "attendance_rate", "entity_type": "class", "entity_id": "10A",
        "value": 93.5, "date": "2026-10-01", "period": "daily", "metadata": {"source": "test"},
    })

    rows = client.get("/api/analytics/export", params={"metric_type": "attendance_rate"}).json()

    assert rows == [{
        "MetricType": "attendance_rate",
        "EntityType": "class",
        "EntityId": "10A",
        "Value": 93.5,
        "Date": "2026-10-01",
        "Metadata": {"source": "test"},
        "Period": "daily",
    }]


# ---------------------------------------------------------------------------
# Realtime push / dashboard
# ---------------------------------------------------------------------------

def test_push_rejects_unknown_event_type(client):
    resp = client.post("/api/notifications/push", json={"type": "grades_update", "data": {}})
    assert resp.status_code == 422
    assert "Unknown event type" in resp.json()["detail"]


def test_push_to_everyone_with_no_clients(client):
    resp = client.post("/api/notifications/push", json={"type": "fee_update", "data": {}})
    assert resp.json() == {"ok": True, "type": "fee_update", "delivered": 0}


def test_dashboard_metrics(client, student):
    client.post("/api/attendance", json={"student_id": student["id"], "status": "present"})
    metrics = client.get("/api/dashboard/metrics").json()
    assert metrics == {
        "totalStudents": 1,
        "attendanceRate": "100.0",
        "feeCollection": 0,
        "pendingTasks": 0,
    }


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["whatsapp"]["configured"] is True
