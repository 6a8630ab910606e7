"""Tests for core.whatsapp (HTTP is served by httpx.MockTransport)."""

import json

import httpx
import pytest

from core.whatsapp import WhatsAppError, WhatsAppService


async def test_send_message_posts_cloud_api_payload(whatsapp, whatsapp_requests):
    result = await whatsapp.send_message("+919800000001", "Hello parent")

    assert result == {"messages": [{"id": "wamid.TEST"}]}
    request = whatsapp_requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://graph.facebook.com/v17.0/1000200030/messages"
    assert request.headers["Authorization"] == "Bearer test-token"
    assert json.loads(request.content) == {
        "messaging_product": "whatsapp",
        "to": "+919800000001",
        "type": "text",
        "text": {"body": "Hello parent"},
    }
    assert whatsapp.get_status()["sent"] == 1


async def test_send_message_raises_on_rejection(whatsapp, whatsapp_status):
    whatsapp_status["code"] = 401
    with pytest.raises(WhatsAppError) as exc:
        await whatsapp.send_message("+91", "hi")
    assert exc.value.status_code == 401
    assert whatsapp.get_status()["failed"] == 1


async def test_send_message_raises_on_transport_error():
    def handler(request):
        raise httpx.ConnectError("no route to host")

    wa = WhatsAppService(api_key="k", business_number="1", transport=httpx.MockTransport(handler))
    with pytest.raises(WhatsAppError, match="request failed"):
        await wa.send_message("+91", "hi")
    await wa.aclose()


async def test_attendance_alert_template(whatsapp, whatsapp_requests):
    await whatsapp.send_attendance_alert("Asha Rao", "+91", "absent", "2026-10-19")

    body = json.loads(whatsapp_requests[0].content)["text"]["body"]
    assert "*Asha Rao*" in body
    assert "❌ Status: ABSENT" in body
    assert "📅 Date: 2026-10-19" in body
    assert "Please ensure regular attendance" in body


async def test_attendance_alert_late(whatsapp, whatsapp_requests):
    await whatsapp.send_attendance_alert("Asha Rao", "+91", "late", "2026-10-19")
    body = json.loads(whatsapp_requests[0].content)["text"]["body"]
    assert "⏰ Status: LATE" in body


async def test_templated_senders(whatsapp, whatsapp_requests):
    await whatsapp.send_fee_reminder("Asha Rao", "+91", 1500, "2026-11-01")
    await whatsapp.send_report_card("Asha Rao", "+91", "https://school.example/r/1")
    await whatsapp.send_invigilation_duty("Meera", "+92", {
        "subject": "Maths", "class": "10", "date": "2026-11-01",
        "start_time": "10:00", "end_time": "12:00", "room": "101",
    })
    await whatsapp.send_timetable_update("+93", "Staff", "Period 3 moved to Lab 2")
    await whatsapp.send_substitution_notification("Ravi", "+94", {
        "class": "9", "section": "B", "subject": "English", "period": 2,
        "date": "2026-10-20", "absent_teacher": "Meera",
    })

    bodies = [json.loads(r.content)["text"]["body"] for r in whatsapp_requests]
    assert "Amount: ₹1500" in bodies[0]
    assert "https://school.example/r/1" in bodies[1]
    assert "Time: 10:00 - 12:00" in bodies[2]
    assert "Period 3 moved to Lab 2" in bodies[3]
    assert "Class: 9 B" in bodies[4]
    assert all(b.endswith("*EduManage Pro School Management*") for b in bodies)


def test_verify_webhook(whatsapp):
    assert whatsapp.verify_webhook("subscribe", "verify-me", "12345") == "12345"
    assert whatsapp.verify_webhook("subscribe", "wrong", "12345") is None
    assert whatsapp.verify_webhook("unsubscribe", "verify-me", "12345") is None


def test_verify_webhook_refused_without_token():
    wa = WhatsAppService()
    assert wa.verify_webhook("subscribe", "", "12345") is None


def test_process_webhook_extracts_messages(whatsapp):
    payload = {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "1",
            "changes": [{
                "field": "messages",
                "value": {
                    "messages": [
                        {"from": "919800000001", "timestamp": "1760860800",
                         "type": "text", "text": {"body": "Is school open tomorrow?"}},
                        {"from": "919800000002", "timestamp": "1760860801", "type": "image"},
                    ],
                },
            }],
        }],
    }

    assert whatsapp.process_webhook(payload) == [
        {"from": "919800000001", "text": "Is school open tomorrow?", "timestamp": "1760860800"},
        {"from": "919800000002", "text": "", "timestamp": "1760860801"},
    ]


@pytest.mark.parametrize("payload", [
    None,
    [],
    {},
    {"entry": "nope"},
    {"entry": [{"changes": [{"value": {"statuses": [{"id": "x"}]}}]}]},
    {"entry": [{"changes": [{"value": {"messages": [{"text": {"body": "no sender"}}]}}]}]},
])
def test_process_webhook_ignores_malformed(whatsapp, payload):
    assert whatsapp.process_webhook(payload) == []


def test_status_reports_configuration():
    assert WhatsAppService().get_status()["configured"] is False
    assert WhatsAppService(api_key="k", business_number="1").get_status()["configured"] is True
