"""
EduManage WhatsApp Channel

Outbound parent/teacher messages through the WhatsApp Cloud API, plus
the two halves of the inbound webhook: the subscription handshake and
extraction of received messages.

All templated senders go through send_message(), which raises
WhatsAppError on a transport failure or a non-2xx answer. Callers that
send as a side effect (attendance alerts, fee receipts) catch and log it.

Usage:
    from core.whatsapp import WhatsAppService

    wa = WhatsAppService(api_key="...", business_number="1234567890")
    await wa.send_attendance_alert("Asha Rao", "+911234567890", "absent", "2026-10-19")
    messages = wa.process_webhook(payload)
    await wa.aclose()
"""

import logging
from typing import Any

import httpx


logger = logging.getLogger("edumanage.whatsapp")

DEFAULT_API_URL = "https://graph.facebook.com/v17.0"


class WhatsAppError(Exception):
    """Sending a WhatsApp message failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# WhatsApp Service
# ---------------------------------------------------------------------------

class WhatsAppService:
    """Cloud API client and message templates.

    Args:
        api_key:          Bearer token for the Cloud API.
        business_number:  Phone number id messages are sent from.
        api_url:          Graph API base URL.
        verify_token:     Token the webhook handshake must present. Empty
                          means the handshake is always refused.
        timeout:          HTTP timeout in seconds.
        transport:        Optional httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        api_key: str = "",
        business_number: str = "",
        api_url: str = DEFAULT_API_URL,
        verify_token: str = "",
        timeout: float = 10.0,
        school_name: str = "EduManage Pro",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._business_number = business_number
        self._api_url = (api_url or DEFAULT_API_URL).rstrip("/")
        self._verify_token = verify_token
        self._school = school_name
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._sent = 0
        self._failed = 0

        logger.info(
            "WhatsAppService initialized (number=%s, configured=%s)",
            business_number or "-", bool(api_key and business_number),
        )

    @classmethod
    def from_config(cls, config, transport: httpx.AsyncBaseTransport | None = None) -> "WhatsAppService":
        wa = config.whatsapp
        return cls(
            api_key=wa.api_key,
            business_number=wa.business_number,
            api_url=wa.api_url,
            verify_token=wa.verify_token,
            timeout=wa.timeout,
            school_name=config.school.name,
            transport=transport,
        )

    @property
    def messages_url(self) -> str:
        return f"{self._api_url}/{self._business_number}/messages"

    async def aclose(self):
        await self._client.aclose()

    # -------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------

    async def send_message(self, to: str, message: str, message_type: str = "text") -> dict[str, Any]:
        """Send a plain text message.

        ``message_type`` labels the message in logs and stored records;
        the Cloud API payload is always a text message.

        Returns:
            The decoded API response.

        Raises:
            WhatsAppError: on a transport error or non-2xx response.
        """
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": message},
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            resp = await self._client.post(self.messages_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            self._failed += 1
            logger.error("WhatsApp %s to %s failed: %s", message_type, to, e)
            raise WhatsAppError(f"WhatsApp API request failed: {e}") from e

        if not resp.is_success:
            self._failed += 1
            logger.error(
                "WhatsApp %s to %s rejected: HTTP %d %s",
                message_type, to, resp.status_code, resp.text[:200],
            )
            raise WhatsAppError(
                f"WhatsApp API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )

        self._sent += 1
        logger.info("WhatsApp %s sent to %s", message_type, to)
        try:
            return resp.json()
        except ValueError:
            return {}

    # -------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------

    def _signature(self) -> str:
        return f"*{self._school} School Management*"

    async def send_fee_reminder(self, student_name: str, parent_phone: str, amount: float, due_date: str):
        message = (
            f"🎓 *{self._school} Fee Reminder*\n\n"
            "Dear Parent,\n\n"
            f"This is a friendly reminder that the fee payment for *{student_name}* is due.\n\n"
            "📋 *Details:*\n"
            f"Amount: ₹{amount}\n"
            f"Due Date: {due_date}\n\n"
            "💳 *Payment Options:*\n"
            "- Online: Visit our payment portal\n"
            "- Bank Transfer: Account details shared earlier\n"
            "- Cash: Pay at school office\n\n"
            "For any queries, please contact the school office.\n\n"
            "Thank you for your cooperation.\n\n"
            f"{self._signature()}"
        )
        return await self.send_message(parent_phone, message, "fee_reminder")

    async def send_fee_receipt(self, student_name: str, parent_phone: str, amount: float, paid_date: str):
        message = (
            f"🎓 *{self._school} Fee Receipt*\n\n"
            "Dear Parent,\n\n"
            f"We have received the fee payment for *{student_name}*.\n\n"
            "📋 *Details:*\n"
            f"Amount: ₹{amount}\n"
            f"Paid On: {paid_date}\n\n"
            "Thank you for the timely payment.\n\n"
            f"{self._signature()}"
        )
        return await self.send_message(parent_phone, message, "fee_receipt")

    async def send_attendance_alert(self, student_name: str, parent_phone: str, status: str, date: str):
        if status == "absent":
            emoji, advice = "❌", "Please ensure regular attendance for better academic performance."
        elif status == "late":
            emoji, advice = "⏰", "Please ensure timely arrival to school."
        else:
            emoji, advice = "✅", "Thank you for ensuring regular attendance."

        message = (
            f"🎓 *{self._school} Attendance Update*\n\n"
            "Dear Parent,\n\n"
            f"Attendance update for *{student_name}*:\n\n"
            f"📅 Date: {date}\n"
            f"{emoji} Status: {status.upper()}\n\n"
            f"{advice}\n\n"
            "For any concerns, please contact the class teacher.\n\n"
            f"{self._signature()}"
        )
        return await self.send_message(parent_phone, message, "attendance_alert")

    async def send_report_card(self, student_name: str, parent_phone: str, report_url: str):
        message = (
            f"🎓 *{self._school} Report Card*\n\n"
            "Dear Parent,\n\n"
            f"The report card for *{student_name}* is now available.\n\n"
            "📊 *Download Report:*\n"
            f"{report_url}\n\n"
            "The report includes:\n"
            "✓ Subject-wise marks\n"
            "✓ Overall performance\n"
            "✓ Teacher comments\n"
            "✓ Attendance summary\n\n"
            "Please review and discuss with your child. For any queries, contact the class teacher.\n\n"
            f"{self._signature()}"
        )
        return await self.send_message(parent_phone, message, "report_card")

    async def send_invigilation_duty(self, teacher_name: str, teacher_phone: str, exam: dict[str, Any]):
        message = (
            f"🎓 *{self._school} Invigilation Duty*\n\n"
            f"Dear {teacher_name},\n\n"
            "You have been assigned invigilation duty:\n\n"
            "📋 *Exam Details:*\n"
            f"Subject: {exam.get('subject')}\n"
            f"Class: {exam.get('class')}\n"
            f"Date: {exam.get('date')}\n"
            f"Time: {exam.get('start_time')} - {exam.get('end_time')}\n"
            f"Room: {exam.get('room')}\n\n"
            "Please be present 15 minutes before the exam starts.\n\n"
            "For any changes or queries, contact the exam coordinator.\n\n"
            f"{self._signature()}"
        )
        return await self.send_message(teacher_phone, message, "invigilation_duty")

    async def send_timetable_update(self, recipient_phone: str, recipient_name: str, changes: str):
        message = (
            f"🎓 *{self._school} Timetable Update*\n\n"
            f"Dear {recipient_name},\n\n"
            "There has been an update to the timetable:\n\n"
            "📅 *Changes:*\n"
            f"{changes}\n\n"
            f"Please check the updated timetable in the {self._school} system.\n\n"
            "For any queries, contact the academic coordinator.\n\n"
            f"{self._signature()}"
        )
        return await self.send_message(recipient_phone, message, "timetable_update")

    async def send_substitution_notification(self, teacher_name: str, teacher_phone: str, details: dict[str, Any]):
        message = (
            f"🎓 *{self._school} Substitution Assignment*\n\n"
            f"Dear {teacher_name},\n\n"
            "You have been assigned a substitution class:\n\n"
            "📋 *Details:*\n"
            f"Class: {details.get('class')} {details.get('section')}\n"
            f"Subject: {details.get('subject')}\n"
            f"Period: {details.get('period')}\n"
            f"Date: {details.get('date')}\n"
            f"Absent Teacher: {details.get('absent_teacher')}\n\n"
            "Please check your schedule and confirm availability.\n\n"
            f"{self._signature()}"
        )
        return await self.send_message(teacher_phone, message, "substitution_notification")

    # -------------------------------------------------------------------
    # Webhook
    # -------------------------------------------------------------------

    def verify_webhook(self, mode: str | None, token: str | None, challenge: str | None) -> str | None:
        """Subscription handshake; returns the challenge to echo, or None."""
        if mode == "subscribe" and self._verify_token and token == self._verify_token:
            return challenge
        logger.warning("WhatsApp webhook verification refused (mode=%s)", mode)
        return None

    def process_webhook(self, payload: Any) -> list[dict[str, Any]]:
        """Pull received messages out of a Cloud API webhook envelope.

        Returns:
            [{"from", "text", "timestamp"}, ...]; empty for status
            callbacks and anything malformed.
        """
        received: list[dict[str, Any]] = []
        if not isinstance(payload, dict):
            return received

        for entry in payload.get("entry") or []:
            if not isinstance(entry, dict):
                continue
            for change in entry.get("changes") or []:
                value = change.get("value") if isinstance(change, dict) else None
                if not isinstance(value, dict):
                    continue
                for msg in value.get("messages") or []:
                    if not isinstance(msg, dict) or "from" not in msg:
                        continue
                    text = msg.get("text")
                    received.append({
                        "from": msg["from"],
                        "text": text.get("body", "") if isinstance(text, dict) else "",
                        "timestamp": msg.get("timestamp"),
                    })

        for msg in received:
            logger.info("WhatsApp message received from %s", msg["from"])
        return received

    def get_status(self) -> dict[str, Any]:
        return {
            "configured": bool(self._api_key and self._business_number),
            "sent": self._sent,
            "failed": self._failed,
        }
