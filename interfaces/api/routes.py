"""
EduManage REST API — /api/

Endpoints for the dashboard modules. Mutations push an event over the
realtime socket through the Broadcaster on ``request.app.state``.

Auth: optional API key via ``X-API-Key`` header.  Set ``api.api_key`` in
config/settings.toml or the ``EDUMANAGE_API_KEY`` env var.  Empty key =
open access.  The assistant chat and the WhatsApp webhook are always open.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from core.ai_gateway import AIGatewayError
from core.notifications import EventNotification, EventType
from core.storage import today_iso
from core.whatsapp import WhatsAppError

logger = logging.getLogger("edumanage.api")

# ---------------------------------------------------------------------------
# Auth dependency
# ---------------------------------------------------------------------------

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Depends(_api_key_header),
):
    """Check X-API-Key against the configured key.

    If the configured key is empty (default), auth is disabled and all
    requests are allowed through.  When a key is set, requests without
    a matching header receive 403.
    """
    configured_key: str = request.app.state.config.api.api_key
    if not configured_key:
        return  # open access
    if api_key != configured_key:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

router = APIRouter(
    prefix="/api",
    dependencies=[Depends(verify_api_key)],
)

# No API key: assistant chat and the WhatsApp webhook
public_router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class _ClassModel(BaseModel):
    """Base for bodies carrying a ``class`` field."""
    model_config = ConfigDict(populate_by_name=True)


class UserUpsert(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: Optional[str] = None
    employee_id: Optional[str] = None
    phone: Optional[str] = None
    subjects: Optional[list[str]] = None
    classes: Optional[list[str]] = None
    department: Optional[str] = None
    is_active: Optional[bool] = None


class StudentCreate(_ClassModel):
    student_id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    class_name: str = Field(alias="class")
    section: str
    roll_number: Optional[int] = None
    date_of_birth: Optional[str] = None
    address: Optional[str] = None
    fee_status: str = "pending"
    total_fees: Optional[float] = None
    paid_fees: float = 0
    admission_date: Optional[str] = None


class StudentUpdate(_ClassModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    class_name: Optional[str] = Field(default=None, alias="class")
    section: Optional[str] = None
    roll_number: Optional[int] = None
    address: Optional[str] = None
    fee_status: Optional[str] = None
    total_fees: Optional[float] = None
    paid_fees: Optional[float] = None
    is_active: Optional[bool] = None


class TeacherCreate(BaseModel):
    employee_id: str
    user_id: Optional[str] = None
    subjects: list[str] = []
    classes: list[str] = []
    department: Optional[str] = None
    duty_factor: float = 1.0
    status: str = "ACTIVE"


class TeacherUpdate(BaseModel):
    subjects: Optional[list[str]] = None
    classes: Optional[list[str]] = None
    department: Optional[str] = None
    duty_factor: Optional[float] = None
    status: Optional[str] = None


class AttendanceCreate(BaseModel):
    student_id: int
    date: str = Field(default_factory=today_iso)
    status: str
    marked_by: Optional[str] = None
    notes: Optional[str] = None


class FeeCreate(BaseModel):
    student_id: int
    amount: float
    fee_type: str
    due_date: Optional[str] = None
    paid_date: Optional[str] = None
    status: str = "pending"
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class FeeUpdate(BaseModel):
    amount: Optional[float] = None
    due_date: Optional[str] = None
    paid_date: Optional[str] = None
    status: Optional[str] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class TimetableCreate(_ClassModel):
    class_name: str = Field(alias="class")
    section: str
    day: str
    period: int
    start_time: str
    end_time: str
    subject: str
    teacher_id: Optional[str] = None
    room: Optional[str] = None


class TimetableUpdate(_ClassModel):
    class_name: Optional[str] = Field(default=None, alias="class")
    section: Optional[str] = None
    day: Optional[str] = None
    period: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    subject: Optional[str] = None
    teacher_id: Optional[str] = None
    room: Optional[str] = None


class ExamCreate(_ClassModel):
    exam_name: str
    subject: str
    class_name: str = Field(alias="class")
    section: Optional[str] = None
    date: str
    start_time: str
    end_time: str
    room: Optional[str] = None
    max_marks: Optional[int] = None


class InvigilationCreate(BaseModel):
    exam_id: Optional[int] = None
    teacher_id: Optional[str] = None
    room: str
    date: str
    start_time: str
    end_time: str
    is_exempted: bool = False
    exemption_reason: Optional[str] = None


class BehaviorCreate(BaseModel):
    student_id: int
    teacher_id: Optional[str] = None
    type: str
    category: Optional[str] = None
    description: str
    severity: Optional[str] = None
    action_taken: Optional[str] = None
    parent_notified: bool = False
    follow_up_required: bool = False
    date: str = Field(default_factory=today_iso)


class SubstitutionCreate(_ClassModel):
    absent_teacher_id: Optional[str] = None
    substitute_teacher_id: Optional[str] = None
    class_name: str = Field(alias="class")
    section: str
    subject: str
    period: int
    date: str
    reason: Optional[str] = None
    status: str = "assigned"


class WhatsAppSend(BaseModel):
    to: str
    message: str
    message_type: str = "text"
    recipient_name: Optional[str] = None
    related_entity_id: Optional[int] = None
    related_entity_type: Optional[str] = None


class ChatRequest(BaseModel):
    message: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class QuestionPaperRequest(_ClassModel):
    subject: str
    class_name: str = Field(alias="class")
    exam_type: str
    duration: int


class QuestionPaperCreate(_ClassModel):
    title: str
    subject: str
    class_name: str = Field(alias="class")
    exam_type: Optional[str] = None
    duration: Optional[int] = None
    max_marks: Optional[int] = None
    instructions: Optional[str] = None
    questions: Any = None
    created_by: Optional[str] = None
    is_published: bool = False
    tags: list[str] = []


class InvitationRequest(BaseModel):
    event_type: str
    details: dict[str, Any] = {}


class AnalyticsCreate(BaseModel):
    metric_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    value: float
    metadata: Optional[dict[str, Any]] = None
    period: Optional[str] = None
    date: str = Field(default_factory=today_iso)


class EventPush(BaseModel):
    type: str
    data: Any = None
    roles: Optional[list[str]] = None
    user_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _dump(body: BaseModel, partial: bool = False) -> dict[str, Any]:
    """Request body as a storage row dict (``class_name`` becomes ``class``)."""
    return body.model_dump(by_alias=True, exclude_unset=partial)


def _store(action: str, fn: Callable, *args) -> Any:
    """Run a storage call; failures become HTTP 500 "Failed to <action>"."""
    try:
        return fn(*args)
    except Exception:
        logger.exception("Failed to %s", action)
        raise HTTPException(status_code=500, detail=f"Failed to {action}")


async def _broadcast(request: Request, event_type: EventType, data: Any):
    await request.app.state.broadcaster.broadcast(EventNotification(event_type, data))


async def _notify_parent(request: Request, student_id: int, send, message_type: str):
    """Send a WhatsApp side-effect message and record it. Never raises.

    ``send`` is called with (student_name, parent_phone) and returns the
    coroutine doing the actual send.
    """
    whatsapp = request.app.state.whatsapp
    storage = request.app.state.storage
    if not whatsapp.get_status()["configured"]:
        logger.debug("WhatsApp not configured, skipping %s", message_type)
        return

    try:
        student = storage.get_student_by_id(student_id)
    except Exception as e:
        logger.error("Could not load student %s for %s: %s", student_id, message_type, e)
        return
    if not student or not student.get("parent_phone"):
        return

    name = f"{student['first_name']} {student['last_name']}"
    record = {
        "recipient_phone": student["parent_phone"],
        "recipient_name": name,
        "message_type": message_type,
        "related_entity_id": student["id"],
        "related_entity_type": "student",
    }
    try:
        await send(name, student["parent_phone"])
        record.update(status="sent", sent_at=datetime.now(timezone.utc).isoformat())
    except WhatsAppError as e:
        logger.warning("%s for student %s not sent: %s", message_type, student["id"], e)
        record.update(status="failed", error_message=str(e))

    try:
        storage.create_whatsapp_notification({
            **record,
            "message": f"{message_type.replace('_', ' ')} for {name}",
        })
    except Exception as e:
        logger.error("Could not record %s notification: %s", message_type, e)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

# -- Dashboard ---------------------------------------------------------------

@router.get("/dashboard/metrics")
async def dashboard_metrics(request: Request):
    storage = request.app.state.storage
    return _store("fetch dashboard metrics", storage.get_dashboard_metrics)


# -- Users -------------------------------------------------------------------

@router.get("/users/{user_id}")
async def get_user(user_id: str, request: Request):
    user = _store("fetch user", request.app.state.storage.get_user, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.put("/users/{user_id}")
async def upsert_user(user_id: str, body: UserUpsert, request: Request):
    """Create or update the profile of a signed-in user."""
    data = {**_dump(body, partial=True), "id": user_id}
    return _store("upsert user", request.app.state.storage.upsert_user, data)


# -- Students ----------------------------------------------------------------

@router.get("/students")
async def list_students(
    request: Request,
    class_name: Optional[str] = Query(default=None, alias="class"),
    section: Optional[str] = None,
):
    storage = request.app.state.storage
    if class_name:
        return _store("fetch students", storage.get_students_by_class, class_name, section)
    return _store("fetch students", storage.get_students)


@router.get("/students/{student_id}")
async def get_student(student_id: int, request: Request):
    storage = request.app.state.storage
    student = _store("fetch student", storage.get_student_by_id, student_id)
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


@router.post("/students", status_code=201)
async def create_student(body: StudentCreate, request: Request):
    storage = request.app.state.storage
    student = _store("create student", storage.create_student, _dump(body))
    logger.info("Student %s created (%s)", student["id"], student["student_id"])
    return student


@router.put("/students/{student_id}")
async def update_student(student_id: int, body: StudentUpdate, request: Request):
    storage = request.app.state.storage
    student = _store("update student", storage.update_student, student_id, _dump(body, partial=True))
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


# -- Teachers ----------------------------------------------------------------

@router.get("/teachers")
async def list_teachers(request: Request):
    return _store("fetch teachers", request.app.state.storage.get_teachers)


@router.post("/teachers", status_code=201)
async def create_teacher(body: TeacherCreate, request: Request):
    return _store("create teacher", request.app.state.storage.create_teacher, _dump(body))


@router.get("/teachers/by-user/{user_id}")
async def get_teacher_for_user(user_id: str, request: Request):
    storage = request.app.state.storage
    teacher = _store("fetch teacher", storage.get_teacher_by_user_id, user_id)
    if teacher is None:
        raise HTTPException(status_code=404, detail="Teacher not found")
    return teacher


@router.put("/teachers/{teacher_id}")
async def update_teacher(teacher_id: int, body: TeacherUpdate, request: Request):
    storage = request.app.state.storage
    teacher = _store("update teacher", storage.update_teacher, teacher_id, _dump(body, partial=True))
    if teacher is None:
        raise HTTPException(status_code=404, detail="Teacher not found")
    return teacher


# -- Attendance --------------------------------------------------------------

@router.get("/attendance")
async def list_attendance(
    request: Request,
    date: Optional[str] = None,
    student_id: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    """By student (newest first) when ``student_id`` is given, else by date (today by default)."""
    storage = request.app.state.storage
    if student_id is not None:
        return _store(
            "fetch attendance", storage.get_attendance_by_student,
            student_id, start_date, end_date,
        )
    return _store("fetch attendance", storage.get_attendance_by_date, date or today_iso())


@router.post("/attendance", status_code=201)
async def mark_attendance(body: AttendanceCreate, request: Request):
    storage = request.app.state.storage
    whatsapp = request.app.state.whatsapp
    attendance = _store("mark attendance", storage.mark_attendance, _dump(body))

    if attendance["status"] == "absent":
        await _notify_parent(
            request, attendance["student_id"],
            lambda name, phone: whatsapp.send_attendance_alert(
                name, phone, attendance["status"], attendance["date"]),
            "attendance_alert",
        )

    await _broadcast(request, EventType.ATTENDANCE_UPDATE, attendance)
    return attendance


@router.get("/attendance/stats")
async def attendance_stats(
    request: Request,
    class_name: Optional[str] = Query(default=None, alias="class"),
    section: Optional[str] = None,
    date: Optional[str] = None,
):
    storage = request.app.state.storage
    return _store("fetch attendance stats", storage.get_attendance_stats, class_name, section, date)


# -- Fees --------------------------------------------------------------------

@router.get("/fees")
async def list_fees(request: Request, student_id: Optional[int] = None):
    storage = request.app.state.storage
    if student_id is not None:
        return _store("fetch fee records", storage.get_fee_records_by_student, student_id)
    return _store("fetch fee records", storage.get_fee_records)


@router.get("/fees/stats")
async def fee_stats(request: Request):
    return _store("fetch fee stats", request.app.state.storage.get_fee_collection_stats)


@router.post("/fees", status_code=201)
async def create_fee(body: FeeCreate, request: Request):
    fee = _store("create fee record", request.app.state.storage.create_fee_record, _dump(body))
    await _broadcast(request, EventType.FEE_UPDATE, fee)
    return fee


@router.put("/fees/{fee_id}")
async def update_fee(fee_id: int, body: FeeUpdate, request: Request):
    storage = request.app.state.storage
    whatsapp = request.app.state.whatsapp
    changes = _dump(body, partial=True)
    if changes.get("status") == "paid" and not changes.get("paid_date"):
        changes["paid_date"] = today_iso()

    fee = _store("update fee record", storage.update_fee_record, fee_id, changes)
    if fee is None:
        raise HTTPException(status_code=404, detail="Fee record not found")

    if changes.get("status") == "paid":
        await _notify_parent(
            request, fee["student_id"],
            lambda name, phone: whatsapp.send_fee_receipt(
                name, phone, fee["amount"], fee["paid_date"]),
            "fee_receipt",
        )

    await _broadcast(request, EventType.FEE_UPDATE, fee)
    return fee


# -- Timetable ---------------------------------------------------------------

@router.get("/timetable")
async def list_timetable(
    request: Request,
    class_name: Optional[str] = Query(default=None, alias="class"),
    section: Optional[str] = None,
):
    return _store("fetch timetable", request.app.state.storage.get_timetable, class_name, section)


@router.post("/timetable", status_code=201)
async def create_timetable_entry(body: TimetableCreate, request: Request):
    entry = _store("create timetable entry", request.app.state.storage.create_timetable_entry, _dump(body))
    await _broadcast(request, EventType.TIMETABLE_UPDATE, entry)
    return entry


@router.put("/timetable/{entry_id}")
async def update_timetable_entry(entry_id: int, body: TimetableUpdate, request: Request):
    storage = request.app.state.storage
    entry = _store("update timetable entry", storage.update_timetable_entry, entry_id, _dump(body, partial=True))
    if entry is None:
        raise HTTPException(status_code=404, detail="Timetable entry not found")
    await _broadcast(request, EventType.TIMETABLE_UPDATE, entry)
    return entry


@router.delete("/timetable/{entry_id}")
async def delete_timetable_entry(entry_id: int, request: Request):
    storage = request.app.state.storage
    entry = _store("delete timetable entry", storage.delete_timetable_entry, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Timetable entry not found")
    await _broadcast(request, EventType.TIMETABLE_UPDATE, entry)
    return {"ok": True, "id": entry_id}


# -- Exams and invigilation --------------------------------------------------

@router.get("/exams")
async def list_exams(request: Request):
    return _store("fetch exam schedule", request.app.state.storage.get_exam_schedule)


@router.post("/exams", status_code=201)
async def create_exam(body: ExamCreate, request: Request):
    return _store("create exam schedule", request.app.state.storage.create_exam_schedule, _dump(body))


@router.get("/invigilation")
async def list_invigilation(request: Request, teacher_id: Optional[str] = None):
    return _store("fetch invigilation duties", request.app.state.storage.get_invigilation_duties, teacher_id)


@router.post("/invigilation", status_code=201)
async def assign_invigilation(body: InvigilationCreate, request: Request):
    duty = _store("assign invigilation duty", request.app.state.storage.assign_invigilation_duty, _dump(body))
    await _broadcast(request, EventType.INVIGILATION_UPDATE, duty)
    return duty


# -- Behavior ----------------------------------------------------------------

@router.get("/behavior")
async def list_behavior(request: Request, student_id: Optional[int] = None):
    return _store("fetch behavior records", request.app.state.storage.get_behavior_records, student_id)


@router.post("/behavior", status_code=201)
async def create_behavior(body: BehaviorCreate, request: Request):
    record = _store("create behavior record", request.app.state.storage.create_behavior_record, _dump(body))
    await _broadcast(request, EventType.BEHAVIOR_UPDATE, record)
    return record


# -- Substitutions -----------------------------------------------------------

@router.get("/substitutions")
async def list_substitutions(request: Request, date: Optional[str] = None):
    return _store("fetch substitutions", request.app.state.storage.get_substitution_log, date)


@router.post("/substitutions", status_code=201)
async def create_substitution(body: SubstitutionCreate, request: Request):
    substitution = _store("create substitution", request.app.state.storage.create_substitution, _dump(body))
    await _broadcast(request, EventType.SUBSTITUTION_UPDATE, substitution)
    return substitution


# -- WhatsApp ----------------------------------------------------------------

@router.post("/whatsapp/send")
async def send_whatsapp(body: WhatsAppSend, request: Request):
    """Send a message, record it, and push the record to dashboards.

    A rejected send is still recorded (status "failed") and answered
    with 502.
    """
    storage = request.app.state.storage
    whatsapp = request.app.state.whatsapp

    notification = _store("record WhatsApp message", storage.create_whatsapp_notification, {
        "recipient_phone": body.to,
        "recipient_name": body.recipient_name,
        "message_type": body.message_type,
        "message": body.message,
        "related_entity_id": body.related_entity_id,
        "related_entity_type": body.related_entity_type,
    })

    try:
        await whatsapp.send_message(body.to, body.message, body.message_type)
    except WhatsAppError as e:
        notification = _store(
            "record WhatsApp message", storage.update_whatsapp_notification,
            notification["id"], {"status": "failed", "error_message": str(e)},
        )
        await _broadcast(request, EventType.WHATSAPP_UPDATE, notification)
        raise HTTPException(status_code=502, detail="Failed to send WhatsApp message")

    notification = _store(
        "record WhatsApp message", storage.update_whatsapp_notification,
        notification["id"], {"status": "sent", "sent_at": datetime.now(timezone.utc).isoformat()},
    )
    await _broadcast(request, EventType.WHATSAPP_UPDATE, notification)
    return notification


@router.get("/whatsapp/notifications")
async def list_whatsapp_notifications(request: Request, status: Optional[str] = None):
    return _store("fetch WhatsApp notifications", request.app.state.storage.get_whatsapp_notifications, status)


@public_router.get("/whatsapp/webhook")
async def verify_whatsapp_webhook(
    request: Request,
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    result = request.app.state.whatsapp.verify_webhook(mode, token, challenge)
    if result is None:
        return PlainTextResponse("Forbidden", status_code=403)
    return PlainTextResponse(result)


@public_router.post("/whatsapp/webhook")
async def receive_whatsapp_webhook(request: Request):
    """Inbound messages are pushed to dashboards, one event each."""
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("WhatsApp webhook body is not JSON")
        payload = None

    messages = request.app.state.whatsapp.process_webhook(payload)
    for message in messages:
        await _broadcast(request, EventType.WHATSAPP_UPDATE, {"direction": "inbound", **message})
    return PlainTextResponse("OK")


# -- Assistant ---------------------------------------------------------------

@public_router.post("/ai/chat")
async def ai_chat(body: ChatRequest, request: Request):
    reply = await request.app.state.ai.process_query(body.message, body.user_id, body.session_id)
    return {"response": reply, "session_id": body.session_id}


@public_router.get("/ai/chat/history/{session_id}")
async def ai_chat_history(session_id: str, request: Request):
    return _store("fetch chat history", request.app.state.storage.get_chat_history, session_id)


@router.post("/ai/generate-question-paper")
async def ai_generate_question_paper(body: QuestionPaperRequest, request: Request):
    try:
        return await request.app.state.ai.generate_question_paper(
            body.subject, body.class_name, body.exam_type, body.duration,
        )
    except AIGatewayError as e:
        logger.error("Question paper generation failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to generate question paper")


@router.post("/ai/analyze-behavior/{student_id}")
async def ai_analyze_behavior(student_id: int, request: Request):
    ai = request.app.state.ai
    try:
        return await ai.analyze_student_behavior(student_id)
    except Exception:
        logger.exception("Behavior analysis for student %s failed", student_id)
        raise HTTPException(status_code=500, detail="Failed to analyze behavior")


@router.post("/ai/generate-invitation")
async def ai_generate_invitation(body: InvitationRequest, request: Request):
    try:
        text = await request.app.state.ai.generate_invitation_text(body.event_type, body.details)
    except AIGatewayError as e:
        logger.error("Invitation generation failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to generate invitation")
    return {"text": text}


# -- Question papers ---------------------------------------------------------

@router.get("/question-papers")
async def list_question_papers(request: Request):
    return _store("fetch question papers", request.app.state.storage.get_question_papers)


@router.post("/question-papers", status_code=201)
async def create_question_paper(body: QuestionPaperCreate, request: Request):
    return _store("create question paper", request.app.state.storage.create_question_paper, _dump(body))


# -- Analytics ---------------------------------------------------------------

@router.get("/analytics/export")
async def export_analytics(
    request: Request,
    metric_type: str,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    """Rows shaped for BI tools (PascalCase keys, numeric Value)."""
    rows = _store(
        "export analytics data", request.app.state.storage.get_analytics_data,
        metric_type, start_date, end_date,
    )
    return [
        {
            "MetricType": row["metric_type"],
            "EntityType": row["entity_type"],
            "EntityId": row["entity_id"],
            "Value": float(row["value"]),
            "Date": row["date"],
            "Metadata": row["metadata"],
            "Period": row["period"],
        }
        for row in rows
    ]


@router.post("/analytics", status_code=201)
async def save_analytics(body: AnalyticsCreate, request: Request):
    return _store("save analytics data", request.app.state.storage.save_analytics_data, _dump(body))


# -- Realtime ----------------------------------------------------------------

@router.post("/notifications/push")
async def push_notification(body: EventPush, request: Request):
    """Push an event to everyone, to some roles, or to one user.

    ``roles`` wins over ``user_id`` when both are given.
    """
    try:
        notification = EventNotification(body.type, body.data)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    broadcaster = request.app.state.broadcaster
    if body.roles is not None:
        delivered = await broadcaster.broadcast_to_roles(notification, body.roles)
    elif body.user_id is not None:
        delivered = await broadcaster.send_to_user(notification, body.user_id)
    else:
        delivered = await broadcaster.broadcast(notification)

    logger.info("Pushed %s to %d connection(s)", notification.type.value, delivered)
    return {"ok": True, "type": notification.type.value, "delivered": delivered}


@router.get("/ws/status")
async def websocket_status(request: Request):
    registry = request.app.state.registry
    return {
        **registry.get_status(),
        "connections": [conn.to_dict() for conn in registry.all()],
        "liveness": request.app.state.liveness.get_status(),
    }
