"""
EduManage AI Gateway — "Vipu" assistant

Wraps the OpenAI chat-completions API for the school assistant and the
AI-generated documents (question papers, behavior analyses, event
invitations).

Chat flow for one user message:
    1. classify_intent()  → {"name": "fee_inquiry", "confidence": 0.93}
    2. context_for()      → live figures from Storage for that intent
    3. answer()           → assistant reply with the figures appended to
                            the system prompt
    4. chat history row saved when a session id is given

The chat path never raises; a failure anywhere yields a fixed apology.
The document generators raise AIGatewayError so the REST layer can
answer with a 500.

Usage:
    from core.ai_gateway import AIGateway

    ai = AIGateway(storage, api_key="sk-...")
    reply = await ai.process_query("When is the maths exam?", session_id="s1")
    paper = await ai.generate_question_paper("Physics", "10", "midterm", 90)
"""

import json
import logging
import time
from typing import Any

import openai


logger = logging.getLogger("edumanage.ai")

APOLOGY = (
    "I'm experiencing technical difficulties. Please try again later "
    "or contact school support."
)
NO_REPLY = "I'm sorry, I couldn't process your request at the moment."
NO_INVITATION = "Unable to generate invitation text."
NO_BEHAVIOR_RECORDS = "No behavior records found for this student."

INTENTS = (
    "fee_inquiry",
    "attendance_check",
    "exam_schedule",
    "academic_performance",
    "general_info",
    "behavior_inquiry",
    "contact_info",
    "other",
)
FALLBACK_INTENT = {"name": "other", "confidence": 0.5}


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """You are Vipu, an AI assistant for {school} school management system. You help parents, teachers, and administrators with school-related queries.

You can provide information about:
- Student fees and payment status
- Attendance records and statistics
- Exam schedules and timetables
- Academic performance and reports
- School events and announcements
- Teacher duty assignments
- Student behavior records
- General school policies and procedures

Always be helpful, professional, and provide accurate information. When you don't have specific information, offer to help the user find the right person to contact.

For fee queries, attendance, or specific student information, always ask for verification details like student ID or roll number for security.

Keep responses concise but informative. Use emojis appropriately to make responses friendly."""

INTENT_PROMPT = """Analyze the user's message and classify the intent. Respond with JSON in this format: { "intent": "intent_name", "confidence": 0.95 }

Possible intents:
- fee_inquiry: Questions about fees, payments, due dates
- attendance_check: Questions about attendance records
- exam_schedule: Questions about exams, dates, timetables
- academic_performance: Questions about grades, reports
- general_info: General school information
- behavior_inquiry: Questions about student behavior
- contact_info: Requesting contact information
- other: Anything else"""

QUESTION_PAPER_PROMPT = """You are an expert educator creating examination question papers. Generate a comprehensive question paper in JSON format with the following structure:

{
  "title": "Question Paper Title",
  "instructions": ["Instruction 1", "Instruction 2"],
  "sections": [
    {
      "name": "Section A",
      "instructions": "Section specific instructions",
      "questions": [
        {
          "questionNumber": 1,
          "question": "Question text",
          "marks": 2,
          "type": "objective/short/long"
        }
      ]
    }
  ]
}

Create questions appropriate for the grade level with proper mark distribution."""

BEHAVIOR_PROMPT = """You are an educational psychologist analyzing student behavior patterns. Provide insights and recommendations in JSON format:

{
  "analysis": "Overall behavior analysis",
  "patterns": ["Pattern 1", "Pattern 2"],
  "recommendations": ["Recommendation 1", "Recommendation 2"],
  "riskLevel": "low/medium/high"
}"""

INVITATION_PROMPT = (
    "You are an expert at creating formal school event invitations. Create "
    "professional, warm, and engaging invitation text for school events."
)


class AIGatewayError(Exception):
    """An AI generation request failed or returned something unusable."""


def total_marks(paper: dict[str, Any]) -> int:
    """Sum of question marks across all sections of a generated paper."""
    total = 0
    for section in paper.get("sections") or []:
        for question in section.get("questions") or []:
            marks = question.get("marks") or 0
            if isinstance(marks, (int, float)):
                total += marks
    return int(total)


# ---------------------------------------------------------------------------
# AI Gateway
# ---------------------------------------------------------------------------

class AIGateway:
    """Assistant and document generation backed by chat completions.

    Args:
        storage:    Storage used for context figures, chat history and
                    generated question papers.
        client:     An ``openai.AsyncOpenAI``-compatible client. Built
                    lazily from ``api_key``/``base_url`` when omitted.
        model:      Chat model name.
    """

    def __init__(
        self,
        storage: Any,
        client: Any = None,
        api_key: str = "",
        base_url: str = "",
        model: str = "gpt-4o",
        school_name: str = "EduManage Pro",
        chat_max_tokens: int = 300,
        temperature: float = 0.7,
        intent_max_tokens: int = 100,
        paper_max_tokens: int = 2000,
        behavior_max_tokens: int = 800,
        invitation_max_tokens: int = 500,
    ):
        self._storage = storage
        self._client = client
        self._api_key = api_key
        self._base_url = base_url
        self.model = model
        self.system_prompt = SYSTEM_PROMPT.format(school=school_name)
        self.chat_max_tokens = chat_max_tokens
        self.temperature = temperature
        self.intent_max_tokens = intent_max_tokens
        self.paper_max_tokens = paper_max_tokens
        self.behavior_max_tokens = behavior_max_tokens
        self.invitation_max_tokens = invitation_max_tokens

        logger.info("AIGateway initialized (model=%s)", model)

    @classmethod
    def from_config(cls, config, storage: Any, client: Any = None) -> "AIGateway":
        ai = config.ai
        return cls(
            storage,
            client=client,
            api_key=ai.api_key,
            base_url=ai.base_url,
            model=ai.model,
            school_name=config.school.name,
            chat_max_tokens=ai.chat_max_tokens,
            temperature=ai.temperature,
            intent_max_tokens=ai.intent_max_tokens,
            paper_max_tokens=ai.paper_max_tokens,
            behavior_max_tokens=ai.behavior_max_tokens,
            invitation_max_tokens=ai.invitation_max_tokens,
        )

    def _get_client(self):
        if self._client is None:
            kwargs: dict[str, Any] = {"api_key": self._api_key or None}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = openai.AsyncOpenAI(**kwargs)
        return self._client

    async def _complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int,
        json_mode: bool = False,
        temperature: float | None = None,
    ) -> str:
        """One chat-completions call; returns the message text ('' if empty)."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if temperature is not None:
            kwargs["temperature"] = temperature

        response = await self._get_client().chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""

    # -------------------------------------------------------------------
    # Chat assistant
    # -------------------------------------------------------------------

    async def classify_intent(self, text: str) -> dict[str, Any]:
        """Classify a user message into one of INTENTS.

        Returns:
            {"name": ..., "confidence": ...}; FALLBACK_INTENT on any failure.
        """
        try:
            content = await self._complete(
                [
                    {"role": "system", "content": INTENT_PROMPT},
                    {"role": "user", "content": text},
                ],
                max_tokens=self.intent_max_tokens,
                json_mode=True,
            )
            result = json.loads(content or '{"intent": "other", "confidence": 0.5}')
        except Exception as e:
            logger.error("Intent classification failed: %s", e)
            return dict(FALLBACK_INTENT)

        if not isinstance(result, dict):
            return dict(FALLBACK_INTENT)
        name = result.get("intent")
        if name not in INTENTS:
            name = "other"
        confidence = result.get("confidence")
        if not isinstance(confidence, (int, float)):
            confidence = FALLBACK_INTENT["confidence"]
        return {"name": name, "confidence": float(confidence)}

    def context_for(self, intent: str) -> str | None:
        """Live figures relevant to ``intent``, or None."""
        try:
            if intent == "fee_inquiry":
                return self._fee_context()
            if intent == "attendance_check":
                return self._attendance_context()
            if intent == "exam_schedule":
                return self._exam_context()
            if intent == "academic_performance":
                return self._academic_context()
        except Exception as e:
            logger.error("Context lookup for %s failed: %s", intent, e)
        return None

    def _fee_context(self) -> str:
        stats = self._storage.get_fee_collection_stats()
        return (
            "Current Fee Collection Statistics:\n"
            f"- Total Collected: ₹{stats['total_collected']}\n"
            f"- Total Pending: ₹{stats['total_pending']}\n"
            f"- Total Overdue: ₹{stats['total_overdue']}\n\n"
            "For specific student fee information, please provide the student ID or roll number."
        )

    def _attendance_context(self) -> str:
        stats = self._storage.get_attendance_stats()
        return (
            "Current Attendance Statistics:\n"
            f"- Overall Attendance Rate: {stats['attendance_rate']:.1f}%\n"
            f"- Students Present: {stats['present']}\n"
            f"- Students Absent: {stats['absent']}\n\n"
            "For specific student attendance, please provide the student ID or roll number."
        )

    def _exam_context(self) -> str:
        exams = self._storage.get_exam_schedule()[:5]
        if not exams:
            return "No upcoming exams scheduled at the moment."
        lines = []
        for exam in exams:
            group = exam["class"] + (f" {exam['section']}" if exam.get("section") else "")
            lines.append(f"- {exam['subject']} ({group}): {exam['date']} at {exam['start_time']}")
        return "Upcoming Exams:\n" + "\n".join(lines)

    def _academic_context(self) -> str:
        students = self._storage.get_students()
        return (
            "Academic Overview:\n"
            f"- Total Active Students: {len(students)}\n\n"
            "For specific student performance reports, please provide the student ID or roll number."
        )

    async def answer(self, text: str, context_facts: str | None = None) -> str:
        system = self.system_prompt
        if context_facts:
            system += f"\n\nRelevant Information:\n{context_facts}"
        reply = await self._complete(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": text},
            ],
            max_tokens=self.chat_max_tokens,
            temperature=self.temperature,
        )
        return reply or NO_REPLY

    async def process_query(
        self,
        message: str,
        user_id: str | None = None,
        session_id: str | None = None,
    ) -> str:
        """Full assistant turn: classify, gather context, answer, record."""
        start = time.perf_counter()
        try:
            intent = await self.classify_intent(message)
            context = self.context_for(intent["name"])
            reply = await self.answer(message, context)
            elapsed_ms = int((time.perf_counter() - start) * 1000)

            if session_id:
                self._storage.save_chat_history({
                    "user_id": user_id,
                    "session_id": session_id,
                    "user_message": message,
                    "ai_response": reply,
                    "intent": intent["name"],
                    "confidence": intent["confidence"],
                    "response_time": elapsed_ms,
                })
        except Exception:
            logger.exception("Assistant query failed")
            return APOLOGY

        logger.info(
            "Answered %s query in %dms (session=%s)",
            intent["name"], elapsed_ms, session_id,
        )
        return reply

    # -------------------------------------------------------------------
    # Document generation
    # -------------------------------------------------------------------

    async def _complete_json(self, system: str, user: str, max_tokens: int, what: str) -> dict[str, Any]:
        try:
            content = await self._complete(
                [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=max_tokens,
                json_mode=True,
            )
            result = json.loads(content or "{}")
        except Exception as e:
            logger.error("%s failed: %s", what, e)
            raise AIGatewayError(f"{what} failed: {e}") from e
        if not isinstance(result, dict):
            raise AIGatewayError(f"{what} returned {type(result).__name__}, expected an object")
        return result

    async def generate_question_paper(
        self,
        subject: str,
        class_name: str,
        exam_type: str,
        duration: int,
    ) -> dict[str, Any]:
        """Generate a question paper and save it as an unpublished draft.

        Returns:
            The generated document: {title, instructions[], sections[]}.

        Raises:
            AIGatewayError: if generation or saving fails.
        """
        paper = await self._complete_json(
            QUESTION_PAPER_PROMPT,
            f"Create a {exam_type} question paper for {subject} subject for "
            f"Class {class_name}. Duration: {duration} minutes. Include a mix of "
            "objective, short answer, and long answer questions with appropriate "
            "mark distribution.",
            self.paper_max_tokens,
            "Question paper generation",
        )

        instructions = paper.get("instructions") or []
        if isinstance(instructions, list):
            instructions = "\n".join(str(i) for i in instructions)
        try:
            self._storage.create_question_paper({
                "title": paper.get("title") or f"{subject} {exam_type} - Class {class_name}",
                "subject": subject,
                "class": class_name,
                "exam_type": exam_type,
                "duration": duration,
                "max_marks": total_marks(paper),
                "instructions": instructions,
                "questions": paper,
                "created_by": "vipu-ai",
                "is_published": False,
                "tags": [subject, class_name, exam_type],
            })
        except Exception as e:
            logger.error("Saving generated question paper failed: %s", e)
            raise AIGatewayError(f"Saving question paper failed: {e}") from e

        logger.info("Generated %s question paper for %s class %s", exam_type, subject, class_name)
        return paper

    async def analyze_behavior(self, records: list[dict[str, Any]]) -> dict[str, Any]:
        """Ask for patterns, recommendations and a risk level over ``records``."""
        summary = "\n".join(
            f"{r.get('date')}: {r.get('type')} - {r.get('category')} - {r.get('description')}"
            for r in records
        )
        return await self._complete_json(
            BEHAVIOR_PROMPT,
            f"Analyze the following behavior records for a student:\n\n{summary}",
            self.behavior_max_tokens,
            "Behavior analysis",
        )

    async def analyze_student_behavior(self, student_id: int) -> dict[str, Any]:
        records = self._storage.get_behavior_records(student_id)
        if not records:
            return {"analysis": NO_BEHAVIOR_RECORDS, "recommendations": []}
        return await self.analyze_behavior(records)

    async def generate_invitation_text(self, event_type: str, details: dict[str, Any]) -> str:
        try:
            text = await self._complete(
                [
                    {"role": "system", "content": INVITATION_PROMPT},
                    {
                        "role": "user",
                        "content": f"Create an invitation for a {event_type} with the "
                                   f"following details: {json.dumps(details, default=str)}",
                    },
                ],
                max_tokens=self.invitation_max_tokens,
            )
        except Exception as e:
            logger.error("Invitation generation failed: %s", e)
            raise AIGatewayError(f"Invitation generation failed: {e}") from e
        return text or NO_INVITATION
