"""
EduManage Event Notifications

The facts the server pushes to dashboards after a mutation: attendance
marked, fee updated, timetable changed and so on.

A notification is built inside the request handler that made the change,
handed to the Broadcaster, and then forgotten. Nothing is persisted,
queued or retried; sockets connected at that moment get it, nobody else
ever will.

Usage:
    from core.notifications import EventNotification, EventType

    note = EventNotification(EventType.ATTENDANCE_UPDATE, attendance_row)
    await broadcaster.broadcast(note)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(Enum):
    """Closed set of server-originated event types.

    The value is the ``type`` field of the outbound frame.
    """
    DASHBOARD_METRICS = "dashboard_metrics"
    ATTENDANCE_UPDATE = "attendance_update"
    FEE_UPDATE = "fee_update"
    TIMETABLE_UPDATE = "timetable_update"
    INVIGILATION_UPDATE = "invigilation_update"
    SUBSTITUTION_UPDATE = "substitution_update"
    BEHAVIOR_UPDATE = "behavior_update"
    WHATSAPP_UPDATE = "whatsapp_update"

    @classmethod
    def parse(cls, value: "str | EventType") -> "EventType":
        """Coerce a frame type string into an EventType.

        Raises:
            ValueError: if the value is not one of the known types.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown event type '{value}'. Allowed: {allowed}") from None


# ---------------------------------------------------------------------------
# Notification model
# ---------------------------------------------------------------------------

@dataclass
class EventNotification:
    """A single event to push to connected clients.

    Attributes:
        type:       One of EventType (strings are coerced on construction).
        data:       JSON-serializable payload, shaped by the caller.
        timestamp:  Set by the server when the notification is built.
    """
    type: EventType
    data: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.type = EventType.parse(self.type)

    def to_frame(self) -> dict[str, Any]:
        """Outbound wire frame: ``{"type", "data", "timestamp"}``."""
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }
