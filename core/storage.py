"""
EduManage Storage — SQLite-Backed School Records

Persistence for everything the dashboard shows: students, teachers,
attendance, fees, timetable, exams, invigilation duties, behavior
records, substitutions, outbound messages, assistant chat history,
question papers and analytics rows. Also computes the aggregate figures
behind the dashboard metric cards.

Rows come back as plain dicts with snake_case keys. List and JSON
columns are stored as JSON text and decoded on the way out; flag
columns come back as bool.

Usage:
    from core.storage import Storage

    storage = Storage(db_path="data/edumanage.db")
    student = storage.create_student({...})
    storage.mark_attendance({"student_id": student["id"], "date": "2026-10-19",
                             "status": "present"})
    metrics = storage.get_dashboard_metrics()
    storage.close()
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


logger = logging.getLogger("edumanage.storage")


class StorageError(Exception):
    """A read or write against the database failed."""


def today_iso() -> str:
    """Today's date (UTC) as YYYY-MM-DD, the format of every date column."""
    return datetime.now(timezone.utc).date().isoformat()


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE,
        first_name TEXT,
        last_name TEXT,
        profile_image_url TEXT,
        role TEXT NOT NULL DEFAULT 'teacher',
        employee_id TEXT UNIQUE,
        phone TEXT,
        subjects TEXT,
        classes TEXT,
        department TEXT,
        is_active INTEGER DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT UNIQUE NOT NULL,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        email TEXT,
        phone TEXT,
        parent_phone TEXT,
        parent_email TEXT,
        class TEXT NOT NULL,
        section TEXT NOT NULL,
        roll_number INTEGER,
        date_of_birth TEXT,
        address TEXT,
        fee_status TEXT DEFAULT 'pending',
        total_fees REAL,
        paid_fees REAL DEFAULT 0,
        admission_date TEXT,
        is_active INTEGER DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS teachers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT REFERENCES users(id),
        employee_id TEXT UNIQUE NOT NULL,
        subjects TEXT,
        classes TEXT,
        department TEXT,
        duty_factor REAL DEFAULT 1.0,
        status TEXT DEFAULT 'ACTIVE',
        total_duties INTEGER DEFAULT 0,
        last_duty_date TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER REFERENCES students(id),
        date TEXT NOT NULL,
        status TEXT NOT NULL,
        marked_by TEXT,
        notes TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fee_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER REFERENCES students(id),
        amount REAL NOT NULL,
        fee_type TEXT NOT NULL,
        due_date TEXT,
        paid_date TEXT,
        status TEXT DEFAULT 'pending',
        payment_method TEXT,
        transaction_id TEXT,
        notes TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS timetable (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        class TEXT NOT NULL,
        section TEXT NOT NULL,
        day TEXT NOT NULL,
        period INTEGER NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        subject TEXT NOT NULL,
        teacher_id TEXT,
        room TEXT,
        is_active INTEGER DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exam_schedule (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        exam_name TEXT NOT NULL,
        subject TEXT NOT NULL,
        class TEXT NOT NULL,
        section TEXT,
        date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        room TEXT,
        max_marks INTEGER,
        is_active INTEGER DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invigilation_duties (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        exam_id INTEGER REFERENCES exam_schedule(id),
        teacher_id TEXT,
        room TEXT NOT NULL,
        date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        is_exempted INTEGER DEFAULT 0,
        exemption_reason TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS behavior_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER REFERENCES students(id),
        teacher_id TEXT,
        type TEXT NOT NULL,
        category TEXT,
        description TEXT NOT NULL,
        severity TEXT,
        action_taken TEXT,
        parent_notified INTEGER DEFAULT 0,
        follow_up_required INTEGER DEFAULT 0,
        date TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS substitution_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        absent_teacher_id TEXT,
        substitute_teacher_id TEXT,
        class TEXT NOT NULL,
        section TEXT NOT NULL,
        subject TEXT NOT NULL,
        period INTEGER NOT NULL,
        date TEXT NOT NULL,
        reason TEXT,
        status TEXT DEFAULT 'assigned',
        notification_sent INTEGER DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS whatsapp_notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        recipient_phone TEXT NOT NULL,
        recipient_name TEXT,
        message_type TEXT NOT NULL,
        message TEXT NOT NULL,
        status TEXT DEFAULT 'pending',
        sent_at TEXT,
        delivered_at TEXT,
        error_message TEXT,
        related_entity_id INTEGER,
        related_entity_type TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ai_chat_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT,
        session_id TEXT NOT NULL,
        user_message TEXT NOT NULL,
        ai_response TEXT NOT NULL,
        intent TEXT,
        confidence REAL,
        response_time INTEGER,
        feedback_rating INTEGER,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS question_papers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        subject TEXT NOT NULL,
        class TEXT NOT NULL,
        exam_type TEXT,
        duration INTEGER,
        max_marks INTEGER,
        instructions TEXT,
        questions TEXT,
        created_by TEXT,
        is_published INTEGER DEFAULT 0,
        tags TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analytics_data (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        metric_type TEXT NOT NULL,
        entity_type TEXT,
        entity_id TEXT,
        value REAL NOT NULL,
        metadata TEXT,
        period TEXT,
        date TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(date)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_student ON attendance(student_id)",
    "CREATE INDEX IF NOT EXISTS idx_fee_student ON fee_records(student_id)",
    "CREATE INDEX IF NOT EXISTS idx_behavior_student ON behavior_records(student_id)",
    "CREATE INDEX IF NOT EXISTS idx_chat_session ON ai_chat_history(session_id)",
    "CREATE INDEX IF NOT EXISTS idx_analytics_metric ON analytics_data(metric_type, date)",
]

# Stored as JSON text
_JSON_COLUMNS = {"subjects", "classes", "tags", "questions", "metadata"}

# Stored as 0/1
_BOOL_COLUMNS = {
    "is_active", "is_exempted", "parent_notified", "follow_up_required",
    "notification_sent", "is_published",
}


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class Storage:
    """SQLite persistence for the school records.

    One connection shared by the whole process; the server runs on a
    single event loop so calls never overlap.

    Args:
        db_path: SQLite file path, or ":memory:". Parent directories are
                 created automatically.
    """

    def __init__(self, db_path: str = "data/edumanage.db"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._init_db()

        # table -> writable column names
        self._columns: dict[str, set[str]] = {
            table: {
                row["name"]
                for row in self._conn.execute(f"PRAGMA table_info({table})")
            }
            for table in self._table_names()
        }

        logger.info("Storage initialized (db=%s)", db_path)

    def _init_db(self):
        cur = self._conn.cursor()
        for ddl in _SCHEMA:
            cur.execute(ddl)
        for ddl in _INDEXES:
            cur.execute(ddl)
        self._conn.commit()

    def _table_names(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
        return [r["name"] for r in rows]

    def close(self):
        self._conn.close()
        logger.info("Storage closed")

    # -------------------------------------------------------------------
    # Row helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if value is None:
            return None
        if column in _JSON_COLUMNS:
            return json.dumps(value)
        if column in _BOOL_COLUMNS:
            return 1 if value else 0
        return value

    @staticmethod
    def _decode(row: sqlite3.Row | None) -> dict[str, Any] | None:
        if row is None:
            return None
        out = dict(row)
        for column, value in out.items():
            if value is None:
                continue
            if column in _JSON_COLUMNS and isinstance(value, str):
                try:
                    out[column] = json.loads(value)
                except json.JSONDecodeError:
                    pass
            elif column in _BOOL_COLUMNS:
                out[column] = bool(value)
        return out

    def _query(self, sql: str, params: tuple | list = ()) -> list[dict[str, Any]]:
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        return [self._decode(r) for r in rows]

    def _query_one(self, sql: str, params: tuple | list = ()) -> dict[str, Any] | None:
        rows = self._query(sql, params)
        return rows[0] if rows else None

    def _fetch(self, table: str, row_id: Any) -> dict[str, Any] | None:
        return self._query_one(f"SELECT * FROM {table} WHERE id = ?", (row_id,))

    def _insert(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert the known columns of ``data`` and return the stored row."""
        allowed = self._columns[table]
        values = {
            k: self._encode(k, v) for k, v in data.items()
            if k in allowed and k != "id"
        }
        if table == "users":
            values["id"] = data["id"]
        values.setdefault("created_at", datetime.now(timezone.utc).isoformat())

        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        try:
            cur = self._conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StorageError(f"Insert into {table} failed: {e}") from e

        row_id = values["id"] if table == "users" else cur.lastrowid
        return self._fetch(table, row_id)

    def _update(self, table: str, row_id: Any, data: dict[str, Any]) -> dict[str, Any] | None:
        """Update known columns; returns the new row or None if it doesn't exist."""
        allowed = self._columns[table] - {"id", "created_at"}
        values = {k: self._encode(k, v) for k, v in data.items() if k in allowed}
        if not values:
            return self._fetch(table, row_id)

        assignments = ", ".join(f"{k} = ?" for k in values)
        try:
            cur = self._conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                (*values.values(), row_id),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StorageError(f"Update of {table} #{row_id} failed: {e}") from e

        if cur.rowcount == 0:
            return None
        return self._fetch(table, row_id)

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        return self._fetch("users", user_id)

    def upsert_user(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a user or update the existing row with the same id."""
        if self.get_user(data["id"]) is None:
            return self._insert("users", data)
        changes = {**data, "updated_at": datetime.now(timezone.utc).isoformat()}
        return self._update("users", data["id"], changes)

    # -------------------------------------------------------------------
    # Students
    # -------------------------------------------------------------------

    def get_students(self) -> list[dict[str, Any]]:
        return self._query("SELECT * FROM students WHERE is_active = 1 ORDER BY id")

    def get_student_by_id(self, student_id: int) -> dict[str, Any] | None:
        return self._fetch("students", student_id)

    def get_students_by_class(self, class_name: str, section: str | None = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM students WHERE is_active = 1 AND class = ?"
        params: list[Any] = [class_name]
        if section:
            sql += " AND section = ?"
            params.append(section)
        return self._query(sql + " ORDER BY roll_number, id", params)

    def create_student(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("students", data)

    def update_student(self, student_id: int, data: dict[str, Any]) -> dict[str, Any] | None:
        return self._update("students", student_id, data)

    # -------------------------------------------------------------------
    # Teachers
    # -------------------------------------------------------------------

    def get_teachers(self) -> list[dict[str, Any]]:
        return self._query("SELECT * FROM teachers ORDER BY id")

    def get_teacher_by_id(self, teacher_id: int) -> dict[str, Any] | None:
        return self._fetch("teachers", teacher_id)

    def get_teacher_by_user_id(self, user_id: str) -> dict[str, Any] | None:
        return self._query_one("SELECT * FROM teachers WHERE user_id = ?", (user_id,))

    def create_teacher(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("teachers", data)

    def update_teacher(self, teacher_id: int, data: dict[str, Any]) -> dict[str, Any] | None:
        return self._update("teachers", teacher_id, data)

    # -------------------------------------------------------------------
    # Attendance
    # -------------------------------------------------------------------

    def get_attendance_by_date(self, date: str) -> list[dict[str, Any]]:
        return self._query("SELECT * FROM attendance WHERE date = ? ORDER BY id", (date,))

    def get_attendance_by_student(
        self,
        student_id: int,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict[str, Any]]:
        """Attendance rows for one student, newest first, optionally bounded."""
        sql = "SELECT * FROM attendance WHERE student_id = ?"
        params: list[Any] = [student_id]
        if start_date:
            sql += " AND date >= ?"
            params.append(start_date)
        if end_date:
            sql += " AND date <= ?"
            params.append(end_date)
        return self._query(sql + " ORDER BY date DESC, id DESC", params)

    def mark_attendance(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("attendance", data)

    def get_attendance_stats(
        self,
        class_name: str | None = None,
        section: str | None = None,
        date: str | None = None,
    ) -> dict[str, Any]:
        """Present/absent counts and rate, optionally scoped to a class and day.

        Returns:
            {"total", "present", "absent", "attendance_rate"} where the rate
            is a percentage rounded to one decimal.
        """
        sql = """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN a.status = 'present' THEN 1 ELSE 0 END), 0) AS present,
                   COALESCE(SUM(CASE WHEN a.status = 'absent' THEN 1 ELSE 0 END), 0) AS absent
            FROM attendance a
        """
        conditions: list[str] = []
        params: list[Any] = []
        if class_name or section:
            sql += " JOIN students s ON s.id = a.student_id"
            if class_name:
                conditions.append("s.class = ?")
                params.append(class_name)
            if section:
                conditions.append("s.section = ?")
                params.append(section)
        if date:
            conditions.append("a.date = ?")
            params.append(date)
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)

        row = self._query_one(sql, params)
        total = row["total"]
        return {
            "total": total,
            "present": row["present"],
            "absent": row["absent"],
            "attendance_rate": round(row["present"] / total * 100, 1) if total else 0.0,
        }

    # -------------------------------------------------------------------
    # Fees
    # -------------------------------------------------------------------

    def get_fee_records(self) -> list[dict[str, Any]]:
        return self._query("SELECT * FROM fee_records ORDER BY created_at DESC, id DESC")

    def get_fee_records_by_student(self, student_id: int) -> list[dict[str, Any]]:
        return self._query(
            "SELECT * FROM fee_records WHERE student_id = ? ORDER BY created_at DESC, id DESC",
            (student_id,),
        )

    def create_fee_record(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("fee_records", data)

    def update_fee_record(self, fee_id: int, data: dict[str, Any]) -> dict[str, Any] | None:
        return self._update("fee_records", fee_id, data)

    def get_fee_collection_stats(self) -> dict[str, Any]:
        """Sums of paid, pending and overdue amounts plus the record count."""
        row = self._query_one("""
            SELECT
                COALESCE(SUM(CASE WHEN status = 'paid' THEN amount END), 0) AS total_collected,
                COALESCE(SUM(CASE WHEN status = 'pending' THEN amount END), 0) AS total_pending,
                COALESCE(SUM(CASE WHEN status = 'overdue' THEN amount END), 0) AS total_overdue,
                COUNT(*) AS record_count
            FROM fee_records
        """)
        return row

    # -------------------------------------------------------------------
    # Timetable
    # -------------------------------------------------------------------

    def get_timetable(self, class_name: str | None = None, section: str | None = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM timetable WHERE is_active = 1"
        params: list[Any] = []
        if class_name:
            sql += " AND class = ?"
            params.append(class_name)
        if section:
            sql += " AND section = ?"
            params.append(section)
        return self._query(sql + " ORDER BY day, period", params)

    def create_timetable_entry(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("timetable", data)

    def update_timetable_entry(self, entry_id: int, data: dict[str, Any]) -> dict[str, Any] | None:
        return self._update("timetable", entry_id, data)

    def delete_timetable_entry(self, entry_id: int) -> dict[str, Any] | None:
        """Soft delete: the row stays but drops out of get_timetable()."""
        return self._update("timetable", entry_id, {"is_active": False})

    # -------------------------------------------------------------------
    # Exams and invigilation
    # -------------------------------------------------------------------

    def get_exam_schedule(self) -> list[dict[str, Any]]:
        return self._query(
            "SELECT * FROM exam_schedule WHERE is_active = 1 ORDER BY date, start_time, id"
        )

    def create_exam_schedule(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("exam_schedule", data)

    def get_invigilation_duties(self, teacher_id: str | None = None) -> list[dict[str, Any]]:
        if teacher_id:
            return self._query(
                "SELECT * FROM invigilation_duties WHERE teacher_id = ? ORDER BY date DESC, id DESC",
                (teacher_id,),
            )
        return self._query("SELECT * FROM invigilation_duties ORDER BY date DESC, id DESC")

    def assign_invigilation_duty(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("invigilation_duties", data)

    # -------------------------------------------------------------------
    # Behavior
    # -------------------------------------------------------------------

    def get_behavior_records(self, student_id: int | None = None) -> list[dict[str, Any]]:
        if student_id is not None:
            return self._query(
                "SELECT * FROM behavior_records WHERE student_id = ? ORDER BY date DESC, id DESC",
                (student_id,),
            )
        return self._query("SELECT * FROM behavior_records ORDER BY date DESC, id DESC")

    def create_behavior_record(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("behavior_records", data)

    # -------------------------------------------------------------------
    # Substitutions
    # -------------------------------------------------------------------

    def get_substitution_log(self, date: str | None = None) -> list[dict[str, Any]]:
        if date:
            return self._query(
                "SELECT * FROM substitution_log WHERE date = ? ORDER BY period, id",
                (date,),
            )
        return self._query("SELECT * FROM substitution_log ORDER BY date DESC, id DESC")

    def create_substitution(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("substitution_log", data)

    # -------------------------------------------------------------------
    # Outbound messages
    # -------------------------------------------------------------------

    def create_whatsapp_notification(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("whatsapp_notifications", data)

    def get_whatsapp_notifications(self, status: str | None = None) -> list[dict[str, Any]]:
        if status:
            return self._query(
                "SELECT * FROM whatsapp_notifications WHERE status = ? ORDER BY created_at DESC, id DESC",
                (status,),
            )
        return self._query("SELECT * FROM whatsapp_notifications ORDER BY created_at DESC, id DESC")

    def update_whatsapp_notification(self, notification_id: int, data: dict[str, Any]) -> dict[str, Any] | None:
        return self._update("whatsapp_notifications", notification_id, data)

    # -------------------------------------------------------------------
    # Assistant chat history
    # -------------------------------------------------------------------

    def save_chat_history(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("ai_chat_history", data)

    def get_chat_history(self, session_id: str) -> list[dict[str, Any]]:
        return self._query(
            "SELECT * FROM ai_chat_history WHERE session_id = ? ORDER BY created_at, id",
            (session_id,),
        )

    # -------------------------------------------------------------------
    # Question papers
    # -------------------------------------------------------------------

    def get_question_papers(self) -> list[dict[str, Any]]:
        return self._query("SELECT * FROM question_papers ORDER BY created_at DESC, id DESC")

    def create_question_paper(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("question_papers", data)

    # -------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------

    def save_analytics_data(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._insert("analytics_data", data)

    def get_analytics_data(
        self,
        metric_type: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM analytics_data WHERE metric_type = ?"
        params: list[Any] = [metric_type]
        if start_date:
            sql += " AND date >= ?"
            params.append(start_date)
        if end_date:
            sql += " AND date <= ?"
            params.append(end_date)
        return self._query(sql + " ORDER BY date DESC, id DESC", params)

    # -------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------

    def get_dashboard_metrics(self) -> dict[str, Any]:
        """Figures for the four dashboard cards.

        Returns:
            totalStudents:   active students
            attendanceRate:  today's present percentage, one decimal, as a
                             string ("0.0" when nothing is marked yet)
            feeCollection:   total paid fee amount
            pendingTasks:    behavior records needing follow-up
        """
        students = self._query_one(
            "SELECT COUNT(*) AS count FROM students WHERE is_active = 1"
        )
        today = self.get_attendance_stats(date=today_iso())
        fees = self.get_fee_collection_stats()
        pending = self._query_one(
            "SELECT COUNT(*) AS count FROM behavior_records WHERE follow_up_required = 1"
        )

        rate = today["present"] / today["total"] * 100 if today["total"] else 0.0
        return {
            "totalStudents": students["count"],
            "attendanceRate": f"{rate:.1f}",
            "feeCollection": fees["total_collected"],
            "pendingTasks": pending["count"],
        }
