"""
SQLite-backed session recorder.

Stores one row per focus session, the per-app seconds flushed when a
session is finalized, the app-switch events seen during it, and the
AI summary state. Every sqlite3 error is re-raised as
PersistenceFailure so callers can log it and carry on.
"""

import logging
import sqlite3
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import config
from core.errors import PersistenceFailure
from tracking.session import ActivityEvent

logger = logging.getLogger(__name__)

AI_STATUS_RUNNING = "running"
AI_STATUS_DONE = "done"
AI_STATUS_ERROR = "error"

# Applied in order; PRAGMA user_version records how many have run.
MIGRATIONS: List[Tuple[str, str]] = [
    ("create_session", """
        CREATE TABLE IF NOT EXISTS session (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            started_at TEXT NOT NULL,
            ended_at TEXT,
            type TEXT NOT NULL,
            planned_minutes INTEGER NOT NULL,
            completed INTEGER NOT NULL DEFAULT 0,
            ai_summary TEXT
        )
    """),
    # Columns are added one by one in _migrate, skipping any that exist
    ("add_ai_status_columns", ""),
    ("create_session_event", """
        CREATE TABLE IF NOT EXISTS session_event (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id INTEGER NOT NULL REFERENCES session(id) ON DELETE CASCADE,
            t_start TEXT NOT NULL,
            t_end TEXT,
            kind TEXT NOT NULL,
            title TEXT NOT NULL,
            detail TEXT
        )
    """),
    ("create_session_app", """
        CREATE TABLE IF NOT EXISTS session_app (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id INTEGER NOT NULL REFERENCES session(id) ON DELETE CASCADE,
            bundle_id TEXT NOT NULL,
            seconds INTEGER NOT NULL
        )
    """),
]


class SessionRecorder:
    """
    Append-only archive of focus sessions.

    One connection shared between the tick thread and the summary
    worker; all access is serialised through a lock.
    """

    def __init__(self, db_path: Union[Path, str] = config.DATABASE_FILE):
        """
        Open (and migrate) the database.

        Args:
            db_path: SQLite file path, or ":memory:" for tests.

        Raises:
            PersistenceFailure: If the database cannot be opened or migrated.
        """
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            if str(db_path) != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._migrate()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceFailure(f"Cannot open session database {db_path}: {e}") from e
        logger.info(f"Session database ready at {db_path}")

    def _migrate(self) -> None:
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        for index, (name, sql) in enumerate(MIGRATIONS):
            if index < version:
                continue
            if name == "add_ai_status_columns":
                # Older databases may already carry some of these columns
                existing = {row["name"] for row in self._conn.execute("PRAGMA table_info('session')")}
                for column in ("ai_status", "ai_error", "ai_job_id"):
                    if column not in existing:
                        self._conn.execute(f"ALTER TABLE session ADD COLUMN {column} TEXT")
            else:
                self._conn.execute(sql)
            self._conn.execute(f"PRAGMA user_version = {index + 1}")
            self._conn.commit()
            logger.debug(f"Applied migration {name}")

    def _write(self, sql: str, params: Tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
                return cursor
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceFailure(str(e)) from e

    def _read(self, sql: str, params: Tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceFailure(str(e)) from e

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def create_session(self, start: datetime, planned_minutes: int, session_type: str = "work") -> int:
        """Insert a new, not yet completed session and return its id."""
        cursor = self._write(
            "INSERT INTO session (started_at, type, planned_minutes, completed) VALUES (?, ?, ?, 0)",
            (start.isoformat(), session_type, planned_minutes),
        )
        logger.debug(f"Created session {cursor.lastrowid}")
        return cursor.lastrowid

    def finalize_session(self, session_id: int, end: datetime, completed: bool = True) -> None:
        """Stamp the end time and completed flag."""
        self._write(
            "UPDATE session SET completed = ?, ended_at = ? WHERE id = ?",
            (1 if completed else 0, end.isoformat(), session_id),
        )

    def record_app_usage(self, session_id: int, bundle_id: str, seconds: int) -> None:
        self._write(
            "INSERT INTO session_app (session_id, bundle_id, seconds) VALUES (?, ?, ?)",
            (session_id, bundle_id, seconds),
        )

    def record_event(self, session_id: int, event: ActivityEvent, t_end: Optional[datetime] = None) -> None:
        self._write(
            "INSERT INTO session_event (session_id, t_start, t_end, kind, title, detail) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (session_id, event.timestamp.isoformat(),
             t_end.isoformat() if t_end else None,
             event.kind, event.title, event.detail),
        )

    # ------------------------------------------------------------------
    # AI summary state
    # ------------------------------------------------------------------

    def set_summary_status(self, session_id: int, status: str,
                           job_id: Optional[str] = None, error: Optional[str] = None) -> None:
        self._write(
            "UPDATE session SET ai_status = ?, ai_job_id = COALESCE(?, ai_job_id), ai_error = ? WHERE id = ?",
            (status, job_id, error, session_id),
        )

    def save_summary(self, session_id: int, summary: str) -> None:
        self._write(
            "UPDATE session SET ai_summary = ?, ai_status = ?, ai_error = NULL WHERE id = ?",
            (summary, AI_STATUS_DONE, session_id),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: int) -> Optional[Dict[str, Any]]:
        rows = self._read("SELECT * FROM session WHERE id = ?", (session_id,))
        if not rows:
            return None
        row = dict(rows[0])
        row["completed"] = bool(row["completed"])
        return row

    def get_app_usage(self, session_id: int) -> List[Tuple[str, int]]:
        """(bundle_id, seconds) rows for a session, most used first."""
        rows = self._read(
            "SELECT bundle_id, seconds FROM session_app WHERE session_id = ? "
            "ORDER BY seconds DESC, bundle_id",
            (session_id,),
        )
        return [(row["bundle_id"], row["seconds"]) for row in rows]

    def get_events(self, session_id: int) -> List[Dict[str, Any]]:
        rows = self._read(
            "SELECT t_start, t_end, kind, title, detail FROM session_event "
            "WHERE session_id = ? ORDER BY t_start, id",
            (session_id,),
        )
        return [dict(row) for row in rows]

    def focus_stats_last(self, days: int, today: Optional[date] = None) -> List[Tuple[str, int]]:
        """
        Planned minutes of completed sessions per day.

        Args:
            days: Window length including today.
            today: Reference day (defaults to the local date).

        Returns:
            (YYYY-MM-DD, minutes) tuples, newest day first.
        """
        if days <= 0:
            return []
        today = today or date.today()
        since = datetime.combine(today - timedelta(days=days - 1), datetime.min.time())
        rows = self._read(
            """
            SELECT substr(started_at, 1, 10) AS day, SUM(planned_minutes) AS work_min
            FROM session
            WHERE started_at >= ? AND completed = 1
            GROUP BY day
            ORDER BY day DESC
            """,
            (since.isoformat(),),
        )
        return [(row["day"], row["work_min"]) for row in rows]

    def top_apps(self, period_days: int, today: Optional[date] = None,
                 limit: int = 10) -> List[Tuple[str, int, int]]:
        """
        Most used apps over completed sessions in the period.

        Returns:
            (bundle_id, total_minutes, avg_minutes_per_session) tuples.
        """
        if period_days <= 0:
            return []
        today = today or date.today()
        since = datetime.combine(today - timedelta(days=period_days - 1), datetime.min.time())
        rows = self._read(
            """
            SELECT bundle_id,
                   SUM(seconds) / 60 AS total_min,
                   CAST(AVG(seconds) / 60 AS INTEGER) AS avg_min
            FROM session_app
            WHERE session_id IN (
                SELECT id FROM session WHERE started_at >= ? AND completed = 1
            )
            GROUP BY bundle_id
            ORDER BY SUM(seconds) DESC
            LIMIT ?
            """,
            (since.isoformat(), limit),
        )
        return [(row["bundle_id"], row["total_min"], row["avg_min"]) for row in rows]

    def recent_summaries(self, limit: int = 10) -> List[Tuple[int, str, str]]:
        """(session_id, start, ai_summary) for the newest summarised sessions."""
        rows = self._read(
            """
            SELECT id, started_at, ai_summary FROM session
            WHERE ai_summary IS NOT NULL AND ai_summary != ''
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [(row["id"], row["started_at"], row["ai_summary"]) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
