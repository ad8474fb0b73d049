"""
Recurring Reminders - Reminder Database.

Sole owner of persisted state: the destination chat, task templates and
reminders live in SQLite so every cycle can re-derive its decisions after a
restart or a crash mid-cycle.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from src.core.recurrence import InvalidRecurrence, parse_recurrence, recurrence_to_json, utc_iso
from src.data.models import Destination, Reminder, ReminderStatus, Task

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class StoreError(Exception):
    """Raised when a persistence operation fails."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _SQLiteStore:
    """Connection handling shared by the stores below."""

    def __init__(self, db_path: str | None = None, clock: Clock | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        self._clock = clock or _utc_now
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, roll back on error, always close."""
        try:
            conn = sqlite3.connect(self._db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"{type(exc).__name__}: {exc}") from exc

    def _now(self) -> str:
        return utc_iso(self._clock())

    def _init_db(self) -> None:
        raise NotImplementedError


class ReminderDB(_SQLiteStore):
    """SQLite-backed storage for the destination, tasks and reminders."""

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._transaction() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS destination (
                    id          INTEGER PRIMARY KEY CHECK (id = 1),
                    chat_id     TEXT    NOT NULL,
                    name        TEXT,
                    updated_at  TEXT    NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    id          TEXT PRIMARY KEY,
                    title       TEXT NOT NULL UNIQUE,
                    description TEXT,
                    assignee    TEXT,
                    recurrence  TEXT NOT NULL,
                    timezone    TEXT NOT NULL,
                    created_at  TEXT NOT NULL,
                    updated_at  TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS reminders (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id      TEXT NOT NULL REFERENCES tasks(id),
                    due_date     TEXT NOT NULL,
                    message_id   TEXT,
                    status       TEXT NOT NULL DEFAULT 'upcoming',
                    sent_at      TEXT,
                    completed_at TEXT,
                    created_at   TEXT NOT NULL,
                    updated_at   TEXT NOT NULL,
                    UNIQUE(task_id, due_date)
                );

                CREATE TABLE IF NOT EXISTS reminder_messages (
                    reminder_id INTEGER NOT NULL REFERENCES reminders(id),
                    message_id  TEXT    NOT NULL,
                    sent_at     TEXT    NOT NULL,
                    PRIMARY KEY (reminder_id, message_id)
                );

                CREATE INDEX IF NOT EXISTS idx_reminders_due_date ON reminders(due_date);
                CREATE INDEX IF NOT EXISTS idx_reminders_message_id ON reminders(message_id);
                CREATE INDEX IF NOT EXISTS idx_reminders_upcoming
                    ON reminders(due_date, status) WHERE status = 'upcoming';
            """)
        logger.debug("Reminder tables initialized at %s", self._db_path)

    # -- rows ---------------------------------------------------------------

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        # An unreadable rule stays raw; compute_due_date rejects it per task.
        try:
            recurrence = parse_recurrence(row["recurrence"])
        except InvalidRecurrence as exc:
            logger.warning("Task %s has an unreadable recurrence: %s", row["id"], exc)
            recurrence = row["recurrence"]
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            assignee=row["assignee"],
            recurrence=recurrence,
            timezone=row["timezone"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            task_id=row["task_id"],
            due_date=row["due_date"],
            message_id=row["message_id"],
            status=ReminderStatus(row["status"]),
            sent_at=row["sent_at"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # -- destination --------------------------------------------------------

    def get_destination(self) -> Destination | None:
        """Return the persisted destination chat, if one was stored."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM destination WHERE id = 1").fetchone()
        if row is None:
            return None
        return Destination(chat_id=row["chat_id"], name=row["name"], updated_at=row["updated_at"])

    def get_or_set_destination(self, chat_id: str, name: str | None = None) -> str:
        """Return the persisted destination id, storing `chat_id` if none exists yet."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO destination (id, chat_id, name, updated_at) VALUES (1, ?, ?, ?)",
                (chat_id, name, self._now()),
            )
            row = conn.execute("SELECT chat_id FROM destination WHERE id = 1").fetchone()
        if cursor.rowcount:
            logger.info("Destination stored: %s (%s)", chat_id, name or "unnamed")
        return row["chat_id"]

    # -- tasks --------------------------------------------------------------

    def upsert_tasks(self, tasks: Iterable[Task], update_existing: bool = False) -> int:
        """Insert tasks whose title isn't stored yet. Returns rows written.

        With update_existing, a task whose title exists gets its description,
        assignee, recurrence and timezone overwritten instead of being skipped.
        """
        if update_existing:
            query = """
                INSERT INTO tasks
                    (id, title, description, assignee, recurrence, timezone, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(title) DO UPDATE SET
                    description = excluded.description,
                    assignee    = excluded.assignee,
                    recurrence  = excluded.recurrence,
                    timezone    = excluded.timezone,
                    updated_at  = excluded.updated_at
                WHERE description IS NOT excluded.description
                   OR assignee    IS NOT excluded.assignee
                   OR recurrence  IS NOT excluded.recurrence
                   OR timezone    IS NOT excluded.timezone
                ON CONFLICT DO NOTHING
            """
        else:
            query = """
                INSERT OR IGNORE INTO tasks
                    (id, title, description, assignee, recurrence, timezone, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """

        now = self._now()
        written = 0
        total = 0
        with self._transaction() as conn:
            for task in tasks:
                total += 1
                cursor = conn.execute(
                    query,
                    (
                        task.id, task.title, task.description, task.assignee,
                        recurrence_to_json(task.recurrence), task.timezone, now, now,
                    ),
                )
                written += cursor.rowcount
        logger.info("Tasks synced: %d of %d written", written, total)
        return written

    def list_tasks(self) -> list[Task]:
        """Return all tasks ordered by title."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY title").fetchall()
        return [self._row_to_task(r) for r in rows]

    def get_task(self, task_id: str) -> Task | None:
        """Fetch a single task by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    # -- reminders ----------------------------------------------------------

    def get_reminder(self, reminder_id: int) -> Reminder | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def find_reminder(self, task_id: str, due_date: str | None = None) -> Reminder | None:
        """Return the task's reminder for `due_date`, or its latest one if no date is given."""
        if due_date is not None:
            query = "SELECT * FROM reminders WHERE task_id = ? AND due_date = ?"
            params: tuple = (task_id, due_date)
        else:
            query = "SELECT * FROM reminders WHERE task_id = ? ORDER BY due_date DESC, id DESC LIMIT 1"
            params = (task_id,)
        with self._transaction() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def create_reminder_if_absent(self, task_id: str, due_date: str) -> bool:
        """Insert an upcoming reminder. A duplicate (task_id, due_date) is a no-op.

        Returns True if a row was inserted.
        """
        now = self._now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reminders (task_id, due_date, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(task_id, due_date) DO NOTHING
                """,
                (task_id, due_date, ReminderStatus.UPCOMING.value, now, now),
            )
        created = cursor.rowcount > 0
        if created:
            logger.info("Reminder created: task %s due %s", task_id, due_date)
        return created

    def list_upcoming_due_between(self, start: str, end: str) -> list[Reminder]:
        """Upcoming reminders with start <= due_date < end."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders
                WHERE status = ? AND due_date >= ? AND due_date < ?
                ORDER BY due_date, id
                """,
                (ReminderStatus.UPCOMING.value, start, end),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def list_sent_before(self, timestamp: str) -> list[Reminder]:
        """Sent reminders last touched before `timestamp`."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM reminders
                WHERE status = ? AND updated_at < ?
                ORDER BY updated_at, id
                """,
                (ReminderStatus.SENT.value, timestamp),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def update_reminder_dispatch(
        self, reminder_id: int, message_id: str, status: ReminderStatus = ReminderStatus.SENT,
    ) -> bool:
        """Record a dispatched message. Completed reminders are never touched.

        Returns True if the reminder was updated.
        """
        status = ReminderStatus(status)
        if status is ReminderStatus.COMPLETED:
            raise ValueError("Use mark_completed() to complete a reminder")

        now = self._now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE reminders
                SET message_id = ?, status = ?, updated_at = ?,
                    sent_at = COALESCE(sent_at, ?)
                WHERE id = ? AND status != ?
                """,
                (message_id, status.value, now, now, reminder_id, ReminderStatus.COMPLETED.value),
            )
            if cursor.rowcount:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO reminder_messages (reminder_id, message_id, sent_at)
                    VALUES (?, ?, ?)
                    """,
                    (reminder_id, message_id, now),
                )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Reminder #%d %s with message %s", reminder_id, status.value, message_id)
        return updated

    def list_message_ids(self, reminder_id: int) -> list[str]:
        """Every message sent for the reminder, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT message_id FROM reminder_messages
                WHERE reminder_id = ?
                ORDER BY sent_at DESC, rowid DESC
                """,
                (reminder_id,),
            ).fetchall()
        return [r["message_id"] for r in rows]

    def mark_completed(self, reminder_id: int) -> bool:
        """Move a sent reminder to completed. Returns False if it wasn't sent."""
        now = self._now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE reminders SET status = ?, completed_at = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (ReminderStatus.COMPLETED.value, now, now, reminder_id, ReminderStatus.SENT.value),
            )
        completed = cursor.rowcount > 0
        if completed:
            logger.info("Reminder #%d completed", reminder_id)
        return completed


class MessageLogDB(_SQLiteStore):
    """Sent messages and their reactions, for transports that can't read messages back.

    Telegram bots can't fetch a message by id, so the Telegram adapter logs
    what it sends and records reaction updates as they arrive.
    """

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS channel_messages (
                    message_id  TEXT PRIMARY KEY,
                    chat_id     TEXT NOT NULL,
                    text        TEXT NOT NULL,
                    sent_at     TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS message_reactions (
                    message_id  TEXT NOT NULL REFERENCES channel_messages(message_id),
                    user_key    TEXT NOT NULL,
                    emoji       TEXT NOT NULL,
                    reacted_at  TEXT NOT NULL,
                    PRIMARY KEY (message_id, user_key, emoji)
                );
            """)
        logger.debug("Message log tables initialized at %s", self._db_path)

    def record_message(self, message_id: str, chat_id: str, text: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO channel_messages (message_id, chat_id, text, sent_at) VALUES (?, ?, ?, ?)",
                (message_id, chat_id, text, self._now()),
            )

    def get_message(self, message_id: str) -> dict | None:
        """Return {message_id, chat_id, text, sent_at} or None."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM channel_messages WHERE message_id = ?", (message_id,)
            ).fetchone()
        if row is None:
            return None
        return dict(row)

    def set_reactions(
        self, chat_id: str, message_id: str, user_key: str, emojis: Iterable[str],
    ) -> bool:
        """Replace one user's reactions on a logged message.

        Returns False (and stores nothing) when the message isn't ours.
        """
        now = self._now()
        with self._transaction() as conn:
            known = conn.execute(
                "SELECT 1 FROM channel_messages WHERE message_id = ? AND chat_id = ?",
                (message_id, chat_id),
            ).fetchone()
            if known is None:
                return False
            conn.execute(
                "DELETE FROM message_reactions WHERE message_id = ? AND user_key = ?",
                (message_id, user_key),
            )
            conn.executemany(
                """
                INSERT OR IGNORE INTO message_reactions (message_id, user_key, emoji, reacted_at)
                VALUES (?, ?, ?, ?)
                """,
                [(message_id, user_key, emoji, now) for emoji in emojis],
            )
        return True

    def list_reactions(self, message_id: str) -> list[str]:
        """All emojis currently on the message, in the order they were added."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT emoji FROM message_reactions WHERE message_id = ? ORDER BY reacted_at, rowid",
                (message_id,),
            ).fetchall()
        return [r["emoji"] for r in rows]
