"""
Recurring Reminders - Data Models.

Tasks are the templates imported from the tasks file; reminders are the
dated occurrences the lifecycle cycle creates, sends and completes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.core.recurrence import Recurrence


class ReminderStatus(str, Enum):
    """Reminder lifecycle state. Transitions only move forward."""

    UPCOMING = "upcoming"
    SENT = "sent"
    COMPLETED = "completed"


@dataclass
class Task:
    """A recurring obligation, e.g. "Water plants" every day."""

    id: str
    title: str
    recurrence: Recurrence
    timezone: str
    description: str | None = None
    assignee: str | None = None       # mentioned in the reminder text
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Reminder:
    """One occurrence of a task on a specific due date.

    At most one reminder exists per (task_id, due_date).
    """

    id: int
    task_id: str
    due_date: str                     # UTC ISO, e.g. "2026-10-19T00:00:00+00:00"
    status: ReminderStatus = ReminderStatus.UPCOMING
    message_id: str | None = None     # None until dispatched
    sent_at: str | None = None        # first dispatch
    completed_at: str | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Destination:
    """The single chat reminders are posted to."""

    chat_id: str
    name: str | None = None
    updated_at: str = ""
