"""
Recurring Reminders - Task Import.

Reads task templates from the tasks JSON file and syncs them into the
store at startup. The file is a list of records:

    [
        {
            "title": "Water plants",
            "description": "Balcony and kitchen",
            "recurrence": {"type": "daily"},
            "timezone": "Asia/Colombo",
            "assignee": "dana"
        }
    ]

Only title and recurrence are required. Tasks without an id get one derived
from the title, so re-importing the same file keeps ids stable.
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError, field_validator

from src.core.recurrence import parse_recurrence
from src.data.models import Task

if TYPE_CHECKING:
    from src.data.db import ReminderDB

logger = logging.getLogger(__name__)

_TASK_NAMESPACE = uuid.UUID("6f1c9a52-3d0e-4b8f-9a57-2e4b7c1d8e30")


class TaskImportError(ValueError):
    """Raised when the tasks file is missing or malformed."""


class TaskRecord(BaseModel):
    """One entry of the tasks file."""

    id: str | None = None
    title: str
    description: str | None = None
    recurrence: Any
    timezone: str | None = None
    assignee: str | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("recurrence")
    @classmethod
    def parse_rule(cls, v: Any) -> Any:
        return parse_recurrence(v)

    @field_validator("timezone")
    @classmethod
    def known_zone(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        try:
            ZoneInfo(v.strip())
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone {v!r}") from exc
        return v.strip()

    def to_task(self, default_timezone: str) -> Task:
        return Task(
            id=self.id or task_id_for(self.title),
            title=self.title,
            description=self.description or None,
            assignee=self.assignee or None,
            recurrence=self.recurrence,
            timezone=self.timezone or default_timezone,
        )


def task_id_for(title: str) -> str:
    """Stable id for a task that doesn't carry one."""
    return str(uuid.uuid5(_TASK_NAMESPACE, title))


def parse_tasks(records: Any, default_timezone: str | None = None) -> list[Task]:
    """Validate raw task records and build Task objects.

    Later records whose title repeats an earlier one are dropped.
    """
    if default_timezone is None:
        from src.config import settings
        default_timezone = settings.TIMEZONE

    if not isinstance(records, list):
        raise TaskImportError("Tasks file must contain a JSON list")

    tasks: list[Task] = []
    seen: set[str] = set()
    for index, raw in enumerate(records):
        try:
            record = TaskRecord.model_validate(raw)
        except ValidationError as exc:
            raise TaskImportError(f"Task #{index} is invalid: {exc}") from exc

        if record.title in seen:
            logger.warning("Duplicate task title %r in tasks file, keeping the first", record.title)
            continue
        seen.add(record.title)
        tasks.append(record.to_task(default_timezone))
    return tasks


def load_tasks(path: str | Path | None = None) -> list[Task]:
    """Read and validate the tasks file."""
    if path is None:
        from src.config import settings
        path = settings.TASKS_FILE

    path = Path(path)
    try:
        records = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise TaskImportError(f"Tasks file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise TaskImportError(f"Tasks file {path} is not valid JSON: {exc}") from exc

    tasks = parse_tasks(records)
    logger.info("Loaded %d tasks from %s", len(tasks), path)
    return tasks


def import_tasks(
    store: ReminderDB,
    path: str | Path | None = None,
    update_existing: bool | None = None,
) -> int:
    """Load the tasks file into the store. Returns the number of rows written.

    Existing titles are left untouched unless update_existing (default:
    settings.SYNC_TASK_UPDATES) is set.
    """
    if update_existing is None:
        from src.config import settings
        update_existing = settings.SYNC_TASK_UPDATES

    return store.upsert_tasks(load_tasks(path), update_existing=update_existing)
