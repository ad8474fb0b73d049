"""Recurrence evaluator - pure scheduling logic.

Turns a task's recurrence rule and the current instant into the calendar
date its next reminder is due, evaluated in the task's own time zone.

No I/O: this module only transforms data.

Wire format (tasks file and DB column), one of:
    {"type": "daily"}
    {"type": "weekly", "dayOfWeek": 3}          # 0 = Sunday .. 6 = Saturday
    {"type": "monthly", "dayOfMonth": 5}        # 1..31
    {"type": "yearly", "month": 2, "day": 15}   # month 0 = January .. 11
"""

from __future__ import annotations

import calendar
import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Any, Literal, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class InvalidRecurrence(ValueError):
    """Raised when a recurrence rule can't be parsed or evaluated."""


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Daily(_Rule):
    type: Literal["daily"] = "daily"


class Weekly(_Rule):
    type: Literal["weekly"] = "weekly"
    day_of_week: int = Field(alias="dayOfWeek", ge=0, le=6)


class Monthly(_Rule):
    type: Literal["monthly"] = "monthly"
    day_of_month: int = Field(alias="dayOfMonth", ge=1, le=31)


class Yearly(_Rule):
    type: Literal["yearly"] = "yearly"
    month: int = Field(ge=0, le=11)
    day: int = Field(ge=1, le=31)


Recurrence = Annotated[
    Union[Daily, Weekly, Monthly, Yearly],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[Recurrence] = TypeAdapter(Recurrence)


def parse_recurrence(value: str | dict[str, Any] | BaseModel) -> Recurrence:
    """Parse a recurrence rule from its JSON string or dict form.

    Raises InvalidRecurrence on unknown tags or out-of-range fields.
    """
    if isinstance(value, (Daily, Weekly, Monthly, Yearly)):
        return value

    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise InvalidRecurrence(f"Recurrence is not valid JSON: {exc}") from exc

    if not isinstance(value, dict):
        raise InvalidRecurrence(f"Recurrence must be an object, got {type(value).__name__}")

    tag = value.get("type")
    if isinstance(tag, str):
        value = {**value, "type": tag.strip().lower()}

    try:
        return _ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise InvalidRecurrence(f"Invalid recurrence {value!r}: {exc.errors()[0]['msg']}") from exc


def recurrence_to_json(recurrence: Recurrence) -> str:
    """Serialize a rule to its wire form."""
    return recurrence.model_dump_json(by_alias=True)


def _zone(tz: str | None) -> ZoneInfo:
    if not tz:
        from src.config import settings
        tz = settings.TIMEZONE
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidRecurrence(f"Unknown time zone: {tz!r}") from exc


def local_today(now: datetime, tz: str | None = None) -> date:
    """Return the calendar date of `now` in `tz`. Naive `now` is taken as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(_zone(tz)).date()


def _clipped(year: int, month: int, day: int) -> date:
    """Build a date, clipping the day to the month's last day (Feb 31 -> Feb 28/29)."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def compute_due_date(
    recurrence: Recurrence | str | dict[str, Any], now: datetime, tz: str | None = None,
) -> date:
    """Return the date the next reminder for `recurrence` is due.

    Never returns a date before today (in `tz`). Calling it again at any
    time during the same local day yields the same date.

    Args:
        recurrence: Parsed rule, or its wire form (see parse_recurrence).
        now: Current instant.
        tz: IANA zone of the task. Defaults to settings.TIMEZONE.
    """
    recurrence = parse_recurrence(recurrence)
    today = local_today(now, tz)

    if isinstance(recurrence, Daily):
        return today

    if isinstance(recurrence, Weekly):
        today_dow = today.isoweekday() % 7  # Sunday = 0
        return today + timedelta(days=(recurrence.day_of_week - today_dow + 7) % 7)

    if isinstance(recurrence, Monthly):
        dom = recurrence.day_of_month
        if dom == today.day:
            return today
        if dom > today.day:
            return _clipped(today.year, today.month, dom)
        if today.month == 12:
            return _clipped(today.year + 1, 1, dom)
        return _clipped(today.year, today.month + 1, dom)

    if isinstance(recurrence, Yearly):
        this_year = _clipped(today.year, recurrence.month + 1, recurrence.day)
        if this_year >= today:
            return this_year
        return _clipped(today.year + 1, recurrence.month + 1, recurrence.day)

    raise InvalidRecurrence(f"Unsupported recurrence: {recurrence!r}")


def due_timestamp(due: date) -> str:
    """Normalize a due date to its stored form: that date at 00:00 UTC."""
    return utc_iso(datetime(due.year, due.month, due.day, tzinfo=timezone.utc))


def utc_iso(moment: datetime) -> str:
    """ISO-8601 in UTC with seconds precision, so strings sort chronologically."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")
