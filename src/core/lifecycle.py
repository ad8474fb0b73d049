"""
Recurring Reminders - Reminder Lifecycle.

One cycle, four strictly ordered steps:

1. Reconcile: sent reminders whose message got a thumbs-up become completed.
2. Materialize: every task gets a reminder for its next due date.
3. Dispatch: upcoming reminders due today (UTC day) are sent once their
   due date has arrived in the task's own zone.
4. Re-dispatch: sent reminders not acknowledged since before today are
   sent again, every day until someone reacts.

The cycle keeps no state of its own. Everything is re-read from the store,
so running it again after a crash picks up where the last run stopped.
A failure on one reminder is logged and skipped; store failures propagate.

This module is provider-agnostic: it depends on the MessagingChannel
protocol, not on a specific implementation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfoNotFoundError

from src.core.recurrence import (
    InvalidRecurrence,
    compute_due_date,
    due_timestamp,
    local_today,
    utc_iso,
)
from src.ports.channel_port import ChannelError, MessageNotFound

if TYPE_CHECKING:
    from src.data.db import ReminderDB
    from src.data.models import Reminder, Task
    from src.ports.channel_port import MessagingChannel

logger = logging.getLogger(__name__)

THUMBS_UP = "\U0001F44D"

# Skin tone modifiers and variation selectors don't change the meaning.
_EMOJI_MODIFIERS = {chr(cp) for cp in range(0x1F3FB, 0x1F400)} | {"\ufe0e", "\ufe0f"}


@dataclass
class CycleReport:
    """What one cycle did."""

    completed: int = 0
    created: int = 0
    sent: int = 0
    resent: int = 0
    failed: int = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _base_emoji(emoji: str) -> str:
    return "".join(ch for ch in emoji if ch not in _EMOJI_MODIFIERS)


def is_acknowledgment(emoji: str, extra: Iterable[str] = ()) -> bool:
    """True if the reaction means "done": a thumbs-up in any skin tone, or a configured extra."""
    base = _base_emoji(emoji)
    accepted = {THUMBS_UP} | {_base_emoji(e) for e in extra}
    return base in accepted


def utc_day_window(now: datetime) -> tuple[datetime, datetime]:
    """Return [start, start + 24h) of the UTC day containing `now`."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def _mention_list(task: Task | None, mentions: Sequence[str]) -> list[str]:
    names = list(mentions)
    if task is not None and task.assignee:
        names.append(task.assignee)
    seen: set[str] = set()
    unique: list[str] = []
    for name in names:
        key = name.lstrip("@").lower()
        if key and key not in seen:
            seen.add(key)
            unique.append(name)
    return unique


def format_reminder(task: Task) -> str:
    """Reminder text: title, then the description on its own line."""
    lines = [f"📌 {task.title}"]
    if task.description:
        lines.append(task.description)
    lines.append(f"React with {THUMBS_UP} when it's done.")
    return "\n".join(lines)


def format_followup(task: Task, reminder: Reminder) -> str:
    """Follow-up text for a reminder nobody acknowledged yet."""
    lines = [f"🔁 New reminder: {task.title}"]
    if task.description:
        lines.append(task.description)
    lines.append(f"Still open since {reminder.due_date[:10]}. React with {THUMBS_UP} when it's done.")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Destination
# ---------------------------------------------------------------------------


async def resolve_destination(
    store: ReminderDB,
    channel: MessagingChannel,
    name: str,
    chat_id: str | None = None,
) -> str:
    """Return the destination chat id, resolving and persisting it on first use.

    The stored destination always wins; `chat_id` (from config) or a lookup
    of `name` through the channel is only used when none is stored yet.
    """
    existing = store.get_destination()
    if existing is not None:
        return existing.chat_id

    if not chat_id:
        chat_id = await channel.resolve_destination_by_name(name)
    return store.get_or_set_destination(chat_id, name)


# ---------------------------------------------------------------------------
# Cycle steps
# ---------------------------------------------------------------------------


async def reconcile_completions(
    store: ReminderDB,
    channel: MessagingChannel,
    now: datetime,
    ack_emojis: Iterable[str] = (),
    report: CycleReport | None = None,
) -> CycleReport:
    """Step 1: complete sent reminders with an acknowledgment on any of their messages.

    A re-sent reminder is checked on every message sent for it, the original
    included.
    """
    report = report or CycleReport()
    extra = list(ack_emojis)

    for reminder in store.list_sent_before(utc_iso(now)):
        message_ids = store.list_message_ids(reminder.id)
        if not message_ids and reminder.message_id:
            message_ids = [reminder.message_id]
        try:
            acknowledged = await _has_acknowledgment(channel, reminder, message_ids, extra)
        except MessageNotFound as exc:
            logger.error("Reminder #%d: message not found: %s", reminder.id, exc)
            report.failed += 1
            continue
        except ChannelError as exc:
            logger.error("Reminder #%d: failed to fetch reactions: %s", reminder.id, exc)
            report.failed += 1
            continue

        if acknowledged and store.mark_completed(reminder.id):
            report.completed += 1
    return report


async def _has_acknowledgment(
    channel: MessagingChannel,
    reminder: Reminder,
    message_ids: Sequence[str],
    extra: Sequence[str],
) -> bool:
    found = False
    for message_id in message_ids:
        message = await channel.get_message_by_id(message_id)
        if message is None:
            logger.debug("Reminder #%d: message %s is gone", reminder.id, message_id)
            continue
        found = True
        reactions = await channel.get_reactions(message)
        if any(is_acknowledgment(r.emoji, extra) for r in reactions):
            return True
    if not found:
        raise MessageNotFound(f"reminder #{reminder.id}: none of {list(message_ids)} exist")
    return False


def materialize_reminders(
    store: ReminderDB,
    now: datetime,
    report: CycleReport | None = None,
) -> CycleReport:
    """Step 2: make sure every task has a reminder for its next due date.

    Existing reminders are looked up for that exact due date, so a task
    completed on an earlier occurrence still gets its next one.
    """
    report = report or CycleReport()

    for task in store.list_tasks():
        try:
            due = due_timestamp(compute_due_date(task.recurrence, now, task.timezone))
        except (InvalidRecurrence, ZoneInfoNotFoundError) as exc:
            logger.error("Task %s '%s': cannot compute due date: %s", task.id, task.title, exc)
            report.failed += 1
            continue

        if store.find_reminder(task.id, due) is not None:
            continue
        if store.create_reminder_if_absent(task.id, due):
            report.created += 1
    return report


async def dispatch_due_reminders(
    store: ReminderDB,
    channel: MessagingChannel,
    destination: str,
    now: datetime,
    mentions: Sequence[str] = (),
    report: CycleReport | None = None,
) -> CycleReport:
    """Step 3: send every upcoming reminder due in today's UTC window.

    West of UTC the window opens while the task's local date is still the
    day before; such reminders wait until their local due date arrives.
    """
    report = report or CycleReport()
    start, end = utc_day_window(now)

    for reminder in store.list_upcoming_due_between(utc_iso(start), utc_iso(end)):
        task = store.get_task(reminder.task_id)
        if task is None:
            logger.error("Reminder #%d: task %s not found", reminder.id, reminder.task_id)
            report.failed += 1
            continue
        try:
            today = local_today(now, task.timezone)
        except InvalidRecurrence as exc:
            logger.error("Reminder #%d '%s': %s", reminder.id, task.title, exc)
            report.failed += 1
            continue
        if reminder.due_date[:10] > today.isoformat():
            logger.debug("Reminder #%d not due yet in %s", reminder.id, task.timezone)
            continue
        try:
            message_id = await channel.send_message(
                destination, format_reminder(task), _mention_list(task, mentions),
            )
        except ChannelError as exc:
            logger.error("Failed to send reminder #%d '%s': %s", reminder.id, task.title, exc)
            report.failed += 1
            continue

        store.update_reminder_dispatch(reminder.id, message_id)
        report.sent += 1
    return report


async def redispatch_stale_reminders(
    store: ReminderDB,
    channel: MessagingChannel,
    destination: str,
    now: datetime,
    mentions: Sequence[str] = (),
    report: CycleReport | None = None,
) -> CycleReport:
    """Step 4: nag again for sent reminders last sent before today (UTC)."""
    report = report or CycleReport()
    start, _ = utc_day_window(now)

    for reminder in store.list_sent_before(utc_iso(start)):
        task = store.get_task(reminder.task_id)
        if task is None:
            logger.error("Reminder #%d: task %s not found", reminder.id, reminder.task_id)
            report.failed += 1
            continue
        try:
            message_id = await channel.send_message(
                destination, format_followup(task, reminder), _mention_list(task, mentions),
            )
        except ChannelError as exc:
            logger.error("Failed to re-send reminder #%d '%s': %s", reminder.id, task.title, exc)
            report.failed += 1
            continue

        store.update_reminder_dispatch(reminder.id, message_id)
        report.resent += 1
    return report


async def run_cycle(
    store: ReminderDB,
    channel: MessagingChannel,
    destination: str,
    now: datetime | None = None,
    mentions: Sequence[str] = (),
    ack_emojis: Iterable[str] = (),
) -> CycleReport:
    """Run one full reminder cycle against `destination`.

    Args:
        store: Reminder store.
        channel: Messaging channel adapter.
        destination: Chat id resolved once at startup (see resolve_destination).
        now: Current instant, defaults to the wall clock (UTC).
        mentions: Names mentioned on every reminder.
        ack_emojis: Extra emojis that count as "done" besides thumbs-up.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    report = CycleReport()
    await reconcile_completions(store, channel, now, ack_emojis, report)
    materialize_reminders(store, now, report)
    await dispatch_due_reminders(store, channel, destination, now, mentions, report)
    await redispatch_stale_reminders(store, channel, destination, now, mentions, report)

    logger.info(
        "Cycle done: %d completed, %d created, %d sent, %d re-sent, %d failed",
        report.completed, report.created, report.sent, report.resent, report.failed,
    )
    return report
