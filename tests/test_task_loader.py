"""Tests for src.core.task_loader — importing the tasks file."""

import json

import pytest

from src.core.recurrence import Daily, Weekly
from src.core.task_loader import (
    TaskImportError,
    import_tasks,
    load_tasks,
    parse_tasks,
    task_id_for,
)


def _write(tmp_path, records, name="tasks.json"):
    path = tmp_path / name
    path.write_text(json.dumps(records), encoding="utf-8")
    return path


class TestParseTasks:
    def test_minimal_record(self):
        tasks = parse_tasks([{"title": "Water plants", "recurrence": {"type": "daily"}}], "UTC")
        assert len(tasks) == 1
        task = tasks[0]
        assert task.title == "Water plants"
        assert task.recurrence == Daily()
        assert task.timezone == "UTC"
        assert task.description is None
        assert task.assignee is None

    def test_default_timezone_from_settings(self):
        tasks = parse_tasks([{"title": "A", "recurrence": {"type": "daily"}}])
        assert tasks[0].timezone == "Asia/Colombo"

    def test_full_record(self):
        tasks = parse_tasks([{
            "id": "bins",
            "title": "  Bins  ",
            "description": "Blue bin",
            "recurrence": {"type": "weekly", "dayOfWeek": 2},
            "timezone": "Europe/London",
            "assignee": "dana",
        }], "UTC")
        task = tasks[0]
        assert task.id == "bins"
        assert task.title == "Bins"
        assert task.recurrence == Weekly(day_of_week=2)
        assert task.timezone == "Europe/London"
        assert task.assignee == "dana"

    def test_recurrence_as_json_string(self):
        tasks = parse_tasks([{"title": "A", "recurrence": '{"type": "daily"}'}], "UTC")
        assert tasks[0].recurrence == Daily()

    def test_derived_id_is_stable(self):
        first = parse_tasks([{"title": "A", "recurrence": {"type": "daily"}}], "UTC")[0]
        second = parse_tasks([{"title": "A", "recurrence": {"type": "weekly", "dayOfWeek": 1}}], "UTC")[0]
        assert first.id == second.id == task_id_for("A")
        assert task_id_for("A") != task_id_for("B")

    def test_duplicate_title_keeps_first(self):
        tasks = parse_tasks([
            {"title": "A", "recurrence": {"type": "daily"}},
            {"title": "A", "recurrence": {"type": "weekly", "dayOfWeek": 1}},
        ], "UTC")
        assert len(tasks) == 1
        assert tasks[0].recurrence == Daily()

    def test_invalid_recurrence_raises(self):
        with pytest.raises(TaskImportError, match="Task #0"):
            parse_tasks([{"title": "A", "recurrence": {"type": "hourly"}}], "UTC")

    def test_unknown_timezone_raises(self):
        with pytest.raises(TaskImportError):
            parse_tasks([{"title": "A", "recurrence": {"type": "daily"}, "timezone": "Nowhere/City"}], "UTC")

    def test_blank_title_raises(self):
        with pytest.raises(TaskImportError):
            parse_tasks([{"title": "   ", "recurrence": {"type": "daily"}}], "UTC")

    def test_missing_recurrence_raises(self):
        with pytest.raises(TaskImportError):
            parse_tasks([{"title": "A"}], "UTC")

    def test_not_a_list_raises(self):
        with pytest.raises(TaskImportError):
            parse_tasks({"title": "A"}, "UTC")


class TestLoadTasks:
    def test_loads_file(self, tmp_path):
        path = _write(tmp_path, [{"title": "A", "recurrence": {"type": "daily"}}])
        assert [t.title for t in load_tasks(path)] == ["A"]

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(TaskImportError, match="not found"):
            load_tasks(tmp_path / "nope.json")

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "tasks.json"
        path.write_text("[{", encoding="utf-8")
        with pytest.raises(TaskImportError, match="not valid JSON"):
            load_tasks(path)


class TestImportTasks:
    def test_reimport_is_idempotent(self, tmp_path, reminder_db):
        path = _write(tmp_path, [
            {"title": "A", "recurrence": {"type": "daily"}},
            {"title": "B", "recurrence": {"type": "monthly", "dayOfMonth": 5}},
        ])
        assert import_tasks(reminder_db, path, update_existing=False) == 2
        assert import_tasks(reminder_db, path, update_existing=False) == 0
        assert len(reminder_db.list_tasks()) == 2

    def test_changed_task_ignored_by_default(self, tmp_path, reminder_db):
        import_tasks(reminder_db, _write(tmp_path, [{"title": "A", "recurrence": {"type": "daily"}}]))
        changed = _write(tmp_path, [{"title": "A", "recurrence": {"type": "weekly", "dayOfWeek": 1}}], "v2.json")
        assert import_tasks(reminder_db, changed) == 0
        assert reminder_db.list_tasks()[0].recurrence == Daily()

    def test_changed_task_applied_when_syncing(self, tmp_path, reminder_db):
        import_tasks(reminder_db, _write(tmp_path, [{"title": "A", "recurrence": {"type": "daily"}}]))
        changed = _write(tmp_path, [{"title": "A", "recurrence": {"type": "weekly", "dayOfWeek": 1}}], "v2.json")
        assert import_tasks(reminder_db, changed, update_existing=True) == 1
        assert reminder_db.list_tasks()[0].recurrence == Weekly(day_of_week=1)
