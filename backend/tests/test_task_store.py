from __future__ import annotations

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.orm import Session

from taskcycle.models.recurring_completion import RecurringCompletion
from taskcycle.models.task import Task, TaskPriority
from taskcycle.models.task_event import TaskEvent
from taskcycle.services.instances import generate_recurring_instances
from taskcycle.services.task_store import SqlCompletionLog, SqlEventLog, SqlTaskStore


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture()
def store(db_session: Session) -> SqlTaskStore:
    return SqlTaskStore(db_session)


def test_delete_blocked_by_subtask_reports_false(store: SqlTaskStore, caplog):
    parent = store.create_task({"name": "Move flat"})
    subtask = store.create_task({"name": "Book van", "parent_task_id": parent.id})

    with caplog.at_level(logging.WARNING, logger="taskcycle.services.task_store"):
        assert store.delete_task(parent.id) is False

    assert store.get_task(parent.id) is not None
    assert "dependent records" in caplog.text

    assert store.has_subtasks(parent.id)
    assert not store.has_subtasks(subtask.id)

    assert store.delete_task(subtask.id) is True
    assert store.delete_task(parent.id) is True
    assert store.get_task(parent.id) is None
    assert store.delete_task(parent.id) is False


def test_apply_patch_stores_naive_utc_and_skips_unknown_keys(store: SqlTaskStore):
    task = store.create_task({"name": "Pay rent"})
    original_id = task.id

    patched = store.apply_patch(
        task.id,
        {
            "due_date": datetime(2025, 1, 1, 18, 0, tzinfo=ZoneInfo("Asia/Tokyo")),
            "id": 999,
            "is_virtual_occurrence": True,
            "priority": TaskPriority.HIGH,
        },
    )

    assert patched.id == original_id
    assert patched.due_date == datetime(2025, 1, 1, 9, 0)
    assert patched.priority == TaskPriority.HIGH
    assert store.apply_patch(12345, {"name": "Missing"}) is None


def test_find_template_by_id_only_returns_templates(store: SqlTaskStore):
    template = store.create_task({"name": "Gym", "recurrence_type": "daily"})
    instance = store.create_instance(template, utc(2025, 1, 2, 7, 0))
    plain = store.create_task({"name": "Dentist"})

    assert store.find_template_by_id(template.id).id == template.id
    assert store.find_template_by_id(instance.id) is None
    assert store.find_template_by_id(plain.id) is None
    assert [child.id for child in store.find_children_of(template.id)] == [instance.id]


def test_create_instance_copies_template_fields(store: SqlTaskStore):
    template = store.create_task(
        {
            "name": "Gym",
            "note": "Leg day",
            "project_id": 7,
            "priority": TaskPriority.HIGH,
            "recurrence_type": "weekly",
            "recurrence_weekdays": [1, 3, 5],
            "completion_based": True,
        }
    )

    instance = store.create_instance(template, utc(2025, 1, 3, 7, 0))

    assert instance.name == "Gym"
    assert instance.note == "Leg day"
    assert instance.project_id == 7
    assert instance.priority == TaskPriority.HIGH
    assert instance.status == "not_started"
    assert instance.due_date == datetime(2025, 1, 3, 7, 0)
    assert instance.recurrence_type == "none"
    assert instance.completion_based is False
    assert instance.recurring_parent_id == template.id
    assert not instance.is_recurring_template
    assert template.is_recurring_template


def test_completion_and_event_logs_persist(store: SqlTaskStore, db_session: Session):
    task = store.create_task({"name": "Gym", "recurrence_type": "daily"})

    SqlCompletionLog(db_session).append_completion(
        task.id, utc(2025, 1, 1, 12, 0), utc(2025, 1, 1, 9, 0)
    )
    SqlEventLog(db_session).record(
        "recurring_occurrence_completed",
        task.id,
        utc(2025, 1, 1, 9, 0),
        utc(2025, 1, 2, 9, 0),
        metadata={"completion_based": False},
        field_name="recurrence",
    )

    completion = db_session.query(RecurringCompletion).one()
    assert completion.task_id == task.id
    assert completion.original_due_date == datetime(2025, 1, 1, 9, 0)
    assert completion.skipped is False

    event = db_session.query(TaskEvent).one()
    assert event.field_name == "recurrence"
    assert event.old_value == "2025-01-01T09:00:00+00:00"
    assert event.event_metadata == {"completion_based": False}


def test_generate_instances_is_idempotent(store: SqlTaskStore):
    template = store.create_task(
        {"name": "Stretch", "recurrence_type": "daily", "due_date": utc(2025, 1, 1, 9, 0)}
    )
    now = utc(2025, 1, 1, 10, 0)

    created = generate_recurring_instances(store, template, days_ahead=3, now=now)
    again = generate_recurring_instances(store, template, days_ahead=3, now=now)

    assert [instance.due_date for instance in created] == [
        datetime(2025, 1, 1, 9, 0),
        datetime(2025, 1, 2, 9, 0),
        datetime(2025, 1, 3, 9, 0),
    ]
    assert again == []
    assert len(store.find_children_of(template.id)) == 3


def test_generate_instances_follows_weekday_set_and_end_date(store: SqlTaskStore):
    template = store.create_task(
        {
            "name": "Run",
            "recurrence_type": "weekly",
            "recurrence_weekdays": [1, 3, 5],
            "due_date": utc(2025, 1, 1, 7, 0),
            "recurrence_end_date": utc(2025, 1, 6, 0, 0),
        }
    )

    created = generate_recurring_instances(store, template, days_ahead=14, now=utc(2025, 1, 1))

    assert [instance.due_date for instance in created] == [
        datetime(2025, 1, 1, 7, 0),
        datetime(2025, 1, 3, 7, 0),
    ]


def test_generate_instances_ignores_non_templates(store: SqlTaskStore):
    task = store.create_task({"name": "Dentist"})
    assert generate_recurring_instances(store, task, now=utc(2025, 1, 1)) == []


def test_deleting_template_nulls_instance_link(store: SqlTaskStore, db_session: Session):
    template = store.create_task({"name": "Gym", "recurrence_type": "daily"})
    instance = store.create_instance(template, utc(2025, 1, 2))

    assert store.delete_task(template.id)

    db_session.expire_all()
    assert db_session.get(Task, instance.id).recurring_parent_id is None
