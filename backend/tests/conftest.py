from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace
from typing import Any, Mapping

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import taskcycle.models  # noqa: F401
from taskcycle.db.base import Base
from taskcycle.db.session import enable_sqlite_foreign_keys, get_db
from taskcycle.main import create_app
from taskcycle.services.collaborators import CompletionLog, EventLog, TaskStore


TASK_DEFAULTS = {
    "name": "Water the plants",
    "description": None,
    "note": None,
    "project_id": None,
    "priority": "medium",
    "status": "not_started",
    "due_date": None,
    "completed_at": None,
    "recurrence_type": "none",
    "recurrence_interval": 1,
    "recurrence_end_date": None,
    "recurrence_weekday": None,
    "recurrence_weekdays": None,
    "recurrence_month_day": None,
    "recurrence_week_of_month": None,
    "completion_based": False,
    "recurring_parent_id": None,
}


@pytest.fixture()
def make_task():
    counter = {"next_id": 1}

    def _make_task(**overrides: Any) -> SimpleNamespace:
        fields = {**TASK_DEFAULTS, **overrides}
        if "id" not in fields:
            fields["id"] = counter["next_id"]
            counter["next_id"] += 1
        return SimpleNamespace(**fields)

    return _make_task


class FakeTaskStore(TaskStore):
    def __init__(self, tasks=(), blocked_ids=()):
        self.tasks = {task.id: task for task in tasks}
        self.blocked_ids = set(blocked_ids)
        self.deleted: list[int] = []
        self.created: list[SimpleNamespace] = []

    def find_template_by_id(self, task_id: int):
        task = self.tasks.get(task_id)
        if task and task.recurring_parent_id is None and task.recurrence_type != "none":
            return task
        return None

    def find_children_of(self, template_id: int):
        return [task for task in self.tasks.values() if task.recurring_parent_id == template_id]

    def apply_patch(self, task_id: int, patch: Mapping[str, Any]):
        task = self.tasks[task_id]
        for key, value in patch.items():
            setattr(task, key, value)
        return task

    def delete_task(self, task_id: int) -> bool:
        if task_id in self.blocked_ids:
            return False
        self.tasks.pop(task_id, None)
        self.deleted.append(task_id)
        return True

    def create_instance(self, template, due_date: datetime):
        new_id = max(self.tasks, default=0) + 1
        instance = SimpleNamespace(
            **{**TASK_DEFAULTS, "id": new_id, "name": template.name, "due_date": due_date,
               "recurring_parent_id": template.id}
        )
        self.tasks[new_id] = instance
        self.created.append(instance)
        return instance


class FakeCompletionLog(CompletionLog):
    def __init__(self):
        self.entries: list[dict[str, Any]] = []

    def append_completion(self, task_id, completed_at, original_due_date, skipped=False):
        self.entries.append(
            {
                "task_id": task_id,
                "completed_at": completed_at,
                "original_due_date": original_due_date,
                "skipped": skipped,
            }
        )


class FakeEventLog(EventLog):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: list[dict[str, Any]] = []

    def record(self, event_type, task_id, old_value, new_value, metadata=None, field_name=None):
        if self.fail:
            raise RuntimeError("event store unavailable")
        self.events.append(
            {
                "event_type": event_type,
                "task_id": task_id,
                "old_value": old_value,
                "new_value": new_value,
                "metadata": metadata,
                "field_name": field_name,
            }
        )


@pytest.fixture()
def completion_log() -> FakeCompletionLog:
    return FakeCompletionLog()


@pytest.fixture()
def event_log() -> FakeEventLog:
    return FakeEventLog()


@pytest.fixture()
def failing_event_log() -> FakeEventLog:
    return FakeEventLog(fail=True)


@pytest.fixture()
def fake_store_factory():
    return FakeTaskStore


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        # The in-memory database goes away with its single pooled connection;
        # no drop_all, since leftover subtask rows would block DROP TABLE tasks
        engine.dispose()


@pytest.fixture()
def db_session(engine):
    with Session(engine) as session:
        yield session
        session.rollback()


@pytest.fixture()
def client(engine):
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app = create_app()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
