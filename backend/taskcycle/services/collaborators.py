"""
Collaborator contracts used by the recurrence engine.

The engine never touches the database itself; it reads and writes through
these interfaces. ``taskcycle.services.task_store`` provides the SQLAlchemy
implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping, Sequence


class TaskStore(ABC):
    """Abstract interface for task persistence."""

    @abstractmethod
    def find_template_by_id(self, task_id: int) -> Any | None:
        """Get a recurring template by ID, or None if it is not a template."""

    @abstractmethod
    def find_children_of(self, template_id: int) -> Sequence[Any]:
        """List the generated instances of a template."""

    @abstractmethod
    def apply_patch(self, task_id: int, patch: Mapping[str, Any]) -> Any | None:
        """Write ``patch`` onto the task and return it."""

    @abstractmethod
    def delete_task(self, task_id: int) -> bool:
        """Delete a task. Returns False when dependent records block the deletion."""

    @abstractmethod
    def create_instance(self, template: Any, due_date: datetime) -> Any:
        """Persist a generated instance of ``template`` due at ``due_date``."""


class CompletionLog(ABC):
    """Append-only record of completed recurring occurrences."""

    @abstractmethod
    def append_completion(
        self,
        task_id: int,
        completed_at: datetime,
        original_due_date: datetime,
        skipped: bool = False,
    ) -> None:
        """Append one completion entry."""


class EventLog(ABC):
    """Domain event log for task history."""

    @abstractmethod
    def record(
        self,
        event_type: str,
        task_id: int,
        old_value: Any,
        new_value: Any,
        metadata: Mapping[str, Any] | None = None,
        field_name: str | None = None,
    ) -> None:
        """Record an event. May raise; callers decide whether failures matter."""
