from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer

from taskcycle.db.base import Base


class RecurringCompletion(Base):
    """Append-only log of completed occurrences of a recurring task."""

    __tablename__ = "recurring_completions"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    completed_at = Column(DateTime, nullable=False)
    original_due_date = Column(DateTime, nullable=False)
    skipped = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
