from taskcycle.db.base import Base
from taskcycle.db.session import engine
from taskcycle.models import RecurringCompletion, Task, TaskEvent  # noqa: F401

Base.metadata.create_all(bind=engine)
print("Database tables created!")
