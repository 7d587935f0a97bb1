import logging
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from taskcycle.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """SQLite leaves FK enforcement off per connection; turn it on."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Always use the correct connect_args for SQLite
is_sqlite = settings.database_url.startswith("sqlite")
connect_args = {"check_same_thread": False} if is_sqlite else {}
logger.debug(f"Database connection: {'SQLite' if is_sqlite else 'PostgreSQL'}")
engine = create_engine(
    settings.database_url,
    connect_args=connect_args
)
if is_sqlite:
    enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
