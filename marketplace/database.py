# Transaction Model:
# - One DB transaction per HTTP request
# - Commit happens automatically if request succeeds
# - Any exception triggers rollback
# - Routes MUST NOT call db.commit() directly
# - Worker sweeps open their own session per task (see services/release_queue.py)
# - Uploads commit a cleanup guard on a side session first (see services/submissions.py)
"""
Database configuration and session management.
"""

from sqlalchemy.exc import SQLAlchemyError
import logging
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from marketplace.config import get_settings


logger = logging.getLogger(__name__)
settings = get_settings()

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={
        "check_same_thread": False,  # Request handlers and the sweep loop share the pool
        "timeout": 30.0,
    } if _is_sqlite else {},
    echo=settings.SQL_ECHO,
    pool_pre_ping=True,
)

if _is_sqlite:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """
        Enable foreign keys constraints on each connection.
        SQLite ignores FKs by default.
        """
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

Base = declarative_base()


def init_db():
    """Create all tables. Idempotent."""
    # Import registers the mappers on Base.metadata
    from marketplace import models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def get_db():
    """
    FastAPI dependency for database sessions.

    Lifecycle:
    1. Create session
    2. Yield to endpoint
    3. Commit on success
    4. Rollback on exception
    5. Always close session
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error in request: {e}", exc_info=True)
        raise
    except Exception as e:
        # Domain errors (404/403/409...) land here too; nothing is persisted
        db.rollback()
        logger.debug(f"Rolling back request transaction: {e}")
        raise
    finally:
        db.close()
