import logging
from contextlib import contextmanager
from typing import Any
from typing import Iterator

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy import event
from sqlalchemy.orm import Session
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from planner.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

# Create Base class
Base = declarative_base()


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine with the given URL and options.

    Args:
        db_url: Database connection URL
        **kwargs: Additional arguments for create_engine

    Returns:
        A SQLAlchemy Engine instance
    """
    connect_args = kwargs.pop("connect_args", {})
    if "sqlite" in db_url:
        if "check_same_thread" not in connect_args:
            connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30

    engine = create_engine(db_url, connect_args=connect_args, **kwargs)

    if "sqlite" in db_url:
        _enable_sqlite_transactions(engine)

    return engine


def _enable_sqlite_transactions(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN.

    pysqlite defers BEGIN until the first DML statement, so a SAVEPOINT issued
    earlier silently becomes the outer transaction and RELEASE commits it.  The
    push handler relies on savepoints, hence the explicit BEGIN.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN")


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    ``expire_on_commit=False`` keeps row attributes readable after the push
    handler commits, so conflicts and logging never trigger a reload.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


# Default engine and sessionmaker instances for app usage.  Tests overwrite
# ``planner.database.default_session_factory`` with their own factory.
default_engine = make_engine(_settings.resolved_database_url)
default_session_factory = make_sessionmaker(default_engine)


def get_session_factory() -> sessionmaker:
    """Return the session factory used for request-scoped sessions."""
    return default_session_factory


def get_db(session_factory: Any = None) -> Iterator[Session]:
    """Dependency provider for database sessions.

    Every request gets its own session; nothing is shared between requests
    except the engine's connection pool.

    Yields:
        SQLAlchemy Session object
    """
    factory = session_factory or get_session_factory()
    db = factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session(session_factory: Any = None) -> Iterator[Session]:
    """Transactional session scope for scripts and background helpers.

    Commits on success, rolls back on error and always closes.

    Usage:
        with db_session() as db:
            push_changes(db, folders, owner, rows)
    """
    factory = session_factory or get_session_factory()
    session = factory()

    try:
        yield session
        session.commit()
        logger.debug("Database session committed successfully")

    except Exception as e:
        session.rollback()
        logger.error(f"Database session rolled back due to error: {e}")
        raise

    finally:
        session.close()


def initialize_database(engine: Engine = None) -> None:
    """Create all tables on *engine* (defaults to :data:`default_engine`)."""
    # Import models so they are registered with Base
    from planner.models import models  # noqa: F401

    target_engine = engine or default_engine
    Base.metadata.create_all(bind=target_engine)
    logger.debug("Tables ensured: %s", sorted(Base.metadata.tables))
