# reservation_engine/infrastructure/db/session.py

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as SQLAlchemyTimeoutError,
)
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from reservation_engine.config import ReservationSettings
from reservation_engine.domain.exceptions import (
    ConflictError,
    ReservationError,
    StoreError,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)


# -----------------------------
# Base Class for Models
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Engine
# -----------------------------
def build_engine(settings: ReservationSettings) -> Engine:
    url = settings.database_url
    options: dict = {
        "echo": False,
        "future": True,
        "pool_pre_ping": True,
    }

    if url.startswith("postgresql"):
        # Bounds every statement, including the commit of a booking.
        options["connect_args"] = {
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
        }
        options["pool_timeout"] = settings.db_pool_timeout
    elif url.startswith("sqlite"):
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.db_statement_timeout_ms / 1000,
        }

    engine = create_engine(url, **options)
    if url.startswith("sqlite"):
        _serialize_sqlite_writers(engine)
    return engine


def _serialize_sqlite_writers(engine: Engine) -> None:
    """
    pysqlite defers BEGIN until the first write, so two sessions can both
    read a table as free before either inserts. Taking the write lock at the
    start of every transaction makes the row lock of ``lock_table`` real: a
    second writer waits up to the busy timeout and then fails with an
    OperationalError.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# -----------------------------
# Session Factory
# -----------------------------
def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


def is_store_degraded(exc: Exception) -> bool:
    return isinstance(exc, (OperationalError, SQLAlchemyTimeoutError))


# -----------------------------
# Unit of work
# -----------------------------
@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """
    Commit on success, roll back on any error.

    Driver errors are translated into the domain's store errors so callers
    never see SQLAlchemy exceptions. Domain errors pass through untouched.
    """
    try:
        yield session
        session.commit()
    except ReservationError:
        session.rollback()
        raise
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Commit rejected by a storage constraint: %s", exc.orig)
        raise ConflictError("Concurrent update detected, please retry") from exc
    except Exception as exc:
        session.rollback()
        if is_store_degraded(exc):
            logger.exception("Booking store unavailable")
            raise StoreUnavailable("Booking store is unavailable, retry later") from exc
        if isinstance(exc, SQLAlchemyError):
            logger.exception("Booking store rejected the transaction")
            raise StoreError("Could not save changes, retry later") from exc
        raise
