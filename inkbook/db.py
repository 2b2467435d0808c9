# inkbook/db.py

import functools
import logging
from typing import Callable, Iterator, TypeVar

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from .config import get_settings
from .errors import Conflict, InkbookError, StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Postgres serialization_failure / deadlock_detected
CONTENTION_SQLSTATES = {"40001", "40P01"}

# Unique violations that only a concurrent writer can cause: two inserts of
# the same block start, or of the same payment event id. PostgreSQL names the
# constraint, SQLite names the columns.
CONTENTION_CONSTRAINTS = (
    "uq_block_book_start",
    "timeblock.book_id, timeblock.date, timeblock.start_time",
    "processedpaymentevent_pkey",
    "processedpaymentevent.event_id",
)

SQLITE_IMMEDIATE = "inkbook_sqlite_immediate"


class SerializationConflict(Exception):
    """The storage layer refused to commit because of a concurrent writer."""


def build_engine(url: str, echo: bool = False) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},  # required for SQLite + FastAPI
    )

    @event.listens_for(engine, "connect")
    def _configure_sqlite(dbapi_connection, connection_record):
        # we emit BEGIN ourselves below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    # A deferred BEGIN lets two transactions both read "no overlap" before
    # either writes. Serializable transactions take the write lock up front.
    @event.listens_for(engine, "begin")
    def _begin(conn):
        if conn.get_execution_options().get(SQLITE_IMMEDIATE):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


# Engine = connection to the database
engine: Engine = build_engine(get_settings().database_url, echo=get_settings().sql_echo)


def configure_engine(url: str, echo: bool = False) -> Engine:
    """Point the app at another database (tests, CLI tools)."""
    global engine
    engine.dispose()
    engine = build_engine(url, echo=echo)
    return engine


def init_db() -> None:
    from . import models  # noqa: F401  registers the tables

    SQLModel.metadata.create_all(engine)


# Dependency: one session per request
def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session


def is_contention_error(exc: DBAPIError) -> bool:
    orig = exc.orig
    message = str(orig).lower()
    if isinstance(exc, IntegrityError):
        return any(marker in message for marker in CONTENTION_CONSTRAINTS)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in CONTENTION_SQLSTATES:
        return True
    return "database is locked" in message or "could not serialize" in message


def _begin_serializable(session: Session) -> None:
    if session.in_transaction():
        session.rollback()
    bind = session.get_bind()
    if bind.dialect.name == "sqlite":
        session.connection(execution_options={SQLITE_IMMEDIATE: True})
    else:
        session.connection(execution_options={"isolation_level": "SERIALIZABLE"})


def run_serializable(
    session: Session,
    work: Callable[[Session], T],
    retries: int = 1,
) -> T:
    """
    Run ``work(session)`` in its own serializable transaction and commit.

    ``work`` may raise an InkbookError to abort; the transaction is rolled back
    and the error propagates unchanged. Contention reported by the storage
    layer is retried ``retries`` times, then raised as SerializationConflict.
    Any other constraint violation becomes Conflict, and any other storage
    failure becomes StorageUnavailable.
    """
    attempt = 0
    while True:
        try:
            _begin_serializable(session)
            result = work(session)
            session.commit()
            return result
        except InkbookError:
            session.rollback()
            raise
        except DBAPIError as exc:
            session.rollback()
            if isinstance(exc, IntegrityError) and not is_contention_error(exc):
                logger.warning("Transaction violated a constraint: %s", exc.orig)
                raise Conflict("The change conflicts with existing data", code="INTEGRITY_ERROR") from exc
            if not is_contention_error(exc):
                logger.error("Transaction failed: %s", exc)
                raise StorageUnavailable() from exc
            if attempt >= retries:
                logger.info("Transaction lost to a concurrent writer after %d attempt(s)", attempt + 1)
                raise SerializationConflict(str(exc.orig)) from exc
            attempt += 1
            logger.info("Retrying transaction after contention: %s", exc.orig)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Transaction failed: %s", exc)
            raise StorageUnavailable() from exc


def translate_storage_errors(fn: Callable[..., T]) -> Callable[..., T]:
    """
    Any storage failure inside ``fn`` leaves the core as StorageUnavailable.
    A session passed as the first argument is rolled back first.
    """

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            if args and isinstance(args[0], Session):
                args[0].rollback()
            logger.error("%s failed: %s", fn.__name__, exc)
            raise StorageUnavailable() from exc

    return wrapper
