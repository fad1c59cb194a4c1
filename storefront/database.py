import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from . import config
from .errors import StorageError, StorageUnavailableError

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    """Pool and timeout settings so no database call can hang a request."""
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        return {
            "connect_args": {
                "check_same_thread": False,
                "timeout": config.DB_STATEMENT_TIMEOUT_MS / 1000,
            },
        }

    options = {
        "pool_pre_ping": True,
        "pool_size": config.DB_POOL_SIZE,
        "pool_timeout": config.DB_POOL_TIMEOUT,
    }
    if backend == "postgresql":
        options["connect_args"] = {
            "connect_timeout": config.DB_POOL_TIMEOUT,
            "options": f"-c statement_timeout={config.DB_STATEMENT_TIMEOUT_MS}",
        }
    return options


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


if engine.dialect.name == "sqlite":

    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def storage_error(exc: SQLAlchemyError) -> StorageError:
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return StorageUnavailableError()
    return StorageError()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing.

    Domain errors raised inside the block propagate unchanged after the
    rollback; database errors are re-raised as StorageError.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Transaction rolled back after database error: %s", e)
        raise storage_error(e) from e
    except Exception:
        db.rollback()
        raise
