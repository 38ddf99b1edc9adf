import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.orm.exc import StaleDataError

from orderdesk.errors import Conflict, Internal

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if is_sqlite else {}
    )
    if is_sqlite:
        # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; let SQLAlchemy emit it.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@contextmanager
def primary_write(db: Session, message: str):
    """Wrap the write an operation cannot succeed without.

    Any database error rolls the whole session back and surfaces as an
    ``Internal`` error; a stale version counter surfaces as ``Conflict``.
    """
    try:
        yield
    except StaleDataError as exc:
        db.rollback()
        logger.warning("%s: concurrent update detected", message)
        raise Conflict("Record was modified by another request, reload and retry") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(message, exc_info=True)
        raise Internal(message) from exc


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
