import re
import secrets
import time
from typing import Callable, TypeVar

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings

T = TypeVar("T")

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


def _create_engine() -> Engine:
    settings = get_settings()
    from sqlalchemy import create_engine

    if settings.database_url.startswith("sqlite"):
        eng = create_engine(
            settings.database_url, connect_args={"check_same_thread": False}
        )
        event.listen(eng, "connect", _enable_sqlite_pragmas)
        event.listen(eng, "begin", _begin_immediate)
        return eng
    return create_engine(settings.database_url, isolation_level="SERIALIZABLE")


def _enable_sqlite_pragmas(dbapi_conn, _record):
    # pysqlite's own transaction handling is disabled so "begin" below owns it
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _begin_immediate(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def with_transaction(
    session: Session, fn: Callable[..., T], *args: object, **kwargs: object
) -> T:
    """Run ``fn(session, ...)`` as one atomic unit.

    Every write issued inside ``fn`` is committed together when it returns;
    if it raises, all of them are rolled back and the error propagates.
    """
    try:
        result = fn(session, *args, **kwargs)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return result


def end_reads(session: Session) -> None:
    """Close the transaction a read autobegan.

    On SQLite every transaction starts with ``BEGIN IMMEDIATE``, so even a
    plain read holds the database write lock until it ends. Call this before
    any slow outbound request. Loaded objects stay usable because sessions do
    not expire on commit.
    """
    if session.in_transaction():
        session.commit()


def new_object_id() -> str:
    return f"{int(time.time()):08x}{secrets.token_hex(8)}"


def is_object_id(value: object) -> bool:
    return isinstance(value, str) and bool(_OBJECT_ID_RE.match(value))
