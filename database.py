import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, **engine_kwargs) -> Engine:
    """Create an engine for the ledger database.

    SQLite connections enforce foreign keys so instances can never point at a
    missing definition, plan or subcategory. File databases also run in WAL
    mode; in-memory ones keep the default journal.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url, **engine_kwargs)

    connect_args = dict(engine_kwargs.pop("connect_args", {}))
    connect_args.setdefault("check_same_thread", False)
    eng = create_engine(url, connect_args=connect_args, **engine_kwargs)
    in_memory = url.database in (None, "", ":memory:")

    def _enable_sqlite_pragmas(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run a unit of work on an existing session.

    Everything flushed inside the block is committed together; any exception
    rolls the whole unit back before it propagates.
    """
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.debug(f"atomic_rollback: error={type(exc).__name__}")
        raise
