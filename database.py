from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

# Seconds a writer waits for the SQLite write lock before giving up.
SQLITE_BUSY_TIMEOUT = 30


def build_engine(database_url: str) -> Engine:
    """Create an engine configured for how this app uses the database.

    Budget deltas are applied as in-place increments, so on SQLite every
    writer queues on the write lock; the busy timeout makes them wait
    instead of failing. In-memory databases share a single connection so
    all sessions see the same data.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    connect_args: dict[str, object] = {
        "check_same_thread": False,
        "timeout": SQLITE_BUSY_TIMEOUT,
    }
    if url.database in (None, "", ":memory:"):
        eng = create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    else:
        eng = create_engine(url, connect_args=connect_args)
    event.listen(eng, "connect", enable_sqlite_pragmas)
    return eng


def enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def build_sessionmaker(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = build_sessionmaker(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
