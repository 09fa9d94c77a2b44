from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings


class Base(DeclarativeBase):
    pass


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _is_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///") or ":memory:" in database_url


def build_engine(database_url: str) -> Engine:
    """Engine for ``database_url`` with the SQLite tweaks the app relies on.

    In-memory databases share a single connection so every session sees the
    same tables. File databases get WAL journaling for concurrent readers.
    """
    if not _is_sqlite(database_url):
        return create_engine(database_url, pool_pre_ping=True)

    options: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    memory = _is_memory(database_url)
    if memory:
        options["poolclass"] = StaticPool
    eng = create_engine(database_url, **options)

    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return eng


def session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = session_factory(engine)


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """One unit of work: commit on success, roll back on any error."""
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
