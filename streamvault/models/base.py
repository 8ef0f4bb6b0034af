from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from streamvault.core.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(url: str) -> Engine:
    """Engine for ``url``. SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)

    # Worker threads each hold a session for a whole run.
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=max(settings.db_pool_size, settings.worker_concurrency),
        max_overflow=settings.db_max_overflow,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request."""
    with session_scope() as db:
        yield db


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request (pipeline runs, view flushes)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
