"""
Engine, declarative base and session dependencies.

`get_db` yields a request-scoped session. `get_session_factory` hands
background jobs (backfill) a factory so they open their own sessions
after the request that scheduled them has closed.
"""
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import settings


class Base(DeclarativeBase):
    pass


engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal
