"""Database bootstrap helpers shared by the collaborator stores."""

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from flowbench.common.config import settings


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def build_session_factory(dsn: str, **engine_kwargs: Any) -> sessionmaker[Session]:
    """Create an engine for `dsn` and return a session factory bound to it.

    `expire_on_commit=False` keeps ORM objects readable after the store has
    closed its session, since records are handed back to request handlers.
    """

    engine = create_engine(dsn, pool_pre_ping=True, **engine_kwargs)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def create_schema(session_factory: sessionmaker[Session]) -> None:
    """Create all mapped tables on the factory's engine (local dev and tests)."""

    Base.metadata.create_all(session_factory.kw["bind"])


# Single engine per process; stores open one short session per operation.
SessionLocal = build_session_factory(settings.postgres_dsn)
