"""Database bootstrap helpers.

The session factory is built once per process by the app factory and handed
to every component that needs the store.
"""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests and local runs).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def create_session_factory(database_url: str) -> sessionmaker:
    """Create an engine plus session factory for one database URL."""

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            # One shared connection so every session sees the same in-memory db.
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
    else:
        engine = create_engine(database_url, pool_pre_ping=True)
    # `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def create_schema(session_factory: sessionmaker) -> None:
    """Create all mapped tables; used for SQLite and tests (Postgres uses Alembic)."""

    Base.metadata.create_all(session_factory.kw["bind"])
