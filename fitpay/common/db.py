"""Database bootstrap helpers shared by all FitPay components."""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def make_session_factory(database_url: str, **engine_kwargs) -> sessionmaker:
    """Build one engine + session factory for a process."""

    engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)
    # `expire_on_commit=False` keeps ORM objects readable after commit in the saga.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
