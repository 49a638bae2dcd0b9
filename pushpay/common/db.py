"""Database bootstrap helpers for the durable document store."""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from pushpay.common.config import settings


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def make_engine(dsn: str) -> Engine:
    """Build an engine; SQLite DSNs share one connection so `sqlite://` stays usable."""

    if dsn.startswith("sqlite"):
        return create_engine(dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(dsn, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker:
    # `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


def create_schema(bind: Engine) -> None:
    """Create missing tables; production schemas are owned by alembic."""

    Base.metadata.create_all(bind)


# Single SQLAlchemy engine per process.
engine = make_engine(settings.postgres_dsn)
SessionLocal = make_session_factory(engine)
