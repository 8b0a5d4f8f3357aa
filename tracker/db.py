"""Database connection management."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


def make_engine(db_url: str):
    """Create an engine; in-memory SQLite shares one connection across threads."""

    if db_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            db_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(db_url, future=True)


def make_session(db_url: str):
    eng = make_engine(db_url)
    Base.metadata.create_all(eng)
    return sessionmaker(bind=eng, autoflush=False, autocommit=False, future=True, expire_on_commit=False)
