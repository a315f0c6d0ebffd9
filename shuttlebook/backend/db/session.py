"""Database session management."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from shuttlebook.backend.core.config import settings
import os


def create_db_engine(database_url: str) -> Engine:
    """
    Build an engine for the given URL.

    File-backed SQLite waits up to ``sqlite_busy_timeout_seconds`` for a
    competing writer instead of failing with ``database is locked``;
    in-memory SQLite shares one connection across threads.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, pool_pre_ping=True)

    db_path = database_url.replace("sqlite:///", "")
    if db_path == ":memory:":
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False
        )

    # Ensure directory exists for SQLite
    os.makedirs(os.path.dirname(db_path) if os.path.dirname(db_path) else ".", exist_ok=True)
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": settings.sqlite_busy_timeout_seconds},
        echo=False
    )


engine = create_db_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency for FastAPI to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
