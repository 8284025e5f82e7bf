from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from residuals.core.config import get_settings


def make_engine(url: str) -> Engine:
    """
    PostgreSQL in production. SQLite (tests, local tooling) needs its
    connections usable from FastAPI's threadpool.
    """
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(url, pool_pre_ping=True, future=True)


settings = get_settings()

DATABASE_URL = settings.database_url  # fail fast if missing

engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
