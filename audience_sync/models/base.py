"""
Engine, session factory and declarative base
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import declarative_base, sessionmaker
from audience_sync.config import get_settings
from audience_sync.utils.logger import log

settings = get_settings()


def _resolve_database_url(url: str) -> str:
    """Make relative SQLite file paths absolute; other URLs pass through"""
    prefix = "sqlite:///"
    if not url.startswith(prefix) or url.startswith("sqlite:////") or ":memory:" in url:
        return url
    return prefix + os.path.abspath(url[len(prefix):])


DATABASE_URL = _resolve_database_url(settings.database_url)

if DATABASE_URL.startswith("sqlite"):
    # One connection per session; the upsert path commits per customer
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 60},
        poolclass=NullPool,
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=5,
        pool_recycle=300,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create any missing tables (Alembic owns schema changes after that)"""
    import audience_sync.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    log.info("Database tables ready")
