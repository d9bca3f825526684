"""
Database configuration and connection setup for the record store
"""
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import Config
from .models import Base


def build_engine(database_url: Optional[str] = None, **overrides) -> Engine:
    """Create the SQLAlchemy engine for problems, sandbox records and logs"""
    url = database_url or Config.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    options = dict(
        pool_pre_ping=True,                  # Verify connections before use
        pool_recycle=Config.DB_POOL_RECYCLE,
        pool_timeout=Config.DB_POOL_TIMEOUT,
        echo=Config.ENABLE_SQL_LOGGING,
    )
    options.update(overrides)
    return create_engine(url, **options)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine) -> None:
    """Create the record-store tables if they don't exist"""
    Base.metadata.create_all(bind=engine)