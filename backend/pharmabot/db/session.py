"""Database session for the local session mirror. SQLite by default."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool


def build_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        # PostgreSQL/MySQL: Use QueuePool with sensible defaults
        return create_engine(
            database_url,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )

    connect_args = {"check_same_thread": False}
    if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
        # In-memory database lives in a single connection
        return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
    # SQLite file: Use NullPool for thread-safety
    return create_engine(database_url, connect_args=connect_args, poolclass=NullPool)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
