"""Database session factory and configuration.

Provides database connectivity and session management for the ReviewFlow
backend. PostgreSQL in deployment; SQLite is accepted for tests and local
tooling (pool settings and lock timeouts only apply to PostgreSQL).
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .config import get_settings


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine with pool settings appropriate for the backend."""
    engine_kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": echo,
    }

    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10

    return create_engine(database_url, **engine_kwargs)


_settings = get_settings()

engine = build_engine(_settings.DATABASE_URL, echo=_settings.DATABASE_ECHO)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def is_postgresql(session: Session) -> bool:
    """Whether the session is bound to PostgreSQL (row locks, lock_timeout)."""
    return session.get_bind().dialect.name == "postgresql"


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            provision_tenant(session, name="Acme", slug="acme")

    Automatically commits on success, rolls back on exception.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI endpoints.

    Usage:
        @router.get("/files")
        def list_files(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# lock_not_available, deadlock_detected
_LOCK_PGCODES = {"55P03", "40P01"}


def is_lock_contention(exc: BaseException) -> bool:
    """Whether a database error means "another writer holds this row".

    Covers PostgreSQL lock timeouts and deadlocks, SQLite's busy database and
    optimistic version conflicts (StaleDataError).
    """
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, OperationalError):
        orig = exc.orig
        if getattr(orig, "pgcode", None) in _LOCK_PGCODES:
            return True
        return "database is locked" in str(orig)
    return False
