"""
Database engine and session management
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings


def build_engine(database_url: str = settings.DATABASE_URL):
    """Create an engine with connection and statement timeouts applied.

    PostgreSQL gets a server-side ``statement_timeout`` so a stuck lock wait
    aborts the transaction; SQLite uses the same budget as its busy timeout.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.DB_STATEMENT_TIMEOUT_MS / 1000,
            },
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=settings.DB_POOL_SIZE,
        connect_args={
            "connect_timeout": settings.DB_CONNECT_TIMEOUT,
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        },
    )


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yield a session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
