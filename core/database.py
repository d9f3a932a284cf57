from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.engine import Engine
from fastapi import Request
from typing import Generator
import logging

from core.config import settings

logger = logging.getLogger(__name__)


# ============================================================
# ✅ Engine factory
# ============================================================
def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build a SQLModel engine for the given URL.
    Services receive this engine explicitly; nothing below reaches for a global.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        # SQLite connections are shared across the worker threads
        connect_args["check_same_thread"] = False
        logger.warning("⚠️ Using SQLite database, fine for local dev and tests only.")
    else:
        logger.info("✅ Using database from environment.")

    # For PostgreSQL, pool_pre_ping avoids stale connections
    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


# ============================================================
# ✅ Default engine (used by main.py and scripts)
# ============================================================
engine = create_db_engine(settings.DATABASE_URL)


# ============================================================
# ✅ Create tables (called at startup)
# ============================================================
def create_db_and_tables(db_engine: Engine) -> None:
    """
    Create all database tables based on SQLModel models.
    This runs automatically at app startup.
    """
    # Import registers the table metadata
    import models.models  # noqa: F401

    try:
        SQLModel.metadata.create_all(db_engine)
        logger.info("✅ All database tables created successfully.")
    except Exception as e:
        logger.error(f"❌ Failed to create tables: {e}")
        raise


# ============================================================
# ✅ Dependency: FastAPI session generator
# ============================================================
def get_session(request: Request) -> Generator[Session, None, None]:
    """
    Provides a SQLModel Session bound to the app's engine.
    Closes automatically after request completes.
    """
    with Session(request.app.state.engine) as session:
        yield session
