"""
SQLAlchemy engine, session, and base. DB path from config or default.
"""
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine = None
_SessionLocal = None

DEFAULT_DB_DIR = Path.home() / ".prayer_reminder"


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager for a single DB session. Commits on success, rolls back on error."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_engine():
    return _engine


def _default_url() -> str:
    DEFAULT_DB_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DEFAULT_DB_DIR / 'prayer_reminder.db'}"


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> None:
    """
    Initialize database engine and create tables.
    config_data: app config dict; used for database.path if db_url not given.
    db_url: optional SQLAlchemy URL override.
    """
    global _engine, _SessionLocal

    if _engine is not None:
        logger.debug("Database already initialized")
        return

    if db_url is None and config_data:
        path = (config_data.get("database") or {}).get("path")
        if path:
            path = Path(path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{path}"

    if not db_url:
        db_url = _default_url()

    _engine = create_engine(db_url, echo=False, future=True)

    # Import model modules so tables are registered with Base
    from prayer_reminder.prayer import models as _prayer_models  # noqa: F401

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False, expire_on_commit=False)
    logger.info(f"Database initialized: {db_url.split('?')[0]}")


def dispose_db() -> None:
    """Drop the engine so init_db can be called again (tests, config change)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
