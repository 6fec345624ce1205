import logging
import time
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


# Engine creation does not connect; nothing touches the DB until a session is used.
engine = make_engine(settings.DATABASE_URL) if settings.DATABASE_URL else None
SessionLocal = sessionmaker(bind=engine, autoflush=False) if engine is not None else None


def bootstrap_schema(bind=None, retries: int | None = None, wait_seconds: float | None = None) -> bool:
    """Create tables, retrying while the database is still coming up."""
    # Tables must be registered on Base before create_all
    import app.domain.models  # noqa: F401

    bind = bind or engine
    retries = settings.DB_CONNECT_RETRIES if retries is None else retries
    wait_seconds = settings.DB_RETRY_WAIT_SECONDS if wait_seconds is None else wait_seconds

    if bind.url.get_backend_name() == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        Path(bind.url.database).parent.mkdir(parents=True, exist_ok=True)

    for attempt in range(retries):
        try:
            logger.info(f"🔄 Attempting DB connection ({attempt + 1}/{retries})...")
            Base.metadata.create_all(bind=bind)
            logger.info("✅ DB Connected and Tables Created.")
            return True
        except OperationalError as e:
            logger.warning(f"⚠️ DB not ready yet ({e}). Waiting {wait_seconds}s...")
            time.sleep(wait_seconds)

    logger.error("❌ Could not connect to DB after retries. Starting from local cache.")
    return False
