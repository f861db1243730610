"""Relational store: engine, session factory and schema bootstrap"""

import logging
from typing import Generator

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from authcore.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    """Pooled engine for server databases; single-file or in-memory SQLite for dev and tests."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=settings.DEBUG)
    return create_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=settings.DEBUG,
    )


engine = build_engine(settings.get_database_url())
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Models register themselves on Base.metadata when imported.
from authcore import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; whatever the request did not commit is discarded."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Prepare the schema at startup according to DB_INIT_MODE.

      - migrate: refuse to start unless Alembic has stamped the database
      - create_all: create missing tables from the models (local development)
      - off: do nothing
    """
    mode = settings.DB_INIT_MODE.lower().strip()
    if mode == "off":
        logger.info("Schema check skipped (DB_INIT_MODE=off)")
    elif mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Tables created from models; use Alembic migrations outside local development.")
    elif mode == "migrate":
        tables = set(inspect(engine).get_table_names())
        if "alembic_version" not in tables:
            if settings.DB_REQUIRE_HEAD:
                raise RuntimeError("Database is not migrated. Run `alembic upgrade head` first.")
            logger.warning("alembic_version table not found; continuing because DB_REQUIRE_HEAD is off")
        else:
            logger.info("Alembic-managed schema detected")
    else:
        raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")
