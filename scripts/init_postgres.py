"""
Bring the authcore database schema up to date.

Checks that the configured database answers, then runs `alembic upgrade head`.
The role and database must exist already, e.g.:

  createuser -P authcore
  createdb -O authcore authcore_db

Usage: python scripts/init_postgres.py [--check-only]
"""

import argparse
import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from authcore.config import settings

ROOT = Path(__file__).resolve().parent.parent
logger = logging.getLogger("authcore.init_db")


def database_reachable(url: str) -> bool:
    engine = create_engine(url)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except OperationalError as exc:
        logger.error("Cannot connect to %s: %s", engine.url.render_as_string(hide_password=True), exc.orig)
        return False
    finally:
        engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Check the database and apply migrations")
    parser.add_argument("--check-only", action="store_true", help="only test the connection")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    if not database_reachable(settings.get_database_url()):
        sys.exit(1)
    logger.info("Database reachable")
    if args.check_only:
        return

    command.upgrade(Config(str(ROOT / "alembic.ini")), "head")
    logger.info("Schema at head")


if __name__ == "__main__":
    main()
