"""Garbage-collect expired and long-revoked refresh token rows.

Run from cron, or as a standalone process with --interval.
"""

import argparse
import logging
import time

from authcore.api.deps import get_codec, get_ledger, get_signer
from authcore.config import settings
from authcore.core.clock import system_clock
from authcore.core.database import SessionLocal
from authcore.services.credential_store import CredentialStore

logger = logging.getLogger("authcore.purge")


def purge_once() -> int:
    db = SessionLocal()
    try:
        store = CredentialStore(db)
        codec = get_codec(signer=get_signer(), clock=system_clock)
        ledger = get_ledger(store=store, codec=codec, clock=system_clock)
        return ledger.purge(settings.REFRESH_TOKEN_RETENTION_DAYS * 24 * 3600)
    finally:
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--interval", type=int, default=0, help="repeat every N seconds (default: run once)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    if not args.interval:
        logger.info("Removed %d refresh token rows", purge_once())
        return
    try:
        while True:
            logger.info("Removed %d refresh token rows", purge_once())
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Purge loop stopped")


if __name__ == "__main__":
    main()
