#!/usr/bin/env python3
"""
Container bootstrap for the adaptive training schema.

Waits for the database, then upgrades it with Alembic. Exits non-zero if
either step fails so the API never starts against an unknown schema.

    python run_migrations.py              # upgrade to head
    python run_migrations.py --revision 001
"""

import argparse
import os
import sys
import time
import logging

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run_migrations")

DB_WAIT_ATTEMPTS = 30
DB_WAIT_SECONDS = 1


def alembic_config():
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(here, "alembic"))
    return cfg


def wait_for_database() -> bool:
    from core.database import check_db_connection

    for attempt in range(1, DB_WAIT_ATTEMPTS + 1):
        if check_db_connection():
            logger.info("Database is reachable")
            return True
        logger.warning(f"Database unavailable (attempt {attempt}/{DB_WAIT_ATTEMPTS})")
        time.sleep(DB_WAIT_SECONDS)
    return False


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Upgrade the adaptive training schema")
    parser.add_argument("--revision", default="head", help="Alembic revision to upgrade to")
    args = parser.parse_args(argv)

    from core.logging import setup_logging
    setup_logging()

    if not wait_for_database():
        logger.error("Database not ready, giving up")
        return 1

    from alembic import command
    try:
        command.upgrade(alembic_config(), args.revision)
    except Exception as e:
        logger.error(f"Alembic upgrade to {args.revision} failed: {e}", exc_info=True)
        return 1

    logger.info(f"Schema upgraded to {args.revision}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
