#!/usr/bin/env python3
"""
Bring the server database schema up to date.

    python run_migrations.py                     # upgrade to head
    python run_migrations.py --downgrade base    # drop everything
"""
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

import logging
from alembic.config import Config
from alembic import command
from fieldtracker.core.config import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def run_migrations(revision: str = "head", downgrade: bool = False) -> int:
    """Run Alembic to ``revision``; returns a process exit code."""
    alembic_cfg = Config(str(Path(__file__).parent / "alembic.ini"))
    direction = "Downgrading" if downgrade else "Upgrading"
    try:
        # Host part only; the URL may carry a password
        logger.info(f"{direction} {settings.DATABASE_URL.split('@')[-1]} to {revision}")
        if downgrade:
            command.downgrade(alembic_cfg, revision)
        else:
            command.upgrade(alembic_cfg, revision)
        logger.info("Migrations completed successfully")
        return 0
    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run database migrations")
    parser.add_argument("revision", nargs="?", default="head", help="Target revision (default: head)")
    parser.add_argument("--downgrade", action="store_true", help="Downgrade instead of upgrade")
    args = parser.parse_args()
    sys.exit(run_migrations(args.revision, downgrade=args.downgrade))
