#!/usr/bin/env python3
"""
Create (or drop and recreate) the inventory schema.

Usage:
  python3 scripts/init_db.py [--database-url URL] [--drop] [--echo]

The URL defaults to $DATABASE_URL, then to a local SQLite file.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_DB_URL = os.environ.get("DATABASE_URL", "sqlite:///supply.db")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create the supply database schema")
    p.add_argument(
        "--database-url",
        default=DEFAULT_DB_URL,
        help=f"SQLAlchemy database URL (default: {DEFAULT_DB_URL!r}, or DATABASE_URL)",
    )
    p.add_argument(
        "--drop",
        action="store_true",
        help="Drop every table first (destroys all data)",
    )
    p.add_argument("--echo", action="store_true", help="Log emitted SQL")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from supply_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
        reset_engine,
    )
    from supply_kernel.logging_config import configure_logging, get_logger

    configure_logging(level=logging.INFO)
    logger = get_logger("scripts.init_db")

    engine = init_engine_from_url(args.database_url, echo=args.echo)
    try:
        if args.drop:
            drop_tables(engine)
            logger.info("schema_dropped", extra={"database_url": engine.url.render_as_string()})
        create_tables(engine)
        logger.info("schema_created", extra={"database_url": engine.url.render_as_string()})
    finally:
        reset_engine()

    print(f"  Schema ready at {engine.url.render_as_string()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
