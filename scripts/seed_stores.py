#!/usr/bin/env python3
"""Seed the pattern and venue tables from the YAML banks.

Seeding only touches empty tables, so the script can be rerun safely.
Pass --reset to drop the existing tables first (learned counters and
corrections are lost).

Usage:
    python scripts/seed_stores.py [--config config/config.yaml] [--reset]
"""

import argparse
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from loguru import logger
from rich.prompt import Confirm

from pattern_engine.pipeline.engine import seed_stores
from pattern_engine.storage.pattern_repository import PatternRepository
from pattern_engine.storage.venue_store import KnownVenueTable
from pattern_engine.utils.config import load_config
from pattern_engine.utils.logging_config import setup_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed pattern and venue tables")
    parser.add_argument("--config", default="config/config.yaml", help="Path to config YAML")
    parser.add_argument("--reset", action="store_true", help="Delete existing tables first")
    parser.add_argument("--force", action="store_true", help="Skip the reset confirmation")
    args = parser.parse_args()

    config = load_config(args.config)
    setup_logging(config.logging)

    storage = config.storage
    tables = [Path(storage.pattern_table_path), Path(storage.venue_table_path)]

    if args.reset:
        existing = [path for path in tables if path.exists()]
        if existing and not args.force:
            if not Confirm.ask(f"Delete {', '.join(str(p) for p in existing)}?"):
                logger.info("Reset cancelled")
                return 1
        for path in existing:
            path.unlink()
            logger.info(f"Removed {path}")

    patterns = PatternRepository(table_path=storage.pattern_table_path)
    venues = KnownVenueTable(table_path=storage.venue_table_path)
    added_patterns, added_venues = seed_stores(config, patterns, venues)

    logger.success(
        f"Pattern table: {len(patterns)} patterns ({added_patterns} new); "
        f"venue table: {len(venues)} venues ({added_venues} new)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
