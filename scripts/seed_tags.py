"""
Insert the default tag catalogue into the configured database.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from memoirs.config import get_settings
from memoirs.db import PostgresDbClient
from memoirs.tags import DEFAULT_TAGS, ensure_default_tags

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the default story tags")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the default tags without writing",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    if args.dry_run:
        for name, icon in DEFAULT_TAGS.items():
            print(f"{name}\t{icon}")
        return 0

    database_url = args.database_url or get_settings().database_url
    if not database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    created = ensure_default_tags(PostgresDbClient(database_url))
    logger.info("Created %d tags: %s", len(created), [tag.name for tag in created])
    return 0


if __name__ == "__main__":
    sys.exit(main())
