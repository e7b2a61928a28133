#!/usr/bin/env python
"""Rebuild materialized exclusions from the command line.

Usage:
    python scripts/recompute_exclusions.py --user-id 42
    python scripts/recompute_exclusions.py --all
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from library_visibility.db.database import engine
from library_visibility.services.exclusion_service import ExclusionComputationService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def main(args) -> int:
    service = ExclusionComputationService()
    try:
        if args.all:
            outcome = await service.recompute_all_users()
            for error in outcome.errors:
                logger.error(f"User {error['user_id']}: {error['error']}")
            logger.info(f"Done: {outcome.success} succeeded, {outcome.failed} failed")
            return 0 if outcome.failed == 0 else 1

        try:
            result = await service.recompute_for_user(args.user_id)
        except Exception as e:
            logger.error(f"Recompute for user {args.user_id} failed: {e}", exc_info=True)
            return 1

        for entity_type, counts in result.stats.items():
            logger.info(f"  {entity_type.plural:<12} excluded={counts.excluded:<6} visible={counts.visible}")
        return 0
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Recompute per-user content exclusions"
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--user-id",
        type=int,
        help="Recompute a single user"
    )
    target.add_argument(
        "--all",
        action="store_true",
        help="Recompute every user, one after another"
    )

    args = parser.parse_args()
    sys.exit(asyncio.run(main(args)))
