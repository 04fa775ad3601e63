#!/usr/bin/env python3
"""
Seed the configured storage backend with the marketplace demo data set.

Usage:
    python -m service_marketplace.app.fixtures --seed 42
"""

import argparse
import asyncio
import sys

from shared.logging import get_logger
from ..main import MarketplaceService


logger = get_logger("marketplace.fixtures")


async def seed(service: MarketplaceService, force: bool = False) -> int:
    """Load fixtures unless partners already exist; return the process exit code."""
    await service.start()
    try:
        existing = await service.partners.count_by()
        if existing and not force:
            logger.warning("Storage already contains partners, skipping", partners=existing)
            return 1

        summary = await service.load_fixtures()
        logger.info("Demo data set ready", **summary.counts())
        return 0
    finally:
        await service.stop()


def main() -> int:
    parser = argparse.ArgumentParser(description="Load the marketplace demo data set")
    parser.add_argument("--seed", type=int, help="Random seed (defaults to MARKETPLACE_FIXTURES_SEED)")
    parser.add_argument("--force", action="store_true", help="Load even if partners already exist")
    args = parser.parse_args()

    overrides = {"http_cache_enabled": False, "load_fixtures": False}
    if args.seed is not None:
        overrides["fixtures_seed"] = args.seed

    service = MarketplaceService(**overrides)
    return asyncio.run(seed(service, force=args.force))


if __name__ == "__main__":
    sys.exit(main())
