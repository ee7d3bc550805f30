#!/usr/bin/env python3
"""Run a single reconciliation pass from the command line.

Usage:
    python scripts/run_once.py [--query "ai -filter:retweets"]
"""

import argparse
import asyncio
import json
import sys

from postpulse.core.db import AsyncSessionLocal, create_all, init_db
from postpulse.core.logging import setup_logging
from postpulse.core.settings import get_settings
from postpulse.core.store import PostStore
from postpulse.ingestor.pipeline import run_reconciliation_pass
from postpulse.ingestor.reconciler import Reconciler
from postpulse.ingestor.twitter import SearchFetcher

settings = get_settings()


async def main(query: str) -> int:
    setup_logging("run-once")
    await init_db()
    await create_all()

    store = PostStore(AsyncSessionLocal, timeout=settings.store_timeout_seconds)
    reconciler = Reconciler(
        store,
        update_concurrency=settings.update_concurrency,
        batch_lookups=settings.batch_lookups,
    )

    async with SearchFetcher.from_settings(settings) as fetcher:
        result = await run_reconciliation_pass(query, fetcher, reconciler)

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.ok else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one PostPulse reconciliation pass")
    parser.add_argument("--query", default=settings.search_query, help="Search query to fetch")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.query)))
