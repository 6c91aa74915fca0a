#!/usr/bin/env python3
"""
feedhose orchestrator.

Runs one processing pass over the configured feed list:
1. Load the feed list (resuming past SKIP_FEEDS entries)
2. Open the database
3. Start the metrics reporter
4. Fetch, dedupe and persist every feed

Exits non-zero only when the feed list or the database is unusable at
startup; individual feed and article failures never change the exit code.
"""

import asyncio
import sys
import time
from typing import Optional

from config import config, get_logger
from errors import SourceUnavailable, StoreUnavailable
from feeds import load_feed_endpoints
from metrics import Metrics, MetricsReporter
from models import DatabaseQueue
from pipeline import FeedPipeline
from telemetry import init_telemetry, trace_span

logger = get_logger("orchestrator")

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


@trace_span("orchestrator.run_once", tracer_name="orchestrator")
async def run_once(feeds_path: Optional[str] = None, skip: Optional[int] = None,
                   database_path: Optional[str] = None) -> int:
    """Run a single pass and return the process exit code."""
    feeds_path = feeds_path or config.FEEDS_LIST_PATH
    skip = config.SKIP_FEEDS if skip is None else skip
    database_path = database_path or config.DATABASE_PATH

    logger.info(f"Starting feedhose run: {config.get_config_summary()}")
    start_time = time.time()

    try:
        endpoints = load_feed_endpoints(feeds_path, skip=skip)
    except SourceUnavailable as e:
        logger.error(f"Feed list unavailable, aborting: {e}")
        return EXIT_STARTUP_FAILURE

    db = DatabaseQueue(database_path)
    try:
        await db.start()
    except StoreUnavailable as e:
        logger.error(f"Storage unavailable, aborting: {e}")
        return EXIT_STARTUP_FAILURE

    metrics = Metrics()
    reporter = MetricsReporter(metrics, interval=config.REPORT_INTERVAL_SECONDS)
    reporter.start()

    pipeline = FeedPipeline(db, metrics)
    try:
        await pipeline.run_pass(endpoints)
    except StoreUnavailable as e:
        logger.error(f"Could not load known URLs, aborting: {e}")
        return EXIT_STARTUP_FAILURE
    finally:
        pipeline.close()
        await db.stop()

    reporter.report()
    logger.info(f"Run completed in {time.time() - start_time:.1f}s")
    return EXIT_OK


def main():
    """Main entry point."""
    init_telemetry("feedhose")
    try:
        sys.exit(asyncio.run(run_once()))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(EXIT_STARTUP_FAILURE)


if __name__ == "__main__":
    main()
