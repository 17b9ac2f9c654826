#!/usr/bin/env python3
"""
Retry Worker

Runs the event retry scheduler outside the API process: sweeps `pending` and
`failed` events from Supabase and re-delivers them to the Conversions API.

Usage:
    python run_retry_worker.py
    python run_retry_worker.py --interval 30 --batch-size 100
    python run_retry_worker.py --once
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import ConfigurationError
from repositories.client import create_supabase_client
from repositories.event_repository import EventRepository
from services.delivery_pipeline import DeliveryPipeline
from services.retry_scheduler import RetryScheduler, SweepResult
from services.settings import TrackingSettings

logger = logging.getLogger("retry_worker")


def print_summary(result: SweepResult) -> None:
    print()
    print("=" * 60)
    print("RETRY SWEEP SUMMARY")
    print("=" * 60)
    print(f"Events processed: {result.processed}")
    print(f"  Sent:   {result.sent}")
    print(f"  Failed: {result.failed}")
    if result.aborted:
        print("Sweep aborted by a store error (see log)")
    print("=" * 60)


async def run(args: argparse.Namespace) -> int:
    settings = TrackingSettings.from_env()
    interval = args.interval or settings.retry_interval_seconds
    batch_size = args.batch_size or settings.retry_batch_size

    client = await create_supabase_client()
    pipeline = DeliveryPipeline(settings)
    scheduler = RetryScheduler(
        EventRepository(client),
        pipeline,
        interval_seconds=interval,
        batch_size=batch_size,
    )

    try:
        if args.once:
            result = await scheduler.sweep()
            print_summary(result)
            return 1 if result.aborted else 0

        scheduler.start()
        # Runs until interrupted.
        await asyncio.Event().wait()
        return 0
    finally:
        await scheduler.shutdown()
        await pipeline.close()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Re-deliver pending and failed tracking events to the Conversions API"
    )

    parser.add_argument(
        "--interval",
        "-i",
        type=float,
        help="Seconds between sweeps (default: RETRY_INTERVAL_SECONDS or 60)"
    )

    parser.add_argument(
        "--batch-size",
        "-b",
        type=int,
        help="Maximum events per sweep (default: RETRY_BATCH_SIZE or 50)"
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit"
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run(args))

    except ConfigurationError as e:
        print(f"\nCONFIGURATION ERROR: {e}", file=sys.stderr)
        return 2

    except KeyboardInterrupt:
        print("\n\nRetry worker interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
