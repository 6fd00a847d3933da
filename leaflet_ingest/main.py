"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path

from leaflet_ingest.chains import STRATEGIES, get_strategies
from leaflet_ingest.config import config, Config
from leaflet_ingest.fetch.client import PageFetcher
from leaflet_ingest.jobs.report import RunReport
from leaflet_ingest.jobs.report_exporter import RunReportExporter
from leaflet_ingest.jobs.runner import IngestRunner, run_ingest
from leaflet_ingest.logging_conf import setup_logging
from leaflet_ingest.parse.models import WaitStrategy, utc_now
from leaflet_ingest.store.base import build_sink

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Retail leaflet ingestion")

    parser.add_argument(
        "--chain",
        action="append",
        choices=sorted(STRATEGIES),
        help="Chain to ingest (repeatable, default: all)",
    )
    parser.add_argument(
        "--url",
        action="append",
        help="Decode and upsert this leaflet URL without fetching (requires a single --chain)",
    )

    # Storage
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Write to the local SQLite database instead of Supabase",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help=f"SQLite database path for --dry-run (default: {config.LOCAL_DB})",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete all stored leaflets before the run",
    )

    # Fetching
    parser.add_argument(
        "--sequential",
        action="store_true",
        help="Run chains one after another instead of concurrently",
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=None,
        help=f"Navigation/write timeout in ms (default: {config.TIMEOUT_MS})",
    )
    parser.add_argument(
        "--user-agent",
        default=None,
        help="User-Agent sent on requests",
    )
    parser.add_argument(
        "--wait-strategy",
        choices=[w.value for w in WaitStrategy],
        default=None,
        help=f"Default page wait strategy (default: {config.WAIT_STRATEGY})",
    )

    # Output
    parser.add_argument(
        "--report-file",
        type=Path,
        default=None,
        help="Append the run report as a JSON line to this file",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 2 if any chain failed or any record was not written",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Verbose (DEBUG) logging",
    )

    args = parser.parse_args(argv)
    if args.url and (not args.chain or len(args.chain) != 1):
        parser.error("--url requires exactly one --chain")
    return args


async def run(args: argparse.Namespace) -> RunReport:
    """Open the sink, run the ingestion and close everything."""
    strategies = get_strategies(args.chain)
    wait_strategy = WaitStrategy(args.wait_strategy) if args.wait_strategy else None
    sink = build_sink("sqlite" if args.dry_run else "supabase", args.db_path, args.timeout_ms)

    await sink.open()
    try:
        if not args.dry_run and not await sink.test_connection():
            raise RuntimeError("Supabase connection failed")
        if args.reset:
            removed = await sink.clear()
            logger.info(f"Reset: removed {removed} leaflet records")

        if args.url:
            async with PageFetcher(timeout_ms=args.timeout_ms) as fetcher:
                runner = IngestRunner(fetcher, sink, timeout_ms=args.timeout_ms)
                report = RunReport(run_id=str(uuid.uuid4()), started_at=utc_now())
                report.chains.append(await runner.ingest_urls(strategies[0], args.url))
                report.finish(utc_now())
        else:
            report = await run_ingest(
                strategies,
                sink,
                concurrent=not args.sequential,
                timeout_ms=args.timeout_ms,
                user_agent=args.user_agent,
                wait_strategy=wait_strategy,
            )
    finally:
        await sink.close()

    if args.report_file:
        await RunReportExporter(args.report_file).export(report)
    return report


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    setup_logging()
    args = parse_args(argv)

    if args.dev:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        Config.validate(require_supabase=not args.dry_run)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("Leaflet ingestion starting")
    logger.info(f"Chains: {', '.join(args.chain or sorted(STRATEGIES))}")
    logger.info(f"Sink: {'sqlite (dry-run)' if args.dry_run else 'supabase'}")
    logger.info(f"Timeout: {args.timeout_ms or config.TIMEOUT_MS} ms")
    logger.info(f"Concurrent chains: {not args.sequential}")
    logger.info("=" * 60)

    try:
        report = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    report.log()
    if args.strict and not report.ok:
        sys.exit(2)


if __name__ == "__main__":
    main()
