"""
Keyword Monitor - process entrypoint.

Usage:
    python -m keyword_monitor.main worker          # one worker loop
    python -m keyword_monitor.main producer        # producer only
    python -m keyword_monitor.main run --workers 2 # producer + workers in one process
    python -m keyword_monitor.main scan-once       # queue + one batch, then exit
    python -m keyword_monitor.main init-db         # create tables

Configuration problems (invalid MONITOR_* values, missing Reddit credentials)
abort startup with exit code 2.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List

from .archivist.database import async_session_factory, close_db, init_db
from .archivist.leases import TermLease
from .common.reddit_client import RedditAuthError, close_search_client, get_search_client
from .config.monitoring import MonitoringConfig, MonitoringConfigError, get_monitoring_config
from .config.settings import settings
from .scheduler.events import create_event_publisher
from .scheduler.producer import queue_due_terms, setup_producer, shutdown_producer
from .scheduler.worker import MonitoringWorker

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def configure_logging(level: str = None):
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def _build_workers(config: MonitoringConfig, count: int) -> List[MonitoringWorker]:
    """Build workers sharing one search client (and therefore one token cache)."""
    search_client = get_search_client(settings)
    publisher = create_event_publisher(settings)
    lease = TermLease(async_session_factory, config.lease_duration)
    return [
        MonitoringWorker(
            lease=lease,
            search_client=search_client,
            publisher=publisher,
            session_factory=async_session_factory,
            config=config,
            name=f"Worker-{i + 1}" if count > 1 else "Worker",
        )
        for i in range(count)
    ]


def _install_signal_handlers(stop_event: asyncio.Event):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError) as e:
            # Not supported on every platform (e.g. Windows)
            logger.warning(f"Could not register handler for {sig.name}: {e}")


async def _shutdown(workers: List[MonitoringWorker]):
    if workers:
        await workers[0].publisher.close()
    await close_search_client()
    await close_db()


async def run_workers(config: MonitoringConfig, count: int = 1, with_producer: bool = False):
    workers = _build_workers(config, count)
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    if with_producer:
        setup_producer(config, async_session_factory)

    tasks = [asyncio.create_task(worker.run(), name=worker.name) for worker in workers]
    try:
        await stop_event.wait()
        logger.info("Shutdown requested, stopping workers before their next cycle...")
        for worker in workers:
            worker.stop()
        await asyncio.gather(*tasks)
    finally:
        if with_producer:
            shutdown_producer()
        await _shutdown(workers)


async def run_producer(config: MonitoringConfig):
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    setup_producer(config, async_session_factory)
    try:
        await stop_event.wait()
    finally:
        shutdown_producer()
        await close_db()


async def scan_once(config: MonitoringConfig) -> dict:
    workers = _build_workers(config, 1)
    try:
        queued = await queue_due_terms(async_session_factory, config.rescan_interval)
        result = await workers[0].process_batch()
        return {"queued": queued, **result.to_dict()}
    finally:
        await _shutdown(workers)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keyword_monitor",
        description="Reddit keyword monitoring pipeline",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("worker", help="Run one worker loop")
    subparsers.add_parser("producer", help="Run the producer schedule")
    run_parser = subparsers.add_parser("run", help="Run producer and workers in one process")
    run_parser.add_argument("--workers", type=int, default=1, help="Number of worker loops")
    subparsers.add_parser("scan-once", help="Queue due terms and process a single batch")
    subparsers.add_parser("init-db", help="Create database tables")
    return parser


def main(argv: List[str] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "init-db":
        asyncio.run(init_db())
        print("Database tables created")
        return 0

    try:
        config = get_monitoring_config(settings)
        if args.command != "producer" and not settings.has_reddit_credentials:
            raise RedditAuthError(
                "Reddit API credentials (REDDIT_CLIENT_ID, REDDIT_CLIENT_SECRET) are missing"
            )
        if args.command == "run" and args.workers < 1:
            raise MonitoringConfigError("--workers must be at least 1")
    except (MonitoringConfigError, RedditAuthError) as e:
        logger.critical(f"Cannot start: {e}")
        return EXIT_CONFIG_ERROR

    if args.command == "worker":
        asyncio.run(run_workers(config, count=1))
    elif args.command == "producer":
        asyncio.run(run_producer(config))
    elif args.command == "run":
        asyncio.run(run_workers(config, count=args.workers, with_producer=True))
    elif args.command == "scan-once":
        stats = asyncio.run(scan_once(config))
        print(json.dumps(stats, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
