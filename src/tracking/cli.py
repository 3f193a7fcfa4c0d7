"""
Tracking CLI
============

Operate the local engagement queue from a shell.

Usage:
    python -m src.tracking.cli sync            # One delivery pass
    python -m src.tracking.cli daemon          # Periodic sync until interrupted
    python -m src.tracking.cli status [--json] # Queue + dispatcher status
    python -m src.tracking.cli dead-letters    # Records that exhausted retries
"""

import argparse
import json
import logging
import signal
import sys
from threading import Event

from src.config import configure_logging, get_settings
from src.storage import KeyValueStore
from src.tracking.delivery_ledger import DeliveryLedger
from src.tracking.dispatcher import SyncDispatcher
from src.tracking.event_store import LocalEventStore
from src.tracking.ingestion_client import IngestionClient

logger = logging.getLogger(__name__)


def build_dispatcher() -> SyncDispatcher:
    """Wire store, client and ledger from settings."""
    settings = get_settings()
    kv = KeyValueStore(
        redis_url=settings.storage.redis_url,
        prefix=settings.storage.prefix,
        memory_only=settings.storage.memory_only,
    )
    store = LocalEventStore(kv)
    client = IngestionClient(
        settings.tracking.ingestion_url,
        timeout_seconds=settings.tracking.request_timeout,
    )
    ledger = DeliveryLedger(
        kv,
        max_attempts=settings.tracking.attempt_limit,
        base_delay_seconds=settings.tracking.retry_base_delay,
        max_delay_seconds=settings.tracking.retry_max_delay,
    )
    return SyncDispatcher(store, client, ledger)


def cmd_sync(args) -> int:
    report = build_dispatcher().sync()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(
            f"impressions sent={report.impressions_sent} failed={report.impressions_failed} | "
            f"click-throughs sent={report.click_throughs_sent} failed={report.click_throughs_failed} | "
            f"deferred={report.deferred} dead-lettered={report.dead_lettered}"
        )
    return 0 if report.failed == 0 else 2


def cmd_daemon(args) -> int:
    dispatcher = build_dispatcher()
    interval = args.interval or get_settings().tracking.sync_interval_minutes
    stop = Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping dispatcher...")
        stop.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    dispatcher.start(interval_minutes=interval)
    dispatcher.sync()
    stop.wait()
    dispatcher.stop()
    return 0


def cmd_status(args) -> int:
    status = build_dispatcher().get_status()
    if args.json:
        print(json.dumps(status, indent=2, default=str))
    else:
        pending = status["pending"]
        print(f"Pending impressions:    {pending['impressions']}")
        print(f"Pending click-throughs: {pending['click_throughs']}")
        print(f"Dead letters:           {status['dead_letters']}")
        print(f"Retrying records:       {status['ledger_entries']}")
        print(f"Last sync (ms):         {status['last_sync_ms'] or 'never'}")
    return 0


def cmd_dead_letters(args) -> int:
    letters = build_dispatcher().store.read_dead_letters()
    print(json.dumps(letters, indent=2))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Shelfsignal engagement tracking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    sync_parser = subparsers.add_parser("sync", help="Run one delivery pass")
    sync_parser.add_argument("--json", action="store_true", help="Output as JSON")

    daemon_parser = subparsers.add_parser("daemon", help="Sync periodically until interrupted")
    daemon_parser.add_argument("--interval", type=float, help="Minutes between syncs")

    status_parser = subparsers.add_parser("status", help="Show queue status")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    subparsers.add_parser("dead-letters", help="List dead-lettered records")

    args = parser.parse_args()
    configure_logging(get_settings().logging, verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        return 1

    commands = {
        "sync": cmd_sync,
        "daemon": cmd_daemon,
        "status": cmd_status,
        "dead-letters": cmd_dead_letters,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
