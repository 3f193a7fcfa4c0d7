"""
Sync Dispatcher
===============

Moves queued engagement records from the LocalEventStore to the ingestion
endpoint.

Runs:
    - periodically (APScheduler interval job, default every 5 minutes)
    - immediately after every click-through (daemon thread, fire-and-forget)

Overlapping runs are tolerated rather than prevented. Removal always works
on the explicit set of records confirmed by *this* run, so a run that read a
slightly stale queue only re-submits unconfirmed items. The server therefore
has to accept duplicate submissions.

Usage:
    dispatcher = SyncDispatcher(store, IngestionClient("https://api.example.com"))
    dispatcher.start(interval_minutes=5)
    ...
    dispatcher.stop()
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .delivery_ledger import DeliveryLedger
from .event_store import KIND_CLICK_THROUGH, KIND_IMPRESSION, LocalEventStore
from .ingestion_client import IngestionClient
from .tracking_models import ClickThroughRecord, ImpressionRecord

logger = logging.getLogger(__name__)

# Per-record delivery outcomes
SENT = "sent"
FAILED = "failed"
DEAD = "dead"
DEFERRED = "deferred"


@dataclass
class SyncReport:
    """Outcome of a single dispatcher run."""
    started_at: datetime = field(default_factory=datetime.utcnow)
    impressions_sent: int = 0
    impressions_failed: int = 0
    click_throughs_sent: int = 0
    click_throughs_failed: int = 0
    deferred: int = 0           # still inside their backoff window
    dead_lettered: int = 0
    duration_seconds: float = 0.0

    @property
    def is_noop(self) -> bool:
        return (
            self.impressions_sent + self.impressions_failed
            + self.click_throughs_sent + self.click_throughs_failed
            + self.deferred
        ) == 0

    @property
    def failed(self) -> int:
        return self.impressions_failed + self.click_throughs_failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "impressions_sent": self.impressions_sent,
            "impressions_failed": self.impressions_failed,
            "click_throughs_sent": self.click_throughs_sent,
            "click_throughs_failed": self.click_throughs_failed,
            "deferred": self.deferred,
            "dead_lettered": self.dead_lettered,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class SyncDispatcher:
    """
    Flushes the local event queue to the ingestion endpoint.

    Args:
        store: Shared LocalEventStore
        client: IngestionClient for the server
        ledger: Retry bookkeeping; defaults to one on the store's key-value backend
    """

    def __init__(
        self,
        store: LocalEventStore,
        client: IngestionClient,
        ledger: Optional[DeliveryLedger] = None,
    ):
        self.store = store
        self.client = client
        self.ledger = ledger or DeliveryLedger(store.kv)
        self._scheduler: Optional[BackgroundScheduler] = None
        self._last_report: Optional[SyncReport] = None
        self._total_runs = 0

        store.set_sync_trigger(self.request_immediate_sync)

    # =========================================================================
    # SYNC
    # =========================================================================

    def _deliver(self, kind: str, record, submit, now: int) -> str:
        """
        Try one record.

        Returns:
            One of SENT, FAILED (stays queued), DEAD (attempts exhausted),
            DEFERRED (still backing off, not attempted)
        """
        fingerprint = self.ledger.fingerprint(kind, record.to_dict())
        if not self.ledger.is_due(fingerprint, now):
            return DEFERRED

        try:
            submit()
        except Exception as e:
            logger.warning(
                f"Failed to sync {kind} for book {record.entity_id}: {e}",
                extra={"entity_id": record.entity_id, "event_type": kind},
            )
            exhausted = self.ledger.record_failure(fingerprint, now, str(e))
            return DEAD if exhausted else FAILED

        self.ledger.clear(fingerprint)
        return SENT

    def sync(self) -> SyncReport:
        """
        Run one delivery pass. Never raises.

        Returns:
            SyncReport with per-kind sent/failed counts
        """
        report = SyncReport()
        start = time.monotonic()

        try:
            impressions = self.store.read_impressions()
            click_throughs = self.store.read_click_throughs()

            if not impressions and not click_throughs:
                return report

            now = self.store.clock()
            sent_impressions: List[ImpressionRecord] = []
            dead_impressions: List[ImpressionRecord] = []
            sent_clicks: List[ClickThroughRecord] = []
            dead_clicks: List[ClickThroughRecord] = []

            for impression in impressions:
                weight = self.store.policy.weight_for(impression.impression_type)
                outcome = self._deliver(
                    KIND_IMPRESSION,
                    impression,
                    lambda: self.client.submit_impression(impression, weight),
                    now,
                )
                if outcome == SENT:
                    sent_impressions.append(impression)
                elif outcome == DEFERRED:
                    report.deferred += 1
                else:
                    report.impressions_failed += 1
                    if outcome == DEAD:
                        dead_impressions.append(impression)

            for click in click_throughs:
                outcome = self._deliver(
                    KIND_CLICK_THROUGH,
                    click,
                    lambda: self.client.submit_click_through(click),
                    now,
                )
                if outcome == SENT:
                    sent_clicks.append(click)
                elif outcome == DEFERRED:
                    report.deferred += 1
                else:
                    report.click_throughs_failed += 1
                    if outcome == DEAD:
                        dead_clicks.append(click)

            report.impressions_sent = len(sent_impressions)
            report.click_throughs_sent = len(sent_clicks)

            self.store.remove_impressions(sent_impressions)
            self.store.remove_click_throughs(sent_clicks)

            # A record another run already delivered is not parked
            report.dead_lettered = (
                self.store.move_to_dead_letter(KIND_IMPRESSION, dead_impressions, "max delivery attempts exceeded")
                + self.store.move_to_dead_letter(KIND_CLICK_THROUGH, dead_clicks, "max delivery attempts exceeded")
            )

            if sent_impressions or sent_clicks:
                self.store.mark_synced(now)

            logger.info(
                f"Sync complete: impressions {len(sent_impressions)}/{len(impressions)}, "
                f"click-throughs {len(sent_clicks)}/{len(click_throughs)}, "
                f"deferred {report.deferred}, dead-lettered {report.dead_lettered}"
            )
        except Exception as e:
            logger.error(f"Error syncing with server: {e}", exc_info=True)
        finally:
            report.duration_seconds = time.monotonic() - start
            self._last_report = report
            self._total_runs += 1

        return report

    def request_immediate_sync(self) -> threading.Thread:
        """Start a sync on a daemon thread and return without waiting."""
        thread = threading.Thread(target=self.sync, name="shelfsignal-immediate-sync", daemon=True)
        thread.start()
        return thread

    # =========================================================================
    # PERIODIC SCHEDULING
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self, interval_minutes: float = 5.0) -> None:
        """Register the periodic sync job and start the background scheduler."""
        if self.is_running:
            logger.warning("Sync dispatcher is already running")
            return

        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.sync,
            trigger=IntervalTrigger(seconds=int(interval_minutes * 60)),
            id="engagement_sync",
            name="Shelfsignal Engagement Sync",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Sync dispatcher started: every {interval_minutes} min")

    def stop(self, wait: bool = True) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            logger.info("Sync dispatcher stopped")

    def _next_run_time(self) -> Optional[str]:
        if not self.is_running:
            return None
        job = self._scheduler.get_job("engagement_sync")
        if job is None or job.next_run_time is None:
            return None
        return job.next_run_time.isoformat()

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "next_run_at": self._next_run_time(),
            "total_runs": self._total_runs,
            "last_report": self._last_report.to_dict() if self._last_report else None,
            "pending": self.store.pending_counts(),
            "dead_letters": len(self.store.read_dead_letters()),
            "ledger_entries": self.ledger.size(),
            "last_sync_ms": self.store.last_sync_ms,
        }
