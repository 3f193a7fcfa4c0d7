"""
Tests for the sync dispatcher and its delivery ledger.

Covers:
- Partial-batch resilience (one failing item never blocks the others)
- No loss across repeated failing syncs
- Backoff deferral and dead-lettering after max attempts
- Weights attached at sync time, referral flag on click-throughs
- Immediate sync trigger and periodic scheduling

Usage:
    pytest tests/test_dispatcher.py -v
"""

from unittest.mock import MagicMock, patch

import pytest

from src.storage.kv_store import KeyValueStore
from src.tracking.delivery_ledger import DeliveryLedger
from src.tracking.dispatcher import SyncDispatcher
from src.tracking.event_store import KIND_CLICK_THROUGH, KIND_IMPRESSION, LocalEventStore
from src.tracking.ingestion_client import IngestionError
from src.tracking.tracking_models import ClickThroughRecord, ImpressionRecord, TrackingMetadata


class ManualClock:
    """Clock the test moves explicitly."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


def impression(entity_id: int, impression_type: str = "view") -> ImpressionRecord:
    return ImpressionRecord(
        entity_id=entity_id,
        source_component="book-card",
        page_context="/discover",
        timestamp_ms=1000 + entity_id,
        impression_type=impression_type,
    )


def click(entity_id: int, domain=None) -> ClickThroughRecord:
    return ClickThroughRecord(
        entity_id=entity_id,
        source_component="book-details",
        referrer_context=f"/books/{entity_id}",
        timestamp_ms=2000 + entity_id,
        metadata=TrackingMetadata(referral_domain=domain),
    )


# =============================================================================
# Delivery ledger
# =============================================================================

class TestDeliveryLedger:
    """Attempt counting and capped exponential backoff."""

    def setup_method(self):
        self.ledger = DeliveryLedger(
            KeyValueStore(memory_only=True),
            max_attempts=3,
            base_delay_seconds=30,
            max_delay_seconds=100,
        )

    def test_backoff_doubles_and_caps(self):
        assert self.ledger.backoff_seconds(0) == 0.0
        assert self.ledger.backoff_seconds(1) == 30
        assert self.ledger.backoff_seconds(2) == 60
        assert self.ledger.backoff_seconds(3) == 100
        assert self.ledger.backoff_seconds(10) == 100

    def test_fingerprint_is_stable_and_kind_specific(self):
        payload = impression(1).to_dict()
        assert DeliveryLedger.fingerprint(KIND_IMPRESSION, payload) == DeliveryLedger.fingerprint(
            KIND_IMPRESSION, dict(reversed(list(payload.items())))
        )
        assert DeliveryLedger.fingerprint(KIND_IMPRESSION, payload) != DeliveryLedger.fingerprint(
            KIND_CLICK_THROUGH, payload
        )
        assert len(DeliveryLedger.fingerprint(KIND_IMPRESSION, payload)) == 16

    def test_failure_schedules_next_attempt(self):
        assert self.ledger.record_failure("fp", now_ms=0, error="timeout") is False

        entry = self.ledger.get("fp")
        assert entry.attempts == 1
        assert entry.next_attempt_ms == 30_000
        assert entry.last_error == "timeout"
        assert not self.ledger.is_due("fp", 29_999)
        assert self.ledger.is_due("fp", 30_000)

    def test_exhausted_after_max_attempts(self):
        assert self.ledger.record_failure("fp", 0) is False
        assert self.ledger.record_failure("fp", 0) is False
        assert self.ledger.record_failure("fp", 0) is True
        assert self.ledger.get("fp") is None

    def test_unbounded_never_exhausts(self):
        ledger = DeliveryLedger(KeyValueStore(memory_only=True), max_attempts=None)
        assert not any(ledger.record_failure("fp", 0) for _ in range(50))
        assert ledger.get("fp").attempts == 50

    def test_clear(self):
        self.ledger.record_failure("fp", 0)
        self.ledger.clear("fp")
        assert self.ledger.size() == 0
        assert self.ledger.is_due("fp", 0)

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            DeliveryLedger(KeyValueStore(memory_only=True), max_attempts=0)

    def test_corrupted_ledger_resets(self):
        kv = KeyValueStore(memory_only=True)
        kv.set_raw("tracking:delivery_ledger", "not json")
        ledger = DeliveryLedger(kv)
        assert ledger.size() == 0


# =============================================================================
# Sync dispatcher
# =============================================================================

class TestSyncDispatcher:
    """One delivery pass over the local queue."""

    def setup_method(self):
        self.clock = ManualClock()
        self.kv = KeyValueStore(memory_only=True)
        self.store = LocalEventStore(self.kv, clock=self.clock)
        self.client = MagicMock()
        self.ledger = DeliveryLedger(self.kv, max_attempts=None, base_delay_seconds=30, max_delay_seconds=300)
        self.dispatcher = SyncDispatcher(self.store, self.client, self.ledger)
        # Keep click-through appends from spawning background syncs
        self.store.set_sync_trigger(None)

    def test_empty_queue_is_noop(self):
        report = self.dispatcher.sync()

        assert report.is_noop
        self.client.submit_impression.assert_not_called()
        assert self.store.last_sync_ms is None

    def test_all_sent_clears_queue(self):
        self.store.append_impression(impression(1))
        self.store.append_click_through(click(1))

        report = self.dispatcher.sync()

        assert report.impressions_sent == 1
        assert report.click_throughs_sent == 1
        assert report.failed == 0
        assert self.store.read_impressions() == []
        assert self.store.read_click_throughs() == []
        assert self.store.last_sync_ms == self.clock.now

    def test_partial_batch_resilience(self):
        records = [impression(1), impression(2), impression(3)]
        for record in records:
            self.store.append_impression(record)

        def submit(record, weight):
            if record.entity_id == 2:
                raise IngestionError("server error", status_code=500)
            return {"id": record.entity_id}

        self.client.submit_impression.side_effect = submit

        report = self.dispatcher.sync()

        assert self.client.submit_impression.call_count == 3
        assert report.impressions_sent == 2
        assert report.impressions_failed == 1
        assert self.store.read_impressions() == [records[1]]

    def test_no_loss_across_failing_syncs(self):
        records = [impression(1), impression(2, "detail-expand")]
        for record in records:
            self.store.append_impression(record)
        self.store.append_click_through(click(5))
        self.client.submit_impression.side_effect = IngestionError("offline")
        self.client.submit_click_through.side_effect = IngestionError("offline")

        for _ in range(6):
            self.dispatcher.sync()
            self.clock.advance(3600)

        assert self.store.read_impressions() == records
        assert self.store.read_click_throughs() == [click(5)]
        assert self.store.read_dead_letters() == []
        assert self.store.last_sync_ms is None

        self.client.submit_impression.side_effect = None
        self.client.submit_click_through.side_effect = None
        report = self.dispatcher.sync()

        assert report.impressions_sent == 2
        assert report.click_throughs_sent == 1
        assert self.store.read_impressions() == []
        assert self.ledger.size() == 0

    def test_failed_item_deferred_during_backoff(self):
        self.store.append_impression(impression(1))
        self.client.submit_impression.side_effect = IngestionError("timeout")
        self.dispatcher.sync()

        self.clock.advance(10)
        report = self.dispatcher.sync()

        assert report.deferred == 1
        assert self.client.submit_impression.call_count == 1

        self.clock.advance(25)
        self.dispatcher.sync()
        assert self.client.submit_impression.call_count == 2

    def test_dead_letter_after_max_attempts(self):
        self.dispatcher.ledger = DeliveryLedger(self.kv, max_attempts=2, base_delay_seconds=0, max_delay_seconds=0)
        self.store.append_click_through(click(9, domain="amazon.com"))
        self.client.submit_click_through.side_effect = IngestionError("gone", status_code=410)

        first = self.dispatcher.sync()
        second = self.dispatcher.sync()

        assert first.dead_lettered == 0
        assert second.dead_lettered == 1
        assert self.store.read_click_throughs() == []
        letters = self.store.read_dead_letters()
        assert letters[0]["kind"] == KIND_CLICK_THROUGH
        assert letters[0]["record"]["entityId"] == 9

    def test_record_delivered_by_overlapping_run_not_dead_lettered(self):
        self.dispatcher.ledger = DeliveryLedger(self.kv, max_attempts=1, base_delay_seconds=0, max_delay_seconds=0)
        record = impression(4)
        self.store.append_impression(record)

        def fail_after_other_run_delivers(submitted, weight):
            self.store.remove_impressions([submitted])
            raise IngestionError("timeout")

        self.client.submit_impression.side_effect = fail_after_other_run_delivers

        report = self.dispatcher.sync()

        assert report.impressions_failed == 1
        assert report.dead_lettered == 0
        assert self.store.read_impressions() == []
        assert self.store.read_dead_letters() == []

    def test_weight_attached_at_sync_time(self):
        self.store.append_impression(impression(1, "detail-expand"))
        self.store.append_impression(impression(2, "card-click"))

        self.dispatcher.sync()

        weights = {c.args[0].entity_id: c.args[1] for c in self.client.submit_impression.call_args_list}
        assert weights == {1: 0.25, 2: 0.5}

    def test_referral_click_submitted_as_referral(self):
        self.store.append_click_through(click(3, domain="bookshop.org"))

        self.dispatcher.sync()

        submitted = self.client.submit_click_through.call_args.args[0]
        assert submitted.is_referral
        assert submitted.metadata.referral_domain == "bookshop.org"

    def test_unexpected_client_error_is_contained(self):
        self.store.append_impression(impression(1))
        self.client.submit_impression.side_effect = RuntimeError("boom")

        report = self.dispatcher.sync()

        assert report.impressions_failed == 1
        assert len(self.store.read_impressions()) == 1

    def test_store_failure_never_raises(self):
        with patch.object(self.store, "read_impressions", side_effect=RuntimeError("broken")):
            report = self.dispatcher.sync()
        assert report.is_noop

    def test_status(self):
        self.store.append_impression(impression(1))
        self.dispatcher.sync()

        status = self.dispatcher.get_status()

        assert status["running"] is False
        assert status["total_runs"] == 1
        assert status["pending"] == {"impressions": 0, "click_throughs": 0}
        assert status["last_report"]["impressions_sent"] == 1
        assert status["last_sync_ms"] == self.clock.now


class TestSyncTriggers:
    """Immediate and periodic sync."""

    def setup_method(self):
        self.store = LocalEventStore(KeyValueStore(memory_only=True))
        self.client = MagicMock()

    def test_click_through_requests_immediate_sync(self):
        with patch.object(SyncDispatcher, "request_immediate_sync") as trigger:
            SyncDispatcher(self.store, self.client)
            self.store.append_click_through(click(1))
        trigger.assert_called_once_with()

    def test_immediate_sync_runs_in_background(self):
        dispatcher = SyncDispatcher(self.store, self.client)
        self.store.set_sync_trigger(None)
        self.store.append_click_through(click(1))

        thread = dispatcher.request_immediate_sync()
        thread.join(timeout=5)

        assert thread.daemon
        self.client.submit_click_through.assert_called_once()
        assert self.store.read_click_throughs() == []

    def test_start_and_stop_scheduler(self):
        dispatcher = SyncDispatcher(self.store, self.client)
        dispatcher.start(interval_minutes=60)
        try:
            assert dispatcher.is_running
            assert dispatcher.get_status()["next_run_at"] is not None
        finally:
            dispatcher.stop(wait=False)
        assert not dispatcher.is_running
