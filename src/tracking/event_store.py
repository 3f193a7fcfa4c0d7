"""
Local Event Store
=================

Durable queue of impressions and click-throughs waiting to be delivered.
Local storage is the only copy of an event until the ingestion endpoint
confirms it, so every operation here degrades instead of raising: a
corrupted or missing key reads as empty, a malformed entry is skipped.

An unreadable key is not an empty one. When the backend cannot be read,
appends and removals return without writing so the stored queue is never
replaced by a partial view of it.

Keys (under the key-value store prefix):
    tracking:book_impressions       pending impressions (JSON array)
    tracking:book_click_throughs    pending click-throughs (JSON array)
    tracking:last_impression_sync   epoch ms of the last confirmed sync
    tracking:dead_letters           records that exhausted their retries

Usage:
    store = LocalEventStore(KeyValueStore(memory_only=True))
    store.append_impression(record)
    pending = store.read_impressions()
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..storage.kv_store import KeyValueStore, StoreUnavailableError
from .tracking_models import ClickThroughRecord, ImpressionRecord, MalformedRecordError
from .weighting import EngagementPolicy

logger = logging.getLogger(__name__)

IMPRESSIONS_KEY = "tracking:book_impressions"
CLICK_THROUGHS_KEY = "tracking:book_click_throughs"
LAST_SYNC_KEY = "tracking:last_impression_sync"
DEAD_LETTERS_KEY = "tracking:dead_letters"

KIND_IMPRESSION = "impression"
KIND_CLICK_THROUGH = "click_through"

AnyRecord = Union[ImpressionRecord, ClickThroughRecord]

_PARSERS = {
    KIND_IMPRESSION: ImpressionRecord.from_dict,
    KIND_CLICK_THROUGH: ClickThroughRecord.from_dict,
}
_KEYS = {
    KIND_IMPRESSION: IMPRESSIONS_KEY,
    KIND_CLICK_THROUGH: CLICK_THROUGHS_KEY,
}


def now_ms() -> int:
    return int(time.time() * 1000)


class LocalEventStore:
    """
    Pending-event queue on top of a KeyValueStore.

    Constructed once per session and shared by reference with the tracker
    and the dispatcher.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        policy: Optional[EngagementPolicy] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.kv = kv
        self.policy = policy or EngagementPolicy()
        self.clock = clock
        self._lock = threading.RLock()
        self._sync_trigger: Optional[Callable[[], None]] = None

    def set_sync_trigger(self, trigger: Optional[Callable[[], None]]) -> None:
        """Register the callback fired after every click-through append."""
        self._sync_trigger = trigger

    # =========================================================================
    # RAW ACCESS
    # =========================================================================

    def _load_entries(self, key: str) -> List[Any]:
        """
        Stored JSON array for `key`, for a read-modify-write.

        Absent or corrupted values load as empty so the next write repairs
        the key.

        Raises:
            StoreUnavailableError: the backend could not be read; callers must not write
        """
        raw = self.kv.get_raw(key)
        if not raw:
            return []

        try:
            entries = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"Corrupted local storage under {key}, treating as empty: {e}")
            return []

        if not isinstance(entries, list):
            logger.error(f"Local storage under {key} is not a list, treating as empty")
            return []
        return entries

    def _read_entries(self, key: str) -> List[Any]:
        """Read-only view of `key`; empty while the backend is unavailable."""
        try:
            return self._load_entries(key)
        except StoreUnavailableError as e:
            logger.error(f"Error retrieving {key} from local storage: {e}")
            return []

    def _write_entries(self, key: str, entries: List[Any]) -> bool:
        try:
            return self.kv.set_raw(key, json.dumps(entries))
        except StoreUnavailableError as e:
            logger.error(f"Error writing {key} to local storage: {e}")
            return False

    @staticmethod
    def _parse_entries(kind: str, entries: List[Any]) -> List[AnyRecord]:
        parse = _PARSERS[kind]
        records = []
        for entry in entries:
            try:
                records.append(parse(entry))
            except (MalformedRecordError, ValueError) as e:
                logger.warning(f"Skipping malformed {kind} entry: {e}")
        return records

    def _read_records(self, kind: str) -> List[AnyRecord]:
        return self._parse_entries(kind, self._read_entries(_KEYS[kind]))

    # =========================================================================
    # APPEND
    # =========================================================================

    def append_impression(self, record: ImpressionRecord) -> bool:
        """
        Queue an impression unless an equivalent one is already pending.

        Returns:
            True if the record was written; False if coalesced, or if local
            storage could not be read or written (the queue is left untouched)
        """
        with self._lock:
            try:
                entries = self._load_entries(IMPRESSIONS_KEY)
            except StoreUnavailableError as e:
                logger.error(
                    f"Impression for book {record.entity_id} not queued, local storage unreadable: {e}",
                    extra={"entity_id": record.entity_id, "event_type": record.impression_type.value},
                )
                return False

            pending = self._parse_entries(KIND_IMPRESSION, entries)
            if self.policy.is_duplicate(record, pending):
                logger.debug(
                    f"Coalesced duplicate impression for book {record.entity_id}",
                    extra={"entity_id": record.entity_id, "event_type": record.impression_type.value},
                )
                return False

            entries.append(record.to_dict())
            return self._write_entries(IMPRESSIONS_KEY, entries)

    def append_click_through(self, record: ClickThroughRecord) -> bool:
        """
        Queue a click-through (never coalesced) and request an immediate sync.

        The sync trigger is fire-and-forget; its failure never reaches the caller.
        """
        with self._lock:
            try:
                entries = self._load_entries(CLICK_THROUGHS_KEY)
            except StoreUnavailableError as e:
                logger.error(
                    f"Click-through for book {record.entity_id} not queued, local storage unreadable: {e}",
                    extra={"entity_id": record.entity_id, "event_type": KIND_CLICK_THROUGH},
                )
                return False
            entries.append(record.to_dict())
            written = self._write_entries(CLICK_THROUGHS_KEY, entries)

        trigger = self._sync_trigger
        if written and trigger is not None:
            try:
                trigger()
            except Exception as e:
                logger.error(f"Immediate sync trigger failed: {e}")
        return written

    # =========================================================================
    # READ
    # =========================================================================

    def read_impressions(self) -> List[ImpressionRecord]:
        return self._read_records(KIND_IMPRESSION)

    def read_click_throughs(self) -> List[ClickThroughRecord]:
        return self._read_records(KIND_CLICK_THROUGH)

    def pending_counts(self) -> Dict[str, int]:
        return {
            "impressions": len(self.read_impressions()),
            "click_throughs": len(self.read_click_throughs()),
        }

    # =========================================================================
    # REMOVE
    # =========================================================================

    def _remove(
        self,
        kind: str,
        processed: Sequence[AnyRecord],
        dead_letter_reason: Optional[str] = None,
    ) -> List[AnyRecord]:
        """
        Drop entries equal (every field, timestamp included) to a processed record.

        Unparseable entries are moved to the dead-letter list on the way, and
        so are the removed records when `dead_letter_reason` is given. Dead
        letters are written before the queue is rewritten, so a failure in
        between can leave a record both queued and parked but never neither.

        Returns:
            The queued records actually removed; empty when none matched or
            when local storage could not be read or rewritten
        """
        if not processed:
            return []

        parse = _PARSERS[kind]
        key = _KEYS[kind]
        with self._lock:
            try:
                entries = self._load_entries(key)
            except StoreUnavailableError as e:
                logger.error(f"Processed {kind} data left in place, local storage unreadable: {e}")
                return []

            kept = []
            removed = []
            parked = []
            for entry in entries:
                try:
                    record = parse(entry)
                except (MalformedRecordError, ValueError) as e:
                    parked.append((kind, entry, f"malformed: {e}"))
                    continue
                if record in processed:
                    removed.append(record)
                else:
                    kept.append(entry)

            if dead_letter_reason is not None:
                parked.extend((kind, r.to_dict(), dead_letter_reason) for r in removed)

            if not removed and not parked:
                return []
            if parked and not self._append_dead_letters(parked):
                return []
            if not self._write_entries(key, kept):
                return []
            return removed

    def remove_impressions(self, processed: Sequence[ImpressionRecord]) -> int:
        return len(self._remove(KIND_IMPRESSION, processed))

    def remove_click_throughs(self, processed: Sequence[ClickThroughRecord]) -> int:
        return len(self._remove(KIND_CLICK_THROUGH, processed))

    # =========================================================================
    # DEAD LETTERS
    # =========================================================================

    def _append_dead_letters(self, items: List[Tuple[str, Any, str]]) -> bool:
        try:
            entries = self._load_entries(DEAD_LETTERS_KEY)
        except StoreUnavailableError as e:
            logger.error(f"{len(items)} dead letter(s) not recorded, local storage unreadable: {e}")
            return False
        dead_at = self.clock()
        for kind, payload, reason in items:
            entries.append({"kind": kind, "record": payload, "reason": reason, "deadAt": dead_at})
        return self._write_entries(DEAD_LETTERS_KEY, entries)

    def move_to_dead_letter(
        self,
        kind: str,
        records: Sequence[AnyRecord],
        reason: str = "max delivery attempts exceeded",
    ) -> int:
        """
        Remove records from the pending queue and park them as dead letters.

        Only records still queued are parked; one already removed by an
        overlapping delivery is not filed again.

        Returns:
            Number of records dead-lettered
        """
        if not records:
            return 0
        removed = self._remove(kind, records, dead_letter_reason=reason)
        if removed:
            logger.warning(f"Dead-lettered {len(removed)} {kind} record(s): {reason}")
        return len(removed)

    def read_dead_letters(self) -> List[Dict[str, Any]]:
        return [e for e in self._read_entries(DEAD_LETTERS_KEY) if isinstance(e, dict)]

    # =========================================================================
    # SYNC BOOKKEEPING
    # =========================================================================

    @property
    def last_sync_ms(self) -> Optional[int]:
        try:
            raw = self.kv.get_raw(LAST_SYNC_KEY)
            return int(raw) if raw else None
        except (TypeError, ValueError, StoreUnavailableError) as e:
            logger.warning(f"Unreadable last sync timestamp: {e}")
            return None

    def mark_synced(self, timestamp_ms: Optional[int] = None) -> None:
        try:
            self.kv.set_raw(LAST_SYNC_KEY, str(timestamp_ms if timestamp_ms is not None else self.clock()))
        except StoreUnavailableError as e:
            logger.error(f"Error updating last sync timestamp: {e}")
