"""
Delivery Ledger
===============

Per-record failure bookkeeping for the sync dispatcher: attempt counts,
exponential backoff and the dead-letter threshold.

Entries are keyed by a fingerprint of the full serialized record, so a
freshly queued event that merely looks like a failing one starts clean.
Delivered records have their entry cleared.
"""

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

LEDGER_KEY = "tracking:delivery_ledger"


@dataclass
class DeliveryAttempt:
    """Failure history for one queued record."""
    attempts: int
    next_attempt_ms: int
    last_error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"attempts": self.attempts, "nextAttemptMs": self.next_attempt_ms, "lastError": self.last_error}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeliveryAttempt":
        return cls(
            attempts=int(data.get("attempts", 0)),
            next_attempt_ms=int(data.get("nextAttemptMs", 0)),
            last_error=str(data.get("lastError", "")),
        )


class DeliveryLedger:
    """
    Tracks failed deliveries with capped exponential backoff.

    Args:
        kv: Backing key-value store (same one as the event queue)
        max_attempts: Failures before a record is dead-lettered (None = never)
        base_delay_seconds: Delay after the first failure
        max_delay_seconds: Backoff ceiling
    """

    def __init__(
        self,
        kv: KeyValueStore,
        max_attempts: Optional[int] = 10,
        base_delay_seconds: float = 30.0,
        max_delay_seconds: float = 3600.0,
    ):
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1 (or None for unbounded)")
        self.kv = kv
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self._lock = threading.RLock()

    @staticmethod
    def fingerprint(kind: str, payload: Dict[str, Any]) -> str:
        """
        Stable identifier for a serialized record.

        Returns:
            16-character hex hash
        """
        data = json.dumps([kind, payload], sort_keys=True, default=str)
        return hashlib.sha256(data.encode()).hexdigest()[:16]

    def _load(self) -> Dict[str, DeliveryAttempt]:
        raw = self.kv.get_raw(LEDGER_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return {fp: DeliveryAttempt.from_dict(entry) for fp, entry in data.items()}
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Corrupted delivery ledger, resetting: {e}")
            return {}

    def _save(self, entries: Dict[str, DeliveryAttempt]) -> None:
        self.kv.set_raw(LEDGER_KEY, json.dumps({fp: a.to_dict() for fp, a in entries.items()}))

    def backoff_seconds(self, attempts: int) -> float:
        """Delay before the next try after `attempts` consecutive failures."""
        if attempts <= 0:
            return 0.0
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempts - 1)))

    def get(self, fingerprint: str) -> Optional[DeliveryAttempt]:
        with self._lock:
            return self._load().get(fingerprint)

    def is_due(self, fingerprint: str, now_ms: int) -> bool:
        """False while the record is still inside its backoff window."""
        attempt = self.get(fingerprint)
        return attempt is None or now_ms >= attempt.next_attempt_ms

    def record_failure(self, fingerprint: str, now_ms: int, error: str = "") -> bool:
        """
        Count a failed delivery.

        Returns:
            True if the record has now exhausted its attempts
        """
        with self._lock:
            entries = self._load()
            previous = entries.get(fingerprint)
            attempts = (previous.attempts if previous else 0) + 1
            delay_ms = int(self.backoff_seconds(attempts) * 1000)
            entries[fingerprint] = DeliveryAttempt(
                attempts=attempts,
                next_attempt_ms=now_ms + delay_ms,
                last_error=error[:200],
            )

            exhausted = self.max_attempts is not None and attempts >= self.max_attempts
            if exhausted:
                del entries[fingerprint]
            self._save(entries)
            return exhausted

    def clear(self, fingerprint: str) -> None:
        with self._lock:
            entries = self._load()
            if entries.pop(fingerprint, None) is not None:
                self._save(entries)

    def size(self) -> int:
        with self._lock:
            return len(self._load())
