"""
Deduplication & Weighting Policy
================================

Decides whether a new impression coalesces with a pending one, and what
weight each impression type contributes once it reaches the server.

Weights are looked up at sync time, never stored on the record, so the
policy can be changed without rewriting the local queue.
"""

from typing import Dict, Iterable, Mapping, Optional, Tuple

from .tracking_models import ImpressionRecord, ImpressionType


DEFAULT_WEIGHTS: Dict[ImpressionType, float] = {
    ImpressionType.VIEW: 1.0,
    ImpressionType.DETAIL_EXPAND: 0.25,
    ImpressionType.CARD_CLICK: 0.5,
    ImpressionType.REFERRAL_CLICK: 1.0,
}

# Every hover is a distinct signal
NEVER_COALESCED = frozenset({ImpressionType.DETAIL_EXPAND})

DedupKey = Tuple[int, str, str, ImpressionType]


class EngagementPolicy:
    """
    Weight table and coalescing rule for impressions.

    Args:
        weights: Override of DEFAULT_WEIGHTS. Must cover every ImpressionType.
    """

    def __init__(self, weights: Optional[Mapping[ImpressionType, float]] = None):
        table = dict(DEFAULT_WEIGHTS)
        if weights:
            table.update({ImpressionType(k): float(v) for k, v in weights.items()})
        for impression_type, weight in table.items():
            if weight < 0:
                raise ValueError(f"weight for {impression_type.value} cannot be negative")
        self._weights = table

    def weight_for(self, impression_type) -> float:
        """Weight for an impression type (accepts the enum or its string value)."""
        return self._weights[ImpressionType(impression_type)]

    @staticmethod
    def dedup_key(record: ImpressionRecord) -> Optional[DedupKey]:
        """Coalescing key, or None for types that are never coalesced."""
        if record.impression_type in NEVER_COALESCED:
            return None
        return (
            record.entity_id,
            record.source_component,
            record.page_context,
            record.impression_type,
        )

    def is_duplicate(self, record: ImpressionRecord, pending: Iterable[ImpressionRecord]) -> bool:
        """True if `record` should be dropped because an equivalent one is already queued."""
        key = self.dedup_key(record)
        if key is None:
            return False
        return any(self.dedup_key(p) == key for p in pending)


def weight_for(impression_type) -> float:
    """Weight under the default policy."""
    return DEFAULT_WEIGHTS[ImpressionType(impression_type)]
