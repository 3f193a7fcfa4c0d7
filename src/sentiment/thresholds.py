"""
Sentiment Threshold Configuration & Validation
==============================================

Default bands for every rating criterion and the load-time validation pass
that stored rows must survive before the aggregator will use them.

Invariants per criterion:
- bands partition [-1, 1]: sorted by rating_min, each band starts exactly
  where the previous one ends (no gap, no overlap)
- bands appear in scale order (most negative first), each level at most once
- a MIXED band exists
- required_count never decreases moving away from MIXED

DEFAULT BANDS (score = (positive - negative) / total):
    overwhelmingly_negative  [-1.0, -0.9)   >= 100 ratings
    very_negative            [-0.9, -0.5)   >= 30
    mostly_negative          [-0.5, -0.2)   >= 10
    mixed                    [-0.2,  0.2)   >= 5
    mostly_positive          [ 0.2,  0.5)   >= 10
    very_positive            [ 0.5,  0.9)   >= 30
    overwhelmingly_positive  [ 0.9,  1.0]   >= 100
"""

import logging
from typing import Dict, Iterable, List, Sequence, Tuple

from .sentiment_models import SentimentLevel, SentimentThreshold

logger = logging.getLogger(__name__)

SCORE_DOMAIN: Tuple[float, float] = (-1.0, 1.0)

# Float tolerance when comparing band edges read back from NUMERIC columns
EDGE_TOLERANCE = 1e-9

DEFAULT_CRITERIA: Tuple[str, ...] = ("enjoyment", "writing", "themes", "characters", "worldbuilding")

DEFAULT_BANDS: Tuple[Tuple[SentimentLevel, float, float, int], ...] = (
    (SentimentLevel.OVERWHELMINGLY_NEGATIVE, -1.0, -0.9, 100),
    (SentimentLevel.VERY_NEGATIVE, -0.9, -0.5, 30),
    (SentimentLevel.MOSTLY_NEGATIVE, -0.5, -0.2, 10),
    (SentimentLevel.MIXED, -0.2, 0.2, 5),
    (SentimentLevel.MOSTLY_POSITIVE, 0.2, 0.5, 10),
    (SentimentLevel.VERY_POSITIVE, 0.5, 0.9, 30),
    (SentimentLevel.OVERWHELMINGLY_POSITIVE, 0.9, 1.0, 100),
)


class ThresholdValidationError(ValueError):
    """Stored thresholds violate the band invariants."""

    def __init__(self, criterion: str, message: str):
        self.criterion = criterion
        super().__init__(f"[{criterion}] {message}")


def default_thresholds(criterion: str) -> List[SentimentThreshold]:
    """Fresh default rows for a criterion."""
    return [
        SentimentThreshold(
            criterion_name=criterion,
            sentiment_level=level,
            rating_min=low,
            rating_max=high,
            required_count=count,
        )
        for level, low, high, count in DEFAULT_BANDS
    ]


def validate_criterion_thresholds(rows: Sequence[SentimentThreshold]) -> List[SentimentThreshold]:
    """
    Check one criterion's bands.

    Returns:
        The rows sorted by rating_min

    Raises:
        ThresholdValidationError: on any violated invariant
    """
    if not rows:
        raise ThresholdValidationError("?", "no thresholds")

    criterion = rows[0].criterion_name
    if any(r.criterion_name != criterion for r in rows):
        raise ThresholdValidationError(criterion, "rows belong to different criteria")

    ordered = sorted(rows, key=lambda r: r.rating_min)

    levels = [r.sentiment_level for r in ordered]
    if SentimentLevel.UNDETERMINED in levels:
        raise ThresholdValidationError(criterion, "'undetermined' cannot be stored as a band")
    if len(set(levels)) != len(levels):
        raise ThresholdValidationError(criterion, "a sentiment level appears more than once")
    if SentimentLevel.MIXED not in levels:
        raise ThresholdValidationError(criterion, "missing 'mixed' band")

    ranks = [level.rank for level in levels]
    if ranks != sorted(ranks):
        raise ThresholdValidationError(criterion, "bands are not in scale order")

    for row in ordered:
        if row.rating_min >= row.rating_max:
            raise ThresholdValidationError(
                criterion, f"{row.sentiment_level.value}: rating_min must be below rating_max"
            )
        if row.required_count < 0:
            raise ThresholdValidationError(
                criterion, f"{row.sentiment_level.value}: required_count cannot be negative"
            )

    low, high = SCORE_DOMAIN
    if ordered[0].rating_min > low + EDGE_TOLERANCE:
        raise ThresholdValidationError(criterion, f"scores below {ordered[0].rating_min} are not covered")
    if ordered[-1].rating_max < high - EDGE_TOLERANCE:
        raise ThresholdValidationError(criterion, f"scores above {ordered[-1].rating_max} are not covered")

    for prev, nxt in zip(ordered, ordered[1:]):
        if nxt.rating_min > prev.rating_max + EDGE_TOLERANCE:
            raise ThresholdValidationError(
                criterion,
                f"gap between {prev.sentiment_level.value} and {nxt.sentiment_level.value} "
                f"({prev.rating_max} .. {nxt.rating_min})",
            )
        if nxt.rating_min < prev.rating_max - EDGE_TOLERANCE:
            raise ThresholdValidationError(
                criterion,
                f"{prev.sentiment_level.value} overlaps {nxt.sentiment_level.value}",
            )

    mixed_index = levels.index(SentimentLevel.MIXED)
    for side in (ordered[mixed_index::-1], ordered[mixed_index:]):
        for closer, further in zip(side, side[1:]):
            if further.required_count < closer.required_count:
                raise ThresholdValidationError(
                    criterion,
                    f"{further.sentiment_level.value} requires fewer ratings "
                    f"({further.required_count}) than {closer.sentiment_level.value} "
                    f"({closer.required_count})",
                )

    return ordered


class ThresholdSet:
    """
    Validated bands for every known criterion.

    Read-only once built; the aggregator never mutates it.
    """

    def __init__(self, by_criterion: Dict[str, List[SentimentThreshold]]):
        self._by_criterion = by_criterion

    @classmethod
    def from_rows(cls, rows: Iterable[SentimentThreshold], strict: bool = True) -> "ThresholdSet":
        """
        Group and validate rows.

        Args:
            rows: Threshold rows, any order, any criteria
            strict: Raise on an invalid criterion. When False the criterion is
                logged and left out (it then classifies as undetermined).
        """
        grouped: Dict[str, List[SentimentThreshold]] = {}
        for row in rows:
            grouped.setdefault(row.criterion_name, []).append(row)

        validated = {}
        for criterion, criterion_rows in grouped.items():
            try:
                validated[criterion] = validate_criterion_thresholds(criterion_rows)
            except ThresholdValidationError as e:
                if strict:
                    raise
                logger.error(f"Ignoring invalid sentiment thresholds: {e}", extra={"criterion": criterion})
        return cls(validated)

    @classmethod
    def defaults(cls, criteria: Iterable[str] = DEFAULT_CRITERIA) -> "ThresholdSet":
        rows = [row for criterion in criteria for row in default_thresholds(criterion)]
        return cls.from_rows(rows)

    def criteria(self) -> List[str]:
        return sorted(self._by_criterion)

    def rows_for(self, criterion: str) -> List[SentimentThreshold]:
        """Bands ordered by rating_min (empty for an unknown criterion)."""
        return list(self._by_criterion.get(criterion, []))

    def __contains__(self, criterion: str) -> bool:
        return criterion in self._by_criterion

    def __len__(self) -> int:
        return len(self._by_criterion)
