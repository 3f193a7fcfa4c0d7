"""
Sentiment Aggregation Engine
============================

Maps a criterion's net score and rating count to a sentiment label, gated
by the minimum sample size each label requires.

Classification, per criterion:
    1. no ratings                      -> undetermined (never "mixed")
    2. unknown criterion / bad score   -> undetermined
    3. find the band containing the score (left-closed: a score on a shared
       edge belongs to the band that starts there)
    4. walk from that band toward "mixed"; the first band whose
       required_count the sample meets wins
    5. if even "mixed" is not supported -> undetermined

Step 4 means a 0.92 score with 50 ratings reports very_positive when
overwhelmingly_positive needs 100: the label backs off toward the centre
until the evidence supports it. For a fixed score, more ratings can only
move the label further from the centre.

Stateless and read-only: safe to share across threads.
"""

import logging
import math
from typing import Iterable, List, Optional

from .sentiment_models import CriterionCounts, SentimentLevel, SentimentResult, SentimentThreshold
from .thresholds import ThresholdSet

logger = logging.getLogger(__name__)


def _band_index(rows: List[SentimentThreshold], score: float) -> int:
    """Index of the band holding `score`; out-of-domain scores clamp to the ends."""
    index = 0
    for i, row in enumerate(rows):
        if row.rating_min <= score:
            index = i
        else:
            break
    return index


class SentimentAggregator:
    """
    Classifies per-criterion rating distributions.

    Args:
        thresholds: Validated ThresholdSet (defaults for all standard criteria if None)
    """

    def __init__(self, thresholds: Optional[ThresholdSet] = None):
        self.thresholds = thresholds or ThresholdSet.defaults()

    def classify(self, criterion: str, score: Optional[float], total: int) -> SentimentLevel:
        """
        Sentiment label for one criterion.

        Args:
            criterion: Criterion name, e.g. "enjoyment"
            score: Net score in [-1, 1]
            total: Number of ratings behind the score

        Returns:
            SentimentLevel (UNDETERMINED when the data cannot support a label)
        """
        if total is None or total <= 0:
            return SentimentLevel.UNDETERMINED

        if score is None or (isinstance(score, float) and math.isnan(score)):
            logger.warning(f"No usable score for {criterion} with {total} ratings", extra={"criterion": criterion})
            return SentimentLevel.UNDETERMINED

        rows = self.thresholds.rows_for(criterion)
        if not rows:
            logger.debug(f"No thresholds for criterion {criterion!r}", extra={"criterion": criterion})
            return SentimentLevel.UNDETERMINED

        start = _band_index(rows, score)
        mixed = next(i for i, row in enumerate(rows) if row.sentiment_level == SentimentLevel.MIXED)
        step = 1 if start <= mixed else -1

        for i in range(start, mixed + step, step):
            if total >= rows[i].required_count:
                return rows[i].sentiment_level

        return SentimentLevel.UNDETERMINED

    def evaluate(self, counts: CriterionCounts) -> SentimentResult:
        """Classify from raw thumbs-up / thumbs-down counts."""
        return SentimentResult(
            criterion_name=counts.criterion_name,
            sentiment=self.classify(counts.criterion_name, counts.score, counts.total),
            score=counts.score,
            total=counts.total,
            positive=counts.positive,
            negative=counts.negative,
        )

    def aggregate(self, counts: Iterable[CriterionCounts]) -> List[SentimentResult]:
        """Classify every criterion independently."""
        return [self.evaluate(c) for c in counts]
