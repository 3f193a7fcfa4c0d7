"""
Book Rating Sentiment Service
=============================

Loads per-criterion vote counts for a book from `ratings` and classifies
them with the thresholds currently stored in the database.

Each criterion column holds 1 (thumbs up), -1 (thumbs down) or 0 / NULL
(no opinion). Only up and down votes count toward the total.
"""

import logging
from typing import List, Optional, Sequence

from .aggregator import SentimentAggregator
from .sentiment_models import CriterionCounts, SentimentResult
from .threshold_repository import ThresholdRepository
from .thresholds import DEFAULT_CRITERIA

logger = logging.getLogger(__name__)

POSITIVE_VOTE = 1
NEGATIVE_VOTE = -1


def load_criterion_counts(
    conn,
    book_id: int,
    criteria: Sequence[str] = DEFAULT_CRITERIA,
) -> List[CriterionCounts]:
    """
    Count up / down votes per criterion for one book.

    Criterion names become column names, so only the known criteria are accepted.
    """
    unknown = [c for c in criteria if c not in DEFAULT_CRITERIA]
    if unknown:
        raise ValueError(f"Unknown rating criteria: {', '.join(unknown)}")
    if not criteria:
        return []

    selects = []
    for criterion in criteria:
        selects.append(f"COUNT(*) FILTER (WHERE {criterion} = {POSITIVE_VOTE})")
        selects.append(f"COUNT(*) FILTER (WHERE {criterion} = {NEGATIVE_VOTE})")

    with conn.cursor() as cur:
        cur.execute(f"""
            SELECT {', '.join(selects)}
            FROM ratings
            WHERE book_id = %s
        """, (book_id,))
        row = cur.fetchone() or (0,) * len(selects)

    return [
        CriterionCounts(
            criterion_name=criterion,
            positive=int(row[2 * i] or 0),
            negative=int(row[2 * i + 1] or 0),
        )
        for i, criterion in enumerate(criteria)
    ]


class RatingSentimentService:
    """
    Per-book sentiment on top of a database connection.

    Args:
        conn: psycopg2 connection (caller owns it)
        aggregator: Optional pre-built aggregator; loaded from the thresholds table if None
    """

    def __init__(self, conn, aggregator: Optional[SentimentAggregator] = None):
        self.conn = conn
        self._aggregator = aggregator

    @property
    def aggregator(self) -> SentimentAggregator:
        if self._aggregator is None:
            thresholds = ThresholdRepository(self.conn).load_threshold_set()
            if len(thresholds) == 0:
                logger.warning("No valid sentiment thresholds stored; every criterion will be undetermined")
            self._aggregator = SentimentAggregator(thresholds)
        return self._aggregator

    def for_book(self, book_id: int, criteria: Sequence[str] = DEFAULT_CRITERIA) -> List[SentimentResult]:
        counts = load_criterion_counts(self.conn, book_id, criteria)
        return self.aggregator.aggregate(counts)
