"""
Sentiment Threshold Repository
==============================

Read / administer rows of `rating_sentiment_thresholds`.

Rows are seeded and edited out of band (admin routes, CLI). Every edit is
re-validated against the criterion's full band set before it is committed,
so the aggregator never loads a set with gaps or overlaps. Single-row
`update` covers counts and labels; moving an edge shared by two bands goes
through `replace_criterion`, which swaps the whole set atomically.
"""

import logging
from typing import Any, Iterable, List, Optional, Sequence

from .sentiment_models import SentimentThreshold
from .thresholds import (
    DEFAULT_CRITERIA,
    ThresholdSet,
    ThresholdValidationError,
    default_thresholds,
    validate_criterion_thresholds,
)

logger = logging.getLogger(__name__)

_COLUMNS = "id, criteria_name, sentiment, rating_min, rating_max, required_count, updated_at"

# API field -> column
UPDATABLE_FIELDS = {
    "sentiment_level": "sentiment",
    "rating_min": "rating_min",
    "rating_max": "rating_max",
    "required_count": "required_count",
}


def _row_to_threshold(row) -> SentimentThreshold:
    return SentimentThreshold(
        id=row[0],
        criterion_name=row[1],
        sentiment_level=row[2],
        rating_min=float(row[3]),
        rating_max=float(row[4]),
        required_count=int(row[5]),
        updated_at=row[6],
    )


class ThresholdNotFoundError(LookupError):
    """No threshold row with the requested id."""
    pass


class ThresholdRepository:
    """
    Threshold persistence on a psycopg2 connection.

    The caller owns the connection (pool checkout / release).
    """

    def __init__(self, conn):
        self.conn = conn

    def list_all(self) -> List[SentimentThreshold]:
        """All rows ordered by criterion then rating_min."""
        with self.conn.cursor() as cur:
            cur.execute(f"""
                SELECT {_COLUMNS}
                FROM rating_sentiment_thresholds
                ORDER BY criteria_name, rating_min
            """)
            return [_row_to_threshold(r) for r in cur.fetchall()]

    def list_for_criterion(self, criterion: str) -> List[SentimentThreshold]:
        """One criterion's rows ordered by rating_min."""
        with self.conn.cursor() as cur:
            cur.execute(f"""
                SELECT {_COLUMNS}
                FROM rating_sentiment_thresholds
                WHERE criteria_name = %s
                ORDER BY rating_min
            """, (criterion,))
            return [_row_to_threshold(r) for r in cur.fetchall()]

    def get(self, threshold_id: int) -> Optional[SentimentThreshold]:
        with self.conn.cursor() as cur:
            cur.execute(f"""
                SELECT {_COLUMNS}
                FROM rating_sentiment_thresholds
                WHERE id = %s
            """, (threshold_id,))
            row = cur.fetchone()
        return _row_to_threshold(row) if row else None

    def load_threshold_set(self, strict: bool = False) -> ThresholdSet:
        """Validated set for the aggregator; invalid criteria are dropped unless strict."""
        return ThresholdSet.from_rows(self.list_all(), strict=strict)

    def update(self, threshold_id: int, **fields: Any) -> SentimentThreshold:
        """
        Update one row after validating the resulting band set.

        Raises:
            ThresholdNotFoundError: unknown id
            ThresholdValidationError: the edit would break the criterion's bands
            ValueError: unsupported field
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        current = self.get(threshold_id)
        if current is None:
            raise ThresholdNotFoundError(f"Threshold {threshold_id} not found")
        if not fields:
            return current

        candidate = SentimentThreshold(**{**current.__dict__, **fields})
        siblings = [
            candidate if row.id == threshold_id else row
            for row in self.list_for_criterion(current.criterion_name)
        ]
        validate_criterion_thresholds(siblings)

        set_clauses = []
        values: List[Any] = []
        for field_name in fields:
            set_clauses.append(f"{UPDATABLE_FIELDS[field_name]} = %s")
            values.append(getattr(candidate, field_name).value if field_name == "sentiment_level"
                          else getattr(candidate, field_name))
        set_clauses.append("updated_at = NOW()")
        values.append(threshold_id)

        try:
            with self.conn.cursor() as cur:
                cur.execute(f"""
                    UPDATE rating_sentiment_thresholds
                    SET {', '.join(set_clauses)}
                    WHERE id = %s
                    RETURNING {_COLUMNS}
                """, values)
                row = cur.fetchone()
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.info(
            f"Updated sentiment threshold {threshold_id} ({current.criterion_name}/"
            f"{candidate.sentiment_level.value})",
            extra={"criterion": current.criterion_name},
        )
        return _row_to_threshold(row)

    def replace_criterion(self, criterion: str, bands: Sequence[SentimentThreshold]) -> List[SentimentThreshold]:
        """
        Replace a criterion's whole band set in one transaction.

        Moving an edge changes two adjacent bands at once, which no single-row
        update can do without passing through a gap or an overlap. The new set
        is validated as a whole; rows are upserted on (criteria_name, sentiment)
        so surviving levels keep their ids, and levels not in the new set are
        deleted.

        Raises:
            ThresholdValidationError: the new set breaks the band invariants
        """
        candidate = [
            SentimentThreshold(**{**band.__dict__, "criterion_name": criterion, "id": None})
            for band in bands
        ]
        if not candidate:
            raise ThresholdValidationError(criterion, "no thresholds")
        ordered = validate_criterion_thresholds(candidate)

        try:
            with self.conn.cursor() as cur:
                stored = []
                for band in ordered:
                    cur.execute(f"""
                        INSERT INTO rating_sentiment_thresholds
                            (criteria_name, sentiment, rating_min, rating_max, required_count)
                        VALUES (%s, %s, %s, %s, %s)
                        ON CONFLICT (criteria_name, sentiment) DO UPDATE SET
                            rating_min = EXCLUDED.rating_min,
                            rating_max = EXCLUDED.rating_max,
                            required_count = EXCLUDED.required_count,
                            updated_at = NOW()
                        RETURNING {_COLUMNS}
                    """, (
                        criterion,
                        band.sentiment_level.value,
                        band.rating_min,
                        band.rating_max,
                        band.required_count,
                    ))
                    stored.append(_row_to_threshold(cur.fetchone()))

                cur.execute("""
                    DELETE FROM rating_sentiment_thresholds
                    WHERE criteria_name = %s AND NOT (sentiment = ANY(%s))
                """, (criterion, [band.sentiment_level.value for band in ordered]))
                dropped = cur.rowcount
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.info(
            f"Replaced sentiment thresholds for {criterion}: {len(stored)} band(s), {dropped} dropped",
            extra={"criterion": criterion},
        )
        return stored

    def seed_defaults(self, criteria: Iterable[str] = DEFAULT_CRITERIA) -> int:
        """
        Insert default bands for criteria that have none yet.

        Returns:
            Number of rows inserted
        """
        inserted = 0
        try:
            with self.conn.cursor() as cur:
                for criterion in criteria:
                    cur.execute(
                        "SELECT COUNT(*) FROM rating_sentiment_thresholds WHERE criteria_name = %s",
                        (criterion,),
                    )
                    if cur.fetchone()[0] > 0:
                        continue
                    for row in default_thresholds(criterion):
                        cur.execute("""
                            INSERT INTO rating_sentiment_thresholds
                                (criteria_name, sentiment, rating_min, rating_max, required_count)
                            VALUES (%s, %s, %s, %s, %s)
                        """, (
                            row.criterion_name,
                            row.sentiment_level.value,
                            row.rating_min,
                            row.rating_max,
                            row.required_count,
                        ))
                        inserted += 1
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.info(f"Seeded {inserted} sentiment threshold rows")
        return inserted
