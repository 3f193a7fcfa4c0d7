"""
Engagement Repository
=====================

Append-only persistence for ingested impressions and click-throughs.

Every accepted event becomes one row; the matching counter on `books` is
bumped in the same transaction. Replays of an event the client already
delivered are simply appended again (the client queue gives
at-least-once delivery, so duplicates are expected and tolerated).
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class StoredImpression:
    """A persisted `book_impressions` row."""
    id: int
    book_id: int
    user_id: Optional[int]
    source: str
    context: str
    type: str
    weight: float
    position: Optional[int] = None
    container_type: Optional[str] = None
    container_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bookId": self.book_id,
            "userId": self.user_id,
            "source": self.source,
            "context": self.context,
            "type": self.type,
            "weight": self.weight,
            "position": self.position,
            "containerType": self.container_type,
            "containerId": self.container_id,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class StoredClickThrough:
    """A persisted `book_click_throughs` row."""
    id: int
    book_id: int
    user_id: Optional[int]
    source: str
    referrer: str
    position: Optional[int] = None
    container_type: Optional[str] = None
    container_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bookId": self.book_id,
            "userId": self.user_id,
            "source": self.source,
            "referrer": self.referrer,
            "position": self.position,
            "containerType": self.container_type,
            "containerId": self.container_id,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


class BookNotFoundError(LookupError):
    """Event for a book id that does not exist."""
    pass


class EngagementRepository:
    """
    Writes engagement events on a psycopg2 connection.

    The caller owns the connection (pool checkout / release).
    """

    def __init__(self, conn):
        self.conn = conn

    def _bump_counter(self, cur, book_id: int, counter: str, stamp: str) -> None:
        cur.execute(f"""
            UPDATE books
            SET {counter} = COALESCE({counter}, 0) + 1,
                {stamp} = NOW()
            WHERE id = %s
        """, (book_id,))
        if cur.rowcount == 0:
            raise BookNotFoundError(f"Book {book_id} not found")

    def _insert_impression(
        self,
        cur,
        book_id: int,
        user_id: Optional[int],
        source: str,
        context: str,
        impression_type: str,
        weight: float,
        position: Optional[int],
        container_type: Optional[str],
        container_id: Optional[str],
        metadata: Dict[str, Any],
    ) -> StoredImpression:
        self._bump_counter(cur, book_id, "impression_count", "last_impression_at")
        cur.execute("""
            INSERT INTO book_impressions
                (book_id, user_id, source, context, type, weight,
                 position, container_type, container_id, metadata)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, timestamp
        """, (
            book_id, user_id, source, context, impression_type, weight,
            position, container_type, container_id, json.dumps(metadata),
        ))
        row = cur.fetchone()
        return StoredImpression(
            id=row[0],
            book_id=book_id,
            user_id=user_id,
            source=source,
            context=context,
            type=impression_type,
            weight=weight,
            position=position,
            container_type=container_type,
            container_id=container_id,
            metadata=dict(metadata),
            timestamp=row[1],
        )

    def record_impression(
        self,
        book_id: int,
        source: str,
        context: str,
        impression_type: str,
        weight: float,
        user_id: Optional[int] = None,
        position: Optional[int] = None,
        container_type: Optional[str] = None,
        container_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredImpression:
        """
        Append one impression and bump the book's impression counter.

        Raises:
            BookNotFoundError: unknown book_id (nothing is written)
        """
        try:
            with self.conn.cursor() as cur:
                stored = self._insert_impression(
                    cur, book_id, user_id, source, context, impression_type, weight,
                    position, container_type, container_id, metadata or {},
                )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.debug(
            f"Recorded {impression_type} impression for book {book_id} (weight {weight})",
            extra={"entity_id": book_id, "event_type": impression_type},
        )
        return stored

    def record_click_through(
        self,
        book_id: int,
        source: str,
        referrer: str,
        user_id: Optional[int] = None,
        position: Optional[int] = None,
        container_type: Optional[str] = None,
        container_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        referral_weight: Optional[float] = None,
    ) -> StoredClickThrough:
        """
        Append one click-through and bump the book's click counter.

        When `referral_weight` is given a matching referral-click impression
        is written in the same transaction.

        Raises:
            BookNotFoundError: unknown book_id (nothing is written)
        """
        metadata = metadata or {}
        try:
            with self.conn.cursor() as cur:
                self._bump_counter(cur, book_id, "click_through_count", "last_click_through_at")
                cur.execute("""
                    INSERT INTO book_click_throughs
                        (book_id, user_id, source, referrer,
                         position, container_type, container_id, metadata)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id, timestamp
                """, (
                    book_id, user_id, source, referrer,
                    position, container_type, container_id, json.dumps(metadata),
                ))
                row = cur.fetchone()

                if referral_weight is not None:
                    self._insert_impression(
                        cur, book_id, user_id, source, referrer, "referral-click", referral_weight,
                        position, container_type, container_id, metadata,
                    )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.debug(
            f"Recorded click-through for book {book_id} from {source}",
            extra={"entity_id": book_id, "event_type": "click-through"},
        )
        return StoredClickThrough(
            id=row[0],
            book_id=book_id,
            user_id=user_id,
            source=source,
            referrer=referrer,
            position=position,
            container_type=container_type,
            container_id=container_id,
            metadata=metadata,
            timestamp=row[1],
        )
