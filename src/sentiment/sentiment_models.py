"""
Rating Sentiment Data Models
============================

Threshold rows as stored in `rating_sentiment_thresholds`, per-criterion
vote counts, and the classification result returned to readers.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SentimentLevel(str, Enum):
    """Seven ordered labels plus the no-data result."""
    OVERWHELMINGLY_NEGATIVE = "overwhelmingly_negative"
    VERY_NEGATIVE = "very_negative"
    MOSTLY_NEGATIVE = "mostly_negative"
    MIXED = "mixed"
    MOSTLY_POSITIVE = "mostly_positive"
    VERY_POSITIVE = "very_positive"
    OVERWHELMINGLY_POSITIVE = "overwhelmingly_positive"
    UNDETERMINED = "undetermined"

    @property
    def rank(self) -> Optional[int]:
        """Signed position on the scale (-3..3); None for UNDETERMINED."""
        return _RANKS.get(self)

    @property
    def extremity(self) -> int:
        """Distance from MIXED; UNDETERMINED counts as -1 (less specific than anything)."""
        rank = self.rank
        return -1 if rank is None else abs(rank)


_RANKS = {
    SentimentLevel.OVERWHELMINGLY_NEGATIVE: -3,
    SentimentLevel.VERY_NEGATIVE: -2,
    SentimentLevel.MOSTLY_NEGATIVE: -1,
    SentimentLevel.MIXED: 0,
    SentimentLevel.MOSTLY_POSITIVE: 1,
    SentimentLevel.VERY_POSITIVE: 2,
    SentimentLevel.OVERWHELMINGLY_POSITIVE: 3,
}

# Stored levels, most negative first
SCALE = tuple(sorted(_RANKS, key=_RANKS.get))


@dataclass
class SentimentThreshold:
    """
    One band of the score domain for a criterion.

    A score equal to rating_min belongs to this band even when it also
    equals the previous band's rating_max.
    """
    criterion_name: str
    sentiment_level: SentimentLevel
    rating_min: float
    rating_max: float
    required_count: int
    id: Optional[int] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.sentiment_level = SentimentLevel(self.sentiment_level)
        self.rating_min = float(self.rating_min)
        self.rating_max = float(self.rating_max)
        self.required_count = int(self.required_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "criterion_name": self.criterion_name,
            "sentiment_level": self.sentiment_level.value,
            "rating_min": self.rating_min,
            "rating_max": self.rating_max,
            "required_count": self.required_count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class CriterionCounts:
    """Thumbs-up / thumbs-down totals for one criterion of one book."""
    criterion_name: str
    positive: int
    negative: int

    @property
    def total(self) -> int:
        return self.positive + self.negative

    @property
    def score(self) -> Optional[float]:
        """Net sentiment in [-1, 1]; None without votes."""
        if self.total == 0:
            return None
        return (self.positive - self.negative) / self.total


@dataclass
class SentimentResult:
    """Classification of one criterion."""
    criterion_name: str
    sentiment: SentimentLevel
    score: Optional[float]
    total: int
    positive: Optional[int] = None
    negative: Optional[int] = None

    @property
    def is_determined(self) -> bool:
        return self.sentiment != SentimentLevel.UNDETERMINED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion_name": self.criterion_name,
            "sentiment": self.sentiment.value,
            "score": None if self.score is None or math.isnan(self.score) else round(self.score, 4),
            "total": self.total,
            "total_positive": self.positive,
            "total_negative": self.negative,
        }
