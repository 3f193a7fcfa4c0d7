"""
Shelfsignal Rating Sentiment
============================

Per-criterion sentiment labels for a book, derived from thumbs-up /
thumbs-down ratings and admin-configured sample-size thresholds.

Usage:
    from src.sentiment import SentimentAggregator

    aggregator = SentimentAggregator()
    aggregator.classify("enjoyment", score=0.92, total=120)
    # SentimentLevel.OVERWHELMINGLY_POSITIVE
"""

from .sentiment_models import (
    SentimentLevel,
    SentimentThreshold,
    CriterionCounts,
    SentimentResult,
    SCALE,
)
from .thresholds import (
    DEFAULT_CRITERIA,
    DEFAULT_BANDS,
    ThresholdSet,
    ThresholdValidationError,
    default_thresholds,
    validate_criterion_thresholds,
)
from .aggregator import SentimentAggregator
from .threshold_repository import ThresholdRepository, ThresholdNotFoundError
from .rating_service import RatingSentimentService, load_criterion_counts

__all__ = [
    "SentimentLevel",
    "SentimentThreshold",
    "CriterionCounts",
    "SentimentResult",
    "SCALE",
    "DEFAULT_CRITERIA",
    "DEFAULT_BANDS",
    "ThresholdSet",
    "ThresholdValidationError",
    "default_thresholds",
    "validate_criterion_thresholds",
    "SentimentAggregator",
    "ThresholdRepository",
    "ThresholdNotFoundError",
    "RatingSentimentService",
    "load_criterion_counts",
]
