"""
Shelfsignal API Models
======================

Pydantic models for API request/response serialization.
Field names follow the client wire format (camelCase aliases).
"""

from pydantic import BaseModel, Field
from typing import List, Dict, Optional, Any

from src.sentiment.sentiment_models import SentimentLevel
from src.tracking.tracking_models import ImpressionType


class ImpressionRequest(BaseModel):
    """Body of POST /api/books/{id}/impression."""
    source: str = "unknown"
    context: str = "unknown"
    type: ImpressionType = ImpressionType.VIEW
    weight: Optional[float] = Field(None, ge=0)
    position: Optional[int] = None
    containerType: Optional[str] = Field(None, alias="container_type")
    containerId: Optional[str] = Field(None, alias="container_id")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class ClickThroughRequest(BaseModel):
    """Body of POST /api/books/{id}/click-through."""
    source: str = "unknown"
    referrer: str = "unknown"
    position: Optional[int] = None
    containerType: Optional[str] = Field(None, alias="container_type")
    containerId: Optional[str] = Field(None, alias="container_id")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    isReferral: bool = Field(False, alias="is_referral")

    class Config:
        populate_by_name = True


class ImpressionResponse(BaseModel):
    """Stored impression row."""
    id: int
    bookId: int
    userId: Optional[int] = None
    source: str
    context: str
    type: str
    weight: float
    position: Optional[int] = None
    containerType: Optional[str] = None
    containerId: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None


class ClickThroughResponse(BaseModel):
    """Stored click-through row."""
    id: int
    bookId: int
    userId: Optional[int] = None
    source: str
    referrer: str
    position: Optional[int] = None
    containerType: Optional[str] = None
    containerId: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None


class ThresholdModel(BaseModel):
    """One sentiment band of a criterion."""
    id: Optional[int] = None
    criterion_name: str
    sentiment_level: SentimentLevel
    rating_min: float
    rating_max: float
    required_count: int
    updated_at: Optional[str] = None


class ThresholdUpdateRequest(BaseModel):
    """Partial update of one threshold row; omitted fields are unchanged."""
    sentiment_level: Optional[SentimentLevel] = None
    rating_min: Optional[float] = Field(None, ge=-1.0, le=1.0)
    rating_max: Optional[float] = Field(None, ge=-1.0, le=1.0)
    required_count: Optional[int] = Field(None, ge=0)


class ThresholdBand(BaseModel):
    """One band in a full criterion replacement."""
    sentiment_level: SentimentLevel
    rating_min: float = Field(..., ge=-1.0, le=1.0)
    rating_max: float = Field(..., ge=-1.0, le=1.0)
    required_count: int = Field(..., ge=0)


class ThresholdSetRequest(BaseModel):
    """Complete band set for one criterion, replacing the stored one."""
    bands: List[ThresholdBand] = Field(..., min_length=1)


class CriterionSentimentModel(BaseModel):
    """Sentiment of one rating criterion."""
    criterion_name: str
    sentiment: SentimentLevel
    score: Optional[float] = None
    total: int
    total_positive: Optional[int] = None
    total_negative: Optional[int] = None


class BookSentimentResponse(BaseModel):
    """All criteria for one book."""
    book_id: int
    criteria: List[CriterionSentimentModel]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str = "unknown"
    database_version: Optional[str] = None
    database_latency_ms: Optional[float] = None
    threshold_rows: Optional[int] = None
