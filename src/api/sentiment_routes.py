"""
Rating Sentiment API Routes
===========================

GET   /api/sentiment/thresholds              - all bands, every criterion
GET   /api/sentiment/thresholds/{criterion}  - one criterion's bands
PATCH /api/sentiment/thresholds/{id}         - edit one band (re-validated)
PUT   /api/sentiment/thresholds/{criterion}  - replace a criterion's band set atomically
GET   /api/books/{book_id}/sentiment         - per-criterion sentiment of a book
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException

from src.sentiment.rating_service import RatingSentimentService
from src.sentiment.sentiment_models import SentimentThreshold
from src.sentiment.threshold_repository import ThresholdNotFoundError, ThresholdRepository
from src.sentiment.thresholds import ThresholdValidationError

from . import db
from .models import BookSentimentResponse, ThresholdModel, ThresholdSetRequest, ThresholdUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Sentiment"])


def _db_unavailable(e: Exception) -> HTTPException:
    logger.error(f"Sentiment request without database: {e}")
    return HTTPException(status_code=503, detail="Database not reachable")


@router.get("/api/sentiment/thresholds", response_model=List[ThresholdModel])
async def list_thresholds():
    try:
        with db.get_connection() as conn:
            rows = ThresholdRepository(conn).list_all()
        return [row.to_dict() for row in rows]
    except ConnectionError as e:
        raise _db_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to list sentiment thresholds: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch sentiment thresholds")


@router.get("/api/sentiment/thresholds/{criterion}", response_model=List[ThresholdModel])
async def list_criterion_thresholds(criterion: str):
    """Bands ordered by rating_min; 404 when the criterion has none."""
    try:
        with db.get_connection() as conn:
            rows = ThresholdRepository(conn).list_for_criterion(criterion)
    except ConnectionError as e:
        raise _db_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to list thresholds for {criterion}: {e}", extra={"criterion": criterion})
        raise HTTPException(status_code=500, detail="Failed to fetch sentiment thresholds")

    if not rows:
        raise HTTPException(status_code=404, detail=f"No thresholds for criterion '{criterion}'")
    return [row.to_dict() for row in rows]


@router.patch("/api/sentiment/thresholds/{threshold_id}", response_model=ThresholdModel)
async def update_threshold(threshold_id: int, body: ThresholdUpdateRequest):
    """
    Edit one band.

    The criterion's whole band set is validated with the edit applied;
    an edit that would open a gap, create an overlap or break the
    required-count ordering is rejected with 400 and nothing is written.
    """
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    try:
        with db.get_connection() as conn:
            updated = ThresholdRepository(conn).update(threshold_id, **fields)
        return updated.to_dict()

    except ThresholdNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ThresholdValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConnectionError as e:
        raise _db_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to update threshold {threshold_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update sentiment threshold")


@router.put("/api/sentiment/thresholds/{criterion}", response_model=List[ThresholdModel])
async def replace_criterion_thresholds(criterion: str, body: ThresholdSetRequest):
    """
    Replace every band of a criterion in one transaction.

    This is how a shared edge moves: both neighbouring bands change
    together and only the finished set is validated. Returns the stored
    bands ordered by rating_min; 400 with nothing written when the set is
    invalid.
    """
    bands = [
        SentimentThreshold(criterion_name=criterion, **band.model_dump())
        for band in body.bands
    ]
    try:
        with db.get_connection() as conn:
            stored = ThresholdRepository(conn).replace_criterion(criterion, bands)
        return [row.to_dict() for row in stored]

    except ThresholdValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConnectionError as e:
        raise _db_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to replace thresholds for {criterion}: {e}", extra={"criterion": criterion})
        raise HTTPException(status_code=500, detail="Failed to replace sentiment thresholds")


@router.get("/api/books/{book_id}/sentiment", response_model=BookSentimentResponse)
async def get_book_sentiment(book_id: int):
    """Per-criterion labels; criteria without enough ratings are 'undetermined'."""
    try:
        with db.get_connection() as conn:
            results = RatingSentimentService(conn).for_book(book_id)
        return {
            "book_id": book_id,
            "criteria": [r.to_dict() for r in results],
        }
    except ConnectionError as e:
        raise _db_unavailable(e)
    except Exception as e:
        logger.error(f"Sentiment aggregation failed for book {book_id}: {e}", extra={"entity_id": book_id})
        raise HTTPException(status_code=500, detail="Failed to compute sentiment")
