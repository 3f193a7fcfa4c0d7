"""
Engagement Ingestion API Routes
===============================

POST /api/books/{book_id}/impression    - append one weighted impression
POST /api/books/{book_id}/click-through - append one click-through

Both are append-only: a replayed event is stored again rather than
rejected, since the client queue delivers at least once.
"""

import logging

from fastapi import APIRouter, HTTPException

from src.engagement.engagement_repository import BookNotFoundError, EngagementRepository
from src.tracking.tracking_models import ImpressionType
from src.tracking.weighting import EngagementPolicy

from . import db
from .models import (
    ClickThroughRequest,
    ClickThroughResponse,
    ImpressionRequest,
    ImpressionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/books", tags=["Engagement"])

policy = EngagementPolicy()


@router.post("/{book_id}/impression", response_model=ImpressionResponse, status_code=201)
async def record_impression(book_id: int, body: ImpressionRequest):
    """Store an impression; weight is derived from its type when omitted."""
    weight = body.weight if body.weight is not None else policy.weight_for(body.type)

    try:
        with db.get_connection() as conn:
            stored = EngagementRepository(conn).record_impression(
                book_id=book_id,
                source=body.source,
                context=body.context,
                impression_type=body.type.value,
                weight=weight,
                position=body.position,
                container_type=body.containerType,
                container_id=body.containerId,
                metadata=body.metadata,
            )
        return stored.to_dict()

    except BookNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConnectionError as e:
        logger.error(f"Impression for book {book_id} not stored: {e}")
        raise HTTPException(status_code=503, detail="Database not reachable")
    except Exception as e:
        logger.error(f"Impression ingestion failed for book {book_id}: {e}", extra={"entity_id": book_id})
        raise HTTPException(status_code=500, detail="Failed to record impression")


@router.post("/{book_id}/click-through", response_model=ClickThroughResponse, status_code=201)
async def record_click_through(book_id: int, body: ClickThroughRequest):
    """
    Store a click-through.

    A referral click must name its destination domain; it is also counted
    as a referral-click impression.
    """
    if body.isReferral and not body.metadata.get("referralDomain"):
        raise HTTPException(status_code=400, detail="metadata.referralDomain is required for referral links")

    try:
        with db.get_connection() as conn:
            stored = EngagementRepository(conn).record_click_through(
                book_id=book_id,
                source=body.source,
                referrer=body.referrer,
                position=body.position,
                container_type=body.containerType,
                container_id=body.containerId,
                metadata=body.metadata,
                referral_weight=policy.weight_for(ImpressionType.REFERRAL_CLICK),
            )
        return stored.to_dict()

    except BookNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConnectionError as e:
        logger.error(f"Click-through for book {book_id} not stored: {e}")
        raise HTTPException(status_code=503, detail="Database not reachable")
    except Exception as e:
        logger.error(f"Click-through ingestion failed for book {book_id}: {e}", extra={"entity_id": book_id})
        raise HTTPException(status_code=500, detail="Failed to record click-through")
