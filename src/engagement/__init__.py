"""
Shelfsignal Engagement Persistence
==================================

Server-side storage of ingested impressions and click-throughs.
"""

from .engagement_repository import (
    EngagementRepository,
    StoredImpression,
    StoredClickThrough,
    BookNotFoundError,
)

__all__ = [
    "EngagementRepository",
    "StoredImpression",
    "StoredClickThrough",
    "BookNotFoundError",
]
