"""
Engagement Tracker
==================

Entry point used by UI code: builds impression / click-through records from
the container a book is displayed in and queues them in the LocalEventStore.

Tracking is invisible to the reader: nothing here raises into the caller.

Usage:
    tracker = Tracker(store, container_type="carousel", container_id="new-releases",
                      page_context="/discover")
    tracker.track_impression(42, "book-card", position=3)
    tracker.track_referral_with_domain(42, "book-details", "https://www.amazon.com/dp/X")
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from .event_store import LocalEventStore
from .tracking_models import ClickThroughRecord, ImpressionRecord, ImpressionType, TrackingMetadata

logger = logging.getLogger(__name__)

UNKNOWN_DOMAIN = "unknown"


def extract_domain(target_url: str) -> str:
    """Hostname of `target_url`, or 'unknown' when it cannot be parsed."""
    try:
        hostname = urlparse(target_url).hostname
    except (TypeError, ValueError, AttributeError):
        hostname = None
    if not hostname:
        logger.warning(f"Invalid URL in referral tracking: {target_url!r}")
        return UNKNOWN_DOMAIN
    return hostname


class Tracker:
    """
    Pre-configured tracking helpers for one container on one page.

    Args:
        store: Shared LocalEventStore
        container_type: 'carousel', 'book-rack', 'grid', 'book-shelf', 'wishlist'
        container_id: Optional id of the container
        page_context: Current page route
    """

    def __init__(
        self,
        store: LocalEventStore,
        container_type: str,
        container_id: Optional[str] = None,
        page_context: str = "/",
    ):
        self.store = store
        self.container_type = container_type
        self.container_id = container_id
        self.page_context = page_context

    def _metadata(self, metadata: Optional[Dict[str, Any]]) -> TrackingMetadata:
        return TrackingMetadata.from_dict(metadata or {})

    def track_impression(
        self,
        entity_id: int,
        source_component: str,
        position: Optional[int] = None,
        impression_type: str = ImpressionType.VIEW.value,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Queue an impression for a book.

        Returns:
            True if a new record was queued (False when coalesced or rejected)
        """
        try:
            record = ImpressionRecord(
                entity_id=entity_id,
                source_component=source_component,
                page_context=self.page_context,
                timestamp_ms=self.store.clock(),
                impression_type=impression_type,
                container_position=position,
                container_type=self.container_type,
                container_id=self.container_id,
                metadata=self._metadata(metadata),
            )
        except ValueError as e:
            logger.error(f"Rejected impression for book {entity_id}: {e}")
            return False
        return self.store.append_impression(record)

    def track_hover(self, entity_id: int, source_component: str, position: Optional[int] = None,
                    metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self.track_impression(entity_id, source_component, position, ImpressionType.DETAIL_EXPAND.value, metadata)

    def track_card_click(self, entity_id: int, source_component: str, position: Optional[int] = None,
                         metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self.track_impression(entity_id, source_component, position, ImpressionType.CARD_CLICK.value, metadata)

    def track_referral_click(self, entity_id: int, source_component: str, position: Optional[int] = None,
                             metadata: Optional[Dict[str, Any]] = None) -> bool:
        return self.track_impression(entity_id, source_component, position, ImpressionType.REFERRAL_CLICK.value, metadata)

    def track_click_through(
        self,
        entity_id: int,
        source_component: str,
        position: Optional[int] = None,
        referrer: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Queue a click-through; the referrer defaults to the current page."""
        try:
            record = ClickThroughRecord(
                entity_id=entity_id,
                source_component=source_component,
                referrer_context=referrer or self.page_context,
                timestamp_ms=self.store.clock(),
                container_position=position,
                container_type=self.container_type,
                container_id=self.container_id,
                metadata=self._metadata(metadata),
            )
        except ValueError as e:
            logger.error(f"Rejected click-through for book {entity_id}: {e}")
            return False
        return self.store.append_click_through(record)

    def track_referral_with_domain(
        self,
        entity_id: int,
        source_component: str,
        target_url: str,
        position: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Click-through to an external retailer, tagged with its domain."""
        enhanced = dict(metadata or {})
        enhanced["referralDomain"] = extract_domain(target_url)
        return self.track_click_through(entity_id, source_component, position, self.page_context, enhanced)
