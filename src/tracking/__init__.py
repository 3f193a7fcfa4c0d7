"""
Shelfsignal Engagement Tracking
===============================

Offline-tolerant client pipeline for book impressions and click-throughs.

Modules:
    tracking_models  - ImpressionRecord, ClickThroughRecord, TrackingMetadata
    weighting        - dedup rule and per-type weights
    event_store      - durable local queue on a key-value store
    delivery_ledger  - retry attempts, backoff, dead-letter threshold
    ingestion_client - HTTP submission to the ingestion endpoint
    dispatcher       - periodic / immediate sync of the queue
    tracker          - UI-facing helpers that build and queue records
"""

from .tracking_models import (
    ImpressionType,
    ImpressionRecord,
    ClickThroughRecord,
    TrackingMetadata,
    MalformedRecordError,
)
from .weighting import EngagementPolicy, DEFAULT_WEIGHTS, weight_for
from .event_store import LocalEventStore
from .delivery_ledger import DeliveryLedger
from .ingestion_client import IngestionClient, IngestionError
from .dispatcher import SyncDispatcher, SyncReport
from .tracker import Tracker

__all__ = [
    "ImpressionType",
    "ImpressionRecord",
    "ClickThroughRecord",
    "TrackingMetadata",
    "MalformedRecordError",
    "EngagementPolicy",
    "DEFAULT_WEIGHTS",
    "weight_for",
    "LocalEventStore",
    "DeliveryLedger",
    "IngestionClient",
    "IngestionError",
    "SyncDispatcher",
    "SyncReport",
    "Tracker",
]
