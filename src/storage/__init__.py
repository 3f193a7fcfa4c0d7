"""
Shelfsignal Storage Module
==========================

Key-value persistence for the local engagement queue: Redis-based with
fallback to an in-memory dictionary.

Usage:
    from src.storage import KeyValueStore

    kv = KeyValueStore(prefix="shelfsignal")
    kv.set_raw("tracking:book_impressions", "[]")
"""

from .kv_store import KeyValueStore, StoreUnavailableError

__all__ = ["KeyValueStore", "StoreUnavailableError"]
