"""
Engagement Tracking Data Models
===============================

Records queued locally until the ingestion endpoint accepts them.
The serialized (camelCase) shape is what lives in the key-value store.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum


class ImpressionType(str, Enum):
    """How strongly a reader engaged with a book."""
    VIEW = "view"
    DETAIL_EXPAND = "detail-expand"
    CARD_CLICK = "card-click"
    REFERRAL_CLICK = "referral-click"


class MalformedRecordError(ValueError):
    """A stored entry cannot be turned back into a record."""
    pass


# Metadata keys with a dedicated attribute; anything else lands in `extra`
_KNOWN_METADATA = {
    "referralDomain": "referral_domain",
    "retailerName": "retailer_name",
    "campaignId": "campaign_id",
}


@dataclass
class TrackingMetadata:
    """Known optional fields plus a free-form extension map."""
    referral_domain: Optional[str] = None
    retailer_name: Optional[str] = None
    campaign_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TrackingMetadata":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise MalformedRecordError(f"metadata must be an object, got {type(data).__name__}")

        known = {}
        extra = {}
        for key, value in data.items():
            if key in _KNOWN_METADATA:
                known[_KNOWN_METADATA[key]] = None if value is None else str(value)
            else:
                extra[str(key)] = value
        return cls(extra=extra, **known)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        for wire_key, attr in _KNOWN_METADATA.items():
            value = getattr(self, attr)
            if value is not None:
                out[wire_key] = value
        return out

    @property
    def has_referral_domain(self) -> bool:
        return bool(self.referral_domain)


def _require(data: Dict[str, Any], key: str, kind: type) -> Any:
    if key not in data or data[key] is None:
        raise MalformedRecordError(f"missing required field '{key}'")
    value = data[key]
    # bool is an int subclass; a boolean id or timestamp is still malformed
    if isinstance(value, bool) or not isinstance(value, kind):
        raise MalformedRecordError(f"field '{key}' must be {kind.__name__}, got {value!r}")
    return value


def _optional(data: Dict[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, kind):
        raise MalformedRecordError(f"field '{key}' must be {kind.__name__}, got {value!r}")
    return value


@dataclass
class ImpressionRecord:
    """A book seen or lightly interacted with."""
    entity_id: int
    source_component: str       # 'book-card', 'spine-book', 'grid-item', 'mini-card'
    page_context: str           # route the book was shown on
    timestamp_ms: int
    impression_type: ImpressionType = ImpressionType.VIEW
    container_position: Optional[int] = None
    container_type: Optional[str] = None   # 'carousel', 'book-rack', 'grid', ...
    container_id: Optional[str] = None
    metadata: TrackingMetadata = field(default_factory=TrackingMetadata)

    def __post_init__(self):
        # Rejects unknown types at construction time
        self.impression_type = ImpressionType(self.impression_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityId": self.entity_id,
            "source": self.source_component,
            "context": self.page_context,
            "timestamp": self.timestamp_ms,
            "type": self.impression_type.value,
            "position": self.container_position,
            "containerType": self.container_type,
            "containerId": self.container_id,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ImpressionRecord":
        if not isinstance(data, dict):
            raise MalformedRecordError(f"impression must be an object, got {type(data).__name__}")
        raw_type = data.get("type", ImpressionType.VIEW.value)
        try:
            impression_type = ImpressionType(raw_type)
        except ValueError:
            raise MalformedRecordError(f"unknown impression type {raw_type!r}")

        return cls(
            entity_id=_require(data, "entityId", int),
            source_component=_require(data, "source", str),
            page_context=_require(data, "context", str),
            timestamp_ms=_require(data, "timestamp", int),
            impression_type=impression_type,
            container_position=_optional(data, "position", int),
            container_type=_optional(data, "containerType", str),
            container_id=_optional(data, "containerId", str),
            metadata=TrackingMetadata.from_dict(data.get("metadata")),
        )


@dataclass
class ClickThroughRecord:
    """A reader following a link to detail or an external retailer."""
    entity_id: int
    source_component: str
    referrer_context: str
    timestamp_ms: int
    container_position: Optional[int] = None
    container_type: Optional[str] = None
    container_id: Optional[str] = None
    metadata: TrackingMetadata = field(default_factory=TrackingMetadata)

    @property
    def is_referral(self) -> bool:
        """True when the click left for an external domain."""
        return self.metadata.has_referral_domain

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityId": self.entity_id,
            "source": self.source_component,
            "referrer": self.referrer_context,
            "timestamp": self.timestamp_ms,
            "position": self.container_position,
            "containerType": self.container_type,
            "containerId": self.container_id,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ClickThroughRecord":
        if not isinstance(data, dict):
            raise MalformedRecordError(f"click-through must be an object, got {type(data).__name__}")
        return cls(
            entity_id=_require(data, "entityId", int),
            source_component=_require(data, "source", str),
            referrer_context=_require(data, "referrer", str),
            timestamp_ms=_require(data, "timestamp", int),
            container_position=_optional(data, "position", int),
            container_type=_optional(data, "containerType", str),
            container_id=_optional(data, "containerId", str),
            metadata=TrackingMetadata.from_dict(data.get("metadata")),
        )
