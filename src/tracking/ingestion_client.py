"""
Ingestion API Client
====================

Submits queued engagement records to the server, one request per record.

Routes (scoped to a single book in the URL path):
    POST /api/books/{id}/impression
    POST /api/books/{id}/click-through

Any non-2xx response or transport error raises IngestionError; the
dispatcher treats every IngestionError as retryable.
"""

import logging
from typing import Any, Dict, Optional

import requests

from .tracking_models import ClickThroughRecord, ImpressionRecord

logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Submission was not accepted by the ingestion endpoint."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class IngestionClient:
    """
    HTTP client for the engagement ingestion endpoint.

    Args:
        base_url: API root, e.g. https://shelfsignal.example.com
        timeout_seconds: Bound on each request
        session: Optional requests.Session (connection reuse, auth cookies)
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

        # Stats
        self._requests_made = 0
        self._requests_failed = 0

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        self._requests_made += 1
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            self._requests_failed += 1
            raise IngestionError(f"Request to {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            self._requests_failed += 1
            raise IngestionError(
                f"Ingestion API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            return {}

    @staticmethod
    def _container_fields(record) -> Dict[str, Any]:
        fields = {}
        if record.container_position is not None:
            fields["position"] = record.container_position
        if record.container_type is not None:
            fields["containerType"] = record.container_type
        if record.container_id is not None:
            fields["containerId"] = record.container_id
        return fields

    def impression_payload(self, record: ImpressionRecord, weight: float) -> Dict[str, Any]:
        payload = {
            "source": record.source_component,
            "context": record.page_context,
            "type": record.impression_type.value,
            "weight": weight,
            "metadata": record.metadata.to_dict(),
        }
        payload.update(self._container_fields(record))
        return payload

    def click_through_payload(self, record: ClickThroughRecord) -> Dict[str, Any]:
        payload = {
            "source": record.source_component,
            "referrer": record.referrer_context,
            "metadata": record.metadata.to_dict(),
            "isReferral": record.is_referral,
        }
        payload.update(self._container_fields(record))
        return payload

    def submit_impression(self, record: ImpressionRecord, weight: float) -> Dict[str, Any]:
        """POST one impression. Raises IngestionError if not accepted."""
        logger.debug(f"Submitting impression: book={record.entity_id} type={record.impression_type.value}")
        return self._post(
            f"/api/books/{record.entity_id}/impression",
            self.impression_payload(record, weight),
        )

    def submit_click_through(self, record: ClickThroughRecord) -> Dict[str, Any]:
        """POST one click-through. Raises IngestionError if not accepted."""
        logger.debug(f"Submitting click-through: book={record.entity_id} referral={record.is_referral}")
        return self._post(
            f"/api/books/{record.entity_id}/click-through",
            self.click_through_payload(record),
        )

    def get_stats(self) -> Dict[str, int]:
        return {
            "requests_made": self._requests_made,
            "requests_failed": self._requests_failed,
        }

    def close(self) -> None:
        self.session.close()
