"""
Tests for the ingestion HTTP client.

Note: These tests use mocking to avoid actual API calls.
"""

from unittest.mock import MagicMock

import pytest
import requests

from src.tracking.ingestion_client import IngestionClient, IngestionError
from src.tracking.tracking_models import ClickThroughRecord, ImpressionRecord, TrackingMetadata


def mock_response(status_code=201, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = "error body" if status_code >= 400 else ""
    response.json.return_value = body if body is not None else {"id": 1}
    return response


class TestPayloads:
    """Request bodies sent to the ingestion routes."""

    def setup_method(self):
        self.client = IngestionClient("https://api.example.com/", session=MagicMock())

    def test_impression_payload(self):
        record = ImpressionRecord(
            entity_id=42,
            source_component="spine-book",
            page_context="/shelf/3",
            timestamp_ms=1,
            impression_type="card-click",
            container_position=4,
            container_type="book-rack",
            container_id="rack-1",
            metadata=TrackingMetadata(campaign_id="spring"),
        )

        assert self.client.impression_payload(record, 0.5) == {
            "source": "spine-book",
            "context": "/shelf/3",
            "type": "card-click",
            "weight": 0.5,
            "position": 4,
            "containerType": "book-rack",
            "containerId": "rack-1",
            "metadata": {"campaignId": "spring"},
        }

    def test_optional_container_fields_omitted(self):
        record = ImpressionRecord(42, "book-card", "/", 1)
        payload = self.client.impression_payload(record, 1.0)

        assert "position" not in payload
        assert "containerType" not in payload
        assert "containerId" not in payload

    def test_position_zero_kept(self):
        record = ImpressionRecord(42, "book-card", "/", 1, container_position=0)
        assert self.client.impression_payload(record, 1.0)["position"] == 0

    def test_click_through_payload_flags_referral(self):
        record = ClickThroughRecord(
            entity_id=7,
            source_component="book-details",
            referrer_context="/books/7",
            timestamp_ms=1,
            metadata=TrackingMetadata(referral_domain="amazon.com"),
        )
        payload = self.client.click_through_payload(record)

        assert payload["isReferral"] is True
        assert payload["referrer"] == "/books/7"
        assert payload["metadata"] == {"referralDomain": "amazon.com"}

    def test_plain_click_through_not_referral(self):
        record = ClickThroughRecord(7, "book-card", "/", 1)
        assert self.client.click_through_payload(record)["isReferral"] is False


class TestSubmission:
    """HTTP behaviour (mocked session)."""

    def setup_method(self):
        self.session = MagicMock()
        self.client = IngestionClient("https://api.example.com/", timeout_seconds=2.5, session=self.session)
        self.record = ImpressionRecord(42, "book-card", "/", 1)

    def test_posts_to_book_scoped_url(self):
        self.session.post.return_value = mock_response(201, {"id": 9})

        result = self.client.submit_impression(self.record, 1.0)

        assert result == {"id": 9}
        args, kwargs = self.session.post.call_args
        assert args[0] == "https://api.example.com/api/books/42/impression"
        assert kwargs["timeout"] == 2.5
        assert kwargs["json"]["type"] == "view"

    def test_click_through_url(self):
        self.session.post.return_value = mock_response(201)
        self.client.submit_click_through(ClickThroughRecord(7, "book-card", "/", 1))
        assert self.session.post.call_args.args[0] == "https://api.example.com/api/books/7/click-through"

    def test_non_2xx_raises(self):
        self.session.post.return_value = mock_response(500)

        with pytest.raises(IngestionError) as exc:
            self.client.submit_impression(self.record, 1.0)

        assert exc.value.status_code == 500
        assert self.client.get_stats() == {"requests_made": 1, "requests_failed": 1}

    def test_transport_error_raises(self):
        self.session.post.side_effect = requests.Timeout("read timed out")

        with pytest.raises(IngestionError) as exc:
            self.client.submit_impression(self.record, 1.0)

        assert exc.value.status_code is None

    def test_empty_body_accepted(self):
        response = mock_response(204)
        response.json.side_effect = ValueError("no json")
        self.session.post.return_value = response

        assert self.client.submit_impression(self.record, 1.0) == {}
