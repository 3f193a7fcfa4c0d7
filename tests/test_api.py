"""
Tests for the Shelfsignal REST API.

Database access and repositories are patched; routes are exercised through
FastAPI's TestClient.

Usage:
    pytest tests/test_api.py -v
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.engagement.engagement_repository import BookNotFoundError, StoredClickThrough, StoredImpression
from src.sentiment.sentiment_models import SentimentLevel, SentimentResult, SentimentThreshold
from src.sentiment.threshold_repository import ThresholdNotFoundError
from src.sentiment.thresholds import ThresholdValidationError, default_thresholds

STAMP = datetime(2026, 3, 1, 9, 30)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db_connection():
    with patch("src.api.db.get_connection") as get_connection:
        yield get_connection


def stored_impression(**kwargs):
    fields = dict(
        id=1, book_id=42, user_id=None, source="book-card", context="/discover",
        type="view", weight=1.0, timestamp=STAMP,
    )
    fields.update(kwargs)
    return StoredImpression(**fields)


# =============================================================================
# Impression ingestion
# =============================================================================

class TestImpressionRoute:
    """POST /api/books/{id}/impression"""

    def test_weight_derived_from_type(self, client, db_connection):
        with patch("src.api.ingestion_routes.EngagementRepository") as repo_cls:
            repo_cls.return_value.record_impression.return_value = stored_impression(type="detail-expand", weight=0.25)

            response = client.post("/api/books/42/impression", json={
                "source": "book-card",
                "context": "/discover",
                "type": "detail-expand",
                "containerType": "carousel",
                "position": 0,
            })

        assert response.status_code == 201
        kwargs = repo_cls.return_value.record_impression.call_args.kwargs
        assert kwargs["weight"] == 0.25
        assert kwargs["impression_type"] == "detail-expand"
        assert kwargs["container_type"] == "carousel"
        assert kwargs["position"] == 0
        assert response.json()["weight"] == 0.25

    def test_explicit_weight_kept(self, client, db_connection):
        with patch("src.api.ingestion_routes.EngagementRepository") as repo_cls:
            repo_cls.return_value.record_impression.return_value = stored_impression(weight=0.7)
            client.post("/api/books/42/impression", json={"type": "view", "weight": 0.7})

        assert repo_cls.return_value.record_impression.call_args.kwargs["weight"] == 0.7

    def test_defaults(self, client, db_connection):
        with patch("src.api.ingestion_routes.EngagementRepository") as repo_cls:
            repo_cls.return_value.record_impression.return_value = stored_impression()
            response = client.post("/api/books/42/impression", json={})

        assert response.status_code == 201
        kwargs = repo_cls.return_value.record_impression.call_args.kwargs
        assert kwargs["source"] == "unknown"
        assert kwargs["context"] == "unknown"
        assert kwargs["impression_type"] == "view"
        assert kwargs["weight"] == 1.0

    def test_invalid_type_is_422(self, client, db_connection):
        response = client.post("/api/books/42/impression", json={"type": "stare"})
        assert response.status_code == 422

    def test_non_numeric_book_id_is_422(self, client, db_connection):
        response = client.post("/api/books/abc/impression", json={})
        assert response.status_code == 422

    def test_unknown_book_is_404(self, client, db_connection):
        with patch("src.api.ingestion_routes.EngagementRepository") as repo_cls:
            repo_cls.return_value.record_impression.side_effect = BookNotFoundError("Book 9 not found")
            response = client.post("/api/books/9/impression", json={})
        assert response.status_code == 404

    def test_database_unavailable_is_503(self, client, db_connection):
        db_connection.side_effect = ConnectionError("Database pool not available")
        response = client.post("/api/books/42/impression", json={})
        assert response.status_code == 503

    def test_unexpected_error_is_500(self, client, db_connection):
        with patch("src.api.ingestion_routes.EngagementRepository") as repo_cls:
            repo_cls.return_value.record_impression.side_effect = RuntimeError("boom")
            response = client.post("/api/books/42/impression", json={})
        assert response.status_code == 500


# =============================================================================
# Click-through ingestion
# =============================================================================

class TestClickThroughRoute:
    """POST /api/books/{id}/click-through"""

    def stored(self, **kwargs):
        fields = dict(id=5, book_id=42, user_id=None, source="book-details", referrer="/books/42", timestamp=STAMP)
        fields.update(kwargs)
        return StoredClickThrough(**fields)

    def test_referral_without_domain_is_400(self, client, db_connection):
        response = client.post("/api/books/42/click-through", json={
            "source": "book-details",
            "referrer": "/books/42",
            "isReferral": True,
            "metadata": {},
        })

        assert response.status_code == 400
        assert "referralDomain" in response.json()["detail"]
        db_connection.assert_not_called()

    def test_referral_with_domain(self, client, db_connection):
        with patch("src.api.ingestion_routes.EngagementRepository") as repo_cls:
            repo_cls.return_value.record_click_through.return_value = self.stored(
                metadata={"referralDomain": "amazon.com"}
            )
            response = client.post("/api/books/42/click-through", json={
                "source": "book-details",
                "referrer": "/books/42",
                "isReferral": True,
                "metadata": {"referralDomain": "amazon.com"},
            })

        assert response.status_code == 201
        kwargs = repo_cls.return_value.record_click_through.call_args.kwargs
        assert kwargs["metadata"] == {"referralDomain": "amazon.com"}
        assert kwargs["referral_weight"] == 1.0
        assert response.json()["metadata"] == {"referralDomain": "amazon.com"}

    def test_plain_click_needs_no_domain(self, client, db_connection):
        with patch("src.api.ingestion_routes.EngagementRepository") as repo_cls:
            repo_cls.return_value.record_click_through.return_value = self.stored()
            response = client.post("/api/books/42/click-through", json={"source": "book-card", "referrer": "/"})

        assert response.status_code == 201

    def test_database_unavailable_is_503(self, client, db_connection):
        db_connection.side_effect = ConnectionError("down")
        response = client.post("/api/books/42/click-through", json={"source": "book-card", "referrer": "/"})
        assert response.status_code == 503


# =============================================================================
# Sentiment
# =============================================================================

class TestSentimentRoutes:
    """Threshold administration and per-book sentiment."""

    def test_list_thresholds(self, client, db_connection):
        rows = default_thresholds("enjoyment")
        with patch("src.api.sentiment_routes.ThresholdRepository") as repo_cls:
            repo_cls.return_value.list_all.return_value = rows
            response = client.get("/api/sentiment/thresholds")

        assert response.status_code == 200
        body = response.json()
        assert len(body) == 7
        assert body[0]["sentiment_level"] == "overwhelmingly_negative"

    def test_criterion_thresholds(self, client, db_connection):
        with patch("src.api.sentiment_routes.ThresholdRepository") as repo_cls:
            repo_cls.return_value.list_for_criterion.return_value = default_thresholds("writing")
            response = client.get("/api/sentiment/thresholds/writing")

        assert response.status_code == 200
        assert [r["rating_min"] for r in response.json()] == [-1.0, -0.9, -0.5, -0.2, 0.2, 0.5, 0.9]

    def test_unknown_criterion_is_404(self, client, db_connection):
        with patch("src.api.sentiment_routes.ThresholdRepository") as repo_cls:
            repo_cls.return_value.list_for_criterion.return_value = []
            response = client.get("/api/sentiment/thresholds/pacing")
        assert response.status_code == 404

    def test_update_threshold(self, client, db_connection):
        updated = SentimentThreshold("enjoyment", SentimentLevel.OVERWHELMINGLY_POSITIVE, 0.9, 1.0, 150, id=7,
                                     updated_at=STAMP)
        with patch("src.api.sentiment_routes.ThresholdRepository") as repo_cls:
            repo_cls.return_value.update.return_value = updated
            response = client.patch("/api/sentiment/thresholds/7", json={"required_count": 150})

        assert response.status_code == 200
        repo_cls.return_value.update.assert_called_once_with(7, required_count=150)
        assert response.json()["required_count"] == 150

    def test_invalid_update_is_400(self, client, db_connection):
        with patch("src.api.sentiment_routes.ThresholdRepository") as repo_cls:
            repo_cls.return_value.update.side_effect = ThresholdValidationError("enjoyment", "gap")
            response = client.patch("/api/sentiment/thresholds/7", json={"rating_min": 0.95})
        assert response.status_code == 400

    def test_missing_threshold_is_404(self, client, db_connection):
        with patch("src.api.sentiment_routes.ThresholdRepository") as repo_cls:
            repo_cls.return_value.update.side_effect = ThresholdNotFoundError("Threshold 7 not found")
            response = client.patch("/api/sentiment/thresholds/7", json={"required_count": 1})
        assert response.status_code == 404

    def test_empty_update_is_400(self, client, db_connection):
        response = client.patch("/api/sentiment/thresholds/7", json={})
        assert response.status_code == 400

    def test_out_of_range_update_is_422(self, client, db_connection):
        response = client.patch("/api/sentiment/thresholds/7", json={"rating_min": 4})
        assert response.status_code == 422

    def band_payload(self, criterion="enjoyment"):
        return [
            {
                "sentiment_level": b.sentiment_level.value,
                "rating_min": b.rating_min,
                "rating_max": b.rating_max,
                "required_count": b.required_count,
            }
            for b in default_thresholds(criterion)
        ]

    def test_replace_moves_shared_edge(self, client, db_connection):
        bands = self.band_payload()
        bands[5]["rating_max"] = 0.85
        bands[6]["rating_min"] = 0.85
        stored = [
            SentimentThreshold("enjoyment", b["sentiment_level"], b["rating_min"], b["rating_max"],
                               b["required_count"], id=i + 1, updated_at=STAMP)
            for i, b in enumerate(bands)
        ]
        with patch("src.api.sentiment_routes.ThresholdRepository") as repo_cls:
            repo_cls.return_value.replace_criterion.return_value = stored
            response = client.put("/api/sentiment/thresholds/enjoyment", json={"bands": bands})

        assert response.status_code == 200
        criterion, sent = repo_cls.return_value.replace_criterion.call_args.args
        assert criterion == "enjoyment"
        assert all(b.criterion_name == "enjoyment" for b in sent)
        assert (sent[5].rating_max, sent[6].rating_min) == (0.85, 0.85)
        assert response.json()[6]["rating_min"] == 0.85

    def test_invalid_replace_is_400(self, client, db_connection):
        with patch("src.api.sentiment_routes.ThresholdRepository") as repo_cls:
            repo_cls.return_value.replace_criterion.side_effect = ThresholdValidationError("enjoyment", "gap")
            response = client.put("/api/sentiment/thresholds/enjoyment", json={"bands": self.band_payload()})
        assert response.status_code == 400
        assert "gap" in response.json()["detail"]

    def test_replace_without_bands_is_422(self, client, db_connection):
        response = client.put("/api/sentiment/thresholds/enjoyment", json={"bands": []})
        assert response.status_code == 422

    def test_replace_without_database_is_503(self, client, db_connection):
        db_connection.side_effect = ConnectionError("down")
        response = client.put("/api/sentiment/thresholds/enjoyment", json={"bands": self.band_payload()})
        assert response.status_code == 503

    def test_book_sentiment(self, client, db_connection):
        results = [
            SentimentResult("enjoyment", SentimentLevel.VERY_POSITIVE, 0.92, 50, 48, 2),
            SentimentResult("writing", SentimentLevel.UNDETERMINED, None, 0, 0, 0),
        ]
        with patch("src.api.sentiment_routes.RatingSentimentService") as service_cls:
            service_cls.return_value.for_book.return_value = results
            response = client.get("/api/books/42/sentiment")

        assert response.status_code == 200
        body = response.json()
        assert body["book_id"] == 42
        assert body["criteria"][0]["sentiment"] == "very_positive"
        assert body["criteria"][1]["sentiment"] == "undetermined"
        assert body["criteria"][1]["score"] is None

    def test_book_sentiment_without_database(self, client, db_connection):
        db_connection.side_effect = ConnectionError("down")
        response = client.get("/api/books/42/sentiment")
        assert response.status_code == 503


class TestHealth:
    """GET /api/health"""

    def test_degraded_without_database(self, client):
        with patch("src.api.db.check_health", return_value={"status": "disconnected", "error": "x"}):
            response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_healthy(self, client):
        health = {"status": "connected", "version": "PostgreSQL 16.2", "latency_ms": 1.4, "threshold_rows": 35}
        with patch("src.api.db.check_health", return_value=health):
            response = client.get("/api/health")

        assert response.json()["status"] == "healthy"
        assert response.json()["database_version"] == "PostgreSQL 16.2"
        assert response.json()["threshold_rows"] == 35
