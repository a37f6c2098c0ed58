"""
API tests for the /recognize, /models, /stats, /stats/aggregate and /cache endpoints.

Services are swapped through FastAPI dependency overrides.
"""

import io
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from cigar_scanner.errors import AllBackendsFailedError, BackendRejected, ConfigurationError
from cigar_scanner.models.enums import CigarStrength, ModelSource
from cigar_scanner.models.records import ModelCandidate, RecognitionResult
from cigar_scanner.routes.recognize import (
    get_orchestrator,
    get_reconciliation_service,
)
from cigar_scanner.services.catalog_matcher import CatalogMatcher
from cigar_scanner.services.inference_backend import get_inference_backend
from cigar_scanner.services.recognition_stats import RecognitionStatsTracker, get_stats_tracker
from cigar_scanner.services.reconciliation import ReconciliationService
from cigar_scanner.settings import RecognitionSettings, get_settings
from main import app


def _jpeg() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(90, 60, 30)).save(buffer, format="JPEG")
    return buffer.getvalue()


def _cohiba() -> RecognitionResult:
    return RecognitionResult(
        brand="Cohiba",
        name="Cohiba Robusto",
        origin="Cuba",
        strength=CigarStrength.MEDIUM,
        description="Likely a medium-bodied robusto.",
        confidence=0.92,
        model="gemini-2.0-flash",
    )


@pytest.fixture
def orchestrator():
    fake = MagicMock()
    fake.recognize_from_image = AsyncMock(return_value=_cohiba())
    fake.recognize_from_text = AsyncMock(return_value=_cohiba())
    return fake


@pytest.fixture
def reconciler(store):
    return ReconciliationService(store, CatalogMatcher(store))


@pytest.fixture
def client(orchestrator, reconciler):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_reconciliation_service] = lambda: reconciler
    app.dependency_overrides[get_settings] = lambda: RecognitionSettings(enable_data_storage=True)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client, data=None, content_type="image/jpeg"):
    return client.post(
        "/recognize/image",
        files={"image": ("cigar.jpg", data if data is not None else _jpeg(), content_type)},
    )


class TestRecognizeImage:
    """Test POST /recognize/image."""

    def test_success_with_reconciliation(self, client, store):
        response = _upload(client)

        assert response.status_code == 200
        data = response.json()
        assert data["result"]["name"] == "Cohiba Robusto"
        assert data["result"]["has_detailed_info"] is False
        assert data["result"]["confidence"] == pytest.approx(0.92)
        assert data["result"]["strength"] == "medium"
        assert data["reconciliation"]["matched"] is False
        assert data["reconciliation"]["created"] is True
        assert store.count() == 1

    def test_storage_disabled(self, client, store):
        app.dependency_overrides[get_settings] = lambda: RecognitionSettings(enable_data_storage=False)

        response = _upload(client)

        assert response.status_code == 200
        assert response.json()["reconciliation"] is None
        assert store.count() == 0

    def test_hint_forwarded(self, client, orchestrator):
        client.post(
            "/recognize/image",
            files={"image": ("cigar.jpg", _jpeg(), "image/jpeg")},
            data={"hint": "Cohiba"},
        )

        assert orchestrator.recognize_from_image.call_args.kwargs["hint"] == "Cohiba"

    def test_invalid_content_type(self, client):
        response = _upload(client, data=b"GIF89a", content_type="image/gif")

        assert response.status_code == 400

    def test_empty_file(self, client):
        response = _upload(client, data=b"")

        assert response.status_code == 400

    def test_undecodable_image(self, client, orchestrator):
        orchestrator.recognize_from_image.side_effect = ValueError("Unsupported image data")

        response = _upload(client)

        assert response.status_code == 400

    @pytest.mark.parametrize("error,status", [
        (ConfigurationError("GOOGLE_API_KEY not set"), 503),
        (BackendRejected("quota", status_code=429), 502),
        (AllBackendsFailedError(None, ["gemini-2.0-flash"]), 502),
    ])
    def test_backend_errors(self, client, orchestrator, error, status):
        orchestrator.recognize_from_image.side_effect = error

        response = _upload(client)

        assert response.status_code == status

    def test_reconciliation_failure_still_returns_result(self, client, orchestrator):
        broken = MagicMock()
        broken.reconcile.side_effect = RuntimeError("database is locked")
        app.dependency_overrides[get_reconciliation_service] = lambda: broken

        response = _upload(client)

        assert response.status_code == 200
        assert response.json()["result"]["name"] == "Cohiba Robusto"
        assert response.json()["reconciliation"] is None


class TestRecognizeText:
    """Test POST /recognize/text."""

    def test_success_does_not_reconcile(self, client, orchestrator, store):
        response = client.post("/recognize/text", json={"query": "Cohiba Robusto"})

        assert response.status_code == 200
        assert response.json()["reconciliation"] is None
        orchestrator.recognize_from_text.assert_awaited_once_with("Cohiba Robusto", brand=None)
        assert store.count() == 0

    def test_blank_query(self, client):
        response = client.post("/recognize/text", json={"query": "   "})

        assert response.status_code == 422

    def test_backend_unavailable(self, client, orchestrator):
        orchestrator.recognize_from_text.side_effect = AllBackendsFailedError(None, [])

        response = client.post("/recognize/text", json={"query": "Cohiba Robusto"})

        assert response.status_code == 502
        assert "All models unavailable" in response.json()["detail"]


class TestModels:
    """Test GET /models."""

    def test_lists_candidates(self, client):
        backend = MagicMock()
        backend.candidate_models = AsyncMock(return_value=[
            ModelCandidate("gemini-2.5-flash", ModelSource.DISCOVERED),
            ModelCandidate("gemini-2.0-flash", ModelSource.DEFAULT),
        ])
        backend.discover_models = AsyncMock(return_value=["gemini-2.5-flash"])
        app.dependency_overrides[get_inference_backend] = lambda: backend

        response = client.get("/models", params={"refresh": True})

        assert response.status_code == 200
        assert response.json() == [
            {"model_id": "gemini-2.5-flash", "source": "discovered"},
            {"model_id": "gemini-2.0-flash", "source": "default"},
        ]
        backend.discover_models.assert_awaited_once_with(refresh=True)

    def test_missing_key(self, client):
        backend = MagicMock()
        backend.candidate_models = AsyncMock(side_effect=ConfigurationError("GOOGLE_API_KEY not set"))
        app.dependency_overrides[get_inference_backend] = lambda: backend

        assert client.get("/models").status_code == 503


class TestStats:
    """Test GET /stats and GET /cache/stats."""

    def test_stats(self, client, temp_db):
        tracker = RecognitionStatsTracker(temp_db)
        tracker.record("Cohiba", "Cohiba Robusto", 0.9, image_found=True, has_details=False)
        app.dependency_overrides[get_stats_tracker] = lambda: tracker

        response = client.get("/stats", params={"brand": "Cohiba", "name": "Cohiba Robusto"})

        assert response.status_code == 200
        assert response.json()["total_scans"] == 1
        tracker.close()

    def test_stats_unknown(self, client, temp_db):
        tracker = RecognitionStatsTracker(temp_db)
        app.dependency_overrides[get_stats_tracker] = lambda: tracker

        response = client.get("/stats", params={"brand": "Nobody", "name": "Nothing"})

        assert response.status_code == 404
        tracker.close()

    def test_aggregated_stats(self, client, temp_db):
        tracker = RecognitionStatsTracker(temp_db)
        tracker.record_recognition(_cohiba())
        tracker.record_recognition(RecognitionResult(
            brand="Cohiba", name="Cohiba Robusto", origin="Dominican Republic", confidence=0.6,
        ))
        app.dependency_overrides[get_stats_tracker] = lambda: tracker

        response = client.get("/stats/aggregate", params={"name": "cohiba robusto"})

        assert response.status_code == 200
        body = response.json()
        assert body["total_recognitions"] == 2
        assert body["origin"] == "Cuba"
        assert body["origin_consistency"] == 50.0
        assert body["strength"] == "medium"
        assert body["strength_consistency"] == 100.0
        assert "product_key" not in body
        tracker.close()

    def test_aggregated_stats_unknown(self, client, temp_db):
        tracker = RecognitionStatsTracker(temp_db)
        app.dependency_overrides[get_stats_tracker] = lambda: tracker

        response = client.get("/stats/aggregate", params={"name": "Nothing"})

        assert response.status_code == 404
        tracker.close()

    def test_cache_stats(self, client):
        response = client.get("/cache/stats")

        assert response.status_code == 200
        assert {"size", "max_size", "ttl_seconds", "hits", "misses"} <= set(response.json())


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
