"""
/recognize endpoints for Cigar Scanner.

Image recognition runs the full pipeline and, when data storage is
enabled, reconciles the result into the catalog. Text recognition
looks the catalog up first and never writes to it.
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool

from ..config import Config
from ..errors import AllBackendsFailedError, BackendRejected, ConfigurationError
from ..models import (
    AggregatedRecognitionModel,
    ModelCandidateModel,
    ReconciliationModel,
    RecognitionResponse,
    RecognitionResultModel,
    RecognitionStatsModel,
    TextRecognitionRequest,
)
from ..settings import RecognitionSettings, get_settings
from ..services.catalog_matcher import CatalogMatcher
from ..services.catalog_store import get_catalog_store
from ..services.image_resolver import ImageResolver
from ..services.inference_backend import GeminiBackend, get_inference_backend
from ..services.recognition_orchestrator import RecognitionOrchestrator
from ..services.recognition_stats import RecognitionStatsTracker, get_stats_tracker
from ..services.reconciliation import ReconciliationService
from ..services.result_cache import get_result_cache

logger = logging.getLogger(__name__)
router = APIRouter()


# === Dependency Injection ===


@lru_cache(maxsize=1)
def get_catalog_matcher() -> CatalogMatcher:
    """Get or create catalog matcher (singleton via lru_cache)."""
    return CatalogMatcher(get_catalog_store(), get_result_cache())


@lru_cache(maxsize=1)
def get_orchestrator() -> RecognitionOrchestrator:
    """Get or create the recognition orchestrator (singleton via lru_cache)."""
    backend = get_inference_backend()
    return RecognitionOrchestrator(
        backend=backend,
        matcher=get_catalog_matcher(),
        image_resolver=ImageResolver(backend=backend),
        stats_tracker=get_stats_tracker(),
    )


@lru_cache(maxsize=1)
def get_reconciliation_service() -> ReconciliationService:
    """Get or create the reconciliation service (singleton via lru_cache)."""
    return ReconciliationService(get_catalog_store(), get_catalog_matcher())


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, (AllBackendsFailedError, BackendRejected)):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail="Internal server error")


# === Endpoints ===


@router.post("/recognize/image", response_model=RecognitionResponse)
async def recognize_image(
    image: UploadFile = File(..., description="Photo of a cigar"),
    hint: Optional[str] = Form(None, description="What the user thinks it is"),
    orchestrator: RecognitionOrchestrator = Depends(get_orchestrator),
    reconciler: ReconciliationService = Depends(get_reconciliation_service),
    settings: RecognitionSettings = Depends(get_settings),
) -> RecognitionResponse:
    """
    Identify a cigar from a photo.

    Returns:
        RecognitionResponse; reconciliation is set when data storage is on
    """
    if image.content_type not in Config.ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Invalid image type. Only JPEG, PNG, WebP and HEIC are supported."
        )

    try:
        image_bytes = await image.read()
    except IOError as e:
        logger.error(f"Failed to read uploaded image: {e}")
        raise HTTPException(status_code=400, detail="Failed to read image file")

    if not image_bytes:
        raise HTTPException(status_code=400, detail="Empty image file")
    if len(image_bytes) > Config.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"Image too large. Maximum size is {Config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB."
        )

    try:
        result = await orchestrator.recognize_from_image(image_bytes, hint=hint)
    except ValueError as e:
        logger.warning(f"Invalid image format: {e}")
        raise HTTPException(status_code=400, detail="Invalid image format")
    except (ConfigurationError, BackendRejected, AllBackendsFailedError) as e:
        logger.error(f"Recognition failed: {e}")
        raise _to_http_error(e)

    reconciliation = None
    if settings.enable_data_storage:
        try:
            outcome = await run_in_threadpool(reconciler.reconcile, result)
            reconciliation = ReconciliationModel.from_outcome(outcome)
        except Exception as e:
            # The recognition itself succeeded; storage failures degrade the response only
            logger.error(f"Reconciliation failed for {result.brand} / {result.name}: {e}", exc_info=True)

    return RecognitionResponse(
        result=RecognitionResultModel.from_result(result),
        reconciliation=reconciliation,
    )


@router.post("/recognize/text", response_model=RecognitionResponse)
async def recognize_text(
    request: TextRecognitionRequest,
    orchestrator: RecognitionOrchestrator = Depends(get_orchestrator),
) -> RecognitionResponse:
    """Look a cigar up by name, falling back to the inference backend."""
    try:
        result = await orchestrator.recognize_from_text(request.query, brand=request.brand)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (ConfigurationError, BackendRejected, AllBackendsFailedError) as e:
        logger.error(f"Text recognition failed: {e}")
        raise _to_http_error(e)

    return RecognitionResponse(result=RecognitionResultModel.from_result(result))


@router.get("/models", response_model=list[ModelCandidateModel])
async def list_models(
    refresh: bool = Query(False, description="Re-run model discovery"),
    backend: GeminiBackend = Depends(get_inference_backend),
    settings: RecognitionSettings = Depends(get_settings),
) -> list[ModelCandidateModel]:
    """Candidate models in the order recognition will try them."""
    try:
        if refresh:
            await backend.discover_models(refresh=True)
        candidates = await backend.candidate_models(settings.preferred_models)
    except ConfigurationError as e:
        raise _to_http_error(e)
    return [ModelCandidateModel.from_candidate(c) for c in candidates]


@router.get("/stats", response_model=RecognitionStatsModel)
async def recognition_stats(
    brand: str = Query(..., min_length=1),
    name: str = Query(..., min_length=1),
    tracker: RecognitionStatsTracker = Depends(get_stats_tracker),
) -> RecognitionStatsModel:
    """Recognition statistics for one product."""
    stats = tracker.get_stats(brand, name)
    if stats is None:
        raise HTTPException(status_code=404, detail="No recognitions recorded")
    return RecognitionStatsModel.from_stats(stats)


@router.get("/stats/aggregate", response_model=AggregatedRecognitionModel)
async def aggregated_recognitions(
    name: str = Query(..., min_length=1, description="Full product name"),
    tracker: RecognitionStatsTracker = Depends(get_stats_tracker),
) -> AggregatedRecognitionModel:
    """Majority values across every recorded model answer for one product."""
    aggregate = tracker.get_aggregated(name)
    if aggregate is None:
        raise HTTPException(status_code=404, detail="No recognitions recorded")
    return AggregatedRecognitionModel.from_aggregate(aggregate)


@router.get("/cache/stats")
async def cache_stats():
    """Result cache statistics for monitoring."""
    return get_result_cache().get_stats()
