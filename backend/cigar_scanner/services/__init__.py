from .catalog_matcher import CatalogMatcher, calculate_similarity
from .catalog_store import CatalogStore, SQLiteCatalogStore, get_catalog_store
from .image_resolver import ImageResolver
from .inference_backend import GeminiBackend, get_inference_backend
from .recognition_orchestrator import RecognitionOrchestrator
from .recognition_stats import RecognitionStatsTracker, get_stats_tracker
from .reconciliation import ReconciliationService
from .result_cache import ResultCache, get_result_cache

__all__ = [
    "CatalogMatcher",
    "calculate_similarity",
    "CatalogStore",
    "SQLiteCatalogStore",
    "get_catalog_store",
    "ImageResolver",
    "GeminiBackend",
    "get_inference_backend",
    "RecognitionOrchestrator",
    "RecognitionStatsTracker",
    "get_stats_tracker",
    "ReconciliationService",
    "ResultCache",
    "get_result_cache",
]
