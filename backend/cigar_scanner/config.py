"""
Centralized configuration for the Cigar Scanner backend.

Tuning constants live on Config; secrets and deployment settings
are read from the environment through its static getters.
"""

import os
from pathlib import Path
from typing import List, Optional


class Config:
    """Cigar Scanner constants and environment getters."""

    # === Result Cache ===
    CACHE_MAX_SIZE = 100
    CACHE_TTL_SECONDS = 300           # 5 minutes; also the sweep interval

    # === Catalog Matching ===
    FUZZY_ACCEPT_THRESHOLD = 0.8      # get_details only accepts fuzzy hits at or above this
    FUZZY_QUERY_KEYWORDS = 10         # store "contains any" queries take at most 10 values
    FUZZY_QUERY_LIMIT = 20

    # === Recognition ===
    SUCCESSFUL_SCAN_THRESHOLD = 0.5   # stats: confidence strictly above counts as success
    IMAGE_SEARCH_MIN_CONFIDENCE = 0.5 # only look for images when confidence is above this
    CATALOG_CONFIDENCE = 1.0
    INFERRED_CONFIDENCE_CAP = 0.95
    DEFAULT_CONFIDENCE = 0.5

    # === Recognition History ===
    AGGREGATE_TOP_N = 5               # wrapper/binder/filler and tasting notes
    AGGREGATE_TOP_FLAVORS = 10

    # === Vision Upload ===
    VISION_MAX_IMAGE_BYTES = 4 * 1024 * 1024  # inline data limit for generateContent
    MAX_UPLOAD_BYTES = 20 * 1024 * 1024
    ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/heic", "image/heif"}

    # === Image Resolution ===
    IMAGE_PROBE_TIMEOUT = 2.0
    IMAGE_SEARCH_NUM_RESULTS = 10
    IMAGE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"

    # === Inference Backends ===
    DEFAULT_MODELS: List[str] = [
        "gemini-2.0-flash",
        "gemini-1.5-flash",
        "gemini-1.5-pro",
        "gemini-pro",
    ]
    DISCOVERY_API_VERSIONS: List[str] = ["v1", "v1beta"]
    GENERATION_API_VERSION = "v1"
    BACKEND_HTTP_TIMEOUT = 60.0

    # === Environment ===
    @staticmethod
    def gemini_api_key() -> Optional[str]:
        """Gemini API key (GOOGLE_API_KEY)."""
        return os.getenv("GOOGLE_API_KEY")

    @staticmethod
    def gemini_api_host() -> str:
        """Host serving the Generative Language REST API."""
        return os.getenv("GEMINI_API_HOST", "generativelanguage.googleapis.com")

    @staticmethod
    def search_api_key() -> Optional[str]:
        """API key for the Custom Search image API."""
        return os.getenv("GOOGLE_SEARCH_API_KEY")

    @staticmethod
    def search_engine_id() -> Optional[str]:
        """Programmable search engine id (cx)."""
        return os.getenv("GOOGLE_SEARCH_ENGINE_ID")

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR)."""
        return os.getenv("LOG_LEVEL", "INFO").upper()

    @staticmethod
    def cors_origins() -> List[str]:
        """Comma-separated list of allowed CORS origins."""
        raw = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    # === Database ===
    @staticmethod
    def database_path() -> str:
        """Path to SQLite database file.
        Default: backend/cigar_scanner/data/cigars.db (relative to package).
        Override with DATABASE_PATH env var for container deployments.
        """
        default = str(Path(__file__).parent / "data" / "cigars.db")
        return os.getenv("DATABASE_PATH", default)
