"""
Runtime settings for the recognition pipeline.

Uses pydantic-settings for typed, validated,
environment-variable-backed toggles.

Toggle via env vars: ENABLE_IMAGE_SEARCH=false
PREFERRED_MODELS accepts a JSON list or a comma-separated string.
"""

import json
from functools import lru_cache
from typing import Annotated, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode


class RecognitionSettings(BaseSettings):
    """Recognition toggles backed by environment variables."""

    enable_image_search: bool = True
    enable_data_storage: bool = True
    preferred_models: Annotated[List[str], NoDecode] = []

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
    }

    @field_validator("preferred_models", mode="before")
    @classmethod
    def _split_models(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return []
            if text.startswith("["):
                value = json.loads(text)
            else:
                value = text.split(",")
        return [str(v).strip() for v in value if str(v).strip()]


@lru_cache()
def get_settings() -> RecognitionSettings:
    """Cached singleton. Use FastAPI Depends() for injection."""
    return RecognitionSettings()
