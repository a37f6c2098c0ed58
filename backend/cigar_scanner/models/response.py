"""
Pydantic models for the Cigar Scanner API.

Recognition response shape:
{
  "result": {
    "brand": "Cohiba",
    "name": "Cohiba Robusto",
    "confidence": 0.92,
    "has_detailed_info": false,
    ...
  },
  "reconciliation": {
    "matched": false,
    "data_complete": false,
    "brand_id": 3,
    "catalog_ids": [17]
  }
}
"""

from dataclasses import asdict
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .enums import CigarStrength, ModelSource
from .records import (
    AggregatedRecognition,
    ModelCandidate,
    ReconciliationOutcome,
    RecognitionResult,
    RecognitionStats,
)


class RecognitionResultModel(BaseModel):
    """A recognized cigar."""
    brand: str = Field(..., description="Brand (manufacturer) name")
    name: str = Field(..., description="Full product name including the size")
    origin: Optional[str] = Field(None, description="Country of manufacture")
    size: Optional[str] = Field(None, description="Vitola, e.g. 'Robusto'")
    flavor_profile: list[str] = Field(default_factory=list)
    strength: CigarStrength = Field(CigarStrength.UNKNOWN)
    wrapper: Optional[str] = None
    binder: Optional[str] = None
    filler: Optional[str] = None
    foot_notes: list[str] = Field(default_factory=list, description="Tasting notes, first third")
    body_notes: list[str] = Field(default_factory=list, description="Tasting notes, second third")
    head_notes: list[str] = Field(default_factory=list, description="Tasting notes, final third")
    description: Optional[str] = None
    rating: Optional[float] = Field(None, description="Score 0-100 from a named source, None if unknown")
    rating_source: Optional[str] = None
    confidence: float = Field(..., ge=0, le=1)
    image_url: Optional[str] = None
    has_detailed_info: bool = Field(False, description="True when values come from a verified catalog entry")
    catalog_id: Optional[int] = None
    model: Optional[str] = Field(None, description="Backend model that produced the inference")

    @field_validator('rating')
    @classmethod
    def validate_rating_range(cls, v: Optional[float]) -> Optional[float]:
        """Validate rating is in range 0-100 when not None."""
        if v is not None and (v < 0 or v > 100):
            raise ValueError('rating must be between 0 and 100')
        return v

    @classmethod
    def from_result(cls, result: RecognitionResult) -> "RecognitionResultModel":
        data = asdict(result)
        for key in ("brand_description", "brand_founded_year", "brand_country"):
            data.pop(key, None)
        return cls(**data)


class ReconciliationModel(BaseModel):
    """Summary of how a result was merged into the catalog."""
    matched: bool
    data_complete: bool
    created: bool = False
    brand_id: Optional[int] = None
    catalog_ids: list[int] = Field(default_factory=list)
    updated_fields: list[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: ReconciliationOutcome) -> "ReconciliationModel":
        return cls(
            matched=outcome.matched,
            data_complete=outcome.data_complete,
            created=outcome.created,
            brand_id=outcome.brand_id,
            catalog_ids=outcome.catalog_ids,
            updated_fields=outcome.updated_fields,
        )


class RecognitionResponse(BaseModel):
    """Response from the /recognize endpoints."""
    result: RecognitionResultModel
    reconciliation: Optional[ReconciliationModel] = None


class TextRecognitionRequest(BaseModel):
    """Body of POST /recognize/text."""
    query: str = Field(..., min_length=1, description="Free-text cigar name")
    brand: Optional[str] = Field(None, description="Brand, when already known")

    @field_validator('query')
    @classmethod
    def validate_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('query must not be blank')
        return v.strip()


class ModelCandidateModel(BaseModel):
    """A candidate backend model."""
    model_id: str
    source: ModelSource

    @classmethod
    def from_candidate(cls, candidate: ModelCandidate) -> "ModelCandidateModel":
        return cls(model_id=candidate.model_id, source=candidate.source)


class RecognitionStatsModel(BaseModel):
    """Recognition statistics for one catalog key."""
    brand: str
    name: str
    total_scans: int
    successful_scans: int
    detailed_scans: int
    average_confidence: float
    image_success_rate: float
    last_scanned_at: Optional[datetime] = None

    @classmethod
    def from_stats(cls, stats: RecognitionStats) -> "RecognitionStatsModel":
        data = asdict(stats)
        data.pop("catalog_key")
        return cls(**data)


class ValueFrequencyModel(BaseModel):
    """One value and how often recognitions gave it."""
    value: str
    count: int
    percentage: float


class AggregatedRecognitionModel(BaseModel):
    """Majority values across all recorded recognitions of one product."""
    name: str
    total_recognitions: int
    brand: Optional[str] = None
    brand_consistency: float = 0.0
    origin: Optional[str] = None
    origin_consistency: float = 0.0
    strength: Optional[str] = None
    strength_consistency: float = 0.0
    description: Optional[str] = None
    rating: Optional[float] = None
    rating_count: int = 0
    wrappers: list[ValueFrequencyModel] = Field(default_factory=list)
    binders: list[ValueFrequencyModel] = Field(default_factory=list)
    fillers: list[ValueFrequencyModel] = Field(default_factory=list)
    foot_notes: list[ValueFrequencyModel] = Field(default_factory=list)
    body_notes: list[ValueFrequencyModel] = Field(default_factory=list)
    head_notes: list[ValueFrequencyModel] = Field(default_factory=list)
    flavor_profile: list[ValueFrequencyModel] = Field(default_factory=list)
    average_confidence: float = 0.0
    last_recognized_at: Optional[datetime] = None

    @classmethod
    def from_aggregate(cls, aggregate: AggregatedRecognition) -> "AggregatedRecognitionModel":
        data = asdict(aggregate)
        data.pop("product_key")
        return cls(**data)
