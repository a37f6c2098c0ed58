"""
Internal data types shared by the recognition services.

These are plain dataclasses; the API layer converts them into the
pydantic models in response.py.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import CigarStrength, DataSource, ModelSource


@dataclass
class RecognitionResult:
    """Output of a recognition pass, either inferred or catalog-verified."""
    brand: str
    name: str
    origin: Optional[str] = None
    size: Optional[str] = None
    flavor_profile: list[str] = field(default_factory=list)
    strength: CigarStrength = CigarStrength.UNKNOWN
    wrapper: Optional[str] = None
    binder: Optional[str] = None
    filler: Optional[str] = None
    foot_notes: list[str] = field(default_factory=list)   # first third
    body_notes: list[str] = field(default_factory=list)   # second third
    head_notes: list[str] = field(default_factory=list)   # final third
    description: Optional[str] = None
    rating: Optional[float] = None
    rating_source: Optional[str] = None
    confidence: float = 0.5
    image_url: Optional[str] = None
    has_detailed_info: bool = False
    catalog_id: Optional[int] = None
    brand_description: Optional[str] = None
    brand_founded_year: Optional[int] = None
    brand_country: Optional[str] = None
    model: Optional[str] = None


@dataclass
class CatalogEntry:
    """One size variant of a cigar line in the catalog."""
    brand: str
    name: str
    normalized_brand: str = ""
    normalized_name: str = ""
    search_keywords: list[str] = field(default_factory=list)
    id: Optional[int] = None
    brand_id: Optional[int] = None
    size: Optional[str] = None
    origin: Optional[str] = None
    wrapper: Optional[str] = None
    binder: Optional[str] = None
    filler: Optional[str] = None
    strength: Optional[CigarStrength] = None
    flavor_profile: list[str] = field(default_factory=list)
    foot_notes: list[str] = field(default_factory=list)
    body_notes: list[str] = field(default_factory=list)
    head_notes: list[str] = field(default_factory=list)
    description: Optional[str] = None
    rating: Optional[float] = None
    rating_source: Optional[str] = None
    rating_date: Optional[datetime] = None
    images: list[str] = field(default_factory=list)
    data_source: DataSource = DataSource.MANUAL
    verified: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def image_url(self) -> Optional[str]:
        """First image, used as the representative one."""
        return self.images[0] if self.images else None


@dataclass
class BrandEntry:
    """Brand-level metadata."""
    name: str
    id: Optional[int] = None
    country: Optional[str] = None
    description: Optional[str] = None
    founded_year: Optional[int] = None
    status: str = "active"
    total_products: int = 0
    total_sales: int = 0
    rating: Optional[float] = None
    tags: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RecognitionStats:
    """Running recognition statistics for one catalog key."""
    catalog_key: str
    brand: str
    name: str
    total_scans: int = 0
    successful_scans: int = 0
    detailed_scans: int = 0
    average_confidence: float = 0.0
    image_success_rate: float = 0.0
    last_scanned_at: Optional[datetime] = None


@dataclass
class ValueFrequency:
    """How often one value was given across recognitions of a product."""
    value: str
    count: int
    percentage: float


@dataclass
class AggregatedRecognition:
    """
    Majority view over every recorded recognition of one product.

    *_consistency is the share (0-100) of answers that gave the majority
    value. rating is the mean of sourced ratings only.
    """
    product_key: str
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
    wrappers: list[ValueFrequency] = field(default_factory=list)
    binders: list[ValueFrequency] = field(default_factory=list)
    fillers: list[ValueFrequency] = field(default_factory=list)
    foot_notes: list[ValueFrequency] = field(default_factory=list)
    body_notes: list[ValueFrequency] = field(default_factory=list)
    head_notes: list[ValueFrequency] = field(default_factory=list)
    flavor_profile: list[ValueFrequency] = field(default_factory=list)
    average_confidence: float = 0.0
    last_recognized_at: Optional[datetime] = None


@dataclass
class FuzzyMatch:
    """A scored fuzzy catalog candidate."""
    entry: CatalogEntry
    similarity: float


@dataclass(frozen=True)
class ModelCandidate:
    """A backend model id plus where it came from."""
    model_id: str
    source: ModelSource


@dataclass
class ReconciliationOutcome:
    """What reconcile() did with a recognition result."""
    matched: bool
    data_complete: bool
    brand_id: Optional[int] = None
    catalog_ids: list[int] = field(default_factory=list)
    entries: list[CatalogEntry] = field(default_factory=list)
    created: bool = False
    updated_fields: list[str] = field(default_factory=list)
