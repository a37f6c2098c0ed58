from .enums import (
    CigarStrength,
    DataSource,
    ModelSource,
    Transport,
)
from .records import (
    AggregatedRecognition,
    BrandEntry,
    CatalogEntry,
    FuzzyMatch,
    ModelCandidate,
    ReconciliationOutcome,
    RecognitionResult,
    RecognitionStats,
    ValueFrequency,
)
from .response import (
    AggregatedRecognitionModel,
    ModelCandidateModel,
    ReconciliationModel,
    RecognitionResponse,
    RecognitionResultModel,
    RecognitionStatsModel,
    TextRecognitionRequest,
    ValueFrequencyModel,
)

__all__ = [
    "CigarStrength",
    "DataSource",
    "ModelSource",
    "Transport",
    "BrandEntry",
    "CatalogEntry",
    "FuzzyMatch",
    "ModelCandidate",
    "ReconciliationOutcome",
    "RecognitionResult",
    "RecognitionStats",
    "AggregatedRecognition",
    "ValueFrequency",
    "AggregatedRecognitionModel",
    "ValueFrequencyModel",
    "ModelCandidateModel",
    "ReconciliationModel",
    "RecognitionResponse",
    "RecognitionResultModel",
    "RecognitionStatsModel",
    "TextRecognitionRequest",
]
