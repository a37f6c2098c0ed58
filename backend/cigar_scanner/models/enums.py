"""
Enums for type-safe string constants in Cigar Scanner.
"""

from enum import Enum
from typing import Optional


class CigarStrength(str, Enum):
    """Body/strength of a cigar."""
    MILD = "mild"
    MEDIUM_MILD = "medium-mild"
    MEDIUM = "medium"
    MEDIUM_FULL = "medium-full"
    FULL = "full"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "CigarStrength":
        """Map free-text strength ("Medium to Full", "FULL") onto the enum."""
        if not value:
            return cls.UNKNOWN
        text = str(value).strip().lower().replace("_", "-")
        text = text.replace(" to ", "-").replace(" ", "-")
        for member in cls:
            if member.value == text:
                return member
        if text in ("full-medium",):
            return cls.MEDIUM_FULL
        if text in ("mild-medium",):
            return cls.MEDIUM_MILD
        return cls.UNKNOWN


class ModelSource(str, Enum):
    """Where a candidate model id came from."""
    ADMIN = "admin"            # Admin-preferred list from settings
    DISCOVERED = "discovered"  # Listed by the models endpoint
    DEFAULT = "default"        # Hardcoded fallback list


class DataSource(str, Enum):
    """Provenance of a catalog entry."""
    MANUAL = "manual"
    IMPORTED = "imported"
    RECOGNIZED = "recognized"  # Created by reconciliation from a recognition result


class Transport(str, Enum):
    """How a backend call was made."""
    SDK = "sdk"
    REST = "rest"
