"""
Reconcile recognition results with the catalog.

The catalog wins: existing non-empty fields are never overwritten.
- Exact match, complete entry: nothing is written
- Exact match, incomplete entry: empty fields are backfilled and the
  new image appended
- No match: brand found or created, then one new catalog entry

Duplicate entries for the same normalized key are prevented by the
store's uniqueness constraint; a lost race returns the existing row.
"""

import logging
from typing import Any, Optional

from ..models.enums import CigarStrength, DataSource
from ..models.records import (
    BrandEntry,
    CatalogEntry,
    ReconciliationOutcome,
    RecognitionResult,
)
from ..normalization import normalize_name
from .catalog_matcher import CatalogMatcher
from .catalog_store import CatalogStore

logger = logging.getLogger(__name__)

KNOWN_VITOLAS = [
    "Robusto", "Torpedo", "Churchill", "Corona", "Corona Gorda",
    "No.2", "No.3", "No.4", "No.5", "No.6",
    "Esplendido", "Lancero", "Belicoso", "Petit Corona",
    "Double Corona", "Toro", "Gordo", "Perfecto", "Figurado",
]
# Longest first so "Double Corona" is preferred over "Corona"
_VITOLAS_BY_LENGTH = sorted(KNOWN_VITOLAS, key=len, reverse=True)

_TEXT_FIELDS = ("origin", "size", "wrapper", "binder", "filler", "description")
_LIST_FIELDS = ("flavor_profile", "foot_notes", "body_notes", "head_notes")


def extract_size_from_name(full_name: str, brand: str) -> Optional[str]:
    """
    Size part of a full product name.

    "Cohiba Robusto", "Cohiba" -> "Robusto"
    "Siglo VI Double Corona", "Cohiba" -> "Double Corona"
    """
    full_name = (full_name or "").strip()
    brand = (brand or "").strip()
    if brand and full_name.lower().startswith(brand.lower()):
        size = full_name[len(brand):].strip()
        if size:
            return size

    lowered = full_name.lower()
    for vitola in _VITOLAS_BY_LENGTH:
        if vitola.lower() in lowered:
            return vitola
    return None


def check_data_completeness(entry: CatalogEntry) -> bool:
    """Brand, name, origin and strength set, plus a description, tags or an image."""
    has_strength = entry.strength is not None and entry.strength != CigarStrength.UNKNOWN
    if not (entry.brand and entry.name and entry.origin and has_strength):
        return False
    return bool(
        (entry.description and entry.description.strip())
        or entry.flavor_profile
        or entry.images
    )


def backfill_fields(
    entry: CatalogEntry,
    result: RecognitionResult,
    image_url: Optional[str] = None,
) -> dict[str, Any]:
    """Updates that fill only the entry's empty fields from result."""
    updates: dict[str, Any] = {}

    for field_name in _TEXT_FIELDS:
        current = getattr(entry, field_name)
        incoming = getattr(result, field_name)
        if not (current and str(current).strip()) and incoming:
            updates[field_name] = incoming

    for field_name in _LIST_FIELDS:
        if not getattr(entry, field_name) and getattr(result, field_name):
            updates[field_name] = list(getattr(result, field_name))

    if entry.strength is None and result.strength != CigarStrength.UNKNOWN:
        updates["strength"] = result.strength

    if entry.rating is None and result.rating is not None and result.rating_source:
        updates["rating"] = result.rating
        updates["rating_source"] = result.rating_source

    if image_url and image_url not in entry.images:
        updates["images"] = [*entry.images, image_url]

    return updates


class ReconciliationService:
    """
    Merges recognition results into the catalog.

    Usage:
        service = ReconciliationService(store, matcher)
        outcome = service.reconcile(result)
    """

    def __init__(self, store: CatalogStore, matcher: CatalogMatcher):
        self.store = store
        self.matcher = matcher

    def reconcile(
        self,
        result: RecognitionResult,
        image_url: Optional[str] = None,
    ) -> ReconciliationOutcome:
        """Attach result to its exact catalog match, or create brand and entry."""
        image_url = image_url or result.image_url
        existing = self.matcher.find_exact(result.brand, result.name)

        if existing is not None:
            return self._reconcile_existing(existing, result, image_url)
        return self._create_new(result, image_url)

    def find_or_create_brand(self, result: RecognitionResult) -> int:
        """Brand id for result.brand, backfilling description/founded year if empty."""
        brand = self.store.find_brand_by_name(result.brand)
        if brand is not None:
            updates: dict[str, Any] = {}
            if not (brand.description and brand.description.strip()) and result.brand_description:
                updates["description"] = result.brand_description.strip()
            if not brand.founded_year and result.brand_founded_year:
                updates["founded_year"] = result.brand_founded_year
            if updates:
                self.store.update_brand(brand.id, updates)
                logger.info(f"Backfilled brand {brand.name}: {sorted(updates)}")
            return brand.id

        created, _ = self.store.create_brand(BrandEntry(
            name=result.brand.strip(),
            country=result.brand_country or result.origin,
            description=(result.brand_description or "").strip() or None,
            founded_year=result.brand_founded_year,
        ))
        return created.id

    def _invalidate_brand(self, *brands: str) -> None:
        # Lookups may be cached under any query name for the brand
        for brand in {normalize_name(b): b for b in brands if b}.values():
            self.matcher.invalidate(brand)

    def _reconcile_existing(
        self,
        entry: CatalogEntry,
        result: RecognitionResult,
        image_url: Optional[str],
    ) -> ReconciliationOutcome:
        brand_id = self.find_or_create_brand(result)
        updates: dict[str, Any] = {}
        if entry.brand_id is None:
            updates["brand_id"] = brand_id
        else:
            brand_id = entry.brand_id

        data_complete = check_data_completeness(entry)
        if not data_complete:
            updates.update(backfill_fields(entry, result, image_url))

        if updates:
            self.store.update_entry(entry.id, updates)
            self._invalidate_brand(result.brand, entry.brand)
            logger.info(f"Backfilled catalog entry id={entry.id}: {sorted(updates)}")
            entry = self.store.get(entry.id) or entry

        return ReconciliationOutcome(
            matched=True,
            data_complete=data_complete,
            brand_id=brand_id,
            catalog_ids=[entry.id],
            entries=[entry],
            updated_fields=sorted(updates),
        )

    def _create_new(
        self,
        result: RecognitionResult,
        image_url: Optional[str],
    ) -> ReconciliationOutcome:
        brand_id = self.find_or_create_brand(result)
        has_rating = result.rating is not None and bool(result.rating_source)

        entry, created = self.store.create(CatalogEntry(
            brand=result.brand.strip(),
            name=result.name.strip(),
            brand_id=brand_id,
            size=extract_size_from_name(result.name, result.brand) or result.size,
            origin=result.origin,
            wrapper=result.wrapper,
            binder=result.binder,
            filler=result.filler,
            strength=None if result.strength == CigarStrength.UNKNOWN else result.strength,
            flavor_profile=list(result.flavor_profile),
            foot_notes=list(result.foot_notes),
            body_notes=list(result.body_notes),
            head_notes=list(result.head_notes),
            description=result.description,
            rating=result.rating if has_rating else None,
            rating_source=result.rating_source if has_rating else None,
            images=[image_url] if image_url else [],
            data_source=DataSource.RECOGNIZED,
            verified=False,
        ))
        self._invalidate_brand(result.brand, entry.brand)

        return ReconciliationOutcome(
            matched=False,
            data_complete=False,
            brand_id=brand_id,
            catalog_ids=[entry.id],
            entries=[entry],
            created=created,
        )
