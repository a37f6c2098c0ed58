"""
Recognition statistics and history per product.

Each recognition updates a running record: scan counts, a weighted
running mean of confidence, and the image-resolution success rate.
Rows live in their own table, so stats accumulate for products that
are not (yet) in the catalog.

Model answers are also appended to recognition_history. Inference is
not deterministic; get_aggregated() folds the history for one product
into majority values with consistency percentages, a mean rating and
the most common blend components and tasting notes.

Recording is best-effort telemetry: record() and record_recognition()
never raise.
"""

import json
import logging
from collections import Counter
from typing import Iterable, Optional

from ..config import Config
from ..db import SQLiteRepository, ensure_schema, parse_timestamp, utcnow_iso
from ..models.enums import CigarStrength
from ..models.records import (
    AggregatedRecognition,
    RecognitionResult,
    RecognitionStats,
    ValueFrequency,
)
from ..normalization import catalog_key, normalize_name

logger = logging.getLogger(__name__)

_LIST_COLUMNS = ("flavor_profile", "foot_notes", "body_notes", "head_notes")


def count_values(values: Iterable[Optional[str]]) -> list[ValueFrequency]:
    """
    Frequencies of the non-blank values, most common first.

    Values compare case-insensitively and report the first spelling
    seen. Ties keep first-seen order.
    """
    counts: Counter = Counter()
    spelling: dict[str, str] = {}
    for value in values:
        text = (value or "").strip()
        if not text:
            continue
        key = text.casefold()
        spelling.setdefault(key, text)
        counts[key] += 1

    total = sum(counts.values())
    return [
        ValueFrequency(value=spelling[key], count=count, percentage=round(count * 100 / total, 1))
        for key, count in counts.most_common()
    ]


def _distinct(values: list[str]) -> list[str]:
    # A value repeated inside one answer counts once
    seen = set()
    unique = []
    for value in values:
        key = (value or "").strip().casefold()
        if key and key not in seen:
            seen.add(key)
            unique.append(value)
    return unique


class RecognitionStatsTracker(SQLiteRepository):
    """SQLite-backed recognition statistics and answer history."""

    def __init__(self, db_path: Optional[str] = None):
        super().__init__(db_path, use_wal=True)
        ensure_schema(self.db_path)

    def record(
        self,
        brand: str,
        name: str,
        confidence: float,
        image_found: bool,
        has_details: bool,
    ) -> None:
        """Fold one recognition into the running stats. Failures are logged only."""
        try:
            self._record(brand, name, confidence, image_found, has_details)
        except Exception as e:
            logger.warning(f"Failed to record recognition stats for {brand} / {name}: {e}")

    def _record(
        self,
        brand: str,
        name: str,
        confidence: float,
        image_found: bool,
        has_details: bool,
    ) -> None:
        successful = 1 if confidence > Config.SUCCESSFUL_SCAN_THRESHOLD else 0

        # Single upsert so concurrent writers cannot lose an update.
        # SET expressions read the pre-update row values.
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO recognition_stats (
                    catalog_key, brand, name, total_scans, successful_scans,
                    detailed_scans, average_confidence, image_success_rate,
                    last_scanned_at
                ) VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?)
                ON CONFLICT(catalog_key) DO UPDATE SET
                    total_scans = total_scans + 1,
                    successful_scans = successful_scans + excluded.successful_scans,
                    detailed_scans = detailed_scans + excluded.detailed_scans,
                    average_confidence =
                        (average_confidence * total_scans + excluded.average_confidence)
                        / (total_scans + 1),
                    image_success_rate =
                        (image_success_rate * total_scans + excluded.image_success_rate)
                        / (total_scans + 1),
                    last_scanned_at = excluded.last_scanned_at
            """, (
                catalog_key(brand, name), brand, name, successful,
                1 if has_details else 0, float(confidence),
                1.0 if image_found else 0.0, utcnow_iso(),
            ))

    def get_stats(self, brand: str, name: str) -> Optional[RecognitionStats]:
        """Current stats for (brand, name), or None if never scanned."""
        row = self._fetch_one(
            "SELECT * FROM recognition_stats WHERE catalog_key = ?",
            (catalog_key(brand, name),),
        )
        if row is None:
            return None
        return RecognitionStats(
            catalog_key=row["catalog_key"],
            brand=row["brand"],
            name=row["name"],
            total_scans=row["total_scans"],
            successful_scans=row["successful_scans"],
            detailed_scans=row["detailed_scans"],
            average_confidence=row["average_confidence"],
            image_success_rate=row["image_success_rate"],
            last_scanned_at=parse_timestamp(row["last_scanned_at"]),
        )

    # === Recognition history ===

    def record_recognition(self, result: RecognitionResult) -> None:
        """Append one model answer to its product's history. Failures are logged only."""
        try:
            self._record_recognition(result)
        except Exception as e:
            logger.warning(f"Failed to record recognition history for {result.name}: {e}")

    def _record_recognition(self, result: RecognitionResult) -> None:
        product_key = normalize_name(result.name)
        if not product_key:
            return
        strength = None if result.strength == CigarStrength.UNKNOWN else result.strength.value
        rating = result.rating if result.rating_source else None

        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO recognition_history (
                    product_key, brand, name, origin, strength, wrapper, binder,
                    filler, flavor_profile, foot_notes, body_notes, head_notes,
                    description, rating, confidence, model, recognized_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                product_key, result.brand, result.name, result.origin, strength,
                result.wrapper, result.binder, result.filler,
                json.dumps(result.flavor_profile), json.dumps(result.foot_notes),
                json.dumps(result.body_notes), json.dumps(result.head_notes),
                result.description, rating, float(result.confidence),
                result.model, utcnow_iso(),
            ))

    def get_aggregated(self, name: str) -> Optional[AggregatedRecognition]:
        """
        Majority view over every recorded answer for the product name.

        Returns:
            AggregatedRecognition, or None if the product was never recognized
        """
        product_key = normalize_name(name)
        if not product_key:
            return None
        rows = self._fetch_all(
            "SELECT * FROM recognition_history WHERE product_key = ? ORDER BY id",
            (product_key,),
        )
        if not rows:
            return None

        top_n = Config.AGGREGATE_TOP_N
        brands = count_values(row["brand"] for row in rows)
        origins = count_values(row["origin"] for row in rows)
        strengths = count_values(row["strength"] for row in rows)
        lists = {
            column: count_values(
                value for row in rows for value in _distinct(json.loads(row[column] or "[]"))
            )
            for column in _LIST_COLUMNS
        }
        ratings = [row["rating"] for row in rows if row["rating"] is not None]
        descriptions = [row["description"] for row in rows if (row["description"] or "").strip()]

        return AggregatedRecognition(
            product_key=product_key,
            name=rows[-1]["name"],
            total_recognitions=len(rows),
            brand=brands[0].value if brands else None,
            brand_consistency=brands[0].percentage if brands else 0.0,
            origin=origins[0].value if origins else None,
            origin_consistency=origins[0].percentage if origins else 0.0,
            strength=strengths[0].value if strengths else None,
            strength_consistency=strengths[0].percentage if strengths else 0.0,
            description=descriptions[-1] if descriptions else None,
            rating=round(sum(ratings) / len(ratings), 2) if ratings else None,
            rating_count=len(ratings),
            wrappers=count_values(row["wrapper"] for row in rows)[:top_n],
            binders=count_values(row["binder"] for row in rows)[:top_n],
            fillers=count_values(row["filler"] for row in rows)[:top_n],
            foot_notes=lists["foot_notes"][:top_n],
            body_notes=lists["body_notes"][:top_n],
            head_notes=lists["head_notes"][:top_n],
            flavor_profile=lists["flavor_profile"][:Config.AGGREGATE_TOP_FLAVORS],
            average_confidence=round(sum(row["confidence"] for row in rows) / len(rows), 4),
            last_recognized_at=parse_timestamp(rows[-1]["recognized_at"]),
        )


_tracker_instance: Optional[RecognitionStatsTracker] = None


def get_stats_tracker() -> RecognitionStatsTracker:
    """Get the singleton stats tracker."""
    global _tracker_instance
    if _tracker_instance is None:
        _tracker_instance = RecognitionStatsTracker()
    return _tracker_instance


def reset_stats_tracker() -> None:
    """Reset the singleton instance (for testing)."""
    global _tracker_instance
    if _tracker_instance is not None:
        _tracker_instance.close()
    _tracker_instance = None
