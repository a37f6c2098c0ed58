"""
Cigar catalog repository using SQLite.

Stores catalog entries (one row per size variant), their search
keywords and brand metadata. Schema is owned by Alembic migration 001.

Creation is a conditional insert: UNIQUE(normalized_brand, normalized_name)
makes a concurrent duplicate resolve to the row that won the race.
"""

import json
import logging
import sqlite3
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol

from ..db import SQLiteRepository, ensure_schema, parse_timestamp, utcnow_iso
from ..models.enums import CigarStrength, DataSource
from ..models.records import BrandEntry, CatalogEntry
from ..normalization import generate_search_keywords, normalize_name

logger = logging.getLogger(__name__)

_LIST_COLUMNS = {"flavor_profile", "foot_notes", "body_notes", "head_notes", "images"}

# Columns update_entry() may touch
_UPDATABLE_CIGAR_COLUMNS = {
    "brand_id", "size", "origin", "wrapper", "binder", "filler", "strength",
    "flavor_profile", "foot_notes", "body_notes", "head_notes", "description",
    "rating", "rating_source", "rating_date", "images", "verified",
}

_UPDATABLE_BRAND_COLUMNS = {
    "country", "description", "founded_year", "status",
    "total_products", "total_sales", "rating", "tags",
}


class CatalogStore(Protocol):
    """Keyed-document operations the matcher and reconciliation rely on."""

    def find_by_key(self, normalized_brand: str, normalized_name: str) -> Optional[CatalogEntry]:
        ...

    def find_by_keywords(self, keywords: list[str], limit: int = 20) -> list[CatalogEntry]:
        ...

    def get(self, entry_id: int) -> Optional[CatalogEntry]:
        ...

    def create(self, entry: CatalogEntry) -> tuple[CatalogEntry, bool]:
        ...

    def update_entry(self, entry_id: int, fields: dict[str, Any]) -> bool:
        ...

    def find_brand_by_name(self, name: str) -> Optional[BrandEntry]:
        ...

    def get_brand(self, brand_id: int) -> Optional[BrandEntry]:
        ...

    def create_brand(self, brand: BrandEntry) -> tuple[BrandEntry, bool]:
        ...

    def update_brand(self, brand_id: int, fields: dict[str, Any]) -> bool:
        ...


def _to_db_value(column: str, value: Any) -> Any:
    if column in _LIST_COLUMNS or column == "tags":
        return json.dumps(list(value or []))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def _load_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Corrupt JSON list column: {raw[:50]}")
        return []
    return [str(item) for item in data] if isinstance(data, list) else []


class SQLiteCatalogStore(SQLiteRepository):
    """
    SQLite implementation of CatalogStore.

    Thread-safe via thread-local connections (see SQLiteRepository).
    """

    def __init__(self, db_path: Optional[str] = None):
        super().__init__(db_path, use_wal=True)
        ensure_schema(self.db_path)

    # === Catalog entries ===

    def _row_to_entry(self, row: sqlite3.Row, keywords: list[str]) -> CatalogEntry:
        strength = CigarStrength(row["strength"]) if row["strength"] else None
        return CatalogEntry(
            id=row["id"],
            brand_id=row["brand_id"],
            brand=row["brand"],
            name=row["name"],
            normalized_brand=row["normalized_brand"],
            normalized_name=row["normalized_name"],
            search_keywords=keywords,
            size=row["size"],
            origin=row["origin"],
            wrapper=row["wrapper"],
            binder=row["binder"],
            filler=row["filler"],
            strength=strength,
            flavor_profile=_load_list(row["flavor_profile"]),
            foot_notes=_load_list(row["foot_notes"]),
            body_notes=_load_list(row["body_notes"]),
            head_notes=_load_list(row["head_notes"]),
            description=row["description"],
            rating=row["rating"],
            rating_source=row["rating_source"],
            rating_date=parse_timestamp(row["rating_date"]),
            images=_load_list(row["images"]),
            data_source=DataSource(row["data_source"]),
            verified=bool(row["verified"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def _keywords_for(self, entry_ids: list[int]) -> dict[int, list[str]]:
        if not entry_ids:
            return {}
        placeholders = ",".join("?" * len(entry_ids))
        rows = self._fetch_all(f"""
            SELECT cigar_id, keyword FROM cigar_keywords
            WHERE cigar_id IN ({placeholders})
            ORDER BY rowid
        """, entry_ids)
        keywords: dict[int, list[str]] = {entry_id: [] for entry_id in entry_ids}
        for row in rows:
            keywords[row["cigar_id"]].append(row["keyword"])
        return keywords

    def _rows_to_entries(self, rows: list[sqlite3.Row]) -> list[CatalogEntry]:
        keywords = self._keywords_for([row["id"] for row in rows])
        return [self._row_to_entry(row, keywords.get(row["id"], [])) for row in rows]

    def _one_entry(self, row: Optional[sqlite3.Row]) -> Optional[CatalogEntry]:
        return self._rows_to_entries([row])[0] if row is not None else None

    def find_by_key(self, normalized_brand: str, normalized_name: str) -> Optional[CatalogEntry]:
        """Equality lookup on the normalized (brand, name) key."""
        return self._one_entry(self._fetch_one("""
            SELECT * FROM cigars
            WHERE normalized_brand = ? AND normalized_name = ?
            LIMIT 1
        """, (normalized_brand, normalized_name)))

    def find_by_keywords(self, keywords: list[str], limit: int = 20) -> list[CatalogEntry]:
        """Entries whose keyword set intersects keywords, ordered by id."""
        keywords = [k for k in keywords if k]
        if not keywords:
            return []
        placeholders = ",".join("?" * len(keywords))
        return self._rows_to_entries(self._fetch_all(f"""
            SELECT * FROM cigars
            WHERE id IN (
                SELECT DISTINCT cigar_id FROM cigar_keywords
                WHERE keyword IN ({placeholders})
            )
            ORDER BY id
            LIMIT ?
        """, (*keywords, limit)))

    def get(self, entry_id: int) -> Optional[CatalogEntry]:
        """Entry by primary key."""
        return self._one_entry(self._fetch_one("SELECT * FROM cigars WHERE id = ?", (entry_id,)))

    def count(self) -> int:
        """Number of catalog entries."""
        return self._fetch_one("SELECT COUNT(*) FROM cigars")[0]

    def create(self, entry: CatalogEntry) -> tuple[CatalogEntry, bool]:
        """
        Insert entry unless its normalized key already exists.

        Normalized fields and keywords are derived from brand/name
        when not set on the entry.

        Returns:
            Tuple of (stored entry, created). created is False when an
            existing row with the same key was returned instead.
        """
        normalized_brand = entry.normalized_brand or normalize_name(entry.brand)
        normalized_name = entry.normalized_name or normalize_name(entry.name)
        keywords = entry.search_keywords or generate_search_keywords(entry.brand, entry.name)
        now = utcnow_iso()

        try:
            with self._transaction() as cursor:
                cursor.execute("""
                    INSERT INTO cigars (
                        brand_id, brand, name, normalized_brand, normalized_name,
                        size, origin, wrapper, binder, filler, strength,
                        flavor_profile, foot_notes, body_notes, head_notes,
                        description, rating, rating_source, rating_date,
                        images, data_source, verified, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    entry.brand_id, entry.brand, entry.name, normalized_brand, normalized_name,
                    entry.size, entry.origin, entry.wrapper, entry.binder, entry.filler,
                    _to_db_value("strength", entry.strength),
                    _to_db_value("flavor_profile", entry.flavor_profile),
                    _to_db_value("foot_notes", entry.foot_notes),
                    _to_db_value("body_notes", entry.body_notes),
                    _to_db_value("head_notes", entry.head_notes),
                    entry.description, entry.rating, entry.rating_source,
                    _to_db_value("rating_date", entry.rating_date),
                    _to_db_value("images", entry.images),
                    _to_db_value("data_source", entry.data_source),
                    int(entry.verified), now, now,
                ))
                entry_id = cursor.lastrowid
                cursor.executemany("""
                    INSERT OR IGNORE INTO cigar_keywords (cigar_id, keyword)
                    VALUES (?, ?)
                """, [(entry_id, keyword) for keyword in keywords])
                if entry.brand_id is not None:
                    cursor.execute("""
                        UPDATE brands SET total_products = total_products + 1,
                            updated_at = ?
                        WHERE id = ?
                    """, (now, entry.brand_id))
        except sqlite3.IntegrityError:
            existing = self.find_by_key(normalized_brand, normalized_name)
            if existing is None:
                raise
            logger.info(f"Catalog entry already exists, reusing id={existing.id}: {existing.name}")
            return existing, False

        logger.info(f"Created catalog entry id={entry_id}: {entry.name}")
        return self.get(entry_id), True

    def update_entry(self, entry_id: int, fields: dict[str, Any]) -> bool:
        """Update the given columns of an entry. Returns True if a row changed."""
        unknown = set(fields) - _UPDATABLE_CIGAR_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update catalog columns: {sorted(unknown)}")
        if not fields:
            return False

        updates = [f"{column} = ?" for column in fields]
        params = [_to_db_value(column, value) for column, value in fields.items()]
        updates.append("updated_at = ?")
        params.append(utcnow_iso())
        params.append(entry_id)

        with self._transaction() as cursor:
            cursor.execute(f"""
                UPDATE cigars
                SET {', '.join(updates)}
                WHERE id = ?
            """, tuple(params))
            return cursor.rowcount > 0

    # === Brands ===

    def _row_to_brand(self, row: sqlite3.Row) -> BrandEntry:
        return BrandEntry(
            id=row["id"],
            name=row["name"],
            country=row["country"],
            description=row["description"],
            founded_year=row["founded_year"],
            status=row["status"],
            total_products=row["total_products"],
            total_sales=row["total_sales"],
            rating=row["rating"],
            tags=_load_list(row["tags"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def find_brand_by_name(self, name: str) -> Optional[BrandEntry]:
        """Find brand by name, ignoring case and punctuation."""
        row = self._fetch_one(
            "SELECT * FROM brands WHERE normalized_name = ? LIMIT 1",
            (normalize_name(name),),
        )
        return self._row_to_brand(row) if row else None

    def get_brand(self, brand_id: int) -> Optional[BrandEntry]:
        """Brand by primary key."""
        row = self._fetch_one("SELECT * FROM brands WHERE id = ?", (brand_id,))
        return self._row_to_brand(row) if row else None

    def create_brand(self, brand: BrandEntry) -> tuple[BrandEntry, bool]:
        """Insert brand unless one with the same normalized name exists."""
        now = utcnow_iso()
        try:
            with self._transaction() as cursor:
                cursor.execute("""
                    INSERT INTO brands (
                        name, normalized_name, country, description, founded_year,
                        status, total_products, total_sales, rating, tags,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    brand.name, normalize_name(brand.name), brand.country,
                    brand.description, brand.founded_year, brand.status,
                    brand.total_products, brand.total_sales, brand.rating,
                    _to_db_value("tags", brand.tags), now, now,
                ))
                brand_id = cursor.lastrowid
        except sqlite3.IntegrityError:
            existing = self.find_brand_by_name(brand.name)
            if existing is None:
                raise
            return existing, False

        logger.info(f"Created brand id={brand_id}: {brand.name}")
        return self.get_brand(brand_id), True

    def update_brand(self, brand_id: int, fields: dict[str, Any]) -> bool:
        """Update the given brand columns. Returns True if a row changed."""
        unknown = set(fields) - _UPDATABLE_BRAND_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update brand columns: {sorted(unknown)}")
        if not fields:
            return False

        updates = [f"{column} = ?" for column in fields]
        params = [_to_db_value(column, value) for column, value in fields.items()]
        updates.append("updated_at = ?")
        params.append(utcnow_iso())
        params.append(brand_id)

        with self._transaction() as cursor:
            cursor.execute(f"""
                UPDATE brands
                SET {', '.join(updates)}
                WHERE id = ?
            """, tuple(params))
            return cursor.rowcount > 0


_store_instance: Optional[SQLiteCatalogStore] = None


def get_catalog_store() -> SQLiteCatalogStore:
    """Get the singleton catalog store."""
    global _store_instance
    if _store_instance is None:
        _store_instance = SQLiteCatalogStore()
    return _store_instance


def reset_catalog_store() -> None:
    """Reset the singleton instance (for testing)."""
    global _store_instance
    if _store_instance is not None:
        _store_instance.close()
    _store_instance = None
