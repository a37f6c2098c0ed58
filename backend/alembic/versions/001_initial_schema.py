"""Initial schema - cigar catalog, brands, keywords, recognition stats.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

Creates core tables: brands, cigars, cigar_keywords, recognition_stats.
"""
from typing import Sequence, Union

from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Complete schema SQL inlined for immutability.
SCHEMA_SQL = """
-- Brand-level metadata
CREATE TABLE IF NOT EXISTS brands (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    normalized_name TEXT NOT NULL UNIQUE,
    country TEXT,
    description TEXT,
    founded_year INTEGER,
    status TEXT NOT NULL DEFAULT 'active',
    total_products INTEGER NOT NULL DEFAULT 0,
    total_sales INTEGER NOT NULL DEFAULT 0,
    rating REAL,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- One row per size variant; list columns hold JSON arrays
CREATE TABLE IF NOT EXISTS cigars (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    brand_id INTEGER,
    brand TEXT NOT NULL,
    name TEXT NOT NULL,
    normalized_brand TEXT NOT NULL,
    normalized_name TEXT NOT NULL,
    size TEXT,
    origin TEXT,
    wrapper TEXT,
    binder TEXT,
    filler TEXT,
    strength TEXT,
    flavor_profile TEXT NOT NULL DEFAULT '[]',
    foot_notes TEXT NOT NULL DEFAULT '[]',
    body_notes TEXT NOT NULL DEFAULT '[]',
    head_notes TEXT NOT NULL DEFAULT '[]',
    description TEXT,
    rating REAL CHECK (rating IS NULL OR (rating >= 0 AND rating <= 100)),
    rating_source TEXT,
    rating_date TIMESTAMP,
    images TEXT NOT NULL DEFAULT '[]',
    data_source TEXT NOT NULL DEFAULT 'manual',
    verified INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (brand_id) REFERENCES brands(id) ON DELETE SET NULL,
    UNIQUE(normalized_brand, normalized_name)
);

CREATE INDEX IF NOT EXISTS idx_cigars_brand_id ON cigars(brand_id);

-- Search keywords for "contains any" fuzzy lookups
CREATE TABLE IF NOT EXISTS cigar_keywords (
    cigar_id INTEGER NOT NULL,
    keyword TEXT NOT NULL,
    FOREIGN KEY (cigar_id) REFERENCES cigars(id) ON DELETE CASCADE,
    UNIQUE(cigar_id, keyword)
);

CREATE INDEX IF NOT EXISTS idx_cigar_keywords_keyword ON cigar_keywords(keyword);

-- Running recognition statistics, keyed independently of catalog rows
CREATE TABLE IF NOT EXISTS recognition_stats (
    catalog_key TEXT PRIMARY KEY,
    brand TEXT NOT NULL,
    name TEXT NOT NULL,
    total_scans INTEGER NOT NULL DEFAULT 0,
    successful_scans INTEGER NOT NULL DEFAULT 0,
    detailed_scans INTEGER NOT NULL DEFAULT 0,
    average_confidence REAL NOT NULL DEFAULT 0,
    image_success_rate REAL NOT NULL DEFAULT 0,
    last_scanned_at TIMESTAMP
);
"""


def upgrade() -> None:
    conn = op.get_bind()
    raw_conn = conn.connection.dbapi_connection
    raw_conn.executescript(SCHEMA_SQL)


def downgrade() -> None:
    conn = op.get_bind()
    raw_conn = conn.connection.dbapi_connection
    raw_conn.executescript("""
        DROP TABLE IF EXISTS recognition_stats;
        DROP INDEX IF EXISTS idx_cigar_keywords_keyword;
        DROP TABLE IF EXISTS cigar_keywords;
        DROP INDEX IF EXISTS idx_cigars_brand_id;
        DROP TABLE IF EXISTS cigars;
        DROP TABLE IF EXISTS brands;
    """)
