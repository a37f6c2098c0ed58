"""Add recognition_history table.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

One row per model recognition, keyed by normalized product name, so
repeated answers for the same cigar can be aggregated into majority
values.
"""
from typing import Sequence, Union

from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    raw_conn = conn.connection.dbapi_connection

    raw_conn.executescript("""
        CREATE TABLE IF NOT EXISTS recognition_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            product_key TEXT NOT NULL,
            brand TEXT NOT NULL,
            name TEXT NOT NULL,
            origin TEXT,
            strength TEXT,
            wrapper TEXT,
            binder TEXT,
            filler TEXT,
            flavor_profile TEXT NOT NULL DEFAULT '[]',
            foot_notes TEXT NOT NULL DEFAULT '[]',
            body_notes TEXT NOT NULL DEFAULT '[]',
            head_notes TEXT NOT NULL DEFAULT '[]',
            description TEXT,
            rating REAL,
            confidence REAL NOT NULL,
            model TEXT,
            recognized_at TIMESTAMP NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_recognition_history_product
        ON recognition_history(product_key);
    """)


def downgrade() -> None:
    conn = op.get_bind()
    raw_conn = conn.connection.dbapi_connection

    raw_conn.execute("DROP INDEX IF EXISTS idx_recognition_history_product")
    raw_conn.execute("DROP TABLE IF EXISTS recognition_history")
