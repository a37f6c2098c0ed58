"""
Alembic environment for the cigar catalog (SQLite, raw-SQL migrations).

URL precedence: the sqlalchemy.url set by ensure_schema(), then
DATABASE_PATH, then backend/cigar_scanner/data/cigars.db.
"""

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine

BACKEND_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BACKEND_ROOT))

config = context.config
# ensure_schema() sets configure_logger=False so the app's logging stays intact
if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def resolve_url() -> str:
    explicit = config.get_main_option("sqlalchemy.url")
    if explicit:
        return explicit
    db_path = os.getenv("DATABASE_PATH") or str(BACKEND_ROOT / "cigar_scanner" / "data" / "cigars.db")
    return f"sqlite:///{db_path}"


def run_offline() -> None:
    """Emit SQL without a connection (alembic upgrade --sql)."""
    context.configure(
        url=resolve_url(),
        target_metadata=None,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(resolve_url())
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=None)
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
