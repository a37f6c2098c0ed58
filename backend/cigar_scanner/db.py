"""
SQLite plumbing shared by the catalog store and the stats tracker.

Schema changes only ever happen through the Alembic migrations in
backend/alembic; ensure_schema() upgrades a database file to head.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from alembic import command
from alembic.config import Config as AlembicConfig

logger = logging.getLogger(__name__)

MIGRATIONS_ROOT = Path(__file__).resolve().parent.parent


def ensure_schema(db_path: str) -> None:
    """
    Upgrade the database at db_path to the latest migration.

    Idempotent: revisions already recorded in alembic_version are
    skipped. The parent directory is created when missing.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    cfg = AlembicConfig(str(MIGRATIONS_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(MIGRATIONS_ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    cfg.attributes["configure_logger"] = False

    # Alembic logs every revision at INFO
    logging.getLogger("alembic").setLevel(logging.WARNING)

    try:
        command.upgrade(cfg, "head")
    except Exception as e:
        logger.error(f"Could not migrate {db_path}: {e}")
        raise
    logger.debug(f"Database at {db_path} is at head")


def utcnow_iso() -> str:
    """Current UTC time as the ISO-8601 text stored in timestamp columns."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Read a stored timestamp back as an aware datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        # CURRENT_TIMESTAMP default format: "YYYY-MM-DD HH:MM:SS"
        parsed = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteRepository:
    """
    One sqlite3 connection per thread, opened on first use.

    Foreign keys are always enforced. Subclasses that write from
    several threads should pass use_wal=True.
    """

    def __init__(self, db_path: Optional[str] = None, use_wal: bool = False):
        if db_path is None:
            from .config import Config
            db_path = Config.database_path()

        self.db_path = str(db_path)
        self._use_wal = use_wal
        self._threads = threading.local()

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._threads, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if self._use_wal:
                conn.execute("PRAGMA journal_mode = WAL")
            self._threads.conn = conn
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Cursor whose statements commit together, or roll back on error."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        except Exception:
            conn.rollback()
            raise
        conn.commit()

    def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        return self._get_connection().execute(sql, tuple(params)).fetchone()

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return self._get_connection().execute(sql, tuple(params)).fetchall()

    def close(self) -> None:
        """Close this thread's connection, if one is open."""
        conn = getattr(self._threads, "conn", None)
        if conn is not None:
            conn.close()
            self._threads.conn = None
