"""
Pytest configuration for the cigar scanner tests.
"""

import os
import tempfile
from pathlib import Path

import pytest

from cigar_scanner.models.enums import CigarStrength
from cigar_scanner.models.records import CatalogEntry, RecognitionResult


def pytest_configure(config):
    """Register markers and mark the service ready for tests."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )

    # TestClient without a context manager skips lifespan events,
    # which would leave the warmup middleware returning 503.
    from main import set_ready
    set_ready(True)


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield str(db_path)
    for suffix in ("", "-wal", "-shm"):
        path = Path(f"{db_path}{suffix}")
        if path.exists():
            os.unlink(path)


@pytest.fixture
def store(temp_db):
    """Migrated SQLite catalog store."""
    from cigar_scanner.services.catalog_store import SQLiteCatalogStore
    catalog = SQLiteCatalogStore(temp_db)
    yield catalog
    catalog.close()


@pytest.fixture
def montecristo_no2(store):
    """A complete, verified catalog entry."""
    entry, _ = store.create(CatalogEntry(
        brand="Montecristo",
        name="Montecristo No.2",
        size="No.2",
        origin="Cuba",
        wrapper="Cuban Colorado",
        binder="Cuban",
        filler="Cuban",
        strength=CigarStrength.MEDIUM_FULL,
        flavor_profile=["Cedar", "Coffee", "Cocoa"],
        foot_notes=["Cedar", "Pepper"],
        body_notes=["Coffee"],
        head_notes=["Cocoa", "Leather"],
        description="The benchmark torpedo.",
        rating=94,
        rating_source="Cigar Aficionado",
        images=["https://halfwheel.com/images/montecristo-no2.jpg"],
        verified=True,
    ))
    return entry


@pytest.fixture
def cohiba_result():
    """An inferred result with no catalog counterpart."""
    return RecognitionResult(
        brand="Cohiba",
        name="Cohiba Robusto",
        origin="Cuba",
        flavor_profile=["Cream", "Honey"],
        strength=CigarStrength.MEDIUM,
        wrapper="Cuban",
        description="Likely a medium-bodied robusto.",
        confidence=0.92,
    )
