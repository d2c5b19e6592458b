"""Database fixtures for tests."""

import pytest
from pathlib import Path
from typing import Generator

from memoriad.database import MemoriaDB
from memoriad.services.artifact_service import ArtifactService
from memoriad.services.database_service import DatabaseService


@pytest.fixture
def temp_db() -> Generator[MemoriaDB, None, None]:
    """Create a temporary in-memory database for testing."""
    db = MemoriaDB(":memory:")
    yield db
    db.close()


@pytest.fixture
def temp_db_no_dedupe() -> Generator[MemoriaDB, None, None]:
    """In-memory database that accepts repeated hashes."""
    db = MemoriaDB(":memory:", enforce_unique_hash=False)
    yield db
    db.close()


@pytest.fixture
def temp_db_file(tmp_path: Path) -> Generator[MemoriaDB, None, None]:
    """Create a temporary file-based database for testing."""
    db = MemoriaDB(str(tmp_path / "memoria.db"))
    yield db
    db.close()


@pytest.fixture
def populated_db(temp_db: MemoriaDB) -> MemoriaDB:
    """Create a database with sample text items at increasing timestamps."""
    for i, body in enumerate([
        "Hello world",
        "Python code snippet\nsecond line",
        "https://example.com/path",
        "grocery list: milk, eggs",
    ]):
        temp_db.insert_text(body, MemoriaDB.calculate_hash(body.encode()), now=1000 + i)
    return temp_db


@pytest.fixture
def artifact_service(tmp_path: Path) -> ArtifactService:
    """Artifact service rooted in a temporary data directory."""
    return ArtifactService(tmp_path / "data")


@pytest.fixture
def db_service(artifact_service: ArtifactService) -> Generator[DatabaseService, None, None]:
    """Thread-safe in-memory store reporting thumbnails under artifact_service."""
    service = DatabaseService(":memory:", thumbs_dir=artifact_service.thumbs_dir)
    yield service
    service.close()


@pytest.fixture
def db_service_no_dedupe(artifact_service: ArtifactService) -> Generator[DatabaseService, None, None]:
    """Store with dedup disabled."""
    service = DatabaseService(":memory:", thumbs_dir=artifact_service.thumbs_dir, enforce_unique_hash=False)
    yield service
    service.close()
