from datetime import UTC, datetime
from pathlib import Path

import pytest

from src.adapters.clock import FrozenClock
from src.adapters.sqlite.blobstore import SQLiteBlobStore
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite.repos import SQLiteMangaRepo, SQLiteUserRepo
from src.rules.loader import load_rules
from src.rules.models import Rules

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def rules() -> Rules:
    """The real rules file from the project root."""
    return load_rules(PROJECT_ROOT / "rules.yaml")


@pytest.fixture
def db_path(tmp_path) -> str:
    """A fresh SQLite database with every migration applied."""
    path = str(tmp_path / "data" / "manga.db")
    SQLiteMigrator(path, str(PROJECT_ROOT / "migrations")).run_migrations()
    return path


@pytest.fixture
def manga_repo(db_path) -> SQLiteMangaRepo:
    return SQLiteMangaRepo(db_path)


@pytest.fixture
def user_repo(db_path) -> SQLiteUserRepo:
    return SQLiteUserRepo(db_path)


@pytest.fixture
def blob_store(db_path) -> SQLiteBlobStore:
    # Small chunks so multi-chunk paths run with tiny payloads
    return SQLiteBlobStore(db_path, chunk_size=8)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 5, 1, 12, 0, tzinfo=UTC))
