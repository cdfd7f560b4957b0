from pathlib import Path

import pytest

from src.adapters.sqlite.blobstore import SQLiteBlobStore
from src.adapters.sqlite.repos import SQLiteMangaRepo, SQLiteUserRepo
from src.app_shell.cli import main
from src.domain.entities import CoverRef, Manga

PROJECT_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("MANGA_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("MANGA_RULES_PATH", str(PROJECT_ROOT / "rules.yaml"))
    monkeypatch.setenv("MANGA_MIGRATIONS_DIR", str(PROJECT_ROOT / "migrations"))
    main(["migrate"])
    return tmp_path


def test_migrate_twice(data_dir, capsys):
    main(["migrate"])
    assert "up to date" in capsys.readouterr().out


def test_create_user(data_dir):
    main(["create-user", "--email", "Mod@Example.com", "--password", "pw", "--role", "moderator"])

    user = SQLiteUserRepo(str(data_dir / "manga.db")).get_by_email("mod@example.com")
    assert user is not None
    assert user.role == "moderator"
    assert user.display_name == "Mod"


def test_create_duplicate_user_exits(data_dir):
    main(["create-user", "--email", "a@example.com", "--password", "pw"])
    with pytest.raises(SystemExit):
        main(["create-user", "--email", "a@example.com", "--password", "pw"])


def test_sweep_orphans(data_dir, capsys):
    db_path = str(data_dir / "manga.db")
    store = SQLiteBlobStore(db_path)
    kept = store.put("cover.png", "image/png", {}, b"cover")
    stray = store.put("stray.png", "image/png", {}, b"stray")
    SQLiteMangaRepo(db_path).insert(
        Manga(
            title="X",
            genre=["a"],
            chapters=1,
            description="d",
            release_year=2020,
            owner_user_id=kept,
            cover=CoverRef(blob_id=kept, filename="cover.png"),
        )
    )

    main(["sweep-orphans", "--grace-minutes", "0"])
    out = capsys.readouterr().out
    assert str(stray) in out
    assert str(kept) not in out
    assert set(store.list_ids()) == {kept, stray}

    main(["sweep-orphans", "--grace-minutes", "0", "--delete"])
    assert "Removed 1" in capsys.readouterr().out
    assert store.list_ids() == [kept]


def test_sweep_skips_fresh_blobs(data_dir, capsys):
    store = SQLiteBlobStore(str(data_dir / "manga.db"))
    fresh = store.put("uploading.png", "image/png", {}, b"bytes")

    # Default grace period: a blob written moments ago may still be saving
    main(["sweep-orphans", "--delete"])
    assert "No orphaned blobs." in capsys.readouterr().out
    assert store.list_ids() == [fresh]
