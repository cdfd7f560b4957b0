import json
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from src.domain.entities import (
    MODERATION_FIELDS,
    CoverRef,
    FileAttachment,
    Identity,
    Manga,
    ModerationStatus,
    User,
)
from src.domain.errors import ConflictError, NotFoundError

_PLAIN_COLUMNS = frozenset(
    {"title", "chapters", "description", "release_year", "rating", "status", "rejection_reason"}
)


# Helper to convert sqlite rows to dicts
def dict_factory(cursor: sqlite3.Cursor, row: Any) -> dict[str, Any]:
    d = {}
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteMangaRepo:
    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = dict_factory
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _column_values(self, item: Manga, fields: Iterable[str]) -> dict[str, Any]:
        """Map entity field names to manga columns. updated_at is always written."""
        values: dict[str, Any] = {}
        for name in fields:
            if name == "genre":
                values["genre_json"] = json.dumps(item.genre)
            elif name == "moderated_by":
                values["moderated_by"] = str(item.moderated_by) if item.moderated_by else None
            elif name == "moderated_at":
                values["moderated_at"] = _dt(item.moderated_at)
            elif name == "cover":
                cover = item.cover
                values["cover_blob_id"] = str(cover.blob_id) if cover else None
                values["cover_filename"] = cover.filename if cover else None
                values["cover_uploaded_at"] = _dt(cover.uploaded_at) if cover else None
            elif name in _PLAIN_COLUMNS:
                values[name] = getattr(item, name)
            else:
                raise ValueError(f"Unknown manga field '{name}'")
        values["updated_at"] = item.updated_at.isoformat()
        return values

    def _update_row(
        self,
        conn: sqlite3.Connection,
        item: Manga,
        fields: Iterable[str],
        expected_updated_at: datetime | None,
    ) -> None:
        values = self._column_values(item, fields)
        # Column names come from _column_values, never from callers
        assignments = ", ".join(f"{column} = ?" for column in values)
        query = f"UPDATE manga SET {assignments} WHERE id = ?"
        params: list[Any] = [*values.values(), str(item.id)]
        if expected_updated_at is not None:
            query += " AND updated_at = ?"
            params.append(expected_updated_at.isoformat())

        cursor = conn.execute(query, params)
        if cursor.rowcount > 0:
            return
        exists = conn.execute("SELECT 1 FROM manga WHERE id = ?", (str(item.id),)).fetchone()
        if exists is None:
            raise NotFoundError("Manga not found")
        raise ConflictError("Manga was changed by another request, retry")

    def insert(self, item: Manga) -> Manga:
        cover = item.cover
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO manga (
                    id, title, genre_json, chapters, description, release_year, rating,
                    owner_user_id, status, moderated_by, moderated_at, rejection_reason,
                    cover_blob_id, cover_filename, cover_uploaded_at,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    str(item.id),
                    item.title,
                    json.dumps(item.genre),
                    item.chapters,
                    item.description,
                    item.release_year,
                    item.rating,
                    str(item.owner_user_id),
                    item.status,
                    str(item.moderated_by) if item.moderated_by else None,
                    _dt(item.moderated_at),
                    item.rejection_reason,
                    str(cover.blob_id) if cover else None,
                    cover.filename if cover else None,
                    _dt(cover.uploaded_at) if cover else None,
                    item.created_at.isoformat(),
                    item.updated_at.isoformat(),
                ),
            )
            conn.commit()
            return item
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ConflictError(f"Manga {item.id} already exists") from e
        finally:
            conn.close()

    def update(
        self,
        item: Manga,
        fields: Iterable[str],
        *,
        expected_updated_at: datetime | None = None,
    ) -> Manga:
        """
        Write only `fields` (plus updated_at) of an existing row.

        Raises NotFoundError if the row is gone, and ConflictError if
        `expected_updated_at` is given and the row changed since it was read.
        """
        conn = self._get_conn()
        try:
            self._update_row(conn, item, fields, expected_updated_at)
            conn.commit()
            return item
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def add_file(self, item: Manga, attachment: FileAttachment) -> Manga:
        conn = self._get_conn()
        try:
            self._update_row(conn, item, MODERATION_FIELDS, None)
            row = conn.execute(
                "SELECT COALESCE(MAX(position), -1) + 1 AS next_pos "
                "FROM manga_files WHERE manga_id = ?",
                (str(item.id),),
            ).fetchone()
            conn.execute(
                """
                INSERT INTO manga_files (
                    blob_id, manga_id, position, filename, original_name, content_type,
                    size_bytes, kind, page_number, uploaded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    str(attachment.blob_id),
                    str(item.id),
                    row["next_pos"],
                    attachment.filename,
                    attachment.original_name,
                    attachment.content_type,
                    attachment.size_bytes,
                    attachment.kind,
                    attachment.page_number,
                    attachment.uploaded_at.isoformat(),
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if attachment.kind == "image" and attachment.page_number is not None:
                raise ConflictError(
                    f"Image page {attachment.page_number} already exists"
                ) from e
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        return item.model_copy(update={"files": [*item.files, attachment]})

    def get_by_id(self, manga_id: UUID) -> Manga | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM manga WHERE id = ?", (str(manga_id),)).fetchone()
            if not row:
                return None
            return self._map_row(conn, row)
        finally:
            conn.close()

    def delete(self, manga_id: UUID) -> None:
        conn = self._get_conn()
        try:
            # Files first, for databases created without ON DELETE CASCADE
            conn.execute("DELETE FROM manga_files WHERE manga_id = ?", (str(manga_id),))
            conn.execute("DELETE FROM manga WHERE id = ?", (str(manga_id),))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def list(
        self,
        *,
        status: ModerationStatus | None = None,
        owner_user_id: UUID | None = None,
    ) -> list[Manga]:
        query = "SELECT * FROM manga WHERE 1=1"
        params: list[str] = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if owner_user_id:
            query += " AND owner_user_id = ?"
            params.append(str(owner_user_id))
        query += " ORDER BY created_at DESC"

        conn = self._get_conn()
        try:
            rows = conn.execute(query, params).fetchall()
            return [self._map_row(conn, row) for row in rows]
        finally:
            conn.close()

    def referenced_blob_ids(self) -> set[UUID]:
        conn = self._get_conn()
        try:
            covers = conn.execute(
                "SELECT cover_blob_id AS blob_id FROM manga WHERE cover_blob_id IS NOT NULL"
            ).fetchall()
            files = conn.execute("SELECT blob_id FROM manga_files").fetchall()
        finally:
            conn.close()
        return {UUID(r["blob_id"]) for r in [*covers, *files]}

    def _map_row(self, conn: sqlite3.Connection, row: dict[str, Any]) -> Manga:
        file_rows = conn.execute(
            "SELECT * FROM manga_files WHERE manga_id = ? ORDER BY position ASC",
            (row["id"],),
        ).fetchall()

        files = [
            FileAttachment(
                blob_id=UUID(f["blob_id"]),
                filename=f["filename"],
                original_name=f["original_name"],
                content_type=f["content_type"],
                size_bytes=f["size_bytes"],
                kind=f["kind"],
                page_number=f["page_number"],
                uploaded_at=datetime.fromisoformat(f["uploaded_at"]),
            )
            for f in file_rows
        ]

        cover = None
        if row["cover_blob_id"]:
            cover = CoverRef(
                blob_id=UUID(row["cover_blob_id"]),
                filename=row["cover_filename"],
                uploaded_at=datetime.fromisoformat(row["cover_uploaded_at"]),
            )

        return Manga(
            id=UUID(row["id"]),
            title=row["title"],
            genre=json.loads(row["genre_json"]),
            chapters=row["chapters"],
            description=row["description"],
            release_year=row["release_year"],
            rating=row["rating"],
            owner_user_id=UUID(row["owner_user_id"]),
            status=row["status"],
            moderated_by=UUID(row["moderated_by"]) if row["moderated_by"] else None,
            moderated_at=_parse_dt(row["moderated_at"]),
            rejection_reason=row["rejection_reason"],
            cover=cover,
            files=files,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class SQLiteUserRepo:
    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = dict_factory
        return conn

    def save(self, user: User) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO users (
                    id, email, display_name, password_hash, role, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email=excluded.email,
                    display_name=excluded.display_name,
                    password_hash=excluded.password_hash,
                    role=excluded.role,
                    status=excluded.status,
                    updated_at=excluded.updated_at
            """,
                (
                    str(user.id),
                    user.email,
                    user.display_name,
                    user.password_hash,
                    user.role,
                    user.status,
                    user.created_at.isoformat(),
                    user.updated_at.isoformat(),
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ConflictError(f"User with email {user.email} already exists") from e
        finally:
            conn.close()

    def get_by_email(self, email: str) -> User | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
            return self._map_row(row) if row else None
        finally:
            conn.close()

    def get_by_id(self, user_id: UUID) -> User | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (str(user_id),)).fetchone()
            return self._map_row(row) if row else None
        finally:
            conn.close()

    def get_identity(self, user_id: UUID) -> Identity | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT id, role FROM users WHERE id = ? AND status = 'active'",
                (str(user_id),),
            ).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return Identity(id=UUID(row["id"]), role=row["role"])

    def _map_row(self, row: dict[str, Any]) -> User:
        return User(
            id=UUID(row["id"]),
            email=row["email"],
            display_name=row["display_name"],
            password_hash=row["password_hash"],
            role=row["role"],
            status=row["status"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
