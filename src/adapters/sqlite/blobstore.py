"""
SQLite chunked blob store.

Implements BlobStorePort with two tables, in the manner of GridFS:
- blob_files: one row per blob (name, content type, length, chunk size, metadata)
- blob_chunks: the bytes, split into fixed-size chunks numbered from 0

Chunks are written first and the file row last, all inside one transaction,
so a failed write leaves nothing readable behind.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any, BinaryIO
from uuid import UUID, uuid4

from src.adapters.sqlite.repos import dict_factory
from src.ports.blobstore import BlobInfo, BlobNotFoundError, BlobStoreError, ChunkMissingError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 255 * 1024


class SQLiteBlobStore:
    def __init__(
        self,
        db_path: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = 5.0,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.db_path = db_path
        self.chunk_size = chunk_size
        # sqlite3 waits at most this long on a locked database
        self.timeout = timeout

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = dict_factory
        return conn

    def _iter_chunks(self, data: bytes | BinaryIO) -> Iterator[bytes]:
        """Yield exactly chunk_size pieces (the last one may be shorter)."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            view = bytes(data)
            for start in range(0, len(view), self.chunk_size):
                yield view[start : start + self.chunk_size]
            return

        buffer = bytearray()
        while True:
            piece = data.read(self.chunk_size)
            if not piece:
                break
            buffer.extend(piece)
            while len(buffer) >= self.chunk_size:
                yield bytes(buffer[: self.chunk_size])
                del buffer[: self.chunk_size]
        if buffer:
            yield bytes(buffer)

    def put(
        self,
        name: str,
        content_type: str,
        metadata: dict[str, Any],
        data: bytes | BinaryIO,
    ) -> UUID:
        blob_id = uuid4()
        conn = self._get_conn()
        try:
            length = 0
            for n, chunk in enumerate(self._iter_chunks(data)):
                conn.execute(
                    "INSERT INTO blob_chunks (file_id, n, data) VALUES (?, ?, ?)",
                    (str(blob_id), n, sqlite3.Binary(chunk)),
                )
                length += len(chunk)

            conn.execute(
                """
                INSERT INTO blob_files (
                    id, filename, content_type, length, chunk_size, metadata_json, uploaded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    str(blob_id),
                    name,
                    content_type,
                    length,
                    self.chunk_size,
                    json.dumps(metadata, default=str),
                    datetime.now(UTC).isoformat(),
                ),
            )
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            conn.rollback()
            raise BlobStoreError(f"Failed to write blob '{name}': {e}") from e
        finally:
            conn.close()

        logger.info("Stored blob %s (%s, %d bytes)", blob_id, name, length)
        return blob_id

    def get_info(self, blob_id: UUID) -> BlobInfo | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM blob_files WHERE id = ?", (str(blob_id),)
            ).fetchone()
        except sqlite3.Error as e:
            raise BlobStoreError(f"Failed to read blob metadata {blob_id}: {e}") from e
        finally:
            conn.close()

        if not row:
            return None
        return BlobInfo(
            blob_id=UUID(row["id"]),
            filename=row["filename"],
            content_type=row["content_type"],
            length=row["length"],
            chunk_size=row["chunk_size"],
            uploaded_at=datetime.fromisoformat(row["uploaded_at"]),
            metadata=json.loads(row["metadata_json"] or "{}"),
        )

    def open_stream(self, blob_id: UUID) -> Iterator[bytes]:
        info = self.get_info(blob_id)
        if info is None:
            raise BlobNotFoundError(blob_id)
        return self._iter_blob(info)

    def _iter_blob(self, info: BlobInfo) -> Iterator[bytes]:
        # The connection lives as long as the iterator; closing the generator
        # (client went away) releases it through the finally block.
        conn = self._get_conn()
        try:
            for n in range(info.chunk_count):
                try:
                    row = conn.execute(
                        "SELECT data FROM blob_chunks WHERE file_id = ? AND n = ?",
                        (str(info.blob_id), n),
                    ).fetchone()
                except sqlite3.Error as e:
                    raise BlobStoreError(f"Failed to read chunk {n} of {info.blob_id}: {e}") from e
                if row is None:
                    raise ChunkMissingError(info.blob_id, n)
                yield bytes(row["data"])
        finally:
            conn.close()

    def read(self, blob_id: UUID) -> bytes:
        return b"".join(self.open_stream(blob_id))

    def delete(self, blob_id: UUID) -> bool:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM blob_chunks WHERE file_id = ?", (str(blob_id),))
            cursor = conn.execute("DELETE FROM blob_files WHERE id = ?", (str(blob_id),))
            conn.commit()
            existed = cursor.rowcount > 0
        except sqlite3.Error as e:
            conn.rollback()
            raise BlobStoreError(f"Failed to delete blob {blob_id}: {e}") from e
        finally:
            conn.close()

        if existed:
            logger.info("Deleted blob %s", blob_id)
        else:
            logger.debug("Blob %s already absent, delete ignored", blob_id)
        return existed

    def list_ids(self) -> list[UUID]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT id FROM blob_files ORDER BY uploaded_at").fetchall()
        except sqlite3.Error as e:
            raise BlobStoreError(f"Failed to list blobs: {e}") from e
        finally:
            conn.close()
        return [UUID(r["id"]) for r in rows]
