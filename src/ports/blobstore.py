"""
Blob store port.

Chunked binary storage keyed by opaque blob ids, independent of the entity
store.

Invariants:
- A write is all-or-nothing: either every chunk and the file record are
  committed, or nothing is visible.
- Delete is idempotent: deleting an absent blob reports False, never raises.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Protocol
from uuid import UUID


@dataclass(frozen=True)
class BlobInfo:
    """Metadata for a stored blob."""

    blob_id: UUID
    filename: str
    content_type: str
    length: int
    chunk_size: int
    uploaded_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def chunk_count(self) -> int:
        if self.length == 0:
            return 0
        return (self.length + self.chunk_size - 1) // self.chunk_size


class BlobStorePort(Protocol):
    def put(
        self,
        name: str,
        content_type: str,
        metadata: dict[str, Any],
        data: bytes | BinaryIO,
    ) -> UUID:
        """
        Store bytes (or a readable stream) and return the new blob id.

        Raises:
            BlobStoreError: If the write fails; nothing is left behind.
        """
        ...

    def get_info(self, blob_id: UUID) -> BlobInfo | None:
        """Return blob metadata, or None if absent."""
        ...

    def open_stream(self, blob_id: UUID) -> Iterator[bytes]:
        """
        Return an iterator over the blob's chunks in order.

        Raises:
            BlobNotFoundError: If the blob does not exist (raised eagerly).
            BlobStoreError: From the iterator, if a chunk cannot be read.
        """
        ...

    def read(self, blob_id: UUID) -> bytes:
        """Read a whole blob into memory. Raises BlobNotFoundError."""
        ...

    def delete(self, blob_id: UUID) -> bool:
        """Delete a blob. True if it existed, False if it was already absent."""
        ...

    def list_ids(self) -> list[UUID]:
        """Every stored blob id."""
        ...


class BlobStoreError(Exception):
    """Base class for blob store failures."""


class BlobNotFoundError(BlobStoreError):
    def __init__(self, blob_id: UUID) -> None:
        self.blob_id = blob_id
        super().__init__(f"Blob not found: {blob_id}")


class ChunkMissingError(BlobStoreError):
    """A blob's chunk sequence is incomplete (store corruption or concurrent delete)."""

    def __init__(self, blob_id: UUID, n: int) -> None:
        self.blob_id = blob_id
        self.n = n
        super().__init__(f"Chunk {n} missing for blob {blob_id}")
