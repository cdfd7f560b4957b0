"""
Manga component input/output models.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from src.components.uploads.models import UploadedFile
from src.domain.entities import FileAttachment, Manga, ModerationStatus

# --- Input Models ---


@dataclass(frozen=True)
class CreateMangaInput:
    title: str | None
    genre: list[str] | str | None
    chapters: int | None
    description: str | None
    release_year: int | None


@dataclass(frozen=True)
class UpdateMangaInput:
    """Partial metadata edit; only keys present in `updates` change."""

    manga_id: UUID
    updates: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UploadCoverInput:
    manga_id: UUID
    file: UploadedFile | None


@dataclass(frozen=True)
class UploadFileInput:
    manga_id: UUID
    file: UploadedFile | None
    page_number: str | int | None = None  # raw form value, parsed by the uploads component


@dataclass(frozen=True)
class ModerateInput:
    manga_id: UUID
    reason: str | None = None


@dataclass(frozen=True)
class OpenFileInput:
    manga_id: UUID
    file_id: UUID


# --- Output Models ---


@dataclass(frozen=True)
class CoverOutput:
    manga: Manga
    cover_url: str


@dataclass(frozen=True)
class UploadOutput:
    manga: Manga
    attachment: FileAttachment
    stream_url: str

    @property
    def status(self) -> ModerationStatus:
        return self.manga.status


@dataclass(frozen=True)
class FileListOutput:
    manga_id: UUID
    status: ModerationStatus
    files: list[FileAttachment]


@dataclass
class FileStream:
    """
    Bytes of one stored file, ready to be streamed.

    `chunks` is lazy: nothing beyond the metadata lookup has been read yet.
    Closing it releases the underlying read cursor.
    """

    blob_id: UUID
    filename: str
    content_type: str
    length: int
    chunks: Iterator[bytes]
    original_name: str | None = None

    def close(self) -> None:
        close = getattr(self.chunks, "close", None)
        if close is not None:
            close()


@dataclass(frozen=True)
class DeleteOutput:
    manga_id: UUID
    blobs_deleted: int
    blobs_missing: int
