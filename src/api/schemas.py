from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.components.manga import FileListOutput, cover_url, stream_url
from src.domain.entities import FileAttachment, Manga

# --- Shared Enums/Types ---
ModerationStatus = Literal["pending", "approved", "rejected"]
FileKind = Literal["image", "pdf", "archive"]
RoleType = Literal["user", "moderator", "admin"]


# --- Requests ---
class MangaCreateRequest(BaseModel):
    """All fields are required; missing ones are reported by the component."""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    genre: list[str] | str | None = None
    chapters: int | None = None
    description: str | None = None
    release_year: int | None = Field(default=None, alias="releaseYear")


class MangaUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    genre: list[str] | str | None = None
    chapters: int | None = None
    description: str | None = None
    release_year: int | None = Field(default=None, alias="releaseYear")


class RejectRequest(BaseModel):
    reason: str | None = None


# --- Responses ---
class CoverResponse(BaseModel):
    blob_id: UUID
    filename: str
    uploaded_at: datetime
    url: str


class FileAttachmentResponse(BaseModel):
    blob_id: UUID
    filename: str
    original_name: str
    content_type: str
    size_bytes: int
    kind: FileKind
    page_number: int | None = None
    uploaded_at: datetime
    stream_url: str

    @classmethod
    def build(cls, manga_id: UUID, attachment: FileAttachment) -> "FileAttachmentResponse":
        return cls(
            **attachment.model_dump(),
            stream_url=stream_url(manga_id, attachment.blob_id),
        )


class MangaResponse(BaseModel):
    id: UUID
    title: str
    genre: list[str]
    chapters: int
    description: str
    release_year: int
    rating: float
    owner_user_id: UUID
    status: ModerationStatus
    moderated_by: UUID | None = None
    moderated_at: datetime | None = None
    rejection_reason: str | None = None
    cover: CoverResponse | None = None
    files: list[FileAttachmentResponse] = []
    created_at: datetime
    updated_at: datetime

    @classmethod
    def build(cls, item: Manga) -> "MangaResponse":
        data = item.model_dump(exclude={"cover", "files"})
        cover = None
        if item.cover is not None:
            cover = CoverResponse(**item.cover.model_dump(), url=cover_url(item.id))
        return cls(
            **data,
            cover=cover,
            files=[FileAttachmentResponse.build(item.id, f) for f in item.files],
        )


class CoverUploadResponse(BaseModel):
    message: str = "Cover uploaded"
    cover_url: str
    manga: MangaResponse


class FileUploadResponse(BaseModel):
    message: str = "File uploaded"
    status: ModerationStatus
    file: FileAttachmentResponse
    stream_url: str
    manga: MangaResponse


class FileListResponse(BaseModel):
    manga_id: UUID
    status: ModerationStatus
    files: list[FileAttachmentResponse]

    @classmethod
    def build(cls, out: FileListOutput) -> "FileListResponse":
        return cls(
            manga_id=out.manga_id,
            status=out.status,
            files=[FileAttachmentResponse.build(out.manga_id, f) for f in out.files],
        )


class DeleteResponse(BaseModel):
    message: str = "Manga deleted"
    manga_id: UUID
    blobs_deleted: int
    blobs_missing: int


# --- Auth ---
class Token(BaseModel):
    access_token: str
    token_type: str


class IdentityResponse(BaseModel):
    id: UUID
    role: RoleType
