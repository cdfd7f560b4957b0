from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

# --- Enums / Literals ---
RoleType = Literal["user", "moderator", "admin"]
ModerationStatus = Literal["pending", "approved", "rejected"]
FileKind = Literal["image", "pdf", "archive"]
UserStatus = Literal["active", "disabled"]


def utcnow() -> datetime:
    return datetime.now(UTC)


# --- Identity ---

class Identity(BaseModel):
    """What the rest of the system knows about a requester: who and which role."""

    id: UUID
    role: RoleType = "user"


class User(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    email: str
    display_name: str
    password_hash: str
    role: RoleType = "user"
    status: UserStatus = "active"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def identity(self) -> Identity:
        return Identity(id=self.id, role=self.role)


# --- Files ---

class CoverRef(BaseModel):
    """Single-slot cover image reference. Replacing it deletes the previous blob."""

    blob_id: UUID
    filename: str
    uploaded_at: datetime = Field(default_factory=utcnow)


class FileAttachment(BaseModel):
    blob_id: UUID
    filename: str
    original_name: str
    content_type: str
    size_bytes: int = Field(ge=0)
    kind: FileKind
    # Only images carry a page number
    page_number: int | None = Field(default=None, ge=1)
    uploaded_at: datetime = Field(default_factory=utcnow)


# --- Manga ---

# Column groups for partial writes. A write names the fields it owns so it
# never replays a stale copy of the others.
METADATA_FIELDS = ("title", "genre", "chapters", "description", "release_year")
MODERATION_FIELDS = ("status", "moderated_by", "moderated_at", "rejection_reason")

class Manga(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    title: str
    genre: list[str]
    chapters: int = Field(ge=1)
    description: str
    release_year: int
    rating: float = Field(default=0, ge=0, le=10)

    owner_user_id: UUID

    status: ModerationStatus = "pending"
    moderated_by: UUID | None = None
    moderated_at: datetime | None = None
    rejection_reason: str | None = None

    cover: CoverRef | None = None
    files: list[FileAttachment] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def is_owned_by(self, user_id: UUID) -> bool:
        return str(self.owner_user_id) == str(user_id)

    def find_file(self, blob_id: UUID) -> FileAttachment | None:
        for attachment in self.files:
            if attachment.blob_id == blob_id:
                return attachment
        return None

    def blob_ids(self) -> list[UUID]:
        """Every blob this item owns: cover first, then attachments."""
        ids = [self.cover.blob_id] if self.cover else []
        ids.extend(f.blob_id for f in self.files)
        return ids
