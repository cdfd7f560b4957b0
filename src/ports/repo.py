from collections.abc import Iterable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from src.domain.entities import FileAttachment, Identity, Manga, ModerationStatus, User


class IdentityRepoPort(Protocol):
    """External collaborator: identity lookup and credential storage."""

    def get_by_email(self, email: str) -> User | None:
        ...

    def get_by_id(self, user_id: UUID) -> User | None:
        ...

    def get_identity(self, user_id: UUID) -> Identity | None:
        ...

    def save(self, user: User) -> None:
        ...


class MangaRepoPort(Protocol):
    def get_by_id(self, manga_id: UUID) -> Manga | None:
        ...

    def insert(self, item: Manga) -> Manga:
        """Persist a new item row. Raises ConflictError if the id is taken."""
        ...

    def update(
        self,
        item: Manga,
        fields: Iterable[str],
        *,
        expected_updated_at: datetime | None = None,
    ) -> Manga:
        """
        Write only the named entity fields (plus updated_at) of an existing item.
        `"cover"` stands for the whole cover reference. Files are untouched.

        Raises NotFoundError if the item no longer exists. With
        `expected_updated_at`, raises ConflictError if the stored item was
        modified after that timestamp was read.
        """
        ...

    def add_file(self, item: Manga, attachment: FileAttachment) -> Manga:
        """
        Write the moderation fields of `item` and append `attachment` in one
        entity-store transaction. Raises NotFoundError if the item is gone.

        Raises ConflictError if another image already holds the page number.
        """
        ...

    def delete(self, manga_id: UUID) -> None:
        ...

    def list(
        self,
        *,
        status: ModerationStatus | None = None,
        owner_user_id: UUID | None = None,
    ) -> list[Manga]:
        """Newest first."""
        ...

    def referenced_blob_ids(self) -> set[UUID]:
        ...
