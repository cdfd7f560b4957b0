"""
Manga component - Moderated file-attachment lifecycle.

Orchestrates the entity store, the blob store, the moderation state machine
and the access policy for every manga operation.

State machine (see src.domain.state):
- create -> pending
- edit metadata | attach file | replace cover -> pending (moderator fields cleared)
- approve (moderator/admin) -> approved
- reject (moderator/admin) -> rejected
- delete -> gone, with every owned blob

Multi-store writes are a two-phase sequence, not a transaction:
1. write the blob (all-or-nothing inside the blob store)
2. persist the entity
If step 2 fails the new blob is deleted (compensation) and the error
propagates. A crash between 1 and 2 leaves an orphaned blob; the
`sweep-orphans` CLI command finds those.

Every write to an existing item runs under item_locks.hold(manga_id) and
writes only the fields it changed. Moderation decisions are also
conditional on the item being unchanged since it was read, so content
edited by another process is never approved unseen.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from src.components.uploads import (
    assign_page_number,
    parse_page_number,
    require_cover,
    stored_filename,
    validate_upload,
)
from src.components.uploads.models import ValidatedUpload
from src.domain import state
from src.domain.entities import (
    METADATA_FIELDS,
    MODERATION_FIELDS,
    CoverRef,
    FileAttachment,
    Identity,
    Manga,
)
from src.domain.errors import NotFoundError, StorageError, ValidationError
from src.domain.policy import PolicyEngine
from src.ports.blobstore import BlobNotFoundError, BlobStorePort, BlobStoreError
from src.ports.clock import ClockPort
from src.ports.repo import MangaRepoPort
from src.rules.models import ContentRules, UploadsRules

from .locks import item_locks
from .models import (
    CoverOutput,
    CreateMangaInput,
    DeleteOutput,
    FileListOutput,
    FileStream,
    ModerateInput,
    OpenFileInput,
    UpdateMangaInput,
    UploadCoverInput,
    UploadFileInput,
    UploadOutput,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = METADATA_FIELDS


# --- URLs ---


def cover_url(manga_id: UUID) -> str:
    return f"/api/manga/{manga_id}/cover"


def stream_url(manga_id: UUID, blob_id: UUID) -> str:
    return f"/api/manga/{manga_id}/pages?fileId={blob_id}"


# --- Metadata validation ---


def _check_text(name: str, value: Any, bounds: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    text = value.strip()
    if len(text) < bounds.min or (bounds.max is not None and len(text) > bounds.max):
        raise ValidationError(f"{name} must be between {bounds.min} and {bounds.max} characters")
    return text


def _check_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"{name} must be an integer")


def validate_metadata(
    fields: dict[str, Any],
    rules: ContentRules,
    now: datetime,
    *,
    partial: bool = False,
) -> dict[str, Any]:
    """
    Normalise and validate manga metadata.

    With partial=False every editable field is required. Returns only the
    fields that were supplied, normalised (trimmed strings, genre as a list).
    """
    missing = [f for f in EDITABLE_FIELDS if fields.get(f) in (None, "", [])]
    if not partial and missing:
        raise ValidationError("title, genre, chapters, description, releaseYear are required")

    clean: dict[str, Any] = {}

    if fields.get("title") is not None:
        clean["title"] = _check_text("title", fields["title"], rules.title)

    if fields.get("description") is not None:
        clean["description"] = _check_text("description", fields["description"], rules.description)

    if fields.get("genre") is not None:
        genre = fields["genre"]
        genre_list = [genre] if isinstance(genre, str) else list(genre)
        genre_list = [g.strip() for g in genre_list if isinstance(g, str) and g.strip()]
        if len(genre_list) < rules.genre_items.min:
            raise ValidationError("At least one genre is required")
        if rules.genre_items.max is not None and len(genre_list) > rules.genre_items.max:
            raise ValidationError(f"At most {rules.genre_items.max} genres are allowed")
        clean["genre"] = genre_list

    if fields.get("chapters") is not None:
        chapters = _check_int("chapters", fields["chapters"])
        if chapters < 1:
            raise ValidationError("chapters must be a positive number")
        clean["chapters"] = chapters

    if fields.get("release_year") is not None:
        year = _check_int("releaseYear", fields["release_year"])
        max_year = rules.release_year.max or now.year
        if year < rules.release_year.min or year > max_year:
            raise ValidationError(
                f"releaseYear must be between {rules.release_year.min} and {max_year}"
            )
        clean["release_year"] = year

    return clean


# --- Store helpers ---


def _get_or_404(repo: MangaRepoPort, manga_id: UUID, detail: str = "Manga not found") -> Manga:
    item = repo.get_by_id(manga_id)
    if item is None:
        raise NotFoundError(detail)
    return item


def _put_blob(
    blobs: BlobStorePort,
    filename: str,
    upload: ValidatedUpload,
    metadata: dict[str, Any],
) -> UUID:
    try:
        return blobs.put(filename, upload.file.content_type, metadata, upload.file.data)
    except BlobStoreError as e:
        logger.exception("Blob write failed for %s (%s)", filename, metadata.get("manga_id"))
        raise StorageError(str(e)) from e


def _delete_blob(blobs: BlobStorePort, blob_id: UUID) -> bool:
    """Idempotent delete: an absent blob counts as success."""
    try:
        return blobs.delete(blob_id)
    except BlobNotFoundError:
        return False
    except BlobStoreError as e:
        logger.exception("Blob delete failed for %s", blob_id)
        raise StorageError(str(e)) from e


def _compensate(blobs: BlobStorePort, blob_id: UUID, reason: str) -> None:
    """Best-effort removal of a blob the entity store never came to reference."""
    logger.warning("Compensating: deleting blob %s after %s", blob_id, reason)
    try:
        blobs.delete(blob_id)
    except BlobStoreError:
        logger.exception("Compensation failed, blob %s is orphaned", blob_id)


def _open(blobs: BlobStorePort, blob_id: UUID, detail: str) -> tuple[Any, Any]:
    try:
        info = blobs.get_info(blob_id)
        if info is None:
            raise NotFoundError(detail)
        return info, blobs.open_stream(blob_id)
    except BlobNotFoundError as e:
        raise NotFoundError(detail) from e
    except BlobStoreError as e:
        logger.exception("Blob read failed for %s", blob_id)
        raise StorageError(str(e)) from e


def sort_files(files: list[FileAttachment]) -> list[FileAttachment]:
    """
    Numbered image pages first (ascending), then everything else by upload
    time. sorted() is stable, so ties keep stored order.
    """

    def key(f: FileAttachment) -> tuple[int, int, float]:
        if f.page_number:
            return (0, f.page_number, 0.0)
        return (1, 0, f.uploaded_at.timestamp())

    return sorted(files, key=key)


# --- Read paths ---


def run_list_public(*, repo: MangaRepoPort) -> list[Manga]:
    return repo.list(status="approved")


def run_list_mine(
    *, identity: Identity | None, repo: MangaRepoPort, policy: PolicyEngine
) -> list[Manga]:
    policy.enforce(identity, "manga:list_own")
    assert identity is not None
    return repo.list(owner_user_id=identity.id)


def run_list_pending(
    *, identity: Identity | None, repo: MangaRepoPort, policy: PolicyEngine
) -> list[Manga]:
    policy.enforce(identity, "manga:list_pending")
    return repo.list(status="pending")


def run_get_public(
    manga_id: UUID,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    policy: PolicyEngine,
) -> Manga:
    """Approved items for everyone; others only for owner, moderator, admin."""
    item = _get_or_404(repo, manga_id)
    policy.enforce(identity, "manga:read", item)
    return item


def run_open_cover(manga_id: UUID, *, repo: MangaRepoPort, blobs: BlobStorePort) -> FileStream:
    """Public cover stream. Non-approved items have no visible cover."""
    item = repo.get_by_id(manga_id)
    if item is None or not state.is_public(item) or item.cover is None:
        raise NotFoundError("Cover not found")

    info, chunks = _open(blobs, item.cover.blob_id, "Cover not found")
    return FileStream(
        blob_id=item.cover.blob_id,
        filename=item.cover.filename,
        content_type=info.content_type or "application/octet-stream",
        length=info.length,
        chunks=chunks,
    )


def run_list_files(
    manga_id: UUID,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    policy: PolicyEngine,
) -> FileListOutput:
    item = _get_or_404(repo, manga_id)
    policy.enforce(identity, "manga:read", item)
    return FileListOutput(manga_id=item.id, status=item.status, files=sort_files(item.files))


def run_open_file(
    inp: OpenFileInput,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    blobs: BlobStorePort,
    policy: PolicyEngine,
) -> FileStream:
    item = _get_or_404(repo, inp.manga_id)
    policy.enforce(identity, "manga:read", item)

    attachment = item.find_file(inp.file_id)
    if attachment is None:
        raise NotFoundError("File not found for this manga")

    info, chunks = _open(blobs, attachment.blob_id, "Stored file does not exist")
    return FileStream(
        blob_id=attachment.blob_id,
        filename=attachment.filename,
        content_type=info.content_type or attachment.content_type or "application/octet-stream",
        length=info.length,
        chunks=chunks,
        original_name=attachment.original_name,
    )


# --- Write paths ---


def run_create(
    inp: CreateMangaInput,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    policy: PolicyEngine,
    rules: ContentRules,
    time: ClockPort,
) -> Manga:
    policy.enforce(identity, "manga:create")
    assert identity is not None

    now = time.now_utc()
    fields = validate_metadata(
        {
            "title": inp.title,
            "genre": inp.genre,
            "chapters": inp.chapters,
            "description": inp.description,
            "release_year": inp.release_year,
        },
        rules,
        now,
    )
    item = Manga(owner_user_id=identity.id, status="pending", created_at=now, updated_at=now, **fields)
    repo.insert(item)
    logger.info("Manga %s created by %s", item.id, identity.id)
    return item


def run_update(
    inp: UpdateMangaInput,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    policy: PolicyEngine,
    rules: ContentRules,
    time: ClockPort,
) -> Manga:
    now = time.now_utc()
    updates = {k: v for k, v in inp.updates.items() if k in EDITABLE_FIELDS}
    fields = validate_metadata(updates, rules, now, partial=True)

    with item_locks.hold(inp.manga_id):
        item = _get_or_404(repo, inp.manga_id)
        policy.enforce(identity, "manga:edit", item)

        updated = state.resubmit(item.model_copy(update=fields), now)
        repo.update(updated, [*fields, *MODERATION_FIELDS])
    logger.info("Manga %s edited, moderation reset to pending", item.id)
    return updated


def run_upload_cover(
    inp: UploadCoverInput,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    blobs: BlobStorePort,
    policy: PolicyEngine,
    rules: UploadsRules,
    time: ClockPort,
) -> CoverOutput:
    upload = validate_upload(inp.file, rules, cover=True)

    with item_locks.hold(inp.manga_id):
        item = _get_or_404(repo, inp.manga_id)
        policy.enforce(identity, "manga:upload_cover", item)
        assert identity is not None

        now = time.now_utc()
        filename = stored_filename(item.id, upload.original_name, now, cover=True)
        blob_id = _put_blob(
            blobs,
            filename,
            upload,
            {
                "manga_id": str(item.id),
                "owner_id": str(item.owner_user_id),
                "uploaded_by": str(identity.id),
                "kind": "cover",
                "original_name": upload.original_name,
            },
        )

        previous = item.cover
        updated = state.resubmit(item, now).model_copy(
            update={"cover": CoverRef(blob_id=blob_id, filename=filename, uploaded_at=now)}
        )
        try:
            repo.update(updated, ("cover", *MODERATION_FIELDS))
        except Exception:
            _compensate(blobs, blob_id, f"cover save failure on manga {item.id}")
            raise

    if previous is not None:
        try:
            _delete_blob(blobs, previous.blob_id)
        except StorageError:
            # The new cover is already live; the old blob is left for sweep-orphans.
            logger.error("Previous cover %s of manga %s not deleted", previous.blob_id, item.id)

    logger.info("Cover of manga %s replaced by blob %s", item.id, blob_id)
    return CoverOutput(manga=updated, cover_url=cover_url(item.id))


def run_upload_file(
    inp: UploadFileInput,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    blobs: BlobStorePort,
    policy: PolicyEngine,
    rules: UploadsRules,
    time: ClockPort,
) -> UploadOutput:
    upload = validate_upload(inp.file, rules)
    requested_page = parse_page_number(inp.page_number)

    with item_locks.hold(inp.manga_id):
        item = _get_or_404(repo, inp.manga_id)
        policy.enforce(identity, "manga:upload", item)
        assert identity is not None
        require_cover(item)

        page_number = assign_page_number(item.files, upload.kind, requested_page)

        now = time.now_utc()
        filename = stored_filename(item.id, upload.original_name, now)
        blob_id = _put_blob(
            blobs,
            filename,
            upload,
            {
                "manga_id": str(item.id),
                "owner_id": str(item.owner_user_id),
                "uploaded_by": str(identity.id),
                "kind": upload.kind,
                "page_number": page_number,
                "original_name": upload.original_name,
            },
        )

        attachment = FileAttachment(
            blob_id=blob_id,
            filename=filename,
            original_name=upload.original_name,
            content_type=upload.file.content_type,
            size_bytes=upload.file.size,
            kind=upload.kind,
            page_number=page_number,
            uploaded_at=now,
        )
        try:
            saved = repo.add_file(state.resubmit(item, now), attachment)
        except Exception:
            _compensate(blobs, blob_id, f"attachment save failure on manga {item.id}")
            raise

    logger.info(
        "File %s (%s, page %s) attached to manga %s", blob_id, upload.kind, page_number, item.id
    )
    return UploadOutput(manga=saved, attachment=attachment, stream_url=stream_url(item.id, blob_id))


def run_approve(
    inp: ModerateInput,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    policy: PolicyEngine,
    time: ClockPort,
) -> Manga:
    policy.enforce(identity, "manga:moderate")
    assert identity is not None

    with item_locks.hold(inp.manga_id):
        item = _get_or_404(repo, inp.manga_id)
        updated = state.approve(item, identity.id, time.now_utc())
        repo.update(updated, MODERATION_FIELDS, expected_updated_at=item.updated_at)
    logger.info("Manga %s approved by %s", item.id, identity.id)
    return updated


def run_reject(
    inp: ModerateInput,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    policy: PolicyEngine,
    rules: ContentRules,
    time: ClockPort,
) -> Manga:
    policy.enforce(identity, "manga:moderate")
    assert identity is not None

    reason = (inp.reason or "").strip()
    if len(reason) > rules.rejection_reason_max:
        raise ValidationError(
            f"reason must be at most {rules.rejection_reason_max} characters"
        )

    with item_locks.hold(inp.manga_id):
        item = _get_or_404(repo, inp.manga_id)
        updated = state.reject(item, identity.id, time.now_utc(), reason)
        repo.update(updated, MODERATION_FIELDS, expected_updated_at=item.updated_at)
    logger.info("Manga %s rejected by %s", item.id, identity.id)
    return updated


def run_delete(
    manga_id: UUID,
    *,
    identity: Identity | None,
    repo: MangaRepoPort,
    blobs: BlobStorePort,
    policy: PolicyEngine,
) -> DeleteOutput:
    with item_locks.hold(manga_id):
        item = _get_or_404(repo, manga_id)
        policy.enforce(identity, "manga:delete", item)

        deleted = missing = 0
        for blob_id in item.blob_ids():
            if _delete_blob(blobs, blob_id):
                deleted += 1
            else:
                missing += 1

        repo.delete(item.id)

    logger.info(
        "Manga %s deleted (%d blobs removed, %d already absent)", item.id, deleted, missing
    )
    return DeleteOutput(manga_id=item.id, blobs_deleted=deleted, blobs_missing=missing)


# --- Maintenance ---

ORPHAN_GRACE = timedelta(minutes=15)


def find_orphaned_blobs(
    *,
    repo: MangaRepoPort,
    blobs: BlobStorePort,
    now: datetime,
    grace: timedelta = ORPHAN_GRACE,
) -> list[UUID]:
    """
    Blobs no manga references (left by crashes between blob write and entity save).

    Blob ids are listed before references are read, so an upload finishing in
    between is seen as referenced. Blobs younger than `grace` are skipped: their
    upload may still be about to save the entity.
    """
    candidates = blobs.list_ids()
    referenced = repo.referenced_blob_ids()
    cutoff = now - grace

    orphans = []
    for blob_id in candidates:
        if blob_id in referenced:
            continue
        info = blobs.get_info(blob_id)
        if info is None or info.uploaded_at > cutoff:
            continue
        orphans.append(blob_id)
    return orphans
