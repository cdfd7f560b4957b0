"""
Manga API routes.

Listing, CRUD, moderation, uploads and the two streaming read paths
(cover and pages). Business rules live in src.components.manga; this module
only translates HTTP to component inputs and back.
"""

import logging
from collections.abc import Iterator
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import StreamingResponse

from src.adapters.clock import SystemClock
from src.adapters.sqlite.repos import SQLiteMangaRepo
from src.api.deps import (
    get_blob_store,
    get_clock,
    get_current_identity,
    get_manga_repo,
    get_optional_identity,
    get_policy,
    get_rules,
)
from src.api.schemas import (
    CoverUploadResponse,
    DeleteResponse,
    FileAttachmentResponse,
    FileListResponse,
    FileUploadResponse,
    MangaCreateRequest,
    MangaResponse,
    MangaUpdateRequest,
    RejectRequest,
)
from src.components.manga import (
    CreateMangaInput,
    FileStream,
    ModerateInput,
    OpenFileInput,
    UpdateMangaInput,
    UploadCoverInput,
    UploadFileInput,
    run_approve,
    run_create,
    run_delete,
    run_get_public,
    run_list_files,
    run_list_mine,
    run_list_pending,
    run_list_public,
    run_open_cover,
    run_open_file,
    run_reject,
    run_update,
    run_upload_cover,
    run_upload_file,
)
from src.components.uploads import UploadedFile
from src.domain.entities import Identity
from src.domain.errors import NotFoundError, StorageError, ValidationError
from src.domain.policy import PolicyEngine
from src.domain.sanitize import content_disposition
from src.ports.blobstore import BlobNotFoundError, BlobStoreError, BlobStorePort
from src.rules.models import Rules

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_uploaded_file(file: UploadFile | None) -> UploadedFile | None:
    if file is None or not file.filename:
        return None
    file.file.seek(0, 2)
    size = file.file.tell()
    file.file.seek(0)
    return UploadedFile(
        filename=file.filename,
        content_type=file.content_type or "application/octet-stream",
        size=size,
        data=file.file,
    )


def _stream(stream: FileStream, *, download: bool = False, filename: str | None = None) -> Any:
    """
    Turn a FileStream into a StreamingResponse.

    The first chunk is read before the response starts, so a missing blob or
    a broken store still becomes a 404/500 JSON error. Failures after that
    point can only be logged: the status line is already on the wire.
    """
    chunks = stream.chunks
    try:
        first = next(chunks, b"")
    except BlobNotFoundError as e:
        stream.close()
        raise NotFoundError("Stored file does not exist") from e
    except BlobStoreError as e:
        stream.close()
        logger.exception("Blob read failed before streaming %s", stream.blob_id)
        raise StorageError(str(e)) from e

    def body() -> Iterator[bytes]:
        try:
            if first:
                yield first
            yield from chunks
        except BlobStoreError:
            logger.error("Stream of blob %s aborted mid-response", stream.blob_id, exc_info=True)
        finally:
            stream.close()

    headers = {"Content-Length": str(stream.length)}
    if download:
        headers["Content-Disposition"] = content_disposition(
            filename or stream.filename, download=True
        )
    return StreamingResponse(body(), media_type=stream.content_type, headers=headers)


# --- Listing ---


@router.get("", response_model=list[MangaResponse])
def list_public(
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
) -> list[MangaResponse]:
    """Approved manga, newest first."""
    return [MangaResponse.build(m) for m in run_list_public(repo=repo)]


@router.get("/my", response_model=list[MangaResponse])
def list_mine(
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    policy: PolicyEngine = Depends(get_policy),
) -> list[MangaResponse]:
    items = run_list_mine(identity=identity, repo=repo, policy=policy)
    return [MangaResponse.build(m) for m in items]


@router.get("/pending", response_model=list[MangaResponse])
def list_pending(
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    policy: PolicyEngine = Depends(get_policy),
) -> list[MangaResponse]:
    """Moderation queue."""
    items = run_list_pending(identity=identity, repo=repo, policy=policy)
    return [MangaResponse.build(m) for m in items]


# --- CRUD ---


@router.post("", response_model=MangaResponse, status_code=status.HTTP_201_CREATED)
def create_manga(
    request: MangaCreateRequest,
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    policy: PolicyEngine = Depends(get_policy),
    rules: Rules = Depends(get_rules),
    clock: SystemClock = Depends(get_clock),
) -> MangaResponse:
    inp = CreateMangaInput(
        title=request.title,
        genre=request.genre,
        chapters=request.chapters,
        description=request.description,
        release_year=request.release_year,
    )
    item = run_create(
        inp, identity=identity, repo=repo, policy=policy, rules=rules.content, time=clock
    )
    return MangaResponse.build(item)


@router.get("/{manga_id}", response_model=MangaResponse)
def get_manga(
    manga_id: UUID,
    identity: Identity | None = Depends(get_optional_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    policy: PolicyEngine = Depends(get_policy),
) -> MangaResponse:
    item = run_get_public(manga_id, identity=identity, repo=repo, policy=policy)
    return MangaResponse.build(item)


@router.patch("/{manga_id}", response_model=MangaResponse)
def update_manga(
    manga_id: UUID,
    request: MangaUpdateRequest,
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    policy: PolicyEngine = Depends(get_policy),
    rules: Rules = Depends(get_rules),
    clock: SystemClock = Depends(get_clock),
) -> MangaResponse:
    """Edit metadata. Sends the item back to the moderation queue."""
    inp = UpdateMangaInput(manga_id=manga_id, updates=request.model_dump(exclude_unset=True))
    item = run_update(
        inp, identity=identity, repo=repo, policy=policy, rules=rules.content, time=clock
    )
    return MangaResponse.build(item)


@router.delete("/{manga_id}", response_model=DeleteResponse)
def delete_manga(
    manga_id: UUID,
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    blobs: BlobStorePort = Depends(get_blob_store),
    policy: PolicyEngine = Depends(get_policy),
) -> DeleteResponse:
    out = run_delete(manga_id, identity=identity, repo=repo, blobs=blobs, policy=policy)
    return DeleteResponse(
        manga_id=out.manga_id, blobs_deleted=out.blobs_deleted, blobs_missing=out.blobs_missing
    )


# --- Moderation ---


@router.patch("/{manga_id}/approve", response_model=MangaResponse)
def approve_manga(
    manga_id: UUID,
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    policy: PolicyEngine = Depends(get_policy),
    clock: SystemClock = Depends(get_clock),
) -> MangaResponse:
    item = run_approve(
        ModerateInput(manga_id=manga_id), identity=identity, repo=repo, policy=policy, time=clock
    )
    return MangaResponse.build(item)


@router.patch("/{manga_id}/reject", response_model=MangaResponse)
def reject_manga(
    manga_id: UUID,
    request: RejectRequest | None = Body(None),
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    policy: PolicyEngine = Depends(get_policy),
    rules: Rules = Depends(get_rules),
    clock: SystemClock = Depends(get_clock),
) -> MangaResponse:
    inp = ModerateInput(manga_id=manga_id, reason=request.reason if request else None)
    item = run_reject(
        inp, identity=identity, repo=repo, policy=policy, rules=rules.content, time=clock
    )
    return MangaResponse.build(item)


# --- Uploads ---


@router.post(
    "/{manga_id}/cover",
    response_model=CoverUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
def upload_cover(
    manga_id: UUID,
    file: UploadFile | None = File(None),
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    blobs: BlobStorePort = Depends(get_blob_store),
    policy: PolicyEngine = Depends(get_policy),
    rules: Rules = Depends(get_rules),
    clock: SystemClock = Depends(get_clock),
) -> CoverUploadResponse:
    inp = UploadCoverInput(manga_id=manga_id, file=_to_uploaded_file(file))
    out = run_upload_cover(
        inp,
        identity=identity,
        repo=repo,
        blobs=blobs,
        policy=policy,
        rules=rules.uploads,
        time=clock,
    )
    return CoverUploadResponse(cover_url=out.cover_url, manga=MangaResponse.build(out.manga))


@router.post(
    "/{manga_id}/upload",
    response_model=FileUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
def upload_file(
    manga_id: UUID,
    file: UploadFile | None = File(None),
    page_number: str | None = Form(None, alias="pageNumber"),
    identity: Identity = Depends(get_current_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    blobs: BlobStorePort = Depends(get_blob_store),
    policy: PolicyEngine = Depends(get_policy),
    rules: Rules = Depends(get_rules),
    clock: SystemClock = Depends(get_clock),
) -> FileUploadResponse:
    """Attach a page image, pdf or zip. A cover must already exist."""
    inp = UploadFileInput(
        manga_id=manga_id, file=_to_uploaded_file(file), page_number=page_number
    )
    out = run_upload_file(
        inp,
        identity=identity,
        repo=repo,
        blobs=blobs,
        policy=policy,
        rules=rules.uploads,
        time=clock,
    )
    return FileUploadResponse(
        status=out.status,
        file=FileAttachmentResponse.build(manga_id, out.attachment),
        stream_url=out.stream_url,
        manga=MangaResponse.build(out.manga),
    )


# --- Streaming ---


@router.get("/{manga_id}/cover")
def get_cover(
    manga_id: UUID,
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    blobs: BlobStorePort = Depends(get_blob_store),
) -> Any:
    """Public cover image; 404 unless the manga is approved."""
    return _stream(run_open_cover(manga_id, repo=repo, blobs=blobs))


@router.get("/{manga_id}/pages")
def get_pages(
    manga_id: UUID,
    file_id: str | None = Query(None, alias="fileId"),
    download: bool = Query(False),
    identity: Identity | None = Depends(get_optional_identity),
    repo: SQLiteMangaRepo = Depends(get_manga_repo),
    blobs: BlobStorePort = Depends(get_blob_store),
    policy: PolicyEngine = Depends(get_policy),
) -> Any:
    """
    Without fileId: the attachment listing (image pages first, by page number).
    With fileId: the file's bytes, optionally as a download.
    """
    if not file_id:
        out = run_list_files(manga_id, identity=identity, repo=repo, policy=policy)
        return FileListResponse.build(out)

    try:
        blob_id = UUID(file_id)
    except ValueError:
        raise ValidationError("Invalid file id") from None

    stream = run_open_file(
        OpenFileInput(manga_id=manga_id, file_id=blob_id),
        identity=identity,
        repo=repo,
        blobs=blobs,
        policy=policy,
    )
    return _stream(stream, download=download, filename=stream.original_name)
