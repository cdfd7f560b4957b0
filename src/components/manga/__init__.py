"""
Manga component - Moderated file-attachment lifecycle.
"""

from .component import (
    cover_url,
    find_orphaned_blobs,
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
    sort_files,
    stream_url,
    validate_metadata,
)
from .locks import KeyedLocks, item_locks
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

__all__ = [
    # Read
    "run_get_public",
    "run_list_files",
    "run_list_mine",
    "run_list_pending",
    "run_list_public",
    "run_open_cover",
    "run_open_file",
    # Write
    "run_create",
    "run_update",
    "run_upload_cover",
    "run_upload_file",
    "run_approve",
    "run_reject",
    "run_delete",
    # Helpers
    "cover_url",
    "find_orphaned_blobs",
    "sort_files",
    "stream_url",
    "validate_metadata",
    "KeyedLocks",
    "item_locks",
    # Models
    "CoverOutput",
    "CreateMangaInput",
    "DeleteOutput",
    "FileListOutput",
    "FileStream",
    "ModerateInput",
    "OpenFileInput",
    "UpdateMangaInput",
    "UploadCoverInput",
    "UploadFileInput",
    "UploadOutput",
]
