"""
Uploads component - File type/size validation and page numbering.

Pure functions, no I/O. Everything here runs before any store is touched, so
a rejected upload never leaves a blob or a metadata row behind.

Rules:
- Declared MIME type and file extension must both be allow-listed AND map to
  the same kind (image, pdf, archive).
- Covers accept only the kinds in rules.uploads.cover_kinds (images).
- Image pages get an explicit or an assigned page number; other kinds never do.
- Pages may only be attached once a cover exists.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from pathlib import PurePath
from uuid import UUID

from src.domain.entities import FileAttachment, FileKind, Manga
from src.domain.errors import ConflictError, ValidationError
from src.domain.sanitize import sanitize_filename
from src.rules.models import UploadsRules

from .models import UploadedFile, ValidatedUpload

# --- Kind detection ---


def file_extension(filename: str) -> str:
    return PurePath(filename or "").suffix.lower()


def kind_for_mime_type(mime_type: str, rules: UploadsRules) -> str | None:
    for kind, config in rules.kinds.items():
        if mime_type in config.mime_types:
            return kind
    return None


def kind_for_extension(extension: str, rules: UploadsRules) -> str | None:
    for kind, config in rules.kinds.items():
        if extension in config.extensions:
            return kind
    return None


def detect_kind(
    filename: str,
    content_type: str,
    rules: UploadsRules,
    allowed_kinds: Iterable[str] | None = None,
) -> FileKind | None:
    """
    Determine the file kind, or None when the declared type and the extension
    disagree or fall outside the allow-list.
    """
    by_mime = kind_for_mime_type((content_type or "").lower(), rules)
    by_ext = kind_for_extension(file_extension(filename), rules)

    if by_mime is None or by_mime != by_ext:
        return None
    if allowed_kinds is not None and by_mime not in set(allowed_kinds):
        return None
    return by_mime  # type: ignore[return-value]


def _describe_kinds(kinds: Iterable[str]) -> str:
    names = {"image": "images", "pdf": "pdf", "archive": "zip"}
    return ", ".join(names.get(k, k) for k in sorted(kinds))


# --- Validation ---


def validate_upload(
    file: UploadedFile | None,
    rules: UploadsRules,
    *,
    cover: bool = False,
) -> ValidatedUpload:
    """
    Validate one uploaded file.

    Raises ValidationError for a missing file, an oversized file or a type
    that is not allowed.
    """
    if file is None or not file.filename:
        what = "Cover image" if cover else "File"
        raise ValidationError(
            f'{what} is required. Use multipart/form-data with field "file"'
        )

    if file.size > rules.max_upload_bytes:
        raise ValidationError(
            f"File size {file.size} bytes exceeds maximum of {rules.max_upload_bytes} bytes"
        )

    allowed = rules.cover_kinds if cover else list(rules.kinds)
    kind = detect_kind(file.filename, file.content_type, rules, allowed)
    if kind is None:
        if cover:
            raise ValidationError(
                f"Unsupported cover type. Allowed: {_describe_kinds(allowed)} only"
            )
        raise ValidationError(f"Unsupported file type. Allowed: {_describe_kinds(allowed)}")

    return ValidatedUpload(file=file, kind=kind, extension=file_extension(file.filename))


def parse_page_number(value: str | int | None) -> int | None:
    """
    Parse an optional page number. Empty means "assign one".

    Raises ValidationError unless the value is a positive integer.
    """
    if isinstance(value, bool):
        raise ValidationError("pageNumber must be a positive integer")
    if value is None:
        return None

    if isinstance(value, int):
        parsed = value
    else:
        text = str(value).strip()
        if text == "":
            return None
        try:
            parsed = int(text)
        except ValueError:
            try:
                as_float = float(text)
            except ValueError:
                raise ValidationError("pageNumber must be a positive integer") from None
            if not as_float.is_integer():
                raise ValidationError("pageNumber must be a positive integer")
            parsed = int(as_float)

    if parsed < 1:
        raise ValidationError("pageNumber must be a positive integer")
    return parsed


def require_cover(item: Manga) -> None:
    if item.cover is None:
        raise ValidationError("Upload cover before pages")


# --- Page numbering ---


def image_page_numbers(files: Iterable[FileAttachment]) -> set[int]:
    return {f.page_number for f in files if f.kind == "image" and f.page_number}


def next_page_number(files: Iterable[FileAttachment]) -> int:
    pages = image_page_numbers(files)
    return max(pages) + 1 if pages else 1


def assign_page_number(
    files: Iterable[FileAttachment],
    kind: FileKind,
    requested: int | None,
) -> int | None:
    """
    Page number for a new attachment.

    Non-images: always None. Images: the requested number if free (else
    ConflictError), or max(existing) + 1 when omitted.
    """
    if kind != "image":
        return None

    files = list(files)
    if requested is None:
        return next_page_number(files)

    if requested in image_page_numbers(files):
        raise ConflictError(f"Image page {requested} already exists")
    return requested


# --- Naming ---


def epoch_millis(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def stored_filename(
    manga_id: UUID,
    original_name: str,
    now: datetime,
    *,
    cover: bool = False,
) -> str:
    """
    Collision-resistant storage name: parent id + timestamp + sanitized name.

    Format: {id}-{ms}-{name} for pages, {id}-cover-{ms}-{name} for covers.
    """
    infix = "-cover" if cover else ""
    return f"{manga_id}{infix}-{epoch_millis(now)}-{sanitize_filename(original_name)}"
