import io
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from src.components.uploads import (
    UploadedFile,
    assign_page_number,
    detect_kind,
    epoch_millis,
    next_page_number,
    parse_page_number,
    require_cover,
    stored_filename,
    validate_upload,
)
from src.domain.entities import CoverRef, FileAttachment, Manga
from src.domain.errors import ConflictError, ValidationError


@pytest.fixture
def uploads(rules):
    return rules.uploads


def make_file(filename="page.png", content_type="image/png", data=b"\x89PNG data"):
    return UploadedFile(filename=filename, content_type=content_type, size=len(data), data=data)


def attachment(kind="image", page_number=None) -> FileAttachment:
    return FileAttachment(
        blob_id=uuid4(),
        filename="f",
        original_name="f",
        content_type="image/png",
        size_bytes=1,
        kind=kind,
        page_number=page_number,
    )


# --- Kind detection ---


@pytest.mark.parametrize(
    "filename,content_type,kind",
    [
        ("a.jpg", "image/jpeg", "image"),
        ("a.JPEG", "image/jpeg", "image"),
        ("a.webp", "image/webp", "image"),
        ("a.gif", "image/gif", "image"),
        ("a.pdf", "application/pdf", "pdf"),
        ("a.zip", "application/zip", "archive"),
        ("a.zip", "application/x-zip-compressed", "archive"),
    ],
)
def test_detect_kind(uploads, filename, content_type, kind):
    assert detect_kind(filename, content_type, uploads) == kind


@pytest.mark.parametrize(
    "filename,content_type",
    [
        ("a.png", "application/pdf"),  # disagreeing type and extension
        ("a.exe", "application/octet-stream"),
        ("a", "image/png"),
        ("a.svg", "image/svg+xml"),
    ],
)
def test_detect_kind_rejects(uploads, filename, content_type):
    assert detect_kind(filename, content_type, uploads) is None


# --- Validation ---


def test_validate_upload_ok(uploads):
    result = validate_upload(make_file(), uploads)
    assert result.kind == "image"
    assert result.extension == ".png"
    assert result.original_name == "page.png"


def test_missing_file(uploads):
    with pytest.raises(ValidationError, match="File is required"):
        validate_upload(None, uploads)
    with pytest.raises(ValidationError, match="Cover image is required"):
        validate_upload(None, uploads, cover=True)


def test_oversized_file(uploads):
    big = UploadedFile(
        filename="big.pdf",
        content_type="application/pdf",
        size=uploads.max_upload_bytes + 1,
        data=io.BytesIO(b""),
    )
    with pytest.raises(ValidationError, match="exceeds maximum"):
        validate_upload(big, uploads)


def test_max_size_is_50_mib(uploads):
    assert uploads.max_upload_bytes == 50 * 1024 * 1024


def test_cover_must_be_image(uploads):
    pdf = make_file("a.pdf", "application/pdf")
    assert validate_upload(pdf, uploads).kind == "pdf"
    with pytest.raises(ValidationError, match="Unsupported cover type"):
        validate_upload(pdf, uploads, cover=True)


def test_unsupported_type(uploads):
    with pytest.raises(ValidationError, match="Unsupported file type"):
        validate_upload(make_file("a.txt", "text/plain"), uploads)


# --- Page numbers ---


@pytest.mark.parametrize("raw,expected", [(None, None), ("", None), ("  ", None), ("3", 3), (4, 4), ("2.0", 2)])
def test_parse_page_number(raw, expected):
    assert parse_page_number(raw) == expected


@pytest.mark.parametrize("raw", ["0", "-1", "abc", "1.5", 0, True])
def test_parse_page_number_rejects(raw):
    with pytest.raises(ValidationError):
        parse_page_number(raw)


def test_first_image_gets_page_one():
    assert assign_page_number([], "image", None) == 1


def test_assigned_page_ignores_non_images():
    files = [attachment(page_number=1), attachment("pdf"), attachment("archive")]
    assert assign_page_number(files, "image", None) == 2


def test_assigned_page_follows_highest():
    files = [attachment(page_number=1), attachment(page_number=7)]
    assert next_page_number(files) == 8


def test_non_image_never_numbered():
    assert assign_page_number([], "pdf", 3) is None


def test_explicit_page_collision():
    files = [attachment(page_number=2)]
    with pytest.raises(ConflictError, match="Image page 2 already exists"):
        assign_page_number(files, "image", 2)
    assert assign_page_number(files, "image", 5) == 5


def test_cover_required_before_pages():
    item = Manga(
        title="X",
        genre=["a"],
        chapters=1,
        description="d",
        release_year=2020,
        owner_user_id=uuid4(),
    )
    with pytest.raises(ValidationError, match="Upload cover before pages"):
        require_cover(item)

    require_cover(item.model_copy(update={"cover": CoverRef(blob_id=uuid4(), filename="c")}))


# --- Naming ---


def test_epoch_millis():
    assert epoch_millis(datetime(1970, 1, 1, 0, 0, 1, tzinfo=UTC)) == 1000


def test_stored_filename_formats():
    manga_id = uuid4()
    now = datetime(2024, 5, 1, tzinfo=UTC)
    ms = epoch_millis(now)

    assert stored_filename(manga_id, "my page 1.png", now) == f"{manga_id}-{ms}-my_page_1.png"
    assert (
        stored_filename(manga_id, "cöver.jpg", now, cover=True)
        == f"{manga_id}-cover-{ms}-c_ver.jpg"
    )
