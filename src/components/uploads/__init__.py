"""
Uploads component - Validation and page numbering for manga files.
"""

from .component import (
    assign_page_number,
    detect_kind,
    epoch_millis,
    file_extension,
    image_page_numbers,
    kind_for_extension,
    kind_for_mime_type,
    next_page_number,
    parse_page_number,
    require_cover,
    stored_filename,
    validate_upload,
)
from .models import UploadedFile, ValidatedUpload

__all__ = [
    # Validation
    "detect_kind",
    "file_extension",
    "kind_for_extension",
    "kind_for_mime_type",
    "parse_page_number",
    "require_cover",
    "validate_upload",
    # Page numbering
    "assign_page_number",
    "image_page_numbers",
    "next_page_number",
    # Naming
    "epoch_millis",
    "stored_filename",
    # Models
    "UploadedFile",
    "ValidatedUpload",
]
