"""
Uploads component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO

from src.domain.entities import FileKind


@dataclass(frozen=True)
class UploadedFile:
    """One file received from a client, not yet validated."""

    filename: str
    content_type: str
    size: int
    data: bytes | BinaryIO


@dataclass(frozen=True)
class ValidatedUpload:
    """An upload that passed the type and size checks."""

    file: UploadedFile
    kind: FileKind
    extension: str

    @property
    def original_name(self) -> str:
        return self.file.filename
