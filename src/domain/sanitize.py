import re

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """
    Replace every character outside [A-Za-z0-9._-] with an underscore.

    The result is safe inside a quoted Content-Disposition filename and as a
    storage name component.
    """
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def content_disposition(filename: str, download: bool = False) -> str:
    safe_filename = sanitize_filename(filename) or "file"
    if download:
        return f'attachment; filename="{safe_filename}"'
    return f'inline; filename="{safe_filename}"'
