from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import os
import secrets

from docspace.core.config import get_settings
from docspace.core.errors import UploadValidationError


DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ACCEPTED_FILE_TYPES: dict[str, tuple[str, ...]] = {
    "application/pdf": (".pdf",),
    DOCX_MIME: (".docx",),
    XLSX_MIME: (".xlsx",),
    "image/png": (".png",),
    "image/jpeg": (".jpg", ".jpeg"),
}
ACCEPTED_EXTENSIONS = (".pdf", ".docx", ".xlsx", ".png", ".jpg", ".jpeg")
_EXTENSION_TYPES = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".xlsx": "xlsx",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
}
_MIME_TYPES = {
    "application/pdf": "pdf",
    DOCX_MIME: "docx",
    XLSX_MIME: "xlsx",
    "image/png": "image",
    "image/jpeg": "image",
}


@dataclass(frozen=True)
class ValidatedUpload:
    filename: str
    content_type: str
    size: int
    file_type: str
    extension: str


def _extension(filename: str) -> str:
    return os.path.splitext(filename.lower())[1]


def get_file_type(filename: str, content_type: str | None = None) -> str:
    # Prefer the filename; fall back to the declared MIME type.
    file_type = _EXTENSION_TYPES.get(_extension(filename))
    if file_type:
        return file_type
    return _MIME_TYPES.get((content_type or "").lower(), "unknown")


def validate_upload(filename: str, content_type: str | None, size: int) -> ValidatedUpload:
    """Reject oversize or unsupported files before anything touches storage.

    A file passes when either its MIME type or its extension is accepted.
    """
    max_bytes = get_settings().upload_max_bytes
    if size > max_bytes:
        raise UploadValidationError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
    if size <= 0:
        raise UploadValidationError("File is empty")
    mime = (content_type or "").lower()
    extension = _extension(filename)
    if mime not in ACCEPTED_FILE_TYPES and extension not in ACCEPTED_EXTENSIONS:
        raise UploadValidationError(
            f"File type not supported. Accepted: {', '.join(ACCEPTED_EXTENSIONS)}"
        )
    file_type = get_file_type(filename, mime)
    if not extension:
        extension = ACCEPTED_FILE_TYPES.get(mime, ("",))[0]
    return ValidatedUpload(
        filename=filename,
        content_type=mime or "application/octet-stream",
        size=size,
        file_type=file_type,
        extension=extension,
    )


def generate_blob_path(workspace_id: str, extension: str, *, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    timestamp_ms = int(now.timestamp() * 1000)
    return f"documents/{workspace_id}/{timestamp_ms}-{secrets.token_hex(4)}{extension}"


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    index = 0
    while size >= 1024 ** (index + 1) and index < len(units) - 1:
        index += 1
    value = round(size / (1024**index), 2)
    return f"{value:g} {units[index]}"
