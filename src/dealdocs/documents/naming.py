"""Safe, bounded folder and file names for the Drive folder tree.

Pure functions only: same input always yields the same output. Names are
NFC-normalized, stripped of characters that file systems and Drive clients
choke on, and capped at MAX_NAME_LENGTH while keeping the file extension.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any

MAX_NAME_LENGTH = 200
DEFAULT_ORG_FOLDER = "— Sin organización —"

_WHITESPACE_RE = re.compile(r"\s+")
_ILLEGAL_CHARS_RE = re.compile(r'[\\/:*?"<>|]')
_REPEATED_DASH_RE = re.compile(r"-{2,}")
_EXTENSION_RE = re.compile(r"\.[^./]+$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

MIME_EXTENSION_MAP: dict[str, str] = {
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "text/plain": "txt",
    "text/csv": "csv",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "application/zip": "zip",
}


def _clean(value: str) -> str:
    value = value.strip()
    value = _WHITESPACE_RE.sub(" ", value)
    value = _ILLEGAL_CHARS_RE.sub("-", value)
    value = _REPEATED_DASH_RE.sub("-", value)
    return value.strip()


def normalize_name(raw: Any, fallback: str) -> str:
    """Turn an arbitrary value into a safe folder/file name.

    Args:
        raw: Candidate name. None and non-strings are accepted.
        fallback: Used when the cleaned candidate is empty.

    Returns:
        Cleaned name, at most MAX_NAME_LENGTH characters.
    """
    base = unicodedata.normalize("NFC", "" if raw is None else str(raw))
    normalized = _clean(base)
    if not normalized:
        normalized = _clean(unicodedata.normalize("NFC", fallback))
    if not normalized:
        normalized = fallback
    return normalized[:MAX_NAME_LENGTH]


def has_extension(name: str) -> bool:
    return bool(_EXTENSION_RE.search(name))


def trim_with_extension(name: str) -> str:
    """Cap a name at MAX_NAME_LENGTH, shrinking the base instead of the extension."""
    if len(name) <= MAX_NAME_LENGTH:
        return name
    dot_index = name.rfind(".")
    if 0 < dot_index < len(name) - 1:
        ext = name[dot_index + 1:]
        allowed_base = MAX_NAME_LENGTH - len(ext) - 1
        if allowed_base >= 1:
            return f"{name[:allowed_base]}.{ext}"
    return name[:MAX_NAME_LENGTH]


def extension_from_mime(mime_type: str | None) -> str | None:
    """Map a MIME type to a file extension (without the dot)."""
    if not mime_type:
        return None
    lower = mime_type.split(";", 1)[0].strip().lower()
    if lower in MIME_EXTENSION_MAP:
        return MIME_EXTENSION_MAP[lower]
    if lower.startswith("image/") or lower.startswith("text/"):
        candidate = _NON_ALNUM_RE.sub("", lower.split("/", 1)[1])
        return candidate or None
    return None


def ensure_extension(name: str, mime_type: str | None) -> str:
    """Append an extension derived from mime_type unless name already has one."""
    if has_extension(name):
        return trim_with_extension(name)
    ext = extension_from_mime(mime_type)
    if not ext:
        return trim_with_extension(name)
    return trim_with_extension(f"{name}.{ext}")


def resolve_file_name(
    header_name: str | None,
    declared_name: str | None,
    source_file_id: str,
    mime_type: str | None,
) -> str:
    """Pick the final Drive file name for a source file.

    Preference order: the filename from the download's Content-Disposition
    header, the name declared by the CRM, then "Documento <id>".
    """
    fallback = f"Documento {source_file_id}"
    if header_name and header_name.strip():
        candidate = header_name
    elif declared_name and declared_name.strip():
        candidate = declared_name
    else:
        candidate = fallback
    return ensure_extension(normalize_name(candidate, fallback), mime_type)


def resolve_organization_folder_name(raw: str | None) -> str:
    return normalize_name(raw, DEFAULT_ORG_FOLDER)
