from __future__ import annotations

import mimetypes
from typing import Optional

_EXTENSIONS = {
    "application/pdf": "pdf",
    "application/zip": "zip",
    "application/xml": "xml",
    "application/json": "json",
    "application/pkcs7-signature": "p7s",
    "text/plain": "txt",
    "image/png": "png",
    "image/jpeg": "jpg",
}


def guess_extension(content_type: Optional[str]) -> str:
    if not content_type:
        return "bin"
    ct = content_type.split(";")[0].strip().lower()
    return _EXTENSIONS.get(ct, "bin")


def guess_content_type(filename: str) -> str:
    """Content type for an upload, from the file name; PDF is the common case."""
    if filename.lower().endswith(".pdf"):
        return "application/pdf"
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


def parse_fields(pairs: list[str]) -> dict[str, str]:
    """Parse ``key=value`` CLI pairs into a custom-fields mapping."""
    fields: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"expected key=value, got {pair!r}")
        fields[key.strip()] = value
    return fields
