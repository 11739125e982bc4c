from __future__ import annotations

import re
from pathlib import Path

from .archive import DocumentStream
from .models import SigningSession
from .util import guess_extension

_SAFE = re.compile(r"[^a-zA-Z0-9._-]+")


def safe_filename(name: str, max_len: int = 120) -> str:
    cleaned = _SAFE.sub("_", name).strip("._-")
    if not cleaned:
        cleaned = "document"
    return cleaned[:max_len]


def write_session(session: SigningSession, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(session.model_dump_json(indent=2), encoding="utf-8")
    return path


def read_session(path: Path) -> SigningSession:
    return SigningSession.model_validate_json(path.read_text(encoding="utf-8"))


class ArtifactExporter:
    """Writes downloaded artifacts to disk under predictable names."""

    def __init__(self, out_dir: Path):
        self.out_dir = out_dir.resolve()

    def target_path(self, document_id: str, stream: DocumentStream, original_name: str | None = None) -> Path:
        stem = Path(stream.filename or original_name or "document").stem
        ext = guess_extension(stream.content_type)
        return self.out_dir / f"{safe_filename(document_id)}_{safe_filename(stem)}.{ext}"

    def write(self, document_id: str, stream: DocumentStream, original_name: str | None = None) -> Path:
        out_path = self.target_path(document_id, stream, original_name)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with stream, out_path.open("wb") as f:
                for chunk in stream.iter_bytes():
                    if chunk:
                        f.write(chunk)
        except BaseException:
            # a truncated artifact is never left behind
            out_path.unlink(missing_ok=True)
            raise
        return out_path
