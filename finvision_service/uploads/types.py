from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

JobStatus = Literal["pending", "analyzing", "saving", "completed", "failed"]
BatchPolicy = Literal["income", "expense", "auto"]

BATCH_POLICIES: frozenset[str] = frozenset({"income", "expense", "auto"})
ACTIVE_STATUSES: frozenset[str] = frozenset({"analyzing", "saving"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


@dataclass(frozen=True)
class SourceFile:
    """A submitted file: either held in memory or read lazily from disk."""

    name: str
    mime_type: str  # "" when unknown
    size: int
    content: bytes | None = field(default=None, repr=False)
    path: Path | None = None

    @classmethod
    def from_bytes(cls, name: str, data: bytes, *, mime_type: str | None = None) -> SourceFile:
        if mime_type is None:
            mime_type = mimetypes.guess_type(name)[0] or ""
        return cls(name=name, mime_type=mime_type, size=len(data), content=data)

    @classmethod
    def from_path(cls, path: Path, *, mime_type: str | None = None) -> SourceFile:
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or ""
        return cls(name=path.name, mime_type=mime_type, size=path.stat().st_size, path=path)

    def without_content(self) -> SourceFile:
        """Metadata-only copy: name, MIME type and size survive, the bytes do not."""
        return replace(self, content=None, path=None)

    def read_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.path is not None:
            return self.path.read_bytes()
        raise ValueError(f"No content available for {self.name}")


@dataclass
class QueueJob:
    """One file's trip through the extraction pipeline.

    Mutated in place by the queue controller only. Once the job is finished
    ``file`` keeps its metadata but no longer holds the bytes.
    """

    id: str
    file: SourceFile
    status: JobStatus = "pending"
    progress: int = 0
    error: str | None = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class EncodedDocument:
    base64_data: str
    mime_type: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_data}"
