from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

from finvision_service.uploads.types import SourceFile


def is_accepted(mime_type: str, accepted_prefixes: Sequence[str]) -> bool:
    return bool(mime_type) and any(mime_type.startswith(p) for p in accepted_prefixes)


def discover_files(paths: Iterable[Path], *, accepted_prefixes: Sequence[str]) -> list[SourceFile]:
    """Expand CLI arguments into source files, in argument order.

    Directories are walked recursively (sorted) and only accepted types are
    picked up. Files named explicitly are always kept.
    """
    files: list[SourceFile] = []
    for path in paths:
        if path.is_dir():
            for child in sorted(p for p in path.rglob("*") if p.is_file()):
                source = SourceFile.from_path(child)
                if is_accepted(source.mime_type, accepted_prefixes):
                    files.append(source)
        elif path.is_file():
            files.append(SourceFile.from_path(path))
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return files
