"""Domain models for the chunk store."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np


@dataclass
class ChunkRecord:
    """One persisted chunk of a source file."""

    id: str
    file_path: str
    file_name: str
    content: str
    chunk_index: int
    language: str
    embedding: np.ndarray = field(repr=False)
    created_at: float = 0.0
    modified_at: float = 0.0
    file_size: int = 0


@dataclass(frozen=True)
class FileInfo:
    """Identity and on-disk stats of a file about to be (re)indexed."""

    path: str
    name: str
    modified_at: float
    size: int

    @classmethod
    def from_path(cls, path: Path) -> FileInfo:
        stat = path.stat()
        return cls(
            path=str(path),
            name=path.name,
            modified_at=stat.st_mtime,
            size=stat.st_size,
        )


@dataclass(frozen=True)
class StoredFileState:
    """Change-detection fingerprint recorded at index time."""

    modified_at: float
    file_size: int


@dataclass(frozen=True)
class FileSummary:
    """Per-file aggregate used for listings and orphan sweeps."""

    id: str
    file_path: str
    file_name: str
    language: str
    chunk_count: int
    content_size: int


@dataclass(frozen=True)
class StoreStats:
    chunk_count: int
    total_content_bytes: int
