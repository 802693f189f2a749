"""Indexer: keeps the store in sync with files on disk.

Per file the state moves UNSEEN → INDEXED → {UNCHANGED | REINDEXED | ORPHANED}:

  - no stored fingerprint          → extract, chunk, batch-embed, insert
  - same size and |Δmtime| < 1 s   → skipped without extraction or embedding
  - anything else                  → transactional replace of all chunks
  - stored path missing on disk    → deleted by the orphan sweep

Per-file failures are collected in the IndexReport and the run continues;
only a provider that is not ready aborts the run.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import os
import sqlite3
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from quarry.concurrency import CancellationToken
from quarry.config import IndexCfg
from quarry.db.filters import (
    SKIP_DIRS,
    excluded_extensions,
    extension_of,
    is_common_doc_file,
)
from quarry.db.models import FileInfo, StoredFileState
from quarry.db.repository import DocumentStore
from quarry.exceptions import (
    EmbeddingError,
    ExtractionError,
    FileTooLargeError,
    QuarryError,
    StoreFullError,
)
from quarry.ingest.chunker import chunk_text
from quarry.ingest.extract import CompositeExtractor, Extractor
from quarry.rag.embeddings import EmbeddingProvider, detect_language

logger = logging.getLogger(__name__)

# Filesystems report mtimes with different precision; anything closer than
# this counts as unchanged.
MTIME_TOLERANCE_SECONDS = 1.0

# Store-size projection: one chunk per this many bytes of source file.
_BYTES_PER_ESTIMATED_CHUNK = 512

ProgressCallback = Callable[[int, int, str], None]


class FileState(enum.Enum):
    UNSEEN = "unseen"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


def classify(stored: StoredFileState | None, current: FileInfo) -> FileState:
    """Compare the stored fingerprint of a file with its on-disk stats."""
    if stored is None:
        return FileState.UNSEEN
    if (
        stored.file_size == current.size
        and abs(stored.modified_at - current.modified_at) < MTIME_TOLERANCE_SECONDS
    ):
        return FileState.UNCHANGED
    return FileState.CHANGED


def embedding_text(file_name: str, chunk: str) -> str:
    """Prefix *chunk* with the file stem so file names take part in similarity."""
    stem = Path(file_name).stem.replace("_", " ").replace("-", " ")
    return f"{stem} {chunk}"


@dataclass
class IndexingIssue:
    """A file that could not be indexed, with a human-readable reason."""

    path: str
    name: str
    message: str


@dataclass
class IndexReport:
    """Outcome of one indexing run."""

    indexed: list[str] = field(default_factory=list)
    reindexed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    errors: list[IndexingIssue] = field(default_factory=list)
    halted: bool = False
    cancelled: bool = False

    @property
    def indexed_count(self) -> int:
        """Files written during this run (new plus reindexed)."""
        return len(self.indexed) + len(self.reindexed)

    def record_error(self, path: Path, exc: Exception) -> None:
        self.errors.append(IndexingIssue(path=str(path), name=path.name, message=str(exc)))


class Indexer:
    """Index files into a DocumentStore through an EmbeddingProvider.

    Args:
        store: Destination store.
        embedder: Embedding provider; one batch call per file.
        settings: Limits and filters; a snapshot is taken at the start of
            every run, so update_settings() never affects a run in progress.
        extractor: Text extractor; defaults to PDF + plain text.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        settings: IndexCfg | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._extractor = extractor if extractor is not None else CompositeExtractor()
        self._lock = threading.Lock()
        self._settings = settings if settings is not None else IndexCfg()
        self._run_lock = threading.Lock()

    @property
    def settings(self) -> IndexCfg:
        with self._lock:
            return dataclasses.replace(self._settings)

    def update_settings(self, settings: IndexCfg) -> None:
        with self._lock:
            self._settings = dataclasses.replace(settings)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def index_paths(
        self,
        paths: Iterable[Path | str],
        *,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        sweep_orphans: bool = False,
    ) -> IndexReport:
        """Index every file under *paths* (directories are scanned recursively).

        Args:
            paths: Files and/or directories.
            token: Checked before and after every file; on cancellation the
                report so far is returned with ``cancelled=True``.
            on_progress: Called as ``(position, total, file_name)`` before each file.
            sweep_orphans: Also delete stored files that no longer exist.

        Raises:
            ProviderUnavailableError: If the embedding model is not ready.
        """
        with self._run_lock:
            settings = self.settings
            report = IndexReport()
            files = self._collect(paths, settings)
            store_bytes = self._store.stats().total_content_bytes
            logger.info("Indexing %d candidate files", len(files))

            for position, path in enumerate(files, start=1):
                if token is not None and token.cancelled:
                    report.cancelled = True
                    logger.info("Indexing cancelled before %s", path.name)
                    return report
                if on_progress is not None:
                    on_progress(position, len(files), path.name)

                try:
                    store_bytes += self._index_one(path, settings, store_bytes, report)
                except StoreFullError as exc:
                    report.record_error(path, exc)
                    report.halted = True
                    logger.warning("Stopping: %s", exc)
                    break
                except (FileTooLargeError, ExtractionError, EmbeddingError, OSError) as exc:
                    report.record_error(path, exc)
                    logger.warning("Failed to index %s: %s", path, exc)
                except sqlite3.Error as exc:
                    report.record_error(path, QuarryError(f"Failed to store chunks: {exc}"))
                    logger.warning("Failed to store %s: %s", path, exc)

                if token is not None and token.cancelled:
                    report.cancelled = True
                    logger.info("Indexing cancelled after %s", path.name)
                    return report

            if sweep_orphans and not report.halted:
                report.removed = self.cleanup_orphans()

        logger.info(
            "Indexing done: %d new, %d reindexed, %d unchanged, %d errors",
            len(report.indexed), len(report.reindexed), len(report.unchanged), len(report.errors),
        )
        return report

    def index_directory(self, root: Path | str, **kwargs) -> IndexReport:
        return self.index_paths([root], **kwargs)

    def index_file(self, path: Path | str, **kwargs) -> IndexReport:
        return self.index_paths([path], **kwargs)

    def cleanup_orphans(self) -> list[str]:
        """Delete stored files that no longer exist on disk. Returns their paths."""
        removed: list[str] = []
        for summary in self._store.list_files_summary():
            if not Path(summary.file_path).exists():
                self._store.delete_by_path(summary.file_path)
                removed.append(summary.file_path)
        if removed:
            logger.info("Removed %d orphaned files from the index", len(removed))
        return removed

    # ------------------------------------------------------------------
    # Per-file pipeline
    # ------------------------------------------------------------------

    def _index_one(
        self, path: Path, settings: IndexCfg, store_bytes: int, report: IndexReport
    ) -> int:
        """Index one file; returns the change in stored content bytes."""
        info = FileInfo.from_path(path)

        if info.size > settings.max_file_size_bytes:
            raise FileTooLargeError(
                f"File too large: {info.size:,} bytes exceeds limit of "
                f"{settings.max_file_size_bytes:,} bytes"
            )

        state = classify(self._store.get_file_metadata(info.path), info)
        if state is FileState.UNCHANGED:
            report.unchanged.append(info.path)
            return 0

        # A reindex frees the bytes of the version it replaces.
        previous_bytes = 0 if state is FileState.UNSEEN else self._store.file_content_bytes(info.path)
        estimated_chunks = max(1, info.size // _BYTES_PER_ESTIMATED_CHUNK)
        projected = (
            store_bytes - previous_bytes + estimated_chunks * self._embedder.dimensions * 4
        )
        if projected > settings.max_database_size_bytes:
            raise StoreFullError(
                f"Database size limit reached: {store_bytes:,} / "
                f"{settings.max_database_size_bytes:,} bytes"
            )

        text = self._extractor.extract(path)
        if not text.strip():
            logger.info("Skipping %s: no text content", info.name)
            report.skipped.append(info.path)
            return 0

        chunks = [c.text for c in chunk_text(text, settings.chunk_size, settings.overlap_sentences)]
        language = detect_language(text)
        vectors = self._embedder.embed_batch([embedding_text(info.name, c) for c in chunks])
        self._store.replace_file(info, chunks, vectors, language)

        if state is FileState.UNSEEN:
            report.indexed.append(info.path)
        else:
            report.reindexed.append(info.path)
        logger.debug("Indexed %s (%d chunks, %s)", info.name, len(chunks), language)
        return sum(len(c.encode("utf-8")) for c in chunks) - previous_bytes

    # ------------------------------------------------------------------
    # Candidate discovery
    # ------------------------------------------------------------------

    def _collect(self, paths: Iterable[Path | str], settings: IndexCfg) -> list[Path]:
        files: list[Path] = []
        seen: set[Path] = set()
        for raw in paths:
            p = Path(raw).expanduser().resolve()
            candidates = self.iter_candidate_files(p, settings) if p.is_dir() else iter([p])
            for f in candidates:
                if f not in seen:
                    seen.add(f)
                    files.append(f)
        return files

    def iter_candidate_files(self, root: Path, settings: IndexCfg | None = None) -> Iterator[Path]:
        """Yield indexable files under *root* in a stable order.

        Skips dependency/build/VCS directories, hidden entries, common
        documentation files, code and image files when configured to, files
        the extractor cannot read, and symlinks resolving outside *root*.
        """
        settings = settings if settings is not None else self.settings
        blocked = excluded_extensions(
            skip_code_files=settings.skip_code_files, skip_images=settings.skip_images
        )
        base = root.resolve()
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(
                d for d in dirnames if d.lower() not in SKIP_DIRS and not d.startswith(".")
            )
            for name in sorted(filenames):
                if name.startswith(".") or is_common_doc_file(name):
                    continue
                ext = extension_of(name)
                if ext in blocked:
                    continue
                path = Path(dirpath) / name
                if not self._extractor.supports(path):
                    logger.debug("No extractor for %s", path)
                    continue
                resolved = path.resolve()
                if resolved != base and base not in resolved.parents:
                    logger.warning("Skipping file outside %s: %s", base, path)
                    continue
                yield path
