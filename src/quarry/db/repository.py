"""Document store: the single owner of persisted chunk records.

One lock-guarded writer connection performs all mutations; every reader
thread gets its own connection so searches run against a consistent WAL
snapshot without waiting for an indexing transaction to finish.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Iterable, Sequence

import numpy as np

from quarry.db.connection import Database
from quarry.db.filters import is_searchable
from quarry.db.models import ChunkRecord, FileInfo, FileSummary, StoredFileState, StoreStats
from quarry.db.schema import initialize
from quarry.db.vectors import decode_embedding, encode_embedding

logger = logging.getLogger(__name__)

_CHUNK_COLUMNS = (
    "id, file_path, file_name, content, chunk_index, language, embedding, "
    "created_at, modified_at, file_size"
)


class DocumentStore:
    """Data access layer for chunk records.

    Owns its connections: call close() (or use as a context manager) when done.
    """

    def __init__(self, db: Database) -> None:
        """Open the writer connection and bring the schema up to date.

        Args:
            db: Database pointing at the SQLite file.
        """
        self._db = db
        self._write_lock = threading.Lock()
        self._writer = db.connect(check_same_thread=False)
        initialize(self._writer)
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()

    @classmethod
    def open(cls, db_path) -> DocumentStore:
        return cls(Database(db_path))

    def __enter__(self) -> DocumentStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the writer and every reader connection handed out so far."""
        with self._readers_lock:
            for conn in self._readers:
                conn.close()
            self._readers.clear()
        with self._write_lock:
            self._writer.close()

    def _reader(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._db.connect(check_same_thread=False)
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_file(
        self,
        file: FileInfo,
        chunks: Sequence[str],
        vectors: Sequence[Sequence[float]] | np.ndarray,
        language: str,
    ) -> int:
        """Atomically replace all chunks stored for *file.path*.

        Existing rows for the path are deleted and the new set inserted in one
        transaction; on any failure the previous version stays intact.

        Args:
            file: Path, display name and on-disk stats of the source file.
            chunks: Chunk texts in order; chunk_index is their position.
            vectors: One embedding per chunk, same order.
            language: Language tag stored on every chunk.

        Returns:
            Number of chunks written.

        Raises:
            ValueError: If *chunks* and *vectors* differ in length.
        """
        if len(chunks) != len(vectors):
            raise ValueError(
                f"Got {len(chunks)} chunks but {len(vectors)} embeddings for '{file.path}'"
            )
        now = time.time()
        rows = [
            (
                uuid.uuid4().hex,
                file.path,
                file.name,
                text,
                index,
                language,
                encode_embedding(vector),
                now,
                file.modified_at,
                file.size,
            )
            for index, (text, vector) in enumerate(zip(chunks, vectors))
        ]
        with self._write_lock:
            try:
                with self._writer:
                    self._writer.execute("DELETE FROM chunks WHERE file_path = ?", (file.path,))
                    self._writer.executemany(
                        f"INSERT INTO chunks ({_CHUNK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error:
                logger.exception("Failed to write %d chunks for %s", len(rows), file.path)
                raise
        logger.debug("Stored %d chunks for %s", len(rows), file.path)
        return len(rows)

    def delete_by_path(self, file_path: str) -> int:
        """Delete every chunk of *file_path*. Returns the number of rows removed."""
        with self._write_lock, self._writer:
            cur = self._writer.execute("DELETE FROM chunks WHERE file_path = ?", (file_path,))
        return cur.rowcount

    def clear(self) -> int:
        """Delete all chunks. Returns the number of rows removed."""
        with self._write_lock, self._writer:
            cur = self._writer.execute("DELETE FROM chunks")
        logger.info("Cleared %d chunks", cur.rowcount)
        return cur.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_file_metadata(self, file_path: str) -> StoredFileState | None:
        """Return the (modified_at, file_size) fingerprint stored for *file_path*."""
        row = self._reader().execute(
            "SELECT modified_at, file_size FROM chunks WHERE file_path = ? LIMIT 1",
            (file_path,),
        ).fetchone()
        if row is None:
            return None
        return StoredFileState(modified_at=row["modified_at"], file_size=row["file_size"])

    def fetch_all(
        self,
        exclude_extensions: Iterable[str] = (),
        limit: int | None = None,
    ) -> list[ChunkRecord]:
        """Return all searchable chunk records.

        Exclusion is applied here, at read time: extension blocklist, common
        documentation files and dependency/build directory segments.

        Args:
            exclude_extensions: Extensions (without dot) to leave out.
            limit: Optional cap on the number of records returned, newest first.
        """
        excluded = frozenset(exclude_extensions)
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks ORDER BY created_at DESC, file_path, chunk_index"
        records: list[ChunkRecord] = []
        cur = self._reader().execute(sql)
        try:
            for row in cur:
                if not is_searchable(row["file_path"], row["file_name"], excluded):
                    continue
                records.append(_row_to_record(row))
                if limit is not None and len(records) >= limit:
                    logger.warning("Search corpus capped at %d chunks", limit)
                    break
        finally:
            # An unfinished cursor would pin this reader to an old snapshot.
            cur.close()
        return records

    def get_chunks(self, file_path: str) -> list[ChunkRecord]:
        """Return the chunks of one file ordered by chunk_index."""
        rows = self._reader().execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE file_path = ? ORDER BY chunk_index",
            (file_path,),
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def get_document(self, file_path: str) -> str | None:
        """Rebuild the full text of *file_path* from its chunks, or None if unknown."""
        rows = self._reader().execute(
            "SELECT content FROM chunks WHERE file_path = ? ORDER BY chunk_index",
            (file_path,),
        ).fetchall()
        if not rows:
            return None
        return "\n".join(r["content"] for r in rows)

    def stats(self) -> StoreStats:
        """Chunk count and total content size in bytes."""
        row = self._reader().execute(
            "SELECT COUNT(*), COALESCE(SUM(LENGTH(CAST(content AS BLOB))), 0) FROM chunks"
        ).fetchone()
        return StoreStats(chunk_count=row[0], total_content_bytes=row[1])

    def file_content_bytes(self, file_path: str) -> int:
        """Total UTF-8 content size of the chunks stored for *file_path*."""
        row = self._reader().execute(
            "SELECT COALESCE(SUM(LENGTH(CAST(content AS BLOB))), 0) FROM chunks WHERE file_path = ?",
            (file_path,),
        ).fetchone()
        return row[0]

    def list_files_summary(self) -> list[FileSummary]:
        """Per-file aggregates ordered by file name."""
        rows = self._reader().execute(
            """
            SELECT
                MIN(id) AS id,
                file_path,
                MIN(file_name) AS file_name,
                MIN(language) AS language,
                COUNT(*) AS chunk_count,
                COALESCE(SUM(LENGTH(content)), 0) AS content_size
            FROM chunks
            GROUP BY file_path
            ORDER BY file_name, file_path
            """
        ).fetchall()
        return [
            FileSummary(
                id=r["id"],
                file_path=r["file_path"],
                file_name=r["file_name"],
                language=r["language"],
                chunk_count=r["chunk_count"],
                content_size=r["content_size"],
            )
            for r in rows
        ]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_record(row: sqlite3.Row) -> ChunkRecord:
    return ChunkRecord(
        id=row["id"],
        file_path=row["file_path"],
        file_name=row["file_name"],
        content=row["content"],
        chunk_index=row["chunk_index"],
        language=row["language"],
        embedding=decode_embedding(row["embedding"]),
        created_at=row["created_at"],
        modified_at=row["modified_at"],
        file_size=row["file_size"],
    )
