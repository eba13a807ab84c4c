"""SQLite storage for courses, chunks and assets.

Tables:
- courses: uploaded documents and their metadata (slug is unique)
- chunks: embeddable slices of unit text, vectors stored as float32 blobs
- assets: images/audio/other resources referenced by units

Chunks and assets reference their course with ON DELETE CASCADE, so
deleting a course removes everything derived from it. Rows leave this
module only as the typed records in ``coursechat.models``.
"""
import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np
import structlog

from coursechat import config
from coursechat.errors import CourseConflictError, CourseNotFoundError, StorageError
from coursechat.models import (
    AssetRecord,
    ChunkHit,
    ChunkRecord,
    CourseRecord,
    NewAsset,
    NewChunk,
)

logger = structlog.get_logger()

UnitKey = Tuple[str, str, str]

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS courses (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        technology TEXT NOT NULL,
        tags_json TEXT NOT NULL DEFAULT '[]',
        content_md TEXT NOT NULL,
        uploaded_by TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
        chunk_index INTEGER NOT NULL,
        content TEXT NOT NULL,
        content_markdown TEXT NOT NULL,
        embedding BLOB,
        nano_slug TEXT NOT NULL,
        unit_slug TEXT NOT NULL,
        metadata_json TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(course_id, chunk_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
        nano_slug TEXT NOT NULL,
        unit_slug TEXT NOT NULL,
        url TEXT NOT NULL,
        kind TEXT NOT NULL,
        alt TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunks_course_id ON chunks(course_id)",
    "CREATE INDEX IF NOT EXISTS idx_assets_unit ON assets(course_id, nano_slug, unit_slug)",
    "CREATE INDEX IF NOT EXISTS idx_courses_technology ON courses(technology)",
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def encode_embedding(embedding: Optional[List[float]]) -> Optional[bytes]:
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float32).tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


def _course_from_row(row: sqlite3.Row) -> CourseRecord:
    return CourseRecord(
        id=row["id"],
        title=row["title"],
        slug=row["slug"],
        technology=row["technology"],
        tags=json.loads(row["tags_json"] or "[]"),
        content_md=row["content_md"],
        uploaded_by=row["uploaded_by"],
        created_at=row["created_at"],
    )


def _chunk_from_row(row: sqlite3.Row) -> ChunkRecord:
    return ChunkRecord(
        id=row["id"],
        course_id=row["course_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        content_markdown=row["content_markdown"],
        nano_slug=row["nano_slug"],
        unit_slug=row["unit_slug"],
        metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
        created_at=row["created_at"],
    )


def _hit_from_row(row: sqlite3.Row) -> ChunkHit:
    return ChunkHit(
        id=row["id"],
        course_id=row["course_id"],
        course_title=row["course_title"],
        course_slug=row["course_slug"],
        technology=row["technology"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        content_markdown=row["content_markdown"],
        nano_slug=row["nano_slug"],
        unit_slug=row["unit_slug"],
        metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
    )


def _asset_from_row(row: sqlite3.Row) -> AssetRecord:
    return AssetRecord(
        id=row["id"],
        course_id=row["course_id"],
        nano_slug=row["nano_slug"],
        unit_slug=row["unit_slug"],
        url=row["url"],
        kind=row["kind"],
        alt=row["alt"],
    )


class CourseDatabase:
    """Course, chunk and asset tables in one SQLite file."""

    def __init__(self, db_path: Path = None, timeout: float = None):
        """Initialize the database handle.

        Args:
            db_path: SQLite file location (default from config)
            timeout: Seconds to wait on a locked database (default from config)
        """
        self.db_path = Path(db_path or config.DB_PATH)
        self.timeout = timeout or config.DB_TIMEOUT
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def get_connection(self) -> sqlite3.Connection:
        """Open a connection with foreign keys enforced.

        Connections run in autocommit mode; multi-statement writes go
        through ``transaction()``.
        """
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _read(self, operation: str) -> Iterator[sqlite3.Connection]:
        conn = None
        try:
            conn = self.get_connection()
            yield conn
        except sqlite3.Error as e:
            logger.error("database_read_failed", operation=operation, error=str(e))
            raise StorageError(f"{operation} failed: {e}", retryable=_is_transient(e)) from e
        finally:
            if conn is not None:
                conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of writes atomically.

        Commits when the block exits normally, rolls back on any exception
        and re-raises it (sqlite errors become ``StorageError``).
        """
        try:
            conn = self.get_connection()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database: {e}", retryable=True) from e

        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
                logger.warning("transaction_rolled_back", error=str(e), error_type=type(e).__name__)
            if isinstance(e, sqlite3.Error):
                raise StorageError(f"Transaction failed: {e}", retryable=_is_transient(e)) from e
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info("database_initialized", db_path=str(self.db_path))

    # Writes (inside a transaction)

    def insert_course(
        self,
        conn: sqlite3.Connection,
        title: str,
        slug: str,
        technology: str,
        tags: List[str],
        content_md: str,
        uploaded_by: Optional[str] = None,
    ) -> CourseRecord:
        """Insert a course row and return it.

        Raises:
            CourseConflictError: If the slug is already taken
        """
        record = CourseRecord(
            id=str(uuid.uuid4()),
            title=title,
            slug=slug,
            technology=technology,
            tags=list(tags),
            content_md=content_md,
            uploaded_by=uploaded_by,
            created_at=_now(),
        )
        try:
            conn.execute(
                """
                INSERT INTO courses (
                    id, title, slug, technology, tags_json,
                    content_md, uploaded_by, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.title,
                    record.slug,
                    record.technology,
                    json.dumps(record.tags),
                    record.content_md,
                    record.uploaded_by,
                    record.created_at,
                ),
            )
        except sqlite3.IntegrityError as e:
            if "courses.slug" in str(e):
                raise CourseConflictError(slug) from e
            raise
        return record

    def insert_chunks(
        self, conn: sqlite3.Connection, course_id: str, chunks: List[NewChunk]
    ) -> List[int]:
        """Insert chunks for a course.

        Returns:
            Row ids of the inserted chunks, in the order given
        """
        if not chunks:
            return []

        created_at = _now()
        conn.executemany(
            """
            INSERT INTO chunks (
                course_id, chunk_index, content, content_markdown, embedding,
                nano_slug, unit_slug, metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    course_id,
                    chunk.chunk_index,
                    chunk.content,
                    chunk.content_markdown,
                    encode_embedding(chunk.embedding),
                    chunk.nano_slug,
                    chunk.unit_slug,
                    json.dumps(chunk.metadata) if chunk.metadata else None,
                    created_at,
                )
                for chunk in chunks
            ],
        )

        rows = conn.execute(
            "SELECT id, chunk_index FROM chunks WHERE course_id = ?", (course_id,)
        ).fetchall()
        ids_by_index = {row["chunk_index"]: row["id"] for row in rows}
        return [ids_by_index[chunk.chunk_index] for chunk in chunks]

    def insert_assets(
        self, conn: sqlite3.Connection, course_id: str, assets: List[NewAsset]
    ) -> int:
        """Insert assets for a course and return how many were written."""
        if not assets:
            return 0

        conn.executemany(
            """
            INSERT INTO assets (course_id, nano_slug, unit_slug, url, kind, alt)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (course_id, a.nano_slug, a.unit_slug, a.url, a.kind, a.alt)
                for a in assets
            ],
        )
        return len(assets)

    def delete_course(self, course_id: str) -> List[int]:
        """Delete a course with its chunks and assets.

        Returns:
            Ids of the chunks that were removed

        Raises:
            CourseNotFoundError: If no course has this id
        """
        with self.transaction() as conn:
            chunk_ids = [
                row["id"]
                for row in conn.execute(
                    "SELECT id FROM chunks WHERE course_id = ?", (course_id,)
                )
            ]
            cursor = conn.execute("DELETE FROM courses WHERE id = ?", (course_id,))
            if cursor.rowcount == 0:
                raise CourseNotFoundError(course_id)

        logger.info("course_deleted", course_id=course_id, chunk_count=len(chunk_ids))
        return chunk_ids

    # Reads

    def course_slug_exists(self, slug: str) -> bool:
        with self._read("course_slug_exists") as conn:
            row = conn.execute("SELECT 1 FROM courses WHERE slug = ?", (slug,)).fetchone()
            return row is not None

    def list_courses(self, technology: Optional[str] = None) -> List[CourseRecord]:
        """All courses, newest first, optionally for one technology."""
        query = "SELECT * FROM courses"
        params: Tuple = ()
        if technology:
            query += " WHERE technology = ?"
            params = (technology,)
        query += " ORDER BY created_at DESC"

        with self._read("list_courses") as conn:
            return [_course_from_row(row) for row in conn.execute(query, params)]

    def get_course(self, course_id: str) -> Optional[CourseRecord]:
        with self._read("get_course") as conn:
            row = conn.execute("SELECT * FROM courses WHERE id = ?", (course_id,)).fetchone()
            return _course_from_row(row) if row else None

    def get_course_chunks(self, course_id: str) -> List[ChunkRecord]:
        with self._read("get_course_chunks") as conn:
            rows = conn.execute(
                """
                SELECT id, course_id, chunk_index, content, content_markdown,
                       nano_slug, unit_slug, metadata_json, created_at
                FROM chunks
                WHERE course_id = ?
                ORDER BY chunk_index
                """,
                (course_id,),
            )
            return [_chunk_from_row(row) for row in rows]

    def get_course_assets(self, course_id: str) -> List[AssetRecord]:
        with self._read("get_course_assets") as conn:
            rows = conn.execute(
                "SELECT * FROM assets WHERE course_id = ? ORDER BY id", (course_id,)
            )
            return [_asset_from_row(row) for row in rows]

    def get_chunk_ids(
        self, technology: Optional[str] = None, course_id: Optional[str] = None
    ) -> List[int]:
        """Ids of embedded chunks matching the optional filters."""
        query = """
            SELECT ch.id
            FROM chunks ch
            JOIN courses c ON ch.course_id = c.id
            WHERE ch.embedding IS NOT NULL
        """
        params: List = []
        if technology:
            query += " AND c.technology = ?"
            params.append(technology)
        if course_id:
            query += " AND ch.course_id = ?"
            params.append(course_id)
        query += " ORDER BY ch.id"

        with self._read("get_chunk_ids") as conn:
            return [row["id"] for row in conn.execute(query, params)]

    def get_chunk_hits(self, chunk_ids: List[int]) -> Dict[int, ChunkHit]:
        """Chunks joined with their course, keyed by chunk id."""
        if not chunk_ids:
            return {}

        placeholders = ",".join("?" * len(chunk_ids))
        with self._read("get_chunk_hits") as conn:
            rows = conn.execute(
                f"""
                SELECT ch.id, ch.course_id, ch.chunk_index, ch.content,
                       ch.content_markdown, ch.nano_slug, ch.unit_slug,
                       ch.metadata_json, c.title AS course_title, c.slug AS course_slug,
                       c.technology
                FROM chunks ch
                JOIN courses c ON ch.course_id = c.id
                WHERE ch.id IN ({placeholders})
                """,
                list(chunk_ids),
            )
            return {row["id"]: _hit_from_row(row) for row in rows}

    def get_assets_for_units(self, keys: Iterable[UnitKey]) -> Dict[UnitKey, List[AssetRecord]]:
        """Assets for each (course_id, nano_slug, unit_slug) key."""
        keys = list(dict.fromkeys(keys))
        assets: Dict[UnitKey, List[AssetRecord]] = {key: [] for key in keys}
        if not keys:
            return assets

        with self._read("get_assets_for_units") as conn:
            for key in keys:
                rows = conn.execute(
                    """
                    SELECT * FROM assets
                    WHERE course_id = ? AND nano_slug = ? AND unit_slug = ?
                    ORDER BY id
                    """,
                    key,
                )
                assets[key] = [_asset_from_row(row) for row in rows]
        return assets

    def iter_embeddings(self) -> Iterator[Tuple[int, np.ndarray]]:
        """Yield (chunk id, vector) for every embedded chunk."""
        with self._read("iter_embeddings") as conn:
            rows = conn.execute(
                "SELECT id, embedding FROM chunks WHERE embedding IS NOT NULL ORDER BY id"
            )
            for row in rows:
                yield row["id"], decode_embedding(row["embedding"])

    def get_chunk_count(self, course_id: Optional[str] = None) -> int:
        with self._read("get_chunk_count") as conn:
            if course_id:
                row = conn.execute(
                    "SELECT COUNT(*) FROM chunks WHERE course_id = ?", (course_id,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
            return row[0]


def _is_transient(error: sqlite3.Error) -> bool:
    """Locked/busy database errors are worth retrying."""
    message = str(error).lower()
    return isinstance(error, sqlite3.OperationalError) and (
        "locked" in message or "busy" in message
    )
