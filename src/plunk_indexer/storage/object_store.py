"""Durable content-addressed object storage with write deduplication.

SQLiteObjectStore persists serialized dulwich objects keyed by their git id:

    CREATE TABLE objects (
        id TEXT PRIMARY KEY,
        type_num INTEGER NOT NULL,
        data BLOB NOT NULL
    );

DedupObjectStore sits in front of it for a migration run. Each record gets its
own ObjectWriteBatch from begin(); the batch buffers the record's objects and
writes them in one transaction on flush(). A Bloom filter shared by all batches
remembers ids already written during the run so identical blobs/trees shared
across plunks are written once.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from dulwich.objects import ShaFile

from .bloom_filter import BloomFilter
from .git_objects import object_from_raw

logger = logging.getLogger(__name__)


class SQLiteObjectStore:
    """SQLite-backed identity -> serialized object storage."""

    def __init__(self, db_path: Path):
        """Initialize object store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._init_database()

    def _init_database(self):
        """Initialize SQLite database with schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS objects (
                    id TEXT PRIMARY KEY,
                    type_num INTEGER NOT NULL,
                    data BLOB NOT NULL
                )
            """
            )
            conn.commit()
        finally:
            conn.close()

    def write_batch(self, objects: Iterable[Tuple[str, ShaFile]]) -> int:
        """Persist objects atomically.

        Existing ids are left untouched: an id always names the same content.

        Returns:
            Number of rows actually inserted
        """
        rows = [
            (object_id, obj.type_num, obj.as_raw_string())
            for object_id, obj in objects
        ]
        if not rows:
            return 0

        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                cursor = conn.executemany(
                    """
                    INSERT OR IGNORE INTO objects (id, type_num, data)
                    VALUES (?, ?, ?)
                """,
                    rows,
                )
                return cursor.rowcount
        finally:
            conn.close()

    def get(self, object_id: str) -> Optional[ShaFile]:
        """Load an object by id, or None if it was never stored."""
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT type_num, data FROM objects WHERE id = ?", (object_id,)
            )
            row = cursor.fetchone()
            return object_from_raw(row[0], row[1]) if row else None
        finally:
            conn.close()

    def contains(self, object_id: str) -> bool:
        """Exact membership check against the database."""
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT 1 FROM objects WHERE id = ?", (object_id,))
            return cursor.fetchone() is not None
        finally:
            conn.close()

    def count_objects(self) -> int:
        """Count stored objects."""
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM objects")
            row = cursor.fetchone()
            return row[0] if row else 0
        finally:
            conn.close()


class ObjectWriteBatch:
    """Objects buffered for one record until its replay completes.

    A batch belongs to a single record and is not shared between threads;
    only the store behind it is.
    """

    def __init__(self, store: "DedupObjectStore"):
        self.store = store
        self._pending: Dict[str, ShaFile] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, object_id: str) -> bool:
        return object_id in self._pending

    def put(self, object_id: str, obj: ShaFile) -> bool:
        """Buffer an object unless this batch or the run has seen it.

        Returns:
            True if the object was buffered, False if the write was skipped
        """
        if object_id in self._pending:
            return False
        if not self.store.should_write(object_id):
            return False
        self._pending[object_id] = obj
        return True

    def put_all(self, objects: Iterable[Tuple[str, ShaFile]]) -> int:
        """Buffer several objects, returning how many were new."""
        return sum(1 for object_id, obj in objects if self.put(object_id, obj))

    def get(self, object_id: str) -> Optional[ShaFile]:
        pending = self._pending.get(object_id)
        if pending is not None:
            return pending
        return self.store.get(object_id)

    def flush(self) -> int:
        """Write this batch's objects in one transaction and mark them seen."""
        pending = list(self._pending.items())
        self._pending.clear()
        return self.store.commit(pending)

    def discard(self) -> int:
        """Drop the objects of a record that failed."""
        dropped = len(self._pending)
        self._pending.clear()
        if dropped:
            logger.debug(f"Discarded {dropped} buffered objects")
        return dropped


class DedupObjectStore:
    """Per-run write-deduplicating front end for SQLiteObjectStore.

    One instance is shared by every record of a run and passed explicitly to
    the replayer, which opens an ObjectWriteBatch per record with begin().
    Filter checks, filter updates and counters are serialized by a lock.

    Ids only enter the Bloom filter once a batch's flush() has committed them,
    so a discarded batch cannot hide an object that was never written. Two
    batches in flight may both buffer the same new object; the second insert
    is ignored by the database.
    """

    def __init__(self, backend: SQLiteObjectStore, bloom: BloomFilter):
        self.backend = backend
        self.bloom = bloom
        self._lock = threading.Lock()

        self.objects_written = 0
        self.writes_skipped = 0

    def begin(self) -> ObjectWriteBatch:
        """Open the write batch for one record."""
        return ObjectWriteBatch(self)

    def has(self, object_id: str) -> bool:
        """True if the object was (probably) already written during the run."""
        with self._lock:
            return self.bloom.might_contain(object_id)

    def should_write(self, object_id: str) -> bool:
        """Decide whether an object still needs writing, counting skips."""
        with self._lock:
            if self.bloom.might_contain(object_id):
                self.writes_skipped += 1
                return False
            return True

    def commit(self, objects: List[Tuple[str, ShaFile]]) -> int:
        """Persist a batch's objects, then record their ids as seen.

        Returns:
            Number of objects newly inserted into the database
        """
        if not objects:
            return 0
        written = self.backend.write_batch(objects)
        with self._lock:
            for object_id, _ in objects:
                self.bloom.add(object_id)
            self.objects_written += written
        logger.debug(f"Flushed {written} objects to {self.backend.db_path}")
        return written

    def get(self, object_id: str) -> Optional[ShaFile]:
        """Read an object from the durable store."""
        return self.backend.get(object_id)

    def get_stats(self) -> Dict[str, float]:
        """Get deduplication statistics."""
        with self._lock:
            return {
                "objects_written": self.objects_written,
                "writes_skipped": self.writes_skipped,
                "estimated_false_positive_rate": (
                    self.bloom.estimated_false_positive_rate()
                ),
            }
