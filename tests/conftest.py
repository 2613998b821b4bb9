"""
Shared pytest fixtures for Plunk Indexer tests.

Provides a throwaway object store plus in-memory stand-ins for the MongoDB
source and the Elasticsearch sink so pipeline tests run without services.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pytest
from diff_match_patch import diff_match_patch

from plunk_indexer.errors import SinkWriteError, TransientSourceError
from plunk_indexer.models import to_epoch_ms
from plunk_indexer.storage.bloom_filter import BloomFilter
from plunk_indexer.storage.object_store import DedupObjectStore, SQLiteObjectStore
from plunk_indexer.utils.exception_logger import ExceptionLogger

BASE_TIME = datetime(2014, 6, 1, tzinfo=timezone.utc)


def make_patch(before: str, after: str) -> str:
    """diff-match-patch text turning ``before`` into ``after``."""
    dmp = diff_match_patch()
    return dmp.patch_toText(dmp.patch_make(before, after))


def make_legacy_doc(
    record_id: str,
    files: Optional[Dict[str, str]] = None,
    history: Optional[List[Dict[str, Any]]] = None,
    minutes: int = 0,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a raw legacy plunk document."""
    doc: Dict[str, Any] = {
        "_id": record_id,
        "user": "alice",
        "description": f"Plunk {record_id}",
        "tags": ["angular", "demo"],
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME + timedelta(minutes=minutes),
        "private": False,
        "forks": [],
        "views": 3,
        "thumbs": 1,
        "files": [
            {"filename": name, "content": content}
            for name, content in (files or {"index.html": "<h1>hi</h1>"}).items()
        ],
        "history": history or [],
    }
    doc.update(extra)
    return doc


class FakeLegacySource:
    """In-memory LegacyPlunkSource honoring the watermark query."""

    def __init__(self, docs: List[Dict[str, Any]], fail_after: Optional[int] = None):
        self.docs = sorted(docs, key=lambda doc: to_epoch_ms(doc["updated_at"]))
        self.fail_after = fail_after
        self.queries: List[Optional[int]] = []
        self.yielded = 0
        self.iterators_closed = 0

    def _matching(self, watermark_ms: Optional[int]) -> List[Dict[str, Any]]:
        return [
            doc
            for doc in self.docs
            if to_epoch_ms(doc["updated_at"]) >= (watermark_ms or 0)
        ]

    def count(self, watermark_ms: Optional[int] = None) -> int:
        return len(self._matching(watermark_ms))

    def find_one(self, record_id: str) -> Optional[Dict[str, Any]]:
        return next((doc for doc in self.docs if doc["_id"] == record_id), None)

    def iter_records(self, watermark_ms: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        self.queries.append(watermark_ms)
        try:
            for doc in self._matching(watermark_ms):
                if self.fail_after is not None and self.yielded >= self.fail_after:
                    raise TransientSourceError("cursor died")
                self.yielded += 1
                yield doc
        finally:
            self.iterators_closed += 1

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class RecordingSink:
    """ElasticsearchClient stand-in that keeps written documents."""

    index_name = "plunker"

    def __init__(self, fail_on_batch: Optional[int] = None):
        self.fail_on_batch = fail_on_batch
        self.batches: List[List[str]] = []
        self.documents: Dict[str, Dict[str, Any]] = {}

    def ensure_index(self) -> bool:
        return True

    def bulk_index(self, records) -> int:
        if self.fail_on_batch is not None and len(self.batches) + 1 == self.fail_on_batch:
            raise SinkWriteError("bulk rejected", status_code=500)
        self.batches.append([record.id for record in records])
        for record in records:
            self.documents[record.id] = record.to_document()
        return len(records)

    def index_document(self, record) -> None:
        self.documents[record.id] = record.to_document()

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


@pytest.fixture
def object_store(tmp_path: Path) -> DedupObjectStore:
    """Dedup store over a fresh SQLite database."""
    return DedupObjectStore(
        SQLiteObjectStore(tmp_path / "objects.db"), BloomFilter(1 << 16, 7)
    )


@pytest.fixture
def reset_exception_logger():
    """Clear the ExceptionLogger singleton around a test."""
    ExceptionLogger._instance = None
    yield
    ExceptionLogger._instance = None


@pytest.fixture
def legacy_doc():
    """Factory for raw legacy plunk documents."""
    return make_legacy_doc


@pytest.fixture
def patch_text():
    """Factory for diff-match-patch patch text."""
    return make_patch


@pytest.fixture
def fake_source():
    """Factory for in-memory legacy sources."""
    return FakeLegacySource


@pytest.fixture
def recording_sink():
    """Factory for recording sinks."""
    return RecordingSink
