"""
Streaming migration pipeline.

    source cursor -> transform -> batch -> bulk write -> checkpoint

Each stage is a generator pulling from the one before it, so the sink drives
the whole run: a record is read from MongoDB only when the batcher needs one,
and at most one batch of migrated documents is held in memory.

Checkpoints are written every ``checkpoint_interval`` batches and once more
after the final batch. A failure aborts the run without touching the
checkpoint, so the next run resumes from the last batch that was checkpointed.
"""

import logging
import time
from contextlib import closing
from dataclasses import dataclass
from itertools import islice
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar

from ..errors import MigrationAbortedError, PlunkIndexerError
from ..models import MigratedRecord
from .elasticsearch import ElasticsearchClient
from .legacy_source import LegacyPlunkSource
from .migration_checkpoint import MigrationCheckpoint
from .plunk_transformer import PlunkTransformer

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 16
DEFAULT_CHECKPOINT_INTERVAL = 10


def batched(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Group items into lists of ``size``; the last list may be shorter."""
    if size <= 0:
        raise ValueError("Batch size must be positive")
    iterator = iter(items)
    while True:
        batch = list(islice(iterator, size))
        if not batch:
            return
        yield batch


@dataclass
class BatchReport:
    """Progress snapshot emitted after every written batch."""

    processed: int
    total: int
    batch_size: int
    elapsed: float
    last_record_id: Optional[str]
    last_updated_ms: int

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0
        return 100.0 * self.processed / self.total

    @property
    def rate(self) -> float:
        """Records per second since the run started."""
        if self.elapsed <= 0:
            return 0.0
        return self.processed / self.elapsed


@dataclass
class MigrationStats:
    """Summary of a completed run."""

    processed: int
    total: int
    batches: int
    elapsed: float
    start_watermark_ms: int
    watermark_ms: int

    @property
    def rate(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return self.processed / self.elapsed


class MigrationPipeline:
    """Pull-based migration of legacy plunks into the destination index."""

    def __init__(
        self,
        source: LegacyPlunkSource,
        transformer: PlunkTransformer,
        sink: ElasticsearchClient,
        checkpoint: MigrationCheckpoint,
        batch_size: int = DEFAULT_BATCH_SIZE,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        progress_callback: Optional[Callable[[BatchReport], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.transformer = transformer
        self.sink = sink
        self.checkpoint = checkpoint
        self.batch_size = batch_size
        self.checkpoint_interval = checkpoint_interval
        self.progress_callback = progress_callback
        self.clock = clock

        self.last_record_id: Optional[str] = None
        self.processed = 0
        self.watermark_ms = 0

    def _transform(self, documents: Iterable[Dict[str, Any]]) -> Iterator[MigratedRecord]:
        for doc in documents:
            self.last_record_id = str(doc.get("_id", doc.get("id")))
            yield self.transformer.transform(doc)

    def run(self) -> MigrationStats:
        """Migrate every record at or after the checkpoint watermark.

        Raises:
            MigrationAbortedError: On any failure; the checkpoint is left at
                the last completed checkpoint interval
        """
        start_watermark = self.checkpoint.load_watermark()
        self.watermark_ms = start_watermark
        self.processed = 0
        batches = 0
        started = self.clock()

        try:
            total = self.source.count(start_watermark)
            logger.info(
                f"Migrating {total} plunks from watermark {start_watermark}"
            )

            with closing(self.source.iter_records(start_watermark)) as documents:
                records = self._transform(documents)
                for batch in batched(records, self.batch_size):
                    self.processed += self.sink.bulk_index(batch)
                    batch_watermark = max(record.updated_at_ms for record in batch)
                    self.watermark_ms = max(self.watermark_ms, batch_watermark)
                    batches += 1

                    if batches % self.checkpoint_interval == 0:
                        self.checkpoint.save(self.watermark_ms, self.processed)

                    if self.progress_callback:
                        self.progress_callback(
                            BatchReport(
                                processed=self.processed,
                                total=total,
                                batch_size=len(batch),
                                elapsed=self.clock() - started,
                                last_record_id=self.last_record_id,
                                last_updated_ms=batch_watermark,
                            )
                        )
        except Exception as e:
            logger.error(
                f"Migration aborted at record {self.last_record_id} after "
                f"{self.processed} records: {e}"
            )
            record_id = self.last_record_id
            if isinstance(e, PlunkIndexerError) and e.record_id:
                record_id = e.record_id
            raise MigrationAbortedError(
                str(e),
                record_id=record_id,
                processed=self.processed,
                watermark_ms=self.watermark_ms,
            ) from e

        self.checkpoint.save(self.watermark_ms, self.processed, completed=True)

        return MigrationStats(
            processed=self.processed,
            total=total,
            batches=batches,
            elapsed=self.clock() - started,
            start_watermark_ms=start_watermark,
            watermark_ms=self.watermark_ms,
        )

    def migrate_one(self, record_id: str) -> MigratedRecord:
        """Re-migrate a single record with an idempotent upsert.

        Does not move the checkpoint.
        """
        self.last_record_id = record_id
        doc = self.source.find_one(record_id)
        if doc is None:
            raise MigrationAbortedError(
                f"Legacy plunk {record_id} not found", record_id=record_id
            )
        try:
            record = self.transformer.transform(doc)
            self.sink.index_document(record)
        except PlunkIndexerError as e:
            raise MigrationAbortedError(str(e), record_id=record_id) from e
        return record
