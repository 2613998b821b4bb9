"""MongoDB source of legacy plunks."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from ..config import SourceConfig
from ..errors import TransientSourceError

logger = logging.getLogger(__name__)


def watermark_query(watermark_ms: Optional[int]) -> Dict[str, Any]:
    """Range filter selecting records updated at or after the watermark."""
    if not watermark_ms:
        return {}
    since = datetime.fromtimestamp(watermark_ms / 1000, tz=timezone.utc)
    return {"updated_at": {"$gte": since}}


class LegacyPlunkSource:
    """Lazy, ascending-by-update cursor over the legacy collection.

    Records are pulled one at a time; MongoDB pages them server-side in
    ``page_size`` chunks so memory stays bounded regardless of collection size.
    """

    def __init__(
        self,
        config: SourceConfig,
        page_size: int = 16,
        client: Optional[MongoClient] = None,
    ):
        self.config = config
        self.page_size = page_size
        self.client = client or MongoClient(config.url)
        self.collection = self.client[config.database][config.collection]

    def count(self, watermark_ms: Optional[int] = None) -> int:
        """Number of records the run will visit."""
        try:
            return self.collection.count_documents(watermark_query(watermark_ms))
        except PyMongoError as e:
            raise TransientSourceError(f"Failed to count legacy plunks: {e}") from e

    def find_one(self, record_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a single legacy document by id."""
        try:
            return self.collection.find_one({"_id": record_id})
        except PyMongoError as e:
            raise TransientSourceError(
                f"Failed to fetch legacy plunk: {e}", record_id=record_id
            ) from e

    def iter_records(self, watermark_ms: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        """Yield raw documents in ascending ``updated_at`` order.

        Raises:
            TransientSourceError: If the cursor fails mid-iteration
        """
        query = watermark_query(watermark_ms)
        logger.info(f"Querying {self.config.collection} with {query or 'no filter'}")

        try:
            cursor = (
                self.collection.find(query)
                .sort("updated_at", ASCENDING)
                .batch_size(self.page_size)
            )
        except PyMongoError as e:
            raise TransientSourceError(f"Failed to open legacy cursor: {e}") from e

        try:
            while True:
                try:
                    doc = next(cursor)
                except StopIteration:
                    return
                except PyMongoError as e:
                    raise TransientSourceError(
                        f"Legacy cursor read failed: {e}"
                    ) from e
                yield doc
        finally:
            cursor.close()

    def close(self) -> None:
        """Close the MongoDB client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
