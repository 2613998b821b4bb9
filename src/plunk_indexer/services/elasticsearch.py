"""Elasticsearch destination client."""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from rich.console import Console

from ..config import DestinationConfig
from ..errors import SinkWriteError
from ..models import MigratedRecord

logger = logging.getLogger(__name__)

KEYWORD_ANALYZER = "analyzer_keyword"

# Identifiers: exact match only
EXACT_FIELDS = (
    "id",
    "user_id",
    "fork_of",
    "session_id",
    "commit_sha",
    "tree_sha",
    "collections",
    "queued",
)

# Classification: whole value, case-insensitive
KEYWORD_ANALYZED_FIELDS = ("tags",)
PACKAGE_FIELDS = ("name", "semver", "semver_range")


def index_schema() -> Dict[str, Any]:
    """Settings and mappings for the plunk index."""
    properties: Dict[str, Any] = {
        field: {"type": "keyword"} for field in EXACT_FIELDS
    }
    for field in KEYWORD_ANALYZED_FIELDS:
        properties[field] = {"type": "text", "analyzer": KEYWORD_ANALYZER}
    properties["packages"] = {
        "properties": {
            field: {"type": "text", "analyzer": KEYWORD_ANALYZER}
            for field in PACKAGE_FIELDS
        }
    }

    return {
        "settings": {
            "index": {
                "analysis": {
                    "analyzer": {
                        KEYWORD_ANALYZER: {
                            "type": "custom",
                            "tokenizer": "keyword",
                            "filter": ["lowercase"],
                        }
                    }
                }
            }
        },
        "mappings": {"properties": properties},
    }


class ElasticsearchClient:
    """Client for writing migrated plunks into Elasticsearch."""

    def __init__(self, config: DestinationConfig, console: Optional[Console] = None):
        self.config = config
        self.console = console or Console()
        self.client = httpx.Client(base_url=config.host, timeout=config.timeout)

    @property
    def index_name(self) -> str:
        return self.config.index_name

    def health_check(self) -> bool:
        """Check if Elasticsearch is reachable."""
        try:
            response = self.client.get("/_cluster/health", timeout=2.0)
            return bool(response.status_code == 200)
        except httpx.HTTPError:
            return False

    def index_exists(self) -> bool:
        """Check if the destination index exists."""
        response = self.client.head(f"/{self.index_name}")
        return bool(response.status_code == 200)

    def create_index(self) -> bool:
        """Create the destination index with its schema.

        Returns:
            True if created or already present
        """
        response = self.client.put(f"/{self.index_name}", json=index_schema())
        if response.status_code in (200, 201):
            logger.info(f"Created index {self.index_name}")
            return True
        if response.status_code == 400 and "resource_already_exists" in response.text:
            return True

        self.console.print(
            f"Index creation failed: {response.status_code} {response.text}",
            style="red",
            markup=False,
        )
        return False

    def ensure_index(self) -> bool:
        """Create the index once if it is absent."""
        if self.index_exists():
            return True
        return self.create_index()

    def index_document(self, record: MigratedRecord) -> None:
        """Upsert a single migrated plunk by id.

        Raises:
            SinkWriteError: If Elasticsearch rejects the write
        """
        try:
            response = self.client.put(
                f"/{self.index_name}/_doc/{record.id}", json=record.to_document()
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SinkWriteError(
                f"Failed to index {record.id}: {e.response.status_code} "
                f"{e.response.text}",
                status_code=e.response.status_code,
                failed_ids=[record.id],
            ) from e
        except httpx.HTTPError as e:
            raise SinkWriteError(f"Failed to index {record.id}: {e}") from e

    def build_bulk_body(self, records: Sequence[MigratedRecord]) -> str:
        """NDJSON body of interleaved index actions and documents."""
        lines: List[str] = []
        for record in records:
            lines.append(
                json.dumps({"index": {"_index": self.index_name, "_id": record.id}})
            )
            lines.append(json.dumps(record.to_document()))
        return "\n".join(lines) + "\n"

    def bulk_index(self, records: Sequence[MigratedRecord]) -> int:
        """Upsert a batch of migrated plunks in one request.

        Raises:
            SinkWriteError: On HTTP failure or any per-item error

        Returns:
            Number of documents written
        """
        if not records:
            return 0

        try:
            response = self.client.post(
                "/_bulk",
                content=self.build_bulk_body(records),
                headers={"Content-Type": "application/x-ndjson"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SinkWriteError(
                f"Bulk write failed: {e.response.status_code} "
                f"{e.response.reason_phrase}",
                status_code=e.response.status_code,
                failed_ids=[record.id for record in records],
            ) from e
        except httpx.HTTPError as e:
            raise SinkWriteError(
                f"Bulk write failed: {e}",
                failed_ids=[record.id for record in records],
            ) from e

        result = response.json()
        if result.get("errors"):
            failed = []
            first_error = None
            for item in result.get("items", []):
                action = item.get("index", {})
                if action.get("error"):
                    failed.append(action.get("_id"))
                    first_error = first_error or action["error"]
            raise SinkWriteError(
                f"Bulk write rejected {len(failed)} documents: {first_error}",
                status_code=response.status_code,
                failed_ids=failed,
            )

        return len(records)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
