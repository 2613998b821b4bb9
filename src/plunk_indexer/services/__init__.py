"""Migration services: replay, scanning, source, sink and pipeline."""

from .elasticsearch import ElasticsearchClient
from .legacy_source import LegacyPlunkSource
from .migration_checkpoint import MigrationCheckpoint
from .migration_pipeline import BatchReport, MigrationPipeline, MigrationStats
from .package_scanner import PackageScanner
from .plunk_transformer import PlunkTransformer
from .revision_replayer import ReplayResult, RevisionReplayer

__all__ = [
    "ElasticsearchClient",
    "LegacyPlunkSource",
    "MigrationCheckpoint",
    "BatchReport",
    "MigrationPipeline",
    "MigrationStats",
    "PackageScanner",
    "PlunkTransformer",
    "ReplayResult",
    "RevisionReplayer",
]
