"""
Plunk Indexer - migrate legacy plunks into a search index.

Replays each plunk's sparse revision history into a linear chain of
git-compatible commits, deduplicates the resulting objects into a local
object store and bulk-indexes the migrated documents with resumable
checkpoints.
"""

__version__ = "1.0.0"
