"""Content-addressed object storage components."""

from .bloom_filter import BloomFilter
from .git_objects import (
    MaterializedCommit,
    MaterializedTree,
    author_identity,
    blob_of,
    commit_of,
    tree_of,
)
from .object_store import DedupObjectStore, ObjectWriteBatch, SQLiteObjectStore

__all__ = [
    "BloomFilter",
    "MaterializedCommit",
    "MaterializedTree",
    "author_identity",
    "blob_of",
    "commit_of",
    "tree_of",
    "DedupObjectStore",
    "ObjectWriteBatch",
    "SQLiteObjectStore",
]
