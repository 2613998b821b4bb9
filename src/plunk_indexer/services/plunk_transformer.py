"""
Legacy plunk -> migrated index document.
"""

import logging
import re
from typing import Any, Mapping, Optional, Union

from ..models import LegacyRecord, MigratedRecord, to_iso
from ..storage.git_objects import MaterializedTree
from .package_scanner import PackageScanner
from .revision_replayer import RevisionReplayer

logger = logging.getLogger(__name__)

README_PATTERN = re.compile(r"readme(\.md|\.markdown)?$", re.IGNORECASE)

PUBLIC_COLLECTION = "plunker/public"


def find_readme(tree: MaterializedTree) -> str:
    """Content of the first readme-looking file in the tree, or ''."""
    for path, content in tree.walk():
        if README_PATTERN.search(path):
            return content
    return ""


def unique(values) -> list:
    """Drop duplicates while keeping first-seen order."""
    return list(dict.fromkeys(values))


class PlunkTransformer:
    """Builds the migrated document for one legacy record."""

    def __init__(
        self,
        replayer: RevisionReplayer,
        scanner: Optional[PackageScanner] = None,
    ):
        self.replayer = replayer
        self.scanner = scanner or PackageScanner()

    def transform(
        self, record: Union[LegacyRecord, Mapping[str, Any]]
    ) -> MigratedRecord:
        """Replay history, scan packages and project the legacy metadata."""
        if not isinstance(record, LegacyRecord):
            record = LegacyRecord.from_document(record)

        replay = self.replayer.replay(record)
        final_tree = replay.final_commit.tree
        updated_at = to_iso(record.updated_at)

        migrated = MigratedRecord(
            id=record.id,
            fork_of=record.fork_of,
            title=record.description,
            readme=find_readme(final_tree),
            tags=unique(record.tags),
            created_at=to_iso(record.created_at),
            updated_at=updated_at,
            viewed_at=updated_at,
            user_id=record.user,
            packages=self.scanner.scan(final_tree),
            commit_sha=replay.final_commit.id,
            tree_sha=replay.final_commit.tree_id,
            forks_count=len(record.forks),
            revisions_count=replay.revision_count,
            views_count=record.views,
            likes_count=record.thumbs,
            updated_at_ms=record.updated_at_ms,
        )

        if not record.private:
            migrated.collections.append(PUBLIC_COLLECTION)

        return migrated
