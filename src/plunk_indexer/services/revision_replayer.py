"""
Revision history reconstruction for legacy plunks.

A legacy plunk stores its current files plus, per save, the deltas that were
recorded (creations, deletions, renames and diff-match-patch patches). The
replayer walks that history oldest-first over a working snapshot that starts
from the stored files, commits the snapshot before each revision's deltas are
applied and chains the commits linearly. Steps that leave the tree unchanged
do not produce a commit.

Every commit's objects go through a per-record write batch on the shared
DedupObjectStore; the batch is flushed once at the end, or discarded on failure.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, TypeVar

from diff_match_patch import diff_match_patch

from ..errors import PatchApplicationError, TreeConflictError
from ..models import ChangeDelta, ChangeKind, FileEntry, LegacyRecord
from ..storage.git_objects import (
    MaterializedCommit,
    author_identity,
    commit_of,
    tree_of,
)
from ..storage.object_store import DedupObjectStore, ObjectWriteBatch

logger = logging.getLogger(__name__)

INITIAL_COMMIT_MESSAGE = "Initial commit"

T = TypeVar("T")


def replay_order(history: Sequence[T]) -> List[T]:
    """Return stored (newest-first) history in replay order, oldest first."""
    return list(reversed(history))


def revision_message(counter: int) -> str:
    """Commit message for the ``counter``-th emitted commit."""
    if counter == 0:
        return INITIAL_COMMIT_MESSAGE
    return f"Revision {counter}"


class ExactPatcher:
    """diff-match-patch wrapper that refuses fuzzy matches.

    Threshold, distance and delete threshold are all zero, so a hunk applies
    only where its context matches exactly at the expected offset.
    """

    def __init__(self):
        self.dmp = diff_match_patch()
        self.dmp.Match_Threshold = 0.0
        self.dmp.Match_Distance = 0
        self.dmp.Patch_DeleteThreshold = 0.0

    def apply(self, patch_text: str, content: str) -> str:
        """Apply patch text to content.

        Raises:
            ValueError: If the patch text is malformed or any hunk fails
        """
        patches = self.dmp.patch_fromText(patch_text)
        patched, results = self.dmp.patch_apply(patches, content)
        failed = [index for index, applied in enumerate(results) if not applied]
        if failed:
            raise ValueError(
                f"{len(failed)} of {len(results)} hunks did not apply exactly "
                f"(hunks {failed})"
            )
        return patched


class Snapshot:
    """Mutable path -> FileEntry working state for one replay."""

    def __init__(self, files: Sequence[FileEntry] = ()):
        self.entries: Dict[str, FileEntry] = {}
        for entry in files:
            self.entries[entry.path] = FileEntry(path=entry.path, content=entry.content)

    def __contains__(self, path: str) -> bool:
        return path in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def content(self, path: str) -> Optional[str]:
        entry = self.entries.get(path)
        return entry.content if entry else None

    def files(self) -> Dict[str, str]:
        return {path: entry.content for path, entry in self.entries.items()}

    def create(self, path: str, content: Optional[str]) -> None:
        self.entries[path] = FileEntry(path=path, content=content or "")

    def remove(self, path: str) -> bool:
        return self.entries.pop(path, None) is not None

    def rename(self, from_path: str, to_path: str) -> bool:
        entry = self.entries.pop(from_path, None)
        if entry is None:
            return False
        entry.path = to_path
        self.entries[to_path] = entry
        return True


@dataclass
class ReplayResult:
    """Outcome of replaying one record."""

    final_commit: MaterializedCommit
    revision_count: int
    commit_ids: List[str] = field(default_factory=list)
    snapshot: Dict[str, str] = field(default_factory=dict)


class RevisionReplayer:
    """Rebuilds a linear commit chain from a legacy record."""

    def __init__(
        self,
        object_store: DedupObjectStore,
        author_domain: str = "users.plnkr.co",
        patcher: Optional[ExactPatcher] = None,
    ):
        self.object_store = object_store
        self.author_domain = author_domain
        self.patcher = patcher or ExactPatcher()

    def replay(self, record: LegacyRecord) -> ReplayResult:
        """Replay a record's history and persist its objects.

        The record's objects are buffered in their own write batch, flushed
        once at the end and discarded if replay fails.

        Raises:
            PatchApplicationError: If any patch fails to apply exactly
            TreeConflictError: If a snapshot holds colliding paths
        """
        batch = self.object_store.begin()
        try:
            result = self._replay(record, batch)
        except TreeConflictError as e:
            batch.discard()
            e.record_id = e.record_id or record.id
            raise
        except Exception:
            batch.discard()
            raise

        batch.flush()
        return result

    def _replay(self, record: LegacyRecord, batch: ObjectWriteBatch) -> ReplayResult:
        author = author_identity(record.user, self.author_domain)
        snapshot = Snapshot(record.files)
        commits: List[MaterializedCommit] = []

        if not record.history:
            commit = commit_of(tree_of(snapshot.files()), INITIAL_COMMIT_MESSAGE, author)
            self._save(batch, commit)
            commits.append(commit)
        else:
            for index, revision in enumerate(replay_order(record.history)):
                tree = tree_of(snapshot.files())
                previous = commits[-1] if commits else None

                if previous is None or tree.id != previous.tree_id:
                    commit = commit_of(
                        tree,
                        revision_message(len(commits)),
                        author,
                        [previous.id] if previous else [],
                    )
                    self._save(batch, commit)
                    commits.append(commit)

                for delta in revision.changes:
                    self._apply(snapshot, delta, record.id, index)

        logger.debug(
            f"Replayed {record.id}: {len(record.history)} revisions -> "
            f"{len(commits)} commits"
        )

        return ReplayResult(
            final_commit=commits[-1],
            revision_count=len(commits),
            commit_ids=[commit.id for commit in commits],
            snapshot=snapshot.files(),
        )

    def _save(self, batch: ObjectWriteBatch, commit: MaterializedCommit) -> None:
        batch.put_all(commit.objects())

    def _apply(
        self, snapshot: Snapshot, delta: ChangeDelta, record_id: str, revision_index: int
    ) -> None:
        kind = delta.kind

        if kind is ChangeKind.CREATE:
            snapshot.create(delta.to_path, delta.patch)
        elif kind is ChangeKind.DELETE:
            if not snapshot.remove(delta.from_path):
                logger.debug(f"{record_id}: delete of missing {delta.from_path} ignored")
        elif kind is ChangeKind.RENAME:
            self._rename(snapshot, delta, record_id)
        elif kind is ChangeKind.MODIFY:
            self._patch(snapshot, delta, record_id, revision_index)
        elif kind is ChangeKind.RENAME_AND_MODIFY:
            # Patch applies to the content under its old name, then it moves
            self._patch(snapshot, delta, record_id, revision_index)
            self._rename(snapshot, delta, record_id)

    def _rename(self, snapshot: Snapshot, delta: ChangeDelta, record_id: str) -> None:
        if not snapshot.rename(delta.from_path, delta.to_path):
            logger.debug(f"{record_id}: rename of missing {delta.from_path} ignored")

    def _patch(
        self, snapshot: Snapshot, delta: ChangeDelta, record_id: str, revision_index: int
    ) -> None:
        path = delta.from_path
        content = snapshot.content(path)
        if content is None:
            logger.debug(f"{record_id}: patch of missing {path} ignored")
            return

        try:
            patched = self.patcher.apply(delta.patch, content)
        except ValueError as e:
            raise PatchApplicationError(
                f"Patch for {path} failed: {e}",
                record_id=record_id,
                revision_index=revision_index,
                path=path,
            ) from e

        snapshot.create(path, patched)
