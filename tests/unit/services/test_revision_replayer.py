"""Unit tests for revision history reconstruction."""

import pytest

from plunk_indexer.errors import PatchApplicationError, TreeConflictError
from plunk_indexer.models import LegacyRecord
from plunk_indexer.services.revision_replayer import (
    ExactPatcher,
    RevisionReplayer,
    Snapshot,
    replay_order,
    revision_message,
)
from plunk_indexer.storage.git_objects import author_identity, commit_of, tree_of


def _record(legacy_doc, files, history=None, **extra) -> LegacyRecord:
    return LegacyRecord.from_document(
        legacy_doc("rec1", files=files, history=history, **extra)
    )


def _revision(*changes):
    return {"changes": list(changes)}


class TestReplayOrder:
    """Tests for the newest-first to oldest-first reversal."""

    def test_reverses_stored_history(self):
        """Test that stored newest-first history is replayed oldest first."""
        assert replay_order(["newest", "middle", "oldest"]) == [
            "oldest",
            "middle",
            "newest",
        ]

    def test_does_not_mutate_input(self):
        """Test that the stored list is left untouched."""
        history = [3, 2, 1]
        replay_order(history)

        assert history == [3, 2, 1]

    def test_empty(self):
        """Test that empty history stays empty."""
        assert replay_order([]) == []

    def test_messages(self):
        """Test commit message numbering."""
        assert revision_message(0) == "Initial commit"
        assert revision_message(3) == "Revision 3"


class TestExactPatcher:
    """Tests for exact-match patch application."""

    def test_applies_matching_patch(self, patch_text):
        """Test that a patch applies to the content it was made from."""
        patch = patch_text("hello world", "hello there")

        assert ExactPatcher().apply(patch, "hello world") == "hello there"

    def test_rejects_inexact_context(self, patch_text):
        """Test that a patch never applies fuzzily to different content."""
        patch = patch_text("function a() { return 1; }", "function a() { return 2; }")

        with pytest.raises(ValueError):
            ExactPatcher().apply(patch, "function b() { return 7; }")


class TestSnapshot:
    """Tests for the working snapshot."""

    def test_rename_preserves_content(self):
        """Test that renaming moves the entry under its new key."""
        snapshot = Snapshot()
        snapshot.create("old.js", "body")

        assert snapshot.rename("old.js", "new.js") is True
        assert snapshot.files() == {"new.js": "body"}

    def test_missing_path_operations_are_noops(self):
        """Test that rename/remove of a missing path change nothing."""
        snapshot = Snapshot()
        snapshot.create("a.js", "1")

        assert snapshot.rename("missing.js", "b.js") is False
        assert snapshot.remove("missing.js") is False
        assert snapshot.files() == {"a.js": "1"}


class TestRevisionReplayer:
    """Tests for RevisionReplayer.replay."""

    def test_no_history_single_initial_commit(self, object_store, legacy_doc):
        """Test that a record without history yields one rootless commit."""
        record = _record(legacy_doc, {"index.html": "<h1>hi</h1>"})

        result = RevisionReplayer(object_store).replay(record)

        assert result.revision_count == 1
        assert result.final_commit.message == "Initial commit"
        assert result.final_commit.parents == ()
        assert result.final_commit.tree.files == {"index.html": "<h1>hi</h1>"}

    def test_patch_replays_to_earlier_content(
        self, object_store, legacy_doc, patch_text
    ):
        """Test that a v3 -> v2 patch recovers the earlier content."""
        record = _record(
            legacy_doc,
            {"a.js": "v3"},
            history=[_revision({"fn": "a.js", "pn": "a.js", "pl": patch_text("v3", "v2")})],
        )

        result = RevisionReplayer(object_store).replay(record)

        assert result.snapshot == {"a.js": "v2"}
        assert result.revision_count == 1
        assert result.final_commit.tree.files == {"a.js": "v3"}

    def test_rename_without_patch(self, object_store, legacy_doc):
        """Test that a rename delta moves the file and keeps its content."""
        record = _record(
            legacy_doc,
            {"old.js": "body"},
            history=[_revision({"fn": "old.js", "pn": "new.js"})],
        )

        result = RevisionReplayer(object_store).replay(record)

        assert result.snapshot == {"new.js": "body"}

    def test_rename_and_modify_patches_old_path(
        self, object_store, legacy_doc, patch_text
    ):
        """Test that rename+patch patches the content then moves it."""
        record = _record(
            legacy_doc,
            {"old.js": "v3"},
            history=[
                _revision({"fn": "old.js", "pn": "new.js", "pl": patch_text("v3", "v2")})
            ],
        )

        result = RevisionReplayer(object_store).replay(record)

        assert result.snapshot == {"new.js": "v2"}

    def test_create_and_delete(self, object_store, legacy_doc):
        """Test that create inserts and delete removes entries."""
        record = _record(
            legacy_doc,
            {"a.js": "a", "b.js": "b"},
            history=[_revision({"pn": "c.js", "pl": "c"}, {"fn": "b.js"})],
        )

        result = RevisionReplayer(object_store).replay(record)

        assert result.snapshot == {"a.js": "a", "c.js": "c"}

    def test_missing_paths_are_noops(self, object_store, legacy_doc):
        """Test that rename/delete of nonexistent paths change nothing."""
        record = _record(
            legacy_doc,
            {"a.js": "a"},
            history=[
                _revision({"fn": "ghost.js", "pn": "other.js"}, {"fn": "ghost2.js"})
            ],
        )

        result = RevisionReplayer(object_store).replay(record)

        assert result.snapshot == {"a.js": "a"}

    def test_unchanged_steps_collapse(self, object_store, legacy_doc):
        """Test that consecutive identical snapshots emit one commit."""
        record = _record(
            legacy_doc,
            {"a.js": "a"},
            history=[
                _revision({"fn": "a.js", "pn": "a.js"}),
                _revision(),
                _revision({"fn": "missing.js"}),
            ],
        )

        result = RevisionReplayer(object_store).replay(record)

        assert result.revision_count == 1
        assert len(result.commit_ids) == 1

    def test_changed_steps_chain_commits(self, object_store, legacy_doc):
        """Test that each tree change emits a commit parented to the previous."""
        # Stored newest-first: the oldest revision is last
        record = _record(
            legacy_doc,
            {"index.html": "x"},
            history=[
                _revision({"pn": "b.js", "pl": "b"}),
                _revision({"pn": "a.js", "pl": "a"}),
            ],
        )

        result = RevisionReplayer(object_store).replay(record)

        assert result.revision_count == 2
        initial, latest = result.commit_ids
        assert result.final_commit.id == latest
        assert result.final_commit.message == "Revision 1"
        assert result.final_commit.parents == (initial,)
        assert result.final_commit.tree.files == {"index.html": "x", "a.js": "a"}
        assert result.snapshot == {"index.html": "x", "a.js": "a", "b.js": "b"}

    def test_commit_identity_is_reproducible(self, object_store, legacy_doc):
        """Test that replaying the same record twice yields the same commit."""
        record = _record(legacy_doc, {"index.html": "x"})
        replayer = RevisionReplayer(object_store, author_domain="users.plnkr.co")

        first = replayer.replay(record)
        second = replayer.replay(record)

        expected = commit_of(
            tree_of({"index.html": "x"}),
            "Initial commit",
            author_identity("alice", "users.plnkr.co"),
        )
        assert first.final_commit.id == second.final_commit.id == expected.id

    def test_objects_are_flushed_and_deduplicated(self, object_store, legacy_doc):
        """Test that objects are persisted once across records."""
        replayer = RevisionReplayer(object_store)
        replayer.replay(_record(legacy_doc, {"index.html": "x"}))
        stored = object_store.backend.count_objects()

        replayer.replay(_record(legacy_doc, {"index.html": "x"}))

        assert stored == 3
        assert object_store.backend.count_objects() == 3
        assert object_store.writes_skipped == 3

    def test_failed_patch_is_fatal_and_discards(
        self, object_store, legacy_doc, patch_text
    ):
        """Test that an inexact patch raises with record and revision index."""
        record = _record(
            legacy_doc,
            {"a.js": "something else entirely"},
            history=[
                _revision({"fn": "a.js", "pn": "a.js", "pl": patch_text("v3", "v2")}),
                _revision({"pn": "first.js", "pl": "1"}),
            ],
        )

        with pytest.raises(PatchApplicationError) as exc_info:
            RevisionReplayer(object_store).replay(record)

        error = exc_info.value
        assert error.record_id == "rec1"
        assert error.revision_index == 1
        assert error.path == "a.js"
        assert "rec1" in str(error)
        assert object_store.backend.count_objects() == 0
        assert not object_store.has(tree_of({"a.js": "something else entirely"}).id)

    def test_file_directory_clash_is_fatal_and_names_record(
        self, object_store, legacy_doc
    ):
        """Test that creating a file beneath an existing file aborts the record."""
        record = _record(
            legacy_doc,
            {"lib": "plain file"},
            history=[
                _revision({"pn": "other.js", "pl": "2"}),
                _revision({"pn": "lib/util.js", "pl": "1"}),
            ],
        )

        with pytest.raises(TreeConflictError) as exc_info:
            RevisionReplayer(object_store).replay(record)

        assert exc_info.value.record_id == "rec1"
        assert exc_info.value.path == "lib/util.js"
        assert object_store.backend.count_objects() == 0
        assert object_store.objects_written == 0
