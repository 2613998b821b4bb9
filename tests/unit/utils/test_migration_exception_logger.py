"""Unit tests for the migration error log."""

from pathlib import Path

from plunk_indexer.errors import MigrationAbortedError, SinkWriteError
from plunk_indexer.utils.exception_logger import ExceptionLogger


class TestExceptionLogger:
    """Tests for ExceptionLogger."""

    def test_initialize_is_singleton(self, tmp_path: Path, reset_exception_logger):
        """Test that initialize creates one logger under .plunk-indexer."""
        first = ExceptionLogger.initialize(tmp_path)
        second = ExceptionLogger.initialize(tmp_path / "elsewhere")

        assert first is second
        assert ExceptionLogger.get_instance() is first
        assert first.log_file_path.parent == tmp_path / ".plunk-indexer"
        assert first.log_file_path.name.startswith("error_")

    def test_entry_records_failure(self, tmp_path: Path, reset_exception_logger):
        """Test that entries carry record id, context and the cause chain."""
        logger = ExceptionLogger.initialize(tmp_path)
        try:
            try:
                raise SinkWriteError("bulk rejected", status_code=500)
            except SinkWriteError as e:
                raise MigrationAbortedError(
                    str(e), record_id="p7", processed=32, watermark_ms=99
                ) from e
        except MigrationAbortedError as e:
            logger.log_exception(
                e, record_id=e.record_id, context={"processed": e.processed}
            )

        entries = logger.read_entries()

        assert len(entries) == 1
        entry = entries[0]
        assert entry["record_id"] == "p7"
        assert entry["exception_type"] == "MigrationAbortedError"
        assert entry["context"] == {"processed": 32}
        assert entry["causes"] == ["SinkWriteError: bulk rejected"]
        assert "Traceback" in entry["stack_trace"]

    def test_entries_append(self, tmp_path: Path, reset_exception_logger):
        """Test that each failure appends a separate entry."""
        logger = ExceptionLogger.initialize(tmp_path)

        logger.log_exception(ValueError("one"))
        logger.log_exception(ValueError("two"), record_id="p2")

        messages = [entry["exception_message"] for entry in logger.read_entries()]
        assert messages == ["one", "two"]

    def test_no_entries_yet(self, tmp_path: Path):
        """Test that a logger that never wrote reads back nothing."""
        assert ExceptionLogger(tmp_path / "error.log").read_entries() == []
