"""Exception hierarchy for the plunk migration."""

from typing import Optional


class PlunkIndexerError(Exception):
    """Base exception for migration errors."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class TransientSourceError(PlunkIndexerError):
    """Exception raised when reading from the legacy cursor fails.

    Not retried inline: the run aborts and resumes from the last checkpoint.
    """

    pass


class PatchApplicationError(PlunkIndexerError):
    """Exception raised when a revision patch does not apply exactly."""

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        revision_index: Optional[int] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message, record_id=record_id)
        self.revision_index = revision_index
        self.path = path

    def __str__(self) -> str:
        base = super().__str__()
        return (
            f"{base} (record={self.record_id}, revision={self.revision_index}, "
            f"path={self.path})"
        )


class ReferenceParseError(PlunkIndexerError):
    """Exception raised for a malformed package declaration.

    Never escapes the scanner: the declaration is dropped.
    """

    pass


class SinkWriteError(PlunkIndexerError):
    """Exception raised when the destination index rejects a write."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        failed_ids: Optional[list] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.failed_ids = failed_ids or []


class MigrationAbortedError(PlunkIndexerError):
    """Exception raised by the pipeline when a run cannot continue.

    Wraps the underlying failure together with the last record seen.
    """

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        processed: int = 0,
        watermark_ms: int = 0,
    ):
        super().__init__(message, record_id=record_id)
        self.processed = processed
        self.watermark_ms = watermark_ms


class TreeConflictError(PlunkIndexerError):
    """Exception raised when two snapshot paths cannot share one tree.

    Either two spellings of a path normalize to the same entry, or a path is
    used both as a file and as a directory.
    """

    def __init__(
        self, message: str, path: str, record_id: Optional[str] = None
    ):
        super().__init__(message, record_id=record_id)
        self.path = path
