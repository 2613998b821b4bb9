"""Error log for fatal migration failures.

The progress line is overwritten in place, so the failing record id, the
number of plunks processed and the watermark at the time of the crash are
also appended as JSON entries to ``.plunk-indexer/error_<ts>_<pid>.log``.
"""

import json
import os
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

LOG_DIR_NAME = ".plunk-indexer"
ENTRY_SEPARATOR = "\n---\n"


class ExceptionLogger:
    """Process-wide writer of migration failure entries."""

    _instance: Optional["ExceptionLogger"] = None

    def __init__(self, log_file_path: Path):
        self.log_file_path = log_file_path

    @classmethod
    def initialize(cls, project_root: Path) -> "ExceptionLogger":
        """Create the process logger under ``project_root``, once.

        Later calls return the existing instance; tests reset
        ``ExceptionLogger._instance`` to get a fresh one.
        """
        if cls._instance is not None:
            return cls._instance

        log_dir = project_root / LOG_DIR_NAME
        log_dir.mkdir(parents=True, exist_ok=True)
        started = datetime.now().strftime("%Y%m%d_%H%M%S")

        cls._instance = cls(log_dir / f"error_{started}_{os.getpid()}.log")
        return cls._instance

    @classmethod
    def get_instance(cls) -> Optional["ExceptionLogger"]:
        return cls._instance

    def log_exception(
        self,
        exception: BaseException,
        record_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append one failure entry.

        Args:
            exception: The failure that ended the run
            record_id: Legacy plunk being processed when it happened
            context: Extra values such as processed count and watermark
        """
        entry = {
            "timestamp": datetime.now().isoformat(),
            "thread": threading.current_thread().name,
            "record_id": record_id,
            "exception_type": type(exception).__name__,
            "exception_message": str(exception),
            "causes": _cause_chain(exception),
            "stack_trace": "".join(
                traceback.format_exception(
                    type(exception), exception, exception.__traceback__
                )
            ),
            "context": context or {},
        }

        with open(self.log_file_path, "a") as f:
            f.write(json.dumps(entry, indent=2, default=str))
            f.write(ENTRY_SEPARATOR)

    def read_entries(self) -> List[Dict[str, Any]]:
        """Parse the entries written so far."""
        if not self.log_file_path.exists():
            return []
        text = self.log_file_path.read_text()
        return [
            json.loads(chunk) for chunk in text.split(ENTRY_SEPARATOR) if chunk.strip()
        ]


def _cause_chain(exception: BaseException) -> List[str]:
    """Describe the wrapped exceptions, outermost first."""
    causes = []
    seen = {id(exception)}
    current = exception.__cause__ or exception.__context__
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        causes.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return causes
