"""
Resume watermark persistence for migration runs.

The checkpoint is the highest ``updated_at`` (epoch ms) of any batch that was
fully written to the destination. A restarted run re-queries records updated
at or after it, so at most the batches since the last checkpoint are redone;
index writes are upserts by id, so redoing them is harmless.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CheckpointState:
    """Contents of the checkpoint file."""

    watermark_ms: int = 0
    records_processed: int = 0
    completed: bool = False
    saved_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointState":
        """Create from dictionary loaded from JSON."""
        return cls(
            watermark_ms=int(data.get("watermark_ms", 0)),
            records_processed=int(data.get("records_processed", 0)),
            completed=bool(data.get("completed", False)),
            saved_at=data.get("saved_at"),
        )


class MigrationCheckpoint:
    """Durable single-watermark checkpoint stored as JSON."""

    def __init__(self, checkpoint_file: Path):
        self.checkpoint_file = Path(checkpoint_file)

    def exists(self) -> bool:
        return self.checkpoint_file.exists()

    def load(self) -> Optional[CheckpointState]:
        """Load the checkpoint, or None if there is none.

        A bare integer file (the old progress.txt format) is read as the watermark.
        """
        if not self.checkpoint_file.exists():
            return None

        text = self.checkpoint_file.read_text(encoding="utf-8").strip()
        if not text:
            return None

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Corrupt checkpoint file {self.checkpoint_file}: {e}"
            ) from e

        if isinstance(data, (int, float)):
            return CheckpointState(watermark_ms=int(data))
        return CheckpointState.from_dict(data)

    def load_watermark(self) -> int:
        """Watermark to resume from (0 means start from the beginning)."""
        state = self.load()
        return state.watermark_ms if state else 0

    def save(
        self, watermark_ms: int, records_processed: int = 0, completed: bool = False
    ) -> CheckpointState:
        """Overwrite the checkpoint atomically."""
        state = CheckpointState(
            watermark_ms=int(watermark_ms),
            records_processed=records_processed,
            completed=completed,
            saved_at=time.time(),
        )

        self.checkpoint_file.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write using temp file
        temp_file = self.checkpoint_file.with_suffix(".tmp")
        with open(temp_file, "w") as f:
            json.dump(state.to_dict(), f, indent=2)
        temp_file.replace(self.checkpoint_file)

        logger.debug(
            f"Checkpoint saved: watermark={state.watermark_ms} "
            f"processed={records_processed}"
        )
        return state

    def clear(self) -> bool:
        """Delete the checkpoint so the next run starts from scratch."""
        if self.checkpoint_file.exists():
            self.checkpoint_file.unlink()
            logger.info(f"Removed checkpoint {self.checkpoint_file}")
            return True
        return False
