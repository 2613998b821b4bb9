"""Progress display module for plunk-indexer."""

from .progress_display import MigrationProgressDisplay

__all__ = ["MigrationProgressDisplay"]
