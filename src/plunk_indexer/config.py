"""Configuration management for Plunk Indexer."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class SourceConfig(BaseModel):
    """Configuration for the legacy MongoDB plunk store."""

    url: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URL (overridden by MONGO_URL)",
    )
    database: str = Field(default="plunker", description="Database name")
    collection: str = Field(
        default="plunks", description="Collection holding legacy plunks"
    )


class DestinationConfig(BaseModel):
    """Configuration for the Elasticsearch destination index."""

    host: str = Field(
        default="http://localhost:9200", description="Elasticsearch API host"
    )
    index_name: str = Field(default="plunker", description="Destination index name")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")


class ObjectStoreConfig(BaseModel):
    """Configuration for the content-addressed object store."""

    path: Path = Field(
        default=Path(".plunk-indexer/objects.db"),
        description="SQLite database holding blob/tree/commit objects",
    )
    # Fixed for the whole run; bigger migrations just see more false positives
    bloom_bits: int = Field(
        default=1024 * 1024, gt=0, description="Bloom filter size in bits"
    )
    bloom_hashes: int = Field(
        default=32, gt=0, description="Number of Bloom filter hash functions"
    )
    author_domain: str = Field(
        default="users.plnkr.co",
        description="Email domain used to build commit author identities",
    )

    @field_validator("path", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")


class PipelineConfig(BaseModel):
    """Configuration for batching, checkpointing and shutdown."""

    batch_size: int = Field(
        default=16, gt=0, description="Records per bulk write (and cursor page)"
    )
    checkpoint_interval: int = Field(
        default=10, gt=0, description="Batches between checkpoint writes"
    )
    checkpoint_file: Path = Field(
        default=Path(".plunk-indexer/progress.json"),
        description="File holding the resume watermark",
    )
    exit_grace_seconds: float = Field(
        default=5.0, ge=0, description="Delay before exiting after a full run"
    )

    @field_validator("checkpoint_file", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")


class Config(BaseModel):
    """Main configuration for Plunk Indexer."""

    source: SourceConfig = Field(default_factory=SourceConfig)
    destination: DestinationConfig = Field(default_factory=DestinationConfig)
    objects: ObjectStoreConfig = Field(default_factory=ObjectStoreConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)


class ConfigManager:
    """Manages configuration loading, saving, and validation."""

    DEFAULT_CONFIG_PATH = Path(".plunk-indexer/config.json")

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config: Optional[Config] = None

    @property
    def project_root(self) -> Path:
        """Directory containing the .plunk-indexer folder."""
        return self.config_path.parent.parent

    def load(self) -> Config:
        """Load configuration from file or create default."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)
                self._config = Config(**data)
            except Exception as e:
                raise ValueError(
                    f"Failed to load config from {self.config_path}: {e}"
                ) from e
        else:
            self._config = Config()

        self._config = self._resolve_paths(self._config)
        return self._config

    def save(self, config: Optional[Config] = None) -> None:
        """Save configuration to file."""
        if config is None:
            config = self._config

        if config is None:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json")
        config_dict["objects"]["path"] = self._make_relative_to_config(
            config.objects.path
        )
        config_dict["pipeline"]["checkpoint_file"] = self._make_relative_to_config(
            config.pipeline.checkpoint_file
        )

        with open(self.config_path, "w") as f:
            json.dump(config_dict, f, indent=2, sort_keys=True)

    def get_config(self) -> Config:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self.load()
        if self._config is None:
            raise RuntimeError("Failed to load configuration")
        return self._config

    def create_default_config(self) -> Config:
        """Create and persist a default configuration."""
        config = self._resolve_paths(Config())
        self._config = config
        self.save()
        return config

    @staticmethod
    def find_config_path(start_dir: Optional[Path] = None) -> Optional[Path]:
        """Find .plunk-indexer/config.json by walking up the directory tree.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            Path to config.json if found, None otherwise
        """
        current = start_dir or Path.cwd()

        for path in [current] + list(current.parents):
            config_path = path / ".plunk-indexer" / "config.json"
            if config_path.exists():
                return config_path

        return None

    @classmethod
    def create_with_backtrack(cls, start_dir: Optional[Path] = None) -> "ConfigManager":
        """Create ConfigManager by finding config through directory backtracking."""
        config_path = cls.find_config_path(start_dir)
        if config_path is None:
            start = start_dir or Path.cwd()
            config_path = start / ".plunk-indexer" / "config.json"
        return cls(config_path)

    def _resolve_paths(self, config: Config) -> Config:
        """Anchor relative store paths at the project root."""
        if not config.objects.path.is_absolute():
            config.objects.path = (self.project_root / config.objects.path).resolve()
        if not config.pipeline.checkpoint_file.is_absolute():
            config.pipeline.checkpoint_file = (
                self.project_root / config.pipeline.checkpoint_file
            ).resolve()
        return config

    def _make_relative_to_config(self, path: Path) -> str:
        """Convert an absolute path to relative path from config location."""
        if not path.is_absolute():
            return str(path)
        try:
            return str(path.resolve().relative_to(self.project_root.resolve()))
        except ValueError:
            # Outside the project: keep absolute
            return str(path)
