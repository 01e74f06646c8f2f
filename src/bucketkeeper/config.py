"""Configuration management for Bucketkeeper."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

EXECUTORS = ("local", "spark")


@dataclass
class BucketkeeperConfig:
    """Bucketkeeper configuration with defaults, YAML override, and CLI override."""

    table: str | None = None
    partitions: str | None = None
    order_strategy: str | None = None
    order_by: str | None = None
    executor: str = "local"
    parallelism: int = 4
    catalog: str | None = None
    spark_master: str | None = None
    app_name: str = "bucketkeeper"
    log_level: str = "INFO"
    config_file: str | None = None

    def __post_init__(self) -> None:
        if self.executor not in EXECUTORS:
            msg = f"executor must be one of {EXECUTORS}, got '{self.executor}'"
            raise ValueError(msg)
        if self.parallelism < 1:
            msg = f"parallelism must be >= 1, got {self.parallelism}"
            raise ValueError(msg)

    @classmethod
    def from_yaml(cls, path: str | Path) -> BucketkeeperConfig:
        """Load configuration from a YAML file.

        Args:
            path: Path to the YAML configuration file.

        Returns:
            A BucketkeeperConfig instance with values from the YAML file.

        Raises:
            FileNotFoundError: If the config file does not exist.
        """
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> BucketkeeperConfig:
        """Create config from a dictionary, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)

    def merge_cli_overrides(self, **kwargs: Any) -> BucketkeeperConfig:
        """Return a new config with CLI overrides applied (non-None values only).

        Args:
            **kwargs: CLI parameter overrides.

        Returns:
            A new BucketkeeperConfig with overrides applied.
        """
        current = {f.name: getattr(self, f.name) for f in self.__dataclass_fields__.values()}
        for key, value in kwargs.items():
            if value is not None and key in current:
                current[key] = value
        return BucketkeeperConfig(**current)

    def setup_logging(self) -> None:
        """Configure logging based on the log_level setting."""
        logging.basicConfig(
            level=getattr(logging, self.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
