"""Store configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

# Default configuration values
DEFAULT_CONCURRENCY = 10
DEFAULT_MAX_RETRIES = 10


@dataclass(frozen=True)
class StoreConfig:
    """Tuning knobs for the credential store.

    Resolution order for each field:
    1. Environment variable (``VCSTORE_CONCURRENCY``, ``VCSTORE_MAX_RETRIES``),
       applied by :meth:`with_env`
    2. Config file (``store.concurrency``, ``store.max_retries``)
    3. Defaults

    Attributes:
        concurrency: Maximum concurrent document operations in a fan-out.
        max_retries: Attempts before a conflicting upsert or delete gives up.
    """

    concurrency: int = DEFAULT_CONCURRENCY
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary with optional ``concurrency`` and
                ``max_retries`` fields, either at the top level or under a
                ``store`` key.

        Returns:
            StoreConfig instance.
        """
        section = data.get("store", data)
        return cls(
            concurrency=int(section.get("concurrency", DEFAULT_CONCURRENCY)),
            max_retries=int(section.get("max_retries", DEFAULT_MAX_RETRIES)),
        )

    def with_env(self) -> StoreConfig:
        """Return a copy with environment variable overrides applied."""
        updates: dict[str, int] = {}
        if concurrency := os.getenv("VCSTORE_CONCURRENCY"):
            updates["concurrency"] = int(concurrency)
        if max_retries := os.getenv("VCSTORE_MAX_RETRIES"):
            updates["max_retries"] = int(max_retries)
        return replace(self, **updates) if updates else self


class ConfigError(Exception):
    """Raised when store configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load store config at {path}: {reason}")


def load_config(config_path: Path) -> StoreConfig:
    """Load store configuration from a YAML file.

    Environment overrides are applied on top of the file values.

    Args:
        config_path: Path to the YAML file.

    Returns:
        StoreConfig instance.

    Raises:
        ConfigError: If config cannot be loaded.
    """
    if not config_path.exists():
        raise ConfigError(config_path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ConfigError(config_path, "Empty file")

        return StoreConfig.from_dict(dict(data)).with_env()
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(config_path, str(e)) from e
