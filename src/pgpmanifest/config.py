"""
Configuration for message composition and the CLI.

Supports:
- Built-in defaults
- YAML file configuration
- Environment variable overrides
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from pgpmanifest.manifest import SemanticVersion

DEFAULT_NOTICE_URL = "http://example.org/#id"

ENV_PREFIX = "PGPMANIFEST_"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Settings:
    """
    Settings for composing messages.

    - notice_url: link placed in the HTML/plain-text notices for clients
      that cannot read manifests
    - token_length: length of generated message ids, boundaries and part ids
    - manifest_version: schema version written into new manifests
    - log_level: level used by the CLI when configuring logging
    """

    notice_url: str = DEFAULT_NOTICE_URL
    token_length: int = 16
    manifest_version: str = "1.0.0"
    log_level: str = "WARNING"

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.token_length < 8:
            raise ValueError(f"token_length must be >= 8, got {self.token_length}")

        # Raises ValueError on bad format
        SemanticVersion.parse(self.manifest_version)

        self.log_level = self.log_level.upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_LOG_LEVELS}, got {self.log_level}")

    @property
    def version(self) -> SemanticVersion:
        return SemanticVersion.parse(self.manifest_version)

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @staticmethod
    def _read_yaml(path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")
        return data

    @classmethod
    def from_yaml(cls, path: Path) -> Settings:
        """Load settings from a YAML mapping."""
        return cls.from_dict(cls._read_yaml(path))

    @staticmethod
    def env_overrides() -> dict[str, Any]:
        """
        Read overrides from environment variables.

        Environment variables:
            PGPMANIFEST_NOTICE_URL: Notice link
            PGPMANIFEST_TOKEN_LENGTH: Length of generated tokens
            PGPMANIFEST_LOG_LEVEL: CLI log level
        """
        overrides: dict[str, Any] = {}
        if url := os.getenv(f"{ENV_PREFIX}NOTICE_URL"):
            overrides["notice_url"] = url
        if length := os.getenv(f"{ENV_PREFIX}TOKEN_LENGTH"):
            overrides["token_length"] = int(length)
        if level := os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
            overrides["log_level"] = level
        return overrides

    @classmethod
    def from_env(cls) -> Settings:
        """Create settings from defaults plus environment variables."""
        return cls(**cls.env_overrides())

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """Defaults, then the YAML file (if given), then the environment."""
        data: dict[str, Any] = {}
        if path is not None:
            data.update(cls._read_yaml(path))
        data.update(cls.env_overrides())
        return cls.from_dict(data)
