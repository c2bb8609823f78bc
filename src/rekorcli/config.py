"""Configuration for the upload command.

Values are layered, lowest precedence first:
- Built-in defaults
- YAML file (``--config``)
- Environment variables (``REKOR_*``)
- Command-line flags
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from rekorcli.errors import ConfigError
from rekorcli.fetcher import DEFAULT_MAX_ARTIFACT_BYTES
from rekorcli.submitter import add_url
from rekorcli.transport import DEFAULT_TIMEOUT

DEFAULT_REKOR_SERVER = "http://localhost:3000"

# Environment variable for each field
ENV_VARS = {
    "rekor_server": "REKOR_SERVER",
    "artifact_url": "REKOR_ARTIFACT_URL",
    "signature": "REKOR_SIGNATURE",
    "public_key": "REKOR_PUBLIC_KEY",
    "timeout": "REKOR_TIMEOUT",
    "fetch_timeout": "REKOR_FETCH_TIMEOUT",
    "max_artifact_bytes": "REKOR_MAX_ARTIFACT_BYTES",
}

# Flag-style spellings accepted in YAML files
_ALIASES = {
    "rekor-server": "rekor_server",
    "artifact-url": "artifact_url",
    "public-key": "public_key",
    "fetch-timeout": "fetch_timeout",
    "max-artifact-bytes": "max_artifact_bytes",
}

_FLOAT_FIELDS = ("timeout", "fetch_timeout")
_INT_FIELDS = ("max_artifact_bytes",)


@dataclass(frozen=True)
class UploadConfig:
    """Inputs and limits for one upload run."""

    rekor_server: str = DEFAULT_REKOR_SERVER
    artifact_url: str | None = None
    signature: str | None = None
    public_key: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    fetch_timeout: float = DEFAULT_TIMEOUT
    max_artifact_bytes: int = DEFAULT_MAX_ARTIFACT_BYTES

    def __post_init__(self):
        """Validate limits after initialization."""
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.fetch_timeout <= 0:
            raise ValueError(f"fetch_timeout must be > 0, got {self.fetch_timeout}")
        if self.max_artifact_bytes <= 0:
            raise ValueError(f"max_artifact_bytes must be > 0, got {self.max_artifact_bytes}")
        if not self.rekor_server:
            raise ValueError("rekor_server must not be empty")

    @property
    def endpoint(self) -> str:
        """Full URL of the add endpoint."""
        return add_url(self.rekor_server)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: UploadConfig | None = None) -> UploadConfig:
        """Create configuration from a dictionary (e.g., YAML).

        Unknown keys are ignored. Keys may use flag spelling (``public-key``).
        """
        values: dict[str, Any] = {}
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name in known and value is not None:
                values[name] = value
        return (base or cls()).merged(**values)

    @classmethod
    def from_env(cls, base: UploadConfig | None = None,
                 environ: dict[str, str] | None = None) -> UploadConfig:
        """Create configuration from ``REKOR_*`` environment variables."""
        env = os.environ if environ is None else environ
        values = {name: env[var] for name, var in ENV_VARS.items() if env.get(var)}
        return (base or cls()).merged(**values)

    @classmethod
    def from_yaml(cls, path: Path, base: UploadConfig | None = None) -> UploadConfig:
        """Create configuration from a YAML file."""
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data, base=base)

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> UploadConfig:
        """Layer defaults, YAML file, environment and explicit overrides."""
        config = cls()
        if config_path is not None:
            config = cls.from_yaml(config_path, base=config)
        config = cls.from_env(base=config)
        return config.merged(**overrides)

    def merged(self, **values: Any) -> UploadConfig:
        """Return a copy with non-None ``values`` applied and coerced."""
        changes = {k: v for k, v in values.items() if v is not None}
        try:
            for name in _FLOAT_FIELDS:
                if name in changes:
                    changes[name] = float(changes[name])
            for name in _INT_FIELDS:
                if name in changes:
                    changes[name] = int(changes[name])
            for name in ("rekor_server", "artifact_url", "signature", "public_key"):
                if name in changes:
                    changes[name] = str(changes[name])
            return replace(self, **changes)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def require_inputs(self) -> None:
        """Check that every input of an upload is set.

        Raises:
            ConfigError: Naming each missing input
        """
        missing = [
            flag
            for flag, value in (
                ("--artifact-url", self.artifact_url),
                ("--signature", self.signature),
                ("--public-key", self.public_key),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required input(s): {', '.join(missing)}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)
