"""Configuration settings for the gloss export job.

Settings resolve in three layers, later layers winning:
1. Dataclass defaults
2. A YAML config file (GLOSSEXPORT_CONFIG env var or --config)
3. GLOSSEXPORT_* environment variables
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

ENV_PREFIX = "GLOSSEXPORT_"
CONFIG_ENV_VAR = "GLOSSEXPORT_CONFIG"

DATA_DIR = Path.home() / ".glossexport"


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""

    pass


@dataclass
class Settings:
    """Export job settings."""

    # Relational store
    db_path: Path = field(default_factory=lambda: DATA_DIR / "glosses.db")

    # Remote content store
    api_url: str = "https://api.github.com"
    repo: str = ""
    branch: str | None = None
    base_path: str = ""
    document_name: str = "glosses.json"
    token: str | None = None
    token_path: Path = field(default_factory=lambda: DATA_DIR / "token")

    # Sync behaviour
    max_attempts: int = 3
    retry_delay: float = 1.0
    max_workers: int = 4
    request_timeout: float = 30.0
    run_timeout: float | None = None
    settle_events: bool = True

    def validate(self) -> None:
        """Check field values, raising ConfigError on the first problem."""
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.request_timeout <= 0:
            raise ConfigError(
                f"request_timeout must be positive, got {self.request_timeout}"
            )
        if self.run_timeout is not None and self.run_timeout <= 0:
            raise ConfigError(f"run_timeout must be positive, got {self.run_timeout}")
        if self.repo and self.repo.count("/") != 1:
            raise ConfigError(f"repo must look like 'owner/name', got {self.repo!r}")

    @classmethod
    def load(
        cls,
        config_path: Path | str | None = None,
        environ: dict[str, str] | None = None,
    ) -> "Settings":
        """Load settings from an optional YAML file and the environment.

        Args:
            config_path: YAML file. If None, GLOSSEXPORT_CONFIG is consulted.
            environ: Environment mapping (default: os.environ)

        Raises:
            ConfigError: If the file is unreadable or a value is invalid
        """
        environ = dict(os.environ if environ is None else environ)

        if config_path is None and environ.get(CONFIG_ENV_VAR):
            config_path = environ[CONFIG_ENV_VAR]

        values: dict[str, object] = {}
        if config_path is not None:
            values.update(_read_yaml(Path(config_path)))

        for f in fields(cls):
            env_value = environ.get(ENV_PREFIX + f.name.upper())
            if env_value is not None:
                values[f.name] = env_value

        settings = cls(**_coerce(values))
        settings.validate()
        return settings


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must be a YAML mapping: {path}")
    return raw


_PATH_FIELDS = {"db_path", "token_path"}
_INT_FIELDS = {"max_attempts", "max_workers"}
_FLOAT_FIELDS = {"request_timeout", "run_timeout", "retry_delay"}
_BOOL_FIELDS = {"settle_events"}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(values: dict[str, object]) -> dict[str, object]:
    """Convert raw YAML/env values to the types Settings expects."""
    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    result: dict[str, object] = {}
    for key, value in values.items():
        if value is None or key not in (
            _PATH_FIELDS | _INT_FIELDS | _FLOAT_FIELDS | _BOOL_FIELDS
        ):
            result[key] = value
            continue
        try:
            if key in _PATH_FIELDS:
                result[key] = Path(str(value)).expanduser()
            elif key in _INT_FIELDS:
                result[key] = int(value)
            elif key in _FLOAT_FIELDS:
                result[key] = float(value)
            else:
                result[key] = _to_bool(value)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {key}: {value!r}") from e
    return result


def _to_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(text)
