"""Configuration management for the journal service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

ENV_PREFIX = "JOURNAL_"

# Settings field name -> (environment suffix, parser)
_ENV_FIELDS = {
    "database_path": ("DB_PATH", str),
    "token_secret": ("TOKEN_SECRET", str),
    "token_ttl_seconds": ("TOKEN_TTL_SECONDS", int),
    "token_algorithm": ("TOKEN_ALGORITHM", str),
    "argon2_time_cost": ("ARGON2_TIME_COST", int),
    "argon2_memory_cost": ("ARGON2_MEMORY_COST", int),
    "argon2_parallelism": ("ARGON2_PARALLELISM", int),
    "max_page_size": ("MAX_PAGE_SIZE", int),
    "default_page_size": ("DEFAULT_PAGE_SIZE", int),
    "storage_retry_attempts": ("STORAGE_RETRY_ATTEMPTS", int),
    "storage_retry_delay": ("STORAGE_RETRY_DELAY", float),
}


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, loaded once at startup and never mutated."""

    token_secret: str
    database_path: Optional[str] = None
    token_ttl_seconds: int = 24 * 60 * 60
    token_algorithm: str = "HS256"
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 64 * 1024
    argon2_parallelism: int = 4
    max_page_size: int = 100
    default_page_size: int = 20
    storage_retry_attempts: int = 3
    storage_retry_delay: float = 0.05

    def __post_init__(self) -> None:
        if not self.token_secret or not self.token_secret.strip():
            raise ValueError("A token signing secret must be configured (JOURNAL_TOKEN_SECRET)")
        if self.token_ttl_seconds <= 0:
            raise ValueError("Token TTL must be a positive number of seconds")
        if self.max_page_size <= 0 or self.default_page_size <= 0:
            raise ValueError("Search page sizes must be positive")
        if self.default_page_size > self.max_page_size:
            raise ValueError("Default page size must not exceed the maximum page size")
        if self.storage_retry_attempts < 1:
            raise ValueError("At least one storage attempt is required")

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from raw dictionary data such as a parsed YAML file."""
        if "token_secret" not in data:
            raise ValueError("Missing required configuration field: token_secret")
        values: Dict[str, object] = {}
        for name, (_, parser) in _ENV_FIELDS.items():
            if data.get(name) is not None:
                values[name] = parser(data[name])
        return Settings(**values)  # type: ignore[arg-type]


def _read_config_file(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return raw


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings from an optional YAML file overlaid with ``JOURNAL_*`` variables."""

    env = os.environ if environ is None else environ
    data: Dict[str, object] = {}

    config_file = env.get(f"{ENV_PREFIX}CONFIG")
    if config_file:
        data.update(_read_config_file(resolve_config_path(config_file)))

    for name, (suffix, parser) in _ENV_FIELDS.items():
        raw = env.get(f"{ENV_PREFIX}{suffix}")
        if raw is None or raw.strip() == "":
            continue
        try:
            data[name] = parser(raw.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid value for {ENV_PREFIX}{suffix}: {raw!r}") from exc

    if not data.get("token_secret"):
        raise ValueError("A token signing secret must be configured (JOURNAL_TOKEN_SECRET)")
    return Settings.from_dict(data)


def resolve_config_path(env_value: str) -> Path:
    """Resolve the path to the YAML configuration file."""
    return Path(env_value).expanduser().resolve(strict=False)


def with_overrides(settings: Settings, **changes: object) -> Settings:
    """Return a copy of ``settings`` with ``changes`` applied and re-validated."""
    return replace(settings, **changes)


__all__ = ["Settings", "load_settings", "resolve_config_path", "with_overrides"]
