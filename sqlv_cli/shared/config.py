"""Configuration loading utilities for the SQLite viewer CLI suite."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, MutableMapping

import yaml

from . import paths
from .exceptions import ConfigurationError

MIN_MAX_ROWS = 100
DEFAULT_MAX_DATABASE_BYTES = 200 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class StorageSettings:
    """Where persisted database images and session state live."""

    path: Path
    session_path: Path


@dataclass(frozen=True, slots=True)
class LimitSettings:
    """Result-size and load-size ceilings."""

    max_rows: int
    memory_optimizations: bool
    allow_large_files: bool
    max_database_bytes: int


@dataclass(frozen=True, slots=True)
class BrowseSettings:
    """Defaults for table browsing."""

    page_size: int


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Connection-level SQLite options."""

    foreign_keys: bool


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Top-level application configuration."""

    source_path: Path
    storage: StorageSettings
    limits: LimitSettings
    browse: BrowseSettings
    engine: EngineSettings

    def with_limits(self, **changes: Any) -> AppConfig:
        """Return a copy with selected limit settings replaced."""
        updates = {key: value for key, value in changes.items() if value is not None}
        if not updates:
            return self
        if "max_rows" in updates:
            updates["max_rows"] = max(MIN_MAX_ROWS, int(updates["max_rows"]))
        return replace(self, limits=replace(self.limits, **updates))


def _default_config(env: Mapping[str, str]) -> dict[str, Any]:
    return {
        "storage": {
            "path": str(paths.default_store_path(env=env)),
            "session_path": str(paths.default_session_path(env=env)),
        },
        "limits": {
            "max_rows": 1000,
            "memory_optimizations": True,
            "allow_large_files": False,
            "max_database_bytes": DEFAULT_MAX_DATABASE_BYTES,
        },
        "browse": {
            "page_size": 50,
        },
        "engine": {
            "foreign_keys": False,
        },
    }


ENV_OVERRIDE_SPEC: dict[str, tuple[str, type]] = {
    "storage.path": (paths.STORE_PATH_ENV, str),
    "storage.session_path": (paths.SESSION_FILE_ENV, str),
    "limits.max_rows": ("SQLV_MAX_ROWS", int),
    "limits.memory_optimizations": ("SQLV_MEMORY_OPTIMIZATIONS", bool),
    "limits.allow_large_files": ("SQLV_ALLOW_LARGE_FILES", bool),
    "limits.max_database_bytes": ("SQLV_MAX_DATABASE_BYTES", int),
    "browse.page_size": ("SQLV_PAGE_SIZE", int),
    "engine.foreign_keys": ("SQLV_FOREIGN_KEYS", bool),
}


def load_config(
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load configuration from defaults, YAML file, and env overrides."""
    env = dict(env or os.environ)
    resolved_config_path = _resolve_config_path(config_path, env)
    file_data = _load_yaml(resolved_config_path)
    defaults = _default_config(env)
    merged: dict[str, Any] = _deep_merge(defaults, file_data)
    merged = _apply_env_overrides(merged, env)
    return _build_config(merged, resolved_config_path)


def _resolve_config_path(
    config_path: str | Path | None, env: Mapping[str, str]
) -> Path:
    if config_path:
        return paths.resolve_path(config_path)
    return paths.default_config_path(env=env)


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
        if not isinstance(data, MutableMapping):
            raise ConfigurationError(f"Config file at {path} must define a mapping root object.")
        return dict(data)


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], Mapping) and isinstance(value, Mapping):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    config_copy = _deep_merge(config, {})
    for dotted_key, (env_key, expected_type) in ENV_OVERRIDE_SPEC.items():
        if env_key not in env:
            continue
        raw_value = env[env_key]
        try:
            value = _coerce_env_value(raw_value, expected_type)
        except ValueError as exc:
            raise ConfigurationError(
                f"Environment override {env_key} has invalid value '{raw_value}': {exc}"
            ) from exc
        _assign_nested(config_copy, dotted_key.split("."), value)
    return config_copy


def _coerce_env_value(raw: str, expected_type: type) -> Any:
    cleaned = raw.strip()
    if expected_type is bool:
        lowered = cleaned.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError("expected boolean (true/false)")
    if expected_type is int:
        return int(cleaned)
    return cleaned


def _assign_nested(target: MutableMapping[str, Any], keys: list[str], value: Any) -> None:
    current = target
    for key in keys[:-1]:
        if key not in current or not isinstance(current[key], MutableMapping):
            current[key] = {}
        current = current[key]  # type: ignore[assignment]
    current[keys[-1]] = value


def _build_config(data: Mapping[str, Any], source_path: Path) -> AppConfig:
    try:
        storage = StorageSettings(
            path=paths.resolve_path(data["storage"]["path"]),
            session_path=paths.resolve_path(data["storage"]["session_path"]),
        )
        limits_cfg = data["limits"]
        limits = LimitSettings(
            max_rows=max(MIN_MAX_ROWS, int(limits_cfg["max_rows"])),
            memory_optimizations=bool(limits_cfg["memory_optimizations"]),
            allow_large_files=bool(limits_cfg["allow_large_files"]),
            max_database_bytes=int(limits_cfg["max_database_bytes"]),
        )
        browse = BrowseSettings(page_size=int(data["browse"]["page_size"]))
        engine = EngineSettings(foreign_keys=bool(data["engine"]["foreign_keys"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration structure: {exc}") from exc

    if browse.page_size <= 0:
        raise ConfigurationError("browse.page_size must be a positive integer.")
    if limits.max_database_bytes <= 0:
        raise ConfigurationError("limits.max_database_bytes must be a positive integer.")

    return AppConfig(
        source_path=source_path,
        storage=storage,
        limits=limits,
        browse=browse,
        engine=engine,
    )
