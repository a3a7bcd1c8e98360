"""
Configuration Loader (``claims_config.loader``).

Responsibility
--------------
Reads a YAML settings file, overlays environment variables and parses
the result into the frozen ``claims_config.schema`` dataclasses.  The
public entry point is ``claims_config.get_active_settings()``.

Invariants enforced
-------------------
* No silent default for the persistence provider: a missing provider is
  a ``ConfigError``.  The in-memory adapter is chosen only by naming it.
* Every value is type-checked; a wrong type is a ``ConfigError`` naming
  the offending key.
* Environment variables win over file values.

Failure modes
-------------
* Missing file, invalid YAML, non-mapping document, wrong value types or
  missing provider  -> ``ConfigError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml

from claims_config.schema import ClaimsSettings, LoggingSettings, PersistenceSettings

# Environment variable -> dotted settings key.
ENV_OVERRIDES: dict[str, str] = {
    "CLAIMS_PERSISTENCE_PROVIDER": "persistence.provider",
    "CLAIMS_DATABASE_URL": "persistence.database_url",
    "CLAIMS_MONGODB_URI": "persistence.mongodb.uri",
    "CLAIMS_MONGODB_DATABASE": "persistence.mongodb.database",
    "CLAIMS_ENVIRONMENT": "environment",
    "CLAIMS_LOG_LEVEL": "logging.level",
}


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""


def load_yaml_file(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Config file must contain a YAML mapping, got {type(data).__name__}"
        )
    return data


def apply_env_overrides(data: Mapping[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of ``data`` with non-empty environment values applied."""
    merged = _deep_copy(data)
    for env_name, dotted in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or not value.strip():
            continue
        node = merged
        *parents, leaf = dotted.split(".")
        for key in parents:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[leaf] = value.strip()
    return merged


def _deep_copy(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        k: _deep_copy(v) if isinstance(v, Mapping) else v
        for k, v in data.items()
    }


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _typed(section: Mapping[str, Any], key: str, kind: type, default: Any, path: str) -> Any:
    value = section.get(key, default)
    if value is None:
        return default
    if kind is int and isinstance(value, bool):
        raise ConfigError(f"'{path}.{key}' must be an integer")
    if not isinstance(value, kind):
        raise ConfigError(
            f"'{path}.{key}' must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def parse_settings(data: Mapping[str, Any]) -> ClaimsSettings:
    persistence = _section(data, "persistence")
    mongodb = _section(persistence, "mongodb")

    provider = persistence.get("provider")
    if provider is None or not str(provider).strip():
        raise ConfigError(
            "persistence.provider is required (set it in the config file or "
            "CLAIMS_PERSISTENCE_PROVIDER); there is no default adapter"
        )

    pool_size = _typed(persistence, "pool_size", int, None, "persistence")
    timeout = _typed(mongodb, "server_selection_timeout_ms", int, 5000, "persistence.mongodb")
    if pool_size is not None and pool_size < 1:
        raise ConfigError("'persistence.pool_size' must be positive")
    if timeout < 1:
        raise ConfigError("'persistence.mongodb.server_selection_timeout_ms' must be positive")

    recent_limit = _typed(_section(data, "dashboard"), "recent_limit", int, 5, "dashboard")
    if recent_limit < 1:
        raise ConfigError("'dashboard.recent_limit' must be positive")

    return ClaimsSettings(
        persistence=PersistenceSettings(
            provider=str(provider).strip().lower(),
            database_url=_typed(persistence, "database_url", str, None, "persistence"),
            echo=_typed(persistence, "echo", bool, False, "persistence"),
            create_schema=_typed(persistence, "create_schema", bool, True, "persistence"),
            pool_size=pool_size,
            mongodb_uri=_typed(mongodb, "uri", str, None, "persistence.mongodb"),
            mongodb_database=_typed(mongodb, "database", str, None, "persistence.mongodb"),
            server_selection_timeout_ms=timeout,
        ),
        logging=LoggingSettings(
            level=_typed(_section(data, "logging"), "level", str, "INFO", "logging").upper(),
        ),
        environment=_typed(data, "environment", str, "development", "settings"),
        dashboard_recent_limit=recent_limit,
        reference_prefix=_typed(data, "reference_prefix", str, "MR", "settings"),
    )
