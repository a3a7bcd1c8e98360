"""
claims_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_active_settings()`` is the only way components obtain
    configuration.  It reads an optional YAML file, loads a ``.env`` file
    into the process environment, applies ``CLAIMS_*`` environment
    overrides and returns a frozen ``ClaimsSettings``.

Architecture position:
    Configuration sits beside ``claims_kernel``; the kernel never imports
    this package.  ``claims_kernel.runtime`` receives the settings object
    from the caller.

Failure modes:
    - ``ConfigError`` for a missing file, invalid YAML, wrong value types
      or a missing persistence provider.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from claims_config.loader import (
    ENV_OVERRIDES,
    ConfigError,
    apply_env_overrides,
    load_yaml_file,
    parse_settings,
)
from claims_config.schema import ClaimsSettings, LoggingSettings, PersistenceSettings

_logger = logging.getLogger("claims_kernel.config")

CONFIG_FILE_ENV = "CLAIMS_CONFIG_FILE"


def get_active_settings(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ClaimsSettings:
    """Resolve the active settings.

    Args:
        config_path: YAML file to read.  Defaults to ``$CLAIMS_CONFIG_FILE``
            when set; otherwise settings come from the environment only.
        environ: Environment mapping to read overrides from.  When omitted,
            ``.env`` is loaded into ``os.environ`` first and ``os.environ``
            is used.

    Raises:
        ConfigError: the settings are incomplete or malformed.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    path = config_path or environ.get(CONFIG_FILE_ENV) or None
    data = load_yaml_file(path) if path else {}
    settings = parse_settings(apply_env_overrides(data, environ))

    _logger.info(
        "claims_settings_loaded",
        extra={
            "config_file": str(path) if path else None,
            "provider": settings.persistence.provider,
            "environment": settings.environment,
        },
    )
    return settings


__all__ = [
    "CONFIG_FILE_ENV",
    "ClaimsSettings",
    "ConfigError",
    "ENV_OVERRIDES",
    "LoggingSettings",
    "PersistenceSettings",
    "get_active_settings",
]
