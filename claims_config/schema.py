"""
Configuration Schema (``claims_config.schema``).

Frozen dataclasses describing the runtime settings.  Instances are
produced only by ``claims_config.loader.parse_settings``; nothing else
constructs them from raw input.

``PersistenceSettings`` carries the adapter discriminator and the
connection parameters of every adapter.  Only the fields relevant to the
selected provider are read by ``claims_kernel.db.factory``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PersistenceSettings:
    provider: str
    database_url: str | None = None
    echo: bool = False
    create_schema: bool = True
    pool_size: int | None = None
    mongodb_uri: str | None = None
    mongodb_database: str | None = None
    server_selection_timeout_ms: int = 5000


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class ClaimsSettings:
    """Everything the runtime needs to start."""

    persistence: PersistenceSettings
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    environment: str = "development"
    dashboard_recent_limit: int = 5
    reference_prefix: str = "MR"
