"""
Persistence gateway and its adapters.

Only ``gateway`` and ``factory`` are imported eagerly; the adapters load
their drivers (SQLAlchemy, pymongo) when the factory selects them.
"""

from claims_kernel.db.factory import SUPPORTED_PROVIDERS, create_gateway
from claims_kernel.db.gateway import (
    ENTITY_SPECS,
    Between,
    EntityKind,
    EntitySpec,
    GatewayCapabilities,
    PersistenceGateway,
    Repository,
)

__all__ = [
    "ENTITY_SPECS",
    "SUPPORTED_PROVIDERS",
    "Between",
    "EntityKind",
    "EntitySpec",
    "GatewayCapabilities",
    "PersistenceGateway",
    "Repository",
    "create_gateway",
]
