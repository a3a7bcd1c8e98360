"""
Gateway factory -- picks the persistence adapter from configuration.

The provider discriminator is resolved at startup.  An unknown value
raises UnsupportedProviderError here, before any service is built, and
there is no fallback: the in-memory adapter is used only when the
configuration names it.
"""

from __future__ import annotations

from typing import Callable

from claims_kernel.db.gateway import PersistenceGateway
from claims_kernel.exceptions import UnsupportedProviderError, ValidationError
from claims_kernel.logging_config import get_logger

logger = get_logger("db.factory")


def _build_memory(settings) -> PersistenceGateway:
    from claims_kernel.db.memory import InMemoryGateway

    return InMemoryGateway()


def _build_sql(settings) -> PersistenceGateway:
    from claims_kernel.db.sql import SqlAlchemyGateway

    if not settings.database_url:
        raise ValidationError(
            f"provider '{settings.provider}' requires database_url", field="database_url"
        )
    return SqlAlchemyGateway(
        settings.database_url,
        echo=settings.echo,
        create_schema=settings.create_schema,
        pool_size=settings.pool_size,
    )


def _build_mongo(settings) -> PersistenceGateway:
    from claims_kernel.db.mongo import MongoGateway

    if not settings.mongodb_uri or not settings.mongodb_database:
        raise ValidationError(
            "provider 'mongodb' requires mongodb_uri and mongodb_database",
            field="mongodb_uri",
        )
    return MongoGateway(
        settings.mongodb_uri,
        settings.mongodb_database,
        server_selection_timeout_ms=settings.server_selection_timeout_ms,
    )


_BUILDERS: dict[str, Callable[..., PersistenceGateway]] = {
    "memory": _build_memory,
    "sqlalchemy": _build_sql,
    "postgresql": _build_sql,
    "sqlite": _build_sql,
    "mongodb": _build_mongo,
}

SUPPORTED_PROVIDERS: tuple[str, ...] = tuple(sorted(_BUILDERS))


def create_gateway(settings) -> PersistenceGateway:
    """Construct (but do not connect) the gateway named by ``settings.provider``.

    ``settings`` is a ``claims_config.PersistenceSettings`` or any object
    with the same attributes.
    """
    provider = (settings.provider or "").strip().lower()
    builder = _BUILDERS.get(provider)
    if builder is None:
        logger.error(
            "unsupported_persistence_provider",
            extra={"provider": settings.provider, "supported": SUPPORTED_PROVIDERS},
        )
        raise UnsupportedProviderError(str(settings.provider), SUPPORTED_PROVIDERS)
    gateway = builder(settings)
    logger.info(
        "gateway_created",
        extra={
            "provider": gateway.provider,
            "transactions": gateway.capabilities.transactions,
            "raw_query": gateway.capabilities.raw_query,
        },
    )
    return gateway
