"""
In-memory persistence adapter.

Selected only by the ``memory`` provider discriminator and logged at
WARNING level whenever it is constructed or connected, so a deployment can
never end up on it by accident.  Records are the frozen domain objects
themselves; a single re-entrant lock serialises every operation, which
makes the compare-and-set in ``_update`` atomic across threads.

No transactions: multi-record operations rely on compensating cleanup
(see ``services/atomic.py``).
"""

from __future__ import annotations

import dataclasses
import threading
from typing import Any
from uuid import UUID

from claims_kernel.db.gateway import (
    Between,
    EntitySpec,
    GatewayCapabilities,
    PersistenceGateway,
    Repository,
)
from claims_kernel.exceptions import DuplicateRecordError, StaleStateError
from claims_kernel.logging_config import get_logger

logger = get_logger("db.memory")


class _IdentityMapper:
    """Memory mapping: frozen records are stored as-is."""

    def to_record(self, entity: Any) -> Any:
        return entity

    def from_record(self, record: Any) -> Any:
        return record


def _sort_key(value: Any) -> tuple[bool, Any]:
    return (value is not None, value)


class InMemoryRepository(Repository):
    def __init__(
        self,
        gateway: PersistenceGateway,
        spec: EntitySpec,
        lock: threading.RLock,
    ):
        super().__init__(gateway, spec)
        self._lock = lock
        self._rows: dict[UUID, Any] = {}
        self._mapper = _IdentityMapper()

    def _check_unique(self, entity: Any, ignore_id: UUID | None = None) -> None:
        for name in self.spec.unique_fields:
            value = getattr(entity, name)
            for row in self._rows.values():
                if row.id != ignore_id and getattr(row, name) == value:
                    raise DuplicateRecordError(self.kind.value, name, value)

    def _insert(self, entity: Any) -> Any:
        with self._lock:
            if entity.id in self._rows:
                raise DuplicateRecordError(self.kind.value, "id", entity.id)
            self._check_unique(entity)
            self._rows[entity.id] = self._mapper.to_record(entity)
            return entity

    def _get(self, entity_id: UUID) -> Any:
        with self._lock:
            row = self._rows.get(entity_id)
            return None if row is None else self._mapper.from_record(row)

    def _matching(self, criteria: dict[str, Any], between: Between | None) -> list[Any]:
        rows = []
        for row in self._rows.values():
            if any(getattr(row, k) != v for k, v in criteria.items()):
                continue
            if between is not None and not between.contains(getattr(row, between.field)):
                continue
            rows.append(row)
        return rows

    def _select(self, criteria, between, order_by, limit):
        with self._lock:
            rows = self._matching(criteria, between)
        # Stable multi-key sort: apply the least significant key first.
        for name, descending in reversed(order_by):
            rows.sort(key=lambda r: _sort_key(getattr(r, name)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [self._mapper.from_record(r) for r in rows]

    def _update(self, entity_id, changes, expected):
        with self._lock:
            current = self._rows.get(entity_id)
            if current is None:
                return None
            for name, value in expected.items():
                actual = getattr(current, name)
                if actual != value:
                    raise StaleStateError(self.kind.value, entity_id, value, actual)
            updated = dataclasses.replace(current, **changes)
            if any(name in changes for name in self.spec.unique_fields):
                self._check_unique(updated, ignore_id=entity_id)
            self._rows[entity_id] = self._mapper.to_record(updated)
            return updated

    def _remove(self, entity_id):
        with self._lock:
            return self._rows.pop(entity_id, None) is not None

    def _count(self, criteria):
        with self._lock:
            return len(self._matching(criteria, None))


class InMemoryGateway(PersistenceGateway):
    """Process-local gateway for tests, demos and local development."""

    provider = "memory"
    capabilities = GatewayCapabilities(transactions=False, raw_query=False)

    def __init__(self) -> None:
        super().__init__()
        self._data_lock = threading.RLock()
        self._sequences: dict[str, int] = {}
        logger.warning(
            "in_memory_gateway_selected",
            extra={"provider": self.provider, "durable": False},
        )

    def _open(self) -> None:
        logger.warning("in_memory_gateway_connected", extra={"provider": self.provider})

    def _close(self) -> None:
        # Data survives disconnect/connect within the process.
        pass

    def _make_repository(self, spec: EntitySpec) -> Repository:
        return InMemoryRepository(self, spec, self._data_lock)

    def _next_sequence(self, name: str) -> int:
        with self._data_lock:
            value = self._sequences.get(name, 0) + 1
            self._sequences[name] = value
            return value
