"""
AuditRecorder -- append-only audit trail of every mutating action.

Responsibility:
    Appends one AuditLogEntry per mutation and answers read-only
    queries over the trail (by entity, by time window, by actor, or by
    an arbitrary ``AuditLogFilter``).

Architecture position:
    Kernel > Services -- called synchronously by every mutating service
    inside the same ``atomic`` block as the mutation it describes, so a
    failed audit write fails the mutation.

Invariants enforced:
    - Append-only: ``update`` and ``delete`` always raise
      ImmutableRecordError (the repository enforces the same rule for
      direct gateway callers).
    - Every entry carries a gateway-allocated ``seq``; entries with equal
      timestamps are ordered by it.
    - Reads are newest first.
    - ``changes`` is stored in JSON-safe form (UUID, Decimal, date and
      enum values become strings).

Failure modes:
    - ValidationError for malformed filters (unknown enum values,
      naive or inverted time window, negative limit).
    - Gateway errors propagate unchanged.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID, uuid4

from claims_kernel.db.gateway import Between, PersistenceGateway
from claims_kernel.domain.claims import AuditAction, AuditEntityType, AuditLogEntry
from claims_kernel.domain.clock import Clock, SystemClock
from claims_kernel.domain.requests import (
    AuditEntryRequest,
    AuditLogFilter,
    coerce_enum,
    validate_window,
)
from claims_kernel.exceptions import ImmutableRecordError
from claims_kernel.logging_config import get_logger

logger = get_logger("services.auditor")

AUDIT_SEQUENCE = "audit_log"

_NEWEST_FIRST = (("timestamp", True), ("seq", True))


def to_jsonable(value: Any) -> Any:
    """Convert a change payload value into plain JSON types."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value


class AuditRecorder:
    """
    The only writer of audit entries.

    Contract:
        ``record`` returns the stored entry, a frozen value object; no
        handle to a mutable stored record is ever exposed.

    Non-goals:
        - Does NOT decide which actions are audited; callers do.
    """

    def __init__(self, gateway: PersistenceGateway, clock: Clock | None = None):
        self._gateway = gateway
        self._clock = clock or SystemClock()

    def record(self, request: AuditEntryRequest) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=uuid4(),
            seq=self._gateway.next_sequence(AUDIT_SEQUENCE),
            entity_type=coerce_enum(AuditEntityType, request.entity_type, "entity_type"),
            entity_id=request.entity_id,
            action=coerce_enum(AuditAction, request.action, "action"),
            actor_id=request.actor_id,
            timestamp=self._clock.now(),
            changes=to_jsonable(dict(request.changes)),
            actor_email=request.actor_email,
            actor_role=request.actor_role,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
        )
        stored = self._gateway.audit_log.create(entry)
        logger.info(
            "audit_entry_recorded",
            extra={
                "seq": stored.seq,
                "entity_type": stored.entity_type.value,
                "entity_id": str(stored.entity_id),
                "audit_action": stored.action.value,
                "actor_id": str(stored.actor_id),
            },
        )
        return stored

    def update(self, entry_id: UUID, changes: Mapping[str, Any] | None = None) -> None:
        logger.warning("audit_mutation_rejected", extra={"entry_id": str(entry_id), "attempt": "update"})
        raise ImmutableRecordError("audit_log", entry_id, "audit entries are append-only")

    def delete(self, entry_id: UUID) -> None:
        logger.warning("audit_mutation_rejected", extra={"entry_id": str(entry_id), "attempt": "delete"})
        raise ImmutableRecordError("audit_log", entry_id, "audit entries are append-only")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_entity(
        self, entity_type: AuditEntityType | str, entity_id: UUID
    ) -> list[AuditLogEntry]:
        entity_type = coerce_enum(AuditEntityType, entity_type, "entity_type")
        return self._gateway.find_audit_entries_for_entity(entity_type, entity_id)

    def find_by_date_range(
        self, start: datetime | None, end: datetime | None
    ) -> list[AuditLogEntry]:
        """Entries with ``start <= timestamp <= end``, newest first."""
        validate_window(start, end)
        return self._gateway.find_audit_entries_between(start, end)

    def find_by_actor(self, actor_id: UUID) -> list[AuditLogEntry]:
        return self._gateway.audit_log.find_all({"actor_id": actor_id}, order_by=_NEWEST_FIRST)

    def query(self, audit_filter: AuditLogFilter) -> list[AuditLogEntry]:
        criteria: dict[str, Any] = {}
        if audit_filter.entity_type is not None:
            criteria["entity_type"] = coerce_enum(
                AuditEntityType, audit_filter.entity_type, "entity_type"
            )
        if audit_filter.entity_id is not None:
            criteria["entity_id"] = audit_filter.entity_id
        if audit_filter.action is not None:
            criteria["action"] = coerce_enum(AuditAction, audit_filter.action, "action")
        if audit_filter.actor_id is not None:
            criteria["actor_id"] = audit_filter.actor_id

        between = None
        if audit_filter.start is not None or audit_filter.end is not None:
            validate_window(audit_filter.start, audit_filter.end)
            between = Between("timestamp", audit_filter.start, audit_filter.end)

        return self._gateway.audit_log.find_all(
            criteria,
            between=between,
            order_by=_NEWEST_FIRST,
            limit=audit_filter.limit,
        )
