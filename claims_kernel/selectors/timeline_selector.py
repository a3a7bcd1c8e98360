"""
Module: claims_kernel.selectors.timeline_selector
Responsibility: Chronological review history of one application, built
    from the audit entries of the application and every record it still
    owns (items, documents, review records, assignments, query threads).
Architecture position: Kernel > Selectors.  Reads through the injected
    PersistenceGateway; MUST NOT import from services/.

Invariants enforced:
    - Never writes.
    - Entries are ordered oldest first by timestamp, then audit sequence.
    - Status-bearing entries expose the old and new status they recorded.

Failure modes:
    - NotFoundError when the application does not exist.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from claims_kernel.db.gateway import PersistenceGateway
from claims_kernel.domain.claims import (
    ActorRole,
    AuditAction,
    AuditEntityType,
    AuditLogEntry,
)
from claims_kernel.exceptions import NotFoundError
from claims_kernel.logging_config import get_logger

logger = get_logger("selectors.timeline")


@dataclass(frozen=True)
class TimelineEntry:
    timestamp: datetime
    seq: int
    entity_type: AuditEntityType
    entity_id: UUID
    action: AuditAction
    actor_id: UUID
    description: str
    actor_role: ActorRole | None = None
    previous_status: str | None = None
    new_status: str | None = None


def _describe(entry: AuditLogEntry) -> str:
    label = entry.entity_type.value.replace("_", " ")
    changes = entry.changes
    if "old_status" in changes and "new_status" in changes:
        return f"{label} {changes['old_status']} -> {changes['new_status']}"
    return f"{label} {entry.action.value}"


def to_timeline_entry(entry: AuditLogEntry) -> TimelineEntry:
    return TimelineEntry(
        timestamp=entry.timestamp,
        seq=entry.seq,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        action=entry.action,
        actor_id=entry.actor_id,
        description=_describe(entry),
        actor_role=entry.actor_role,
        previous_status=entry.changes.get("old_status"),
        new_status=entry.changes.get("new_status"),
    )


class ReviewTimeline:
    """Read-only history view over the audit trail."""

    def __init__(self, gateway: PersistenceGateway):
        self._gateway = gateway

    def _owned_records(self, application_id: UUID) -> Iterable[tuple[AuditEntityType, Any]]:
        gw = self._gateway
        criteria = {"application_id": application_id}
        yield AuditEntityType.APPLICATION, application_id
        sources = (
            (AuditEntityType.EXPENSE_ITEM, gw.expense_items),
            (AuditEntityType.DOCUMENT, gw.documents),
            (AuditEntityType.ELIGIBILITY_CHECK, gw.eligibility_checks),
            (AuditEntityType.DOCUMENT_REVIEW, gw.document_reviews),
            (AuditEntityType.COMMENT, gw.comments),
            (AuditEntityType.REVIEW, gw.reviews),
            (AuditEntityType.EXPENSE_VALIDATION, gw.expense_validations),
            (AuditEntityType.MEDICAL_ASSESSMENT, gw.medical_assessments),
            (AuditEntityType.ASSIGNMENT, gw.assignments),
        )
        for entity_type, repository in sources:
            for record in repository.find_all(criteria):
                yield entity_type, record.id
        for query in gw.queries.find_all(criteria):
            yield AuditEntityType.QUERY, query.id
            for message in gw.find_query_messages(query.id):
                yield AuditEntityType.QUERY_MESSAGE, message.id

    def for_application(self, application_id: UUID) -> list[TimelineEntry]:
        if self._gateway.applications.find_by_id(application_id) is None:
            raise NotFoundError("application", application_id)

        entries: list[AuditLogEntry] = []
        for entity_type, entity_id in self._owned_records(application_id):
            entries.extend(self._gateway.find_audit_entries_for_entity(entity_type, entity_id))
        entries.sort(key=lambda e: (e.timestamp, e.seq))

        logger.debug(
            "timeline_built",
            extra={"application_id": str(application_id), "entries": len(entries)},
        )
        return [to_timeline_entry(e) for e in entries]
