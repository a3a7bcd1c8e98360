"""
PersistenceGateway -- storage-agnostic access to every claim entity.

Responsibility:
    Defines the one contract the workflow services depend on: a gateway
    with an explicit connect/disconnect lifecycle, capability flags, a
    monotonic sequence allocator and one ``Repository`` per entity kind
    offering create / find_by_id / find_all / update / delete / count.
    Concrete adapters (memory.py, sql.py, mongo.py) implement only the
    storage hooks; all contract checks live here so every adapter behaves
    the same.

Architecture position:
    Kernel > DB.  Services receive a gateway instance by injection
    (``runtime.py`` builds it once); nothing imports a module-level
    connection.

Invariants enforced:
    - Every operation on a disconnected gateway raises NotConnectedError;
      no empty result ever stands in for "not connected".
    - Immutable kinds (audit log, reviews, eligibility checks, expense
      validations, medical assessments, query messages) reject update and
      delete with ImmutableRecordError on every adapter.
    - A resolved comment cannot be marked unresolved.
    - Filter, range, ordering and change keys must name real fields of the
      entity; anything else is a ValidationError.
    - Optimistic writes: ``update(..., expected=...)`` applies only if the
      stored values still match, otherwise StaleStateError.
    - ``raw_query`` raises UnsupportedOperationError unless the adapter
      declares the capability.

Failure modes:
    - NotConnectedError, ValidationError, ImmutableRecordError,
      StaleStateError, DuplicateRecordError, UnsupportedOperationError.
    - Driver errors from the adapter propagate unchanged.
"""

from __future__ import annotations

import dataclasses
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Generic, Iterator, Mapping, Protocol, Sequence, TypeVar
from uuid import UUID

from claims_kernel.domain.claims import (
    ActorRole,
    Application,
    ApplicationDocument,
    ApplicationQuery,
    ApplicationStatus,
    AuditEntityType,
    AuditLogEntry,
    Comment,
    DocumentReview,
    DocumentType,
    EligibilityCheck,
    ExpenseItem,
    ExpenseValidation,
    MedicalAssessment,
    QueryMessage,
    QueryStatus,
    Review,
    ReviewAssignment,
    User,
)
from claims_kernel.exceptions import (
    ImmutableRecordError,
    NotConnectedError,
    UnsupportedOperationError,
    ValidationError,
)
from claims_kernel.logging_config import get_logger

logger = get_logger("db.gateway")

E = TypeVar("E")

Criteria = Mapping[str, Any]
OrderBy = Sequence[tuple[str, bool]]


class EntityKind(str, Enum):
    APPLICATION = "application"
    EXPENSE_ITEM = "expense_item"
    DOCUMENT = "document"
    ELIGIBILITY_CHECK = "eligibility_check"
    DOCUMENT_REVIEW = "document_review"
    COMMENT = "comment"
    REVIEW = "review"
    USER = "user"
    AUDIT_LOG = "audit_log"
    EXPENSE_VALIDATION = "expense_validation"
    MEDICAL_ASSESSMENT = "medical_assessment"
    ASSIGNMENT = "assignment"
    QUERY = "query"
    QUERY_MESSAGE = "query_message"


def _guard_comment_update(current: Comment, changes: Mapping[str, Any]) -> None:
    if current.is_resolved and "is_resolved" in changes and not changes["is_resolved"]:
        raise ImmutableRecordError(
            "comment", current.id, "resolved comments cannot be reopened"
        )


@dataclass(frozen=True)
class EntitySpec:
    """What the gateway needs to know about one entity kind."""

    kind: EntityKind
    dto_type: type
    immutable: bool = False
    unique_fields: tuple[str, ...] = ()
    update_guard: Callable[[Any, Mapping[str, Any]], None] | None = None

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(f.name for f in dataclasses.fields(self.dto_type))

    def check_fields(self, names: Any, usage: str) -> None:
        unknown = sorted(set(names) - self.field_names)
        if unknown:
            raise ValidationError(
                f"Unknown {self.kind.value} field(s) in {usage}: {', '.join(unknown)}",
                field=unknown[0],
            )


ENTITY_SPECS: dict[EntityKind, EntitySpec] = {
    EntityKind.APPLICATION: EntitySpec(
        EntityKind.APPLICATION, Application, unique_fields=("reference_number",),
    ),
    EntityKind.EXPENSE_ITEM: EntitySpec(EntityKind.EXPENSE_ITEM, ExpenseItem),
    EntityKind.DOCUMENT: EntitySpec(EntityKind.DOCUMENT, ApplicationDocument),
    EntityKind.ELIGIBILITY_CHECK: EntitySpec(
        EntityKind.ELIGIBILITY_CHECK, EligibilityCheck, immutable=True,
    ),
    EntityKind.DOCUMENT_REVIEW: EntitySpec(EntityKind.DOCUMENT_REVIEW, DocumentReview),
    EntityKind.COMMENT: EntitySpec(
        EntityKind.COMMENT, Comment, update_guard=_guard_comment_update,
    ),
    EntityKind.REVIEW: EntitySpec(EntityKind.REVIEW, Review, immutable=True),
    EntityKind.USER: EntitySpec(EntityKind.USER, User, unique_fields=("email",)),
    EntityKind.AUDIT_LOG: EntitySpec(EntityKind.AUDIT_LOG, AuditLogEntry, immutable=True),
    EntityKind.EXPENSE_VALIDATION: EntitySpec(
        EntityKind.EXPENSE_VALIDATION, ExpenseValidation, immutable=True,
    ),
    EntityKind.MEDICAL_ASSESSMENT: EntitySpec(
        EntityKind.MEDICAL_ASSESSMENT, MedicalAssessment, immutable=True,
    ),
    EntityKind.ASSIGNMENT: EntitySpec(EntityKind.ASSIGNMENT, ReviewAssignment),
    EntityKind.QUERY: EntitySpec(EntityKind.QUERY, ApplicationQuery),
    EntityKind.QUERY_MESSAGE: EntitySpec(
        EntityKind.QUERY_MESSAGE, QueryMessage, immutable=True,
    ),
}


@dataclass(frozen=True)
class GatewayCapabilities:
    """Capability flags callers branch on instead of guessing."""

    transactions: bool
    raw_query: bool


@dataclass(frozen=True)
class Between:
    """Inclusive range filter on one field."""

    field: str
    start: Any = None
    end: Any = None

    def validate(self) -> None:
        for name, bound in (("start", self.start), ("end", self.end)):
            if isinstance(bound, datetime) and bound.utcoffset() is None:
                raise ValidationError(
                    f"{self.field} range {name} must be timezone-aware",
                    field=self.field,
                    value=bound.isoformat(),
                )

    def contains(self, value: Any) -> bool:
        if value is None:
            return False
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


class RecordMapper(Protocol[E]):
    """One mapping per (entity, adapter): domain record <-> stored form."""

    def to_record(self, entity: E) -> Any: ...

    def from_record(self, record: Any) -> E: ...


# =========================================================================
# Repository contract
# =========================================================================


class Repository(ABC, Generic[E]):
    """
    CRUD over one entity kind.

    Contract:
        Public methods validate input and enforce the gateway's invariants,
        then delegate to the ``_``-prefixed storage hooks an adapter
        implements.  Hooks receive already-validated arguments.

    Non-goals:
        - Does NOT write audit entries; services do that.
        - Does NOT join across kinds.
    """

    def __init__(self, gateway: PersistenceGateway, spec: EntitySpec):
        self._gateway = gateway
        self.spec = spec

    @property
    def kind(self) -> EntityKind:
        return self.spec.kind

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def create(self, entity: E) -> E:
        self._gateway.require_connected(f"{self.kind.value}.create")
        if not isinstance(entity, self.spec.dto_type):
            raise ValidationError(
                f"{self.kind.value}.create expects {self.spec.dto_type.__name__}, "
                f"got {type(entity).__name__}"
            )
        return self._insert(entity)

    def find_by_id(self, entity_id: UUID) -> E | None:
        self._gateway.require_connected(f"{self.kind.value}.find_by_id")
        return self._get(entity_id)

    def find_all(
        self,
        criteria: Criteria | None = None,
        *,
        between: Between | None = None,
        order_by: OrderBy = (),
        limit: int | None = None,
    ) -> list[E]:
        self._gateway.require_connected(f"{self.kind.value}.find_all")
        criteria = dict(criteria or {})
        self.spec.check_fields(criteria, "filter")
        if between is not None:
            self.spec.check_fields([between.field], "range")
            between.validate()
        self.spec.check_fields([name for name, _ in order_by], "ordering")
        if limit is not None and limit < 0:
            raise ValidationError("limit must not be negative", field="limit", value=limit)
        return self._select(criteria, between, tuple(order_by), limit)

    def find_one(self, criteria: Criteria) -> E | None:
        found = self.find_all(criteria, limit=1)
        return found[0] if found else None

    def update(
        self,
        entity_id: UUID,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> E | None:
        """Apply ``changes``; returns None when the record does not exist.

        When ``expected`` is given, the write happens only if every listed
        field still holds the expected value (compare-and-set).
        """
        self._gateway.require_connected(f"{self.kind.value}.update")
        if self.spec.immutable:
            raise ImmutableRecordError(
                self.kind.value, entity_id, "records of this kind are append-only"
            )
        changes = dict(changes)
        if not changes:
            raise ValidationError("update requires at least one change")
        if "id" in changes:
            raise ValidationError("id cannot be changed", field="id")
        self.spec.check_fields(changes, "update")
        expected = dict(expected or {})
        self.spec.check_fields(expected, "expected state")
        if self.spec.update_guard is not None:
            current = self._get(entity_id)
            if current is None:
                return None
            self.spec.update_guard(current, changes)
        return self._update(entity_id, changes, expected)

    def delete(self, entity_id: UUID) -> bool:
        self._gateway.require_connected(f"{self.kind.value}.delete")
        if self.spec.immutable:
            raise ImmutableRecordError(
                self.kind.value, entity_id, "records of this kind are append-only"
            )
        return self._remove(entity_id)

    def count(self, criteria: Criteria | None = None) -> int:
        self._gateway.require_connected(f"{self.kind.value}.count")
        criteria = dict(criteria or {})
        self.spec.check_fields(criteria, "filter")
        return self._count(criteria)

    # ------------------------------------------------------------------
    # Compensation (non-transactional adapters only)
    # ------------------------------------------------------------------

    def discard(self, entity_id: UUID) -> bool:
        """Remove a record whose creating operation failed.

        Bypasses the append-only rule for review records, which never
        became visible as part of a completed operation.  Audit entries
        are never discarded.
        """
        self._gateway.require_connected(f"{self.kind.value}.discard")
        if self.kind == EntityKind.AUDIT_LOG:
            raise ImmutableRecordError(
                self.kind.value, entity_id, "audit entries are never removed"
            )
        return self._remove(entity_id)

    def restore(self, snapshot: E, *, expected: Mapping[str, Any] | None = None) -> E | None:
        """Put back a snapshot taken before a failed operation updated it.

        With ``expected``, the snapshot is written only while the record
        still holds those values; a later writer's change raises
        StaleStateError instead of being overwritten.
        """
        self._gateway.require_connected(f"{self.kind.value}.restore")
        if self.spec.immutable:
            raise ImmutableRecordError(
                self.kind.value, snapshot.id, "records of this kind are append-only"
            )
        expected = dict(expected or {})
        self.spec.check_fields(expected, "expected state")
        values = {
            f.name: getattr(snapshot, f.name)
            for f in dataclasses.fields(snapshot)
            if f.name != "id"
        }
        return self._update(snapshot.id, values, expected)

    # ------------------------------------------------------------------
    # Storage hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _insert(self, entity: E) -> E: ...

    @abstractmethod
    def _get(self, entity_id: UUID) -> E | None: ...

    @abstractmethod
    def _select(
        self,
        criteria: dict[str, Any],
        between: Between | None,
        order_by: tuple[tuple[str, bool], ...],
        limit: int | None,
    ) -> list[E]: ...

    @abstractmethod
    def _update(
        self, entity_id: UUID, changes: dict[str, Any], expected: dict[str, Any]
    ) -> E | None: ...

    @abstractmethod
    def _remove(self, entity_id: UUID) -> bool: ...

    @abstractmethod
    def _count(self, criteria: dict[str, Any]) -> int: ...


# =========================================================================
# Gateway
# =========================================================================

_NEWEST_FIRST: OrderBy = (("timestamp", True), ("seq", True))


class PersistenceGateway(ABC):
    """
    Facade over one storage engine.

    Contract:
        Constructed once per process by ``db.factory.create_gateway`` and
        injected into services.  ``connect``/``disconnect`` are idempotent.

    Guarantees:
        - Repositories are created lazily and cached per kind.
        - ``capabilities`` is fixed for the adapter's lifetime.
    """

    provider: str = "abstract"
    capabilities: GatewayCapabilities = GatewayCapabilities(transactions=False, raw_query=False)

    def __init__(self) -> None:
        self._connected = False
        self._lifecycle_lock = threading.RLock()
        self._repositories: dict[EntityKind, Repository] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        with self._lifecycle_lock:
            if self._connected:
                return
            self._open()
            self._connected = True
        logger.info("gateway_connected", extra={"provider": self.provider})

    def disconnect(self) -> None:
        with self._lifecycle_lock:
            if not self._connected:
                return
            self._connected = False
            self._close()
        logger.info("gateway_disconnected", extra={"provider": self.provider})

    def is_connected(self) -> bool:
        return self._connected

    def require_connected(self, operation: str) -> None:
        if not self._connected:
            raise NotConnectedError(self.provider, operation)

    def __enter__(self) -> PersistenceGateway:
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.disconnect()

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group gateway calls into one atomic unit (adapters that support it)."""
        self.require_connected("transaction")
        if not self.capabilities.transactions:
            raise UnsupportedOperationError(self.provider, "transaction")
        with self._transaction():
            yield

    def raw_query(self, statement: str, params: Mapping[str, Any] | None = None) -> list[dict]:
        """Escape hatch for ad-hoc queries.  Core services never call it."""
        self.require_connected("raw_query")
        if not self.capabilities.raw_query:
            raise UnsupportedOperationError(self.provider, "raw_query")
        return self._raw_query(statement, dict(params or {}))

    def next_sequence(self, name: str) -> int:
        """Strictly increasing positive integer per ``name``."""
        self.require_connected("next_sequence")
        if not name:
            raise ValidationError("sequence name is required", field="name")
        return self._next_sequence(name)

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def repository(self, kind: EntityKind) -> Repository:
        with self._lifecycle_lock:
            repo = self._repositories.get(kind)
            if repo is None:
                repo = self._make_repository(ENTITY_SPECS[kind])
                self._repositories[kind] = repo
            return repo

    @property
    def applications(self) -> Repository[Application]:
        return self.repository(EntityKind.APPLICATION)

    @property
    def expense_items(self) -> Repository[ExpenseItem]:
        return self.repository(EntityKind.EXPENSE_ITEM)

    @property
    def documents(self) -> Repository[ApplicationDocument]:
        return self.repository(EntityKind.DOCUMENT)

    @property
    def eligibility_checks(self) -> Repository[EligibilityCheck]:
        return self.repository(EntityKind.ELIGIBILITY_CHECK)

    @property
    def document_reviews(self) -> Repository[DocumentReview]:
        return self.repository(EntityKind.DOCUMENT_REVIEW)

    @property
    def comments(self) -> Repository[Comment]:
        return self.repository(EntityKind.COMMENT)

    @property
    def reviews(self) -> Repository[Review]:
        return self.repository(EntityKind.REVIEW)

    @property
    def users(self) -> Repository[User]:
        return self.repository(EntityKind.USER)

    @property
    def audit_log(self) -> Repository[AuditLogEntry]:
        return self.repository(EntityKind.AUDIT_LOG)

    @property
    def expense_validations(self) -> Repository[ExpenseValidation]:
        return self.repository(EntityKind.EXPENSE_VALIDATION)

    @property
    def medical_assessments(self) -> Repository[MedicalAssessment]:
        return self.repository(EntityKind.MEDICAL_ASSESSMENT)

    @property
    def assignments(self) -> Repository[ReviewAssignment]:
        return self.repository(EntityKind.ASSIGNMENT)

    @property
    def queries(self) -> Repository[ApplicationQuery]:
        return self.repository(EntityKind.QUERY)

    @property
    def query_messages(self) -> Repository[QueryMessage]:
        return self.repository(EntityKind.QUERY_MESSAGE)

    # ------------------------------------------------------------------
    # Entity-specific finders
    # ------------------------------------------------------------------

    def find_applications_by_status(self, status: ApplicationStatus) -> list[Application]:
        return self.applications.find_all(
            {"status": status}, order_by=(("submitted_at", True),)
        )

    def find_applications_by_employee(self, employee_id: str) -> list[Application]:
        return self.applications.find_all(
            {"employee_id": employee_id}, order_by=(("submitted_at", True),)
        )

    def find_application_by_reference(self, reference_number: str) -> Application | None:
        return self.applications.find_one({"reference_number": reference_number})

    def find_applications_submitted_between(
        self, start: datetime | None, end: datetime | None
    ) -> list[Application]:
        return self.applications.find_all(
            between=Between("submitted_at", start, end),
            order_by=(("submitted_at", True),),
        )

    def find_expense_items(self, application_id: UUID) -> list[ExpenseItem]:
        return self.expense_items.find_all(
            {"application_id": application_id}, order_by=(("bill_date", False),)
        )

    def find_documents(
        self, application_id: UUID, document_type: DocumentType | None = None
    ) -> list[ApplicationDocument]:
        criteria: dict[str, Any] = {"application_id": application_id}
        if document_type is not None:
            criteria["document_type"] = document_type
        return self.documents.find_all(criteria, order_by=(("uploaded_at", False),))

    def find_audit_entries_for_entity(
        self, entity_type: AuditEntityType, entity_id: UUID
    ) -> list[AuditLogEntry]:
        return self.audit_log.find_all(
            {"entity_type": entity_type, "entity_id": entity_id},
            order_by=_NEWEST_FIRST,
        )

    def find_audit_entries_between(
        self, start: datetime | None, end: datetime | None
    ) -> list[AuditLogEntry]:
        return self.audit_log.find_all(
            between=Between("timestamp", start, end), order_by=_NEWEST_FIRST
        )

    def find_users_by_role(self, role: ActorRole) -> list[User]:
        return self.users.find_all({"role": role}, order_by=(("created_at", False),))

    def find_user_by_email(self, email: str) -> User | None:
        return self.users.find_one({"email": email})

    def find_queries(
        self,
        application_id: UUID | None = None,
        status: QueryStatus | None = None,
        created_by_role: ActorRole | None = None,
    ) -> list[ApplicationQuery]:
        """Most recently active first."""
        criteria: dict[str, Any] = {}
        if application_id is not None:
            criteria["application_id"] = application_id
        if status is not None:
            criteria["status"] = status
        if created_by_role is not None:
            criteria["created_by_role"] = created_by_role
        return self.queries.find_all(
            criteria, order_by=(("last_message_at", True), ("seq", True))
        )

    def find_query_messages(self, query_id: UUID) -> list[QueryMessage]:
        return self.query_messages.find_all(
            {"query_id": query_id}, order_by=(("created_at", False), ("seq", False))
        )

    def find_assignments_for_reviewer(self, reviewer_id: UUID) -> list[ReviewAssignment]:
        return self.assignments.find_all(
            {"assigned_to": reviewer_id}, order_by=(("assigned_at", False), ("seq", False))
        )

    # ------------------------------------------------------------------
    # Adapter hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _open(self) -> None: ...

    @abstractmethod
    def _close(self) -> None: ...

    @abstractmethod
    def _make_repository(self, spec: EntitySpec) -> Repository: ...

    @abstractmethod
    def _next_sequence(self, name: str) -> int: ...

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        raise UnsupportedOperationError(self.provider, "transaction")
        yield  # pragma: no cover

    def _raw_query(self, statement: str, params: dict[str, Any]) -> list[dict]:
        raise UnsupportedOperationError(self.provider, "raw_query")
