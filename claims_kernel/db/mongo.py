"""
MongoDB persistence adapter (pymongo).

Responsibility:
    Implements the gateway over a MongoDB database.  Each entity kind has
    its own collection and its own ``DocumentMapper`` describing how the
    domain record's fields are encoded as BSON.

Architecture position:
    Kernel > DB.  Owns its ``MongoClient``; the client factory is
    injectable so unit tests can supply a double.

Invariants enforced:
    - Identity is stored as ``_id`` (the UUID string).
    - Money is stored as Decimal128, dates as UTC midnight datetimes.
    - Compare-and-set updates use a single ``find_one_and_update`` whose
      filter includes the expected values.
    - No multi-document transactions and no raw-query escape hatch: both
      capabilities are reported False.

Failure modes:
    - DuplicateRecordError on unique index violations.
    - pymongo errors (e.g. ServerSelectionTimeoutError on connect) propagate.
"""

from __future__ import annotations

import dataclasses
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping
from uuid import UUID

from bson.decimal128 import Decimal128
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from claims_kernel.db.gateway import (
    Between,
    EntityKind,
    EntitySpec,
    GatewayCapabilities,
    PersistenceGateway,
    Repository,
)
from claims_kernel.domain.claims import (
    ActorRole,
    Application,
    ApplicationDocument,
    ApplicationQuery,
    ApplicationStatus,
    AssignmentStatus,
    AuditAction,
    AuditEntityType,
    AuditLogEntry,
    Comment,
    CommentType,
    DocumentReview,
    DocumentType,
    EligibilityCheck,
    EligibilityStatus,
    ExpenseItem,
    ExpenseValidation,
    ExpenseValidationStatus,
    MedicalAssessment,
    PriorPermissionStatus,
    Priority,
    QueryMessage,
    QueryParty,
    QueryStatus,
    Review,
    ReviewAssignment,
    ReviewDecision,
    ReviewStage,
    TreatmentType,
    User,
    VerificationStatus,
)
from claims_kernel.exceptions import DuplicateRecordError, StaleStateError
from claims_kernel.logging_config import get_logger

logger = get_logger("db.mongo")


class DocumentMapper:
    """Field-level BSON encoding for one domain record type."""

    def __init__(
        self,
        dto_type: type,
        *,
        uuids: tuple[str, ...] = ("id",),
        decimals: tuple[str, ...] = (),
        dates: tuple[str, ...] = (),
        enums: Mapping[str, type[Enum]] | None = None,
        tuples: tuple[str, ...] = (),
    ):
        self.dto_type = dto_type
        self._uuids = frozenset(uuids)
        self._decimals = frozenset(decimals)
        self._dates = frozenset(dates)
        self._enums = dict(enums or {})
        self._tuples = frozenset(tuples)
        self._fields = tuple(f.name for f in dataclasses.fields(dto_type))

    @staticmethod
    def key(name: str) -> str:
        return "_id" if name == "id" else name

    def encode_value(self, name: str, value: Any) -> Any:
        if value is None:
            return None
        if name in self._uuids:
            return str(value)
        if name in self._decimals:
            return Decimal128(Decimal(value))
        if name in self._dates:
            return datetime.combine(value, time.min, tzinfo=timezone.utc)
        if isinstance(value, Enum):
            return value.value
        if name in self._tuples:
            return list(value)
        return value

    def decode_value(self, name: str, value: Any) -> Any:
        if value is None:
            return None
        if name in self._uuids:
            return UUID(value)
        if name in self._decimals:
            return value.to_decimal() if isinstance(value, Decimal128) else Decimal(str(value))
        if name in self._dates:
            return value.date() if isinstance(value, datetime) else value
        if name in self._enums:
            return self._enums[name](value)
        if name in self._tuples:
            return tuple(value)
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_record(self, entity: Any) -> dict[str, Any]:
        return {
            self.key(name): self.encode_value(name, getattr(entity, name))
            for name in self._fields
        }

    def from_record(self, record: Mapping[str, Any]) -> Any:
        values = {}
        for name in self._fields:
            key = self.key(name)
            if key in record:
                values[name] = self.decode_value(name, record[key])
        return self.dto_type(**values)


MAPPERS: dict[EntityKind, DocumentMapper] = {
    EntityKind.APPLICATION: DocumentMapper(
        Application,
        uuids=("id", "submitted_by", "reviewed_by", "processed_by"),
        decimals=("total_amount_claimed", "total_amount_approved"),
        dates=("card_valid_until",),
        enums={"status": ApplicationStatus, "treatment_type": TreatmentType},
    ),
    EntityKind.EXPENSE_ITEM: DocumentMapper(
        ExpenseItem,
        uuids=("id", "application_id"),
        decimals=("amount_claimed", "amount_approved"),
        dates=("bill_date",),
    ),
    EntityKind.DOCUMENT: DocumentMapper(
        ApplicationDocument,
        uuids=("id", "application_id", "uploaded_by"),
        enums={"document_type": DocumentType},
    ),
    EntityKind.ELIGIBILITY_CHECK: DocumentMapper(
        EligibilityCheck,
        uuids=("id", "application_id", "checked_by"),
        enums={
            "prior_permission_status": PriorPermissionStatus,
            "eligibility_status": EligibilityStatus,
        },
        tuples=("ineligibility_reasons", "conditions"),
    ),
    EntityKind.DOCUMENT_REVIEW: DocumentMapper(
        DocumentReview,
        uuids=("id", "application_id", "document_id", "reviewed_by"),
        enums={"verification_status": VerificationStatus},
        tuples=("issues_found",),
    ),
    EntityKind.COMMENT: DocumentMapper(
        Comment,
        uuids=("id", "application_id", "author_id", "parent_comment_id", "resolved_by"),
        enums={"author_role": ActorRole, "comment_type": CommentType},
    ),
    EntityKind.REVIEW: DocumentMapper(
        Review,
        uuids=("id", "application_id", "reviewer_id"),
        enums={"reviewer_role": ActorRole, "stage": ReviewStage, "decision": ReviewDecision},
        tuples=("rejection_reasons", "clarification_needed"),
    ),
    EntityKind.USER: DocumentMapper(User, enums={"role": ActorRole}),
    EntityKind.AUDIT_LOG: DocumentMapper(
        AuditLogEntry,
        uuids=("id", "entity_id", "actor_id"),
        enums={
            "entity_type": AuditEntityType,
            "action": AuditAction,
            "actor_role": ActorRole,
        },
    ),
    EntityKind.EXPENSE_VALIDATION: DocumentMapper(
        ExpenseValidation,
        uuids=("id", "application_id", "expense_id", "validator_id"),
        decimals=("original_amount", "validated_amount"),
        enums={"validation_status": ExpenseValidationStatus},
    ),
    EntityKind.MEDICAL_ASSESSMENT: DocumentMapper(
        MedicalAssessment,
        uuids=("id", "application_id", "assessor_id"),
        tuples=("concerns_raised", "fraud_indicators"),
    ),
    EntityKind.ASSIGNMENT: DocumentMapper(
        ReviewAssignment,
        uuids=("id", "application_id", "assigned_to", "assigned_by"),
        dates=("due_date",),
        enums={"priority": Priority, "status": AssignmentStatus},
    ),
    EntityKind.QUERY: DocumentMapper(
        ApplicationQuery,
        uuids=("id", "application_id", "created_by", "resolved_by"),
        enums={
            "status": QueryStatus,
            "priority": Priority,
            "created_by_role": ActorRole,
            "last_message_by": QueryParty,
        },
    ),
    EntityKind.QUERY_MESSAGE: DocumentMapper(
        QueryMessage,
        uuids=("id", "query_id", "sender_id"),
        enums={"sender_type": QueryParty, "sender_role": ActorRole},
    ),
}

COLLECTION_FOR_KIND: dict[EntityKind, str] = {
    EntityKind.APPLICATION: "medical_applications",
    EntityKind.EXPENSE_ITEM: "expense_items",
    EntityKind.DOCUMENT: "application_documents",
    EntityKind.ELIGIBILITY_CHECK: "eligibility_checks",
    EntityKind.DOCUMENT_REVIEW: "document_reviews",
    EntityKind.COMMENT: "review_comments",
    EntityKind.REVIEW: "application_reviews",
    EntityKind.USER: "users",
    EntityKind.AUDIT_LOG: "audit_logs",
    EntityKind.EXPENSE_VALIDATION: "expense_validations",
    EntityKind.MEDICAL_ASSESSMENT: "medical_assessments",
    EntityKind.ASSIGNMENT: "review_assignments",
    EntityKind.QUERY: "application_queries",
    EntityKind.QUERY_MESSAGE: "query_messages",
}

COUNTERS_COLLECTION = "sequence_counters"


class MongoRepository(Repository):
    def __init__(self, gateway: MongoGateway, spec: EntitySpec, mapper: DocumentMapper):
        super().__init__(gateway, spec)
        self._mongo = gateway
        self._mapper = mapper

    @property
    def _collection(self):
        return self._mongo.database[COLLECTION_FOR_KIND[self.kind]]

    def _filter(self, criteria: Mapping[str, Any], between: Between | None) -> dict[str, Any]:
        query = {
            self._mapper.key(name): self._mapper.encode_value(name, value)
            for name, value in criteria.items()
        }
        if between is not None:
            bounds = {}
            if between.start is not None:
                bounds["$gte"] = self._mapper.encode_value(between.field, between.start)
            if between.end is not None:
                bounds["$lte"] = self._mapper.encode_value(between.field, between.end)
            query[self._mapper.key(between.field)] = bounds or {"$ne": None}
        return query

    def _insert(self, entity):
        try:
            self._collection.insert_one(self._mapper.to_record(entity))
        except DuplicateKeyError as exc:
            details = str(exc)
            field = next((f for f in self.spec.unique_fields if f in details), "id")
            raise DuplicateRecordError(self.kind.value, field, getattr(entity, field)) from exc
        return entity

    def _get(self, entity_id):
        record = self._collection.find_one({"_id": str(entity_id)})
        return None if record is None else self._mapper.from_record(record)

    def _select(self, criteria, between, order_by, limit):
        cursor = self._collection.find(self._filter(criteria, between))
        if order_by:
            cursor = cursor.sort([
                (self._mapper.key(name), DESCENDING if descending else ASCENDING)
                for name, descending in order_by
            ])
        if limit is not None:
            cursor = cursor.limit(limit)
        return [self._mapper.from_record(record) for record in cursor]

    def _update(self, entity_id, changes, expected):
        query = {"_id": str(entity_id), **self._filter(expected, None)}
        updates = {
            self._mapper.key(name): self._mapper.encode_value(name, value)
            for name, value in changes.items()
        }
        try:
            record = self._collection.find_one_and_update(
                query, {"$set": updates}, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as exc:
            raise DuplicateRecordError(self.kind.value, "update", entity_id) from exc
        if record is not None:
            return self._mapper.from_record(record)
        current = self._collection.find_one({"_id": str(entity_id)})
        if current is None:
            return None
        name = next(iter(expected))
        raise StaleStateError(
            self.kind.value, entity_id,
            self._mapper.encode_value(name, expected[name]),
            current.get(self._mapper.key(name)),
        )

    def _remove(self, entity_id):
        return self._collection.delete_one({"_id": str(entity_id)}).deleted_count == 1

    def _count(self, criteria):
        return self._collection.count_documents(self._filter(criteria, None))


class MongoGateway(PersistenceGateway):
    """
    Document-store gateway.

    Contract:
        ``uri`` and ``database`` identify the deployment; ``client_factory``
        defaults to ``pymongo.MongoClient``.

    Guarantees:
        - ``connect`` pings the server so a bad URI fails at startup.
        - Unique indexes back the natural keys of applications and users.
    """

    provider = "mongodb"
    capabilities = GatewayCapabilities(transactions=False, raw_query=False)

    def __init__(
        self,
        uri: str,
        database: str,
        *,
        server_selection_timeout_ms: int = 5000,
        client_factory: Callable[..., Any] = MongoClient,
    ):
        super().__init__()
        self._uri = uri
        self._database_name = database
        self._timeout_ms = server_selection_timeout_ms
        self._client_factory = client_factory
        self._client = None
        self._database = None

    @property
    def database(self):
        return self._database

    def _open(self) -> None:
        client = self._client_factory(
            self._uri, tz_aware=True, serverSelectionTimeoutMS=self._timeout_ms
        )
        try:
            client.admin.command("ping")
        except Exception:
            client.close()
            raise
        self._client = client
        self._database = client[self._database_name]
        self._ensure_indexes()
        logger.info("mongo_connected", extra={"database": self._database_name})

    def _ensure_indexes(self) -> None:
        applications = self._database[COLLECTION_FOR_KIND[EntityKind.APPLICATION]]
        applications.create_index("reference_number", unique=True)
        applications.create_index([("status", ASCENDING), ("submitted_at", DESCENDING)])
        self._database[COLLECTION_FOR_KIND[EntityKind.USER]].create_index("email", unique=True)
        self._database[COLLECTION_FOR_KIND[EntityKind.AUDIT_LOG]].create_index(
            [("entity_type", ASCENDING), ("entity_id", ASCENDING),
             ("timestamp", DESCENDING), ("seq", DESCENDING)]
        )
        for kind in (
            EntityKind.EXPENSE_ITEM,
            EntityKind.DOCUMENT,
            EntityKind.COMMENT,
            EntityKind.EXPENSE_VALIDATION,
            EntityKind.MEDICAL_ASSESSMENT,
            EntityKind.QUERY,
        ):
            self._database[COLLECTION_FOR_KIND[kind]].create_index("application_id")
        self._database[COLLECTION_FOR_KIND[EntityKind.QUERY_MESSAGE]].create_index(
            [("query_id", ASCENDING), ("created_at", ASCENDING), ("seq", ASCENDING)]
        )
        self._database[COLLECTION_FOR_KIND[EntityKind.ASSIGNMENT]].create_index(
            [("assigned_to", ASCENDING), ("status", ASCENDING)]
        )

    def _close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._database = None

    def _make_repository(self, spec: EntitySpec) -> Repository:
        return MongoRepository(self, spec, MAPPERS[spec.kind])

    def _next_sequence(self, name: str) -> int:
        record = self._database[COUNTERS_COLLECTION].find_one_and_update(
            {"_id": name},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(record["value"])
