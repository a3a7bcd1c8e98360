"""
Claim domain types (``claims_kernel.domain.claims``).

Responsibility
--------------
Immutable value objects for every entity the review workflow persists:
applications, expense items, documents, the accretive review records
(eligibility checks, document reviews, comments, reviews, expense
validations, medical assessments), review assignments, query threads,
users and audit log entries.  Also the closed enumerations those records
draw on.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Adapters in
``db/`` map these to and from storage; services build them.

Invariants enforced
-------------------
* Status values are drawn from closed ``str`` enums, so a stored value
  is always one of a known set.
* Records are frozen; changes go through the gateway's ``update`` with
  an explicit change mapping and produce a new instance.
* Historical records carry ``seq``, the insertion sequence used to break
  timestamp ties when choosing the latest record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Enumerations
# =========================================================================


class ApplicationStatus(str, Enum):
    """Claim lifecycle states."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    CLARIFICATION_REQUIRED = "clarification_required"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


TERMINAL_APPLICATION_STATUSES: frozenset[ApplicationStatus] = frozenset({
    ApplicationStatus.APPROVED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.COMPLETED,
})


class TreatmentType(str, Enum):
    OPD = "opd"
    INPATIENT = "inpatient"
    EMERGENCY = "emergency"


class DocumentType(str, Enum):
    MEDICAL_CARD = "medical_card"
    PRESCRIPTION = "prescription"
    BILL = "bill"
    RECEIPT = "receipt"
    MEDICAL_CERTIFICATE = "medical_certificate"
    OTHER = "other"


class PriorPermissionStatus(str, Enum):
    REQUIRED = "required"
    OBTAINED = "obtained"
    NOT_REQUIRED = "not_required"
    PENDING = "pending"


class EligibilityStatus(str, Enum):
    ELIGIBLE = "eligible"
    NOT_ELIGIBLE = "not_eligible"
    CONDITIONAL = "conditional"


class VerificationStatus(str, Enum):
    APPROVED = "approved"
    NEEDS_CLARIFICATION = "needs_clarification"


class CommentType(str, Enum):
    INQUIRY = "inquiry"
    CLARIFICATION = "clarification"
    OBSERVATION = "observation"
    RECOMMENDATION = "recommendation"


class ReviewStage(str, Enum):
    ELIGIBILITY = "eligibility"
    FINAL = "final"


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_CLARIFICATION = "needs_clarification"


class QueryStatus(str, Enum):
    OPEN = "open"
    USER_REPLIED = "user_replied"
    ADMIN_REPLIED = "admin_replied"
    RESOLVED = "resolved"
    CLOSED = "closed"


CLOSED_QUERY_STATUSES: frozenset[QueryStatus] = frozenset({
    QueryStatus.RESOLVED,
    QueryStatus.CLOSED,
})


class QueryParty(str, Enum):
    """Which side of a query thread wrote a message."""

    ADMIN = "admin"
    USER = "user"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK: dict[Priority, int] = {
    Priority.URGENT: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}


class ExpenseValidationStatus(str, Enum):
    APPROVED = "approved"
    PARTIALLY_APPROVED = "partially_approved"
    REJECTED = "rejected"
    UNDER_REVIEW = "under_review"


class AssignmentStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REASSIGNED = "reassigned"


class ActorRole(str, Enum):
    EMPLOYEE = "employee"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    MEDICAL_OFFICER = "medical_officer"


REVIEWER_ROLES: frozenset[ActorRole] = frozenset({
    ActorRole.ADMIN,
    ActorRole.SUPER_ADMIN,
    ActorRole.MEDICAL_OFFICER,
})

ADMIN_ROLES: frozenset[ActorRole] = frozenset({
    ActorRole.ADMIN,
    ActorRole.SUPER_ADMIN,
})


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VIEW = "view"
    APPROVE = "approve"
    REJECT = "reject"


class AuditEntityType(str, Enum):
    APPLICATION = "application"
    EXPENSE_ITEM = "expense_item"
    DOCUMENT = "document"
    ELIGIBILITY_CHECK = "eligibility_check"
    DOCUMENT_REVIEW = "document_review"
    COMMENT = "comment"
    REVIEW = "review"
    USER = "user"
    QUERY = "query"
    QUERY_MESSAGE = "query_message"
    EXPENSE_VALIDATION = "expense_validation"
    MEDICAL_ASSESSMENT = "medical_assessment"
    ASSIGNMENT = "assignment"


# =========================================================================
# Claim and its owned records
# =========================================================================


@dataclass(frozen=True)
class Application:
    """A reimbursement claim for one patient/treatment episode."""

    id: UUID
    reference_number: str
    status: ApplicationStatus
    employee_name: str
    employee_id: str
    patient_name: str
    relationship_with_employee: str
    hospital_name: str
    treatment_type: TreatmentType
    submitted_at: datetime
    updated_at: datetime
    submitted_by: UUID
    department: str | None = None
    medical_card_number: str | None = None
    card_valid_until: date | None = None
    prior_permission: bool = False
    emergency_treatment: bool = False
    email: str | None = None
    mobile_number: str | None = None
    total_amount_claimed: Decimal = Decimal("0.00")
    total_amount_approved: Decimal = Decimal("0.00")
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    review_comments: str | None = None
    processed_by: UUID | None = None
    processed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPLICATION_STATUSES


@dataclass(frozen=True)
class ExpenseItem:
    """One bill attached to an application."""

    id: UUID
    application_id: UUID
    bill_number: str
    bill_date: date
    description: str
    amount_claimed: Decimal
    created_at: datetime
    updated_at: datetime
    amount_approved: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class ApplicationDocument:
    """Uploaded file metadata.  ``storage_locator`` is opaque to the core."""

    id: UUID
    application_id: UUID
    document_type: DocumentType
    file_name: str
    mime_type: str
    file_size: int
    storage_locator: str
    uploaded_by: UUID
    uploaded_at: datetime


# =========================================================================
# Review records (historical, owned by the application, never cascaded)
# =========================================================================


@dataclass(frozen=True)
class EligibilityCheck:
    id: UUID
    seq: int
    application_id: UUID
    checked_by: UUID
    category_proof_valid: bool
    employee_id_verified: bool
    medical_card_valid: bool
    relationship_verified: bool
    is_within_limits: bool
    is_treatment_covered: bool
    has_pending_claims: bool
    prior_permission_status: PriorPermissionStatus
    eligibility_status: EligibilityStatus
    checked_at: datetime
    ineligibility_reasons: tuple[str, ...] = ()
    conditions: tuple[str, ...] = ()
    notes: str | None = None


@dataclass(frozen=True)
class DocumentReview:
    id: UUID
    seq: int
    application_id: UUID
    document_id: UUID
    reviewed_by: UUID
    is_verified: bool
    is_authentic: bool
    is_legible: bool
    is_complete: bool
    verification_status: VerificationStatus
    reviewed_at: datetime
    issues_found: tuple[str, ...] = ()
    remarks: str | None = None
    replacement_required: bool = False


@dataclass(frozen=True)
class Comment:
    """Threaded note.  Never deleted; ``is_resolved`` only moves to True."""

    id: UUID
    seq: int
    application_id: UUID
    author_id: UUID
    author_role: ActorRole
    comment_type: CommentType
    text: str
    is_internal: bool
    created_at: datetime
    author_name: str | None = None
    parent_comment_id: UUID | None = None
    is_resolved: bool = False
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None


@dataclass(frozen=True)
class Review:
    """Stage-scoped decision record.  Immutable once created."""

    id: UUID
    seq: int
    application_id: UUID
    reviewer_id: UUID
    reviewer_role: ActorRole
    stage: ReviewStage
    decision: ReviewDecision
    eligibility_verified: bool
    documents_verified: bool
    medical_validity_checked: bool
    expenses_validated: bool
    created_at: datetime
    completeness_score: int | None = None
    notes: str | None = None
    rejection_reasons: tuple[str, ...] = ()
    clarification_needed: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExpenseValidation:
    """A reviewer's verdict on one expense item.  Immutable once created."""

    id: UUID
    seq: int
    application_id: UUID
    expense_id: UUID
    validator_id: UUID
    original_amount: Decimal
    validation_status: ExpenseValidationStatus
    is_within_policy: bool
    is_receipt_valid: bool
    is_amount_reasonable: bool
    has_prior_approval: bool
    validated_at: datetime
    validated_amount: Decimal | None = None
    adjustment_reason: str | None = None
    rejection_reason: str | None = None
    policy_reference: str | None = None

    @property
    def adjustment(self) -> Decimal:
        """Amount cut from the claim; zero while still under review."""
        if self.validated_amount is None:
            return Decimal("0.00")
        return self.original_amount - self.validated_amount


@dataclass(frozen=True)
class MedicalAssessment:
    """A medical officer's opinion on the treatment.  Immutable once created."""

    id: UUID
    seq: int
    application_id: UUID
    assessor_id: UUID
    diagnosis_verified: bool
    treatment_appropriate: bool
    prescription_valid: bool
    hospital_empaneled: bool
    treatment_duration_appropriate: bool
    medication_prescribed_correctly: bool
    requires_second_opinion: bool
    assessed_at: datetime
    treatment_necessity: str | None = None
    concerns_raised: tuple[str, ...] = ()
    fraud_indicators: tuple[str, ...] = ()
    medical_opinion: str | None = None
    recommended_action: str | None = None
    alternative_treatment_suggested: str | None = None

    @property
    def is_medically_valid(self) -> bool:
        return (
            self.diagnosis_verified
            and self.treatment_appropriate
            and self.prescription_valid
            and not self.fraud_indicators
        )


@dataclass(frozen=True)
class ReviewAssignment:
    """Work item routing an application to one reviewer."""

    id: UUID
    seq: int
    application_id: UUID
    assigned_to: UUID
    assigned_by: UUID
    assignment_type: str
    priority: Priority
    status: AssignmentStatus
    assigned_at: datetime
    due_date: date | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    notes: str | None = None


# =========================================================================
# Query threads
# =========================================================================


@dataclass(frozen=True)
class ApplicationQuery:
    """A reviewer-opened question to the claimant, answered in a thread.

    The unread flags and message counters are denormalised from the
    thread so listings need no second read.
    """

    id: UUID
    seq: int
    application_id: UUID
    subject: str
    status: QueryStatus
    priority: Priority
    created_by: UUID
    created_by_role: ActorRole
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime
    last_message_by: QueryParty
    total_messages: int = 0
    unread_by_admin: bool = False
    unread_by_user: bool = True
    employee_email: str | None = None
    resolved_at: datetime | None = None
    resolved_by: UUID | None = None

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_QUERY_STATUSES


@dataclass(frozen=True)
class QueryMessage:
    """One message in a query thread.  Immutable once created."""

    id: UUID
    seq: int
    query_id: UUID
    message: str
    sender_type: QueryParty
    sender_id: UUID
    sender_role: ActorRole
    created_at: datetime
    sender_name: str | None = None
    is_internal_note: bool = False


# =========================================================================
# Users and audit
# =========================================================================


@dataclass(frozen=True)
class User:
    id: UUID
    email: str
    name: str
    role: ActorRole
    created_at: datetime
    updated_at: datetime
    employee_id: str | None = None
    department: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only record of one mutating action.

    ``entity_id`` is a weak reference: the referenced record may since
    have been deleted.
    """

    id: UUID
    seq: int
    entity_type: AuditEntityType
    entity_id: UUID
    action: AuditAction
    actor_id: UUID
    timestamp: datetime
    changes: dict[str, Any] = field(default_factory=dict)
    actor_email: str | None = None
    actor_role: ActorRole | None = None
    ip_address: str | None = None
    user_agent: str | None = None
