"""
Request and result types for the public operations.

Every optional input is typed as optional with an explicit default, so
services never test for attribute presence.  The audit request in
particular is built once from an ``Actor`` and a change mapping instead
of being assembled field by field at every call site.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar
from uuid import UUID

from claims_kernel.domain.claims import (
    ADMIN_ROLES,
    REVIEWER_ROLES,
    ActorRole,
    ApplicationQuery,
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
    EligibilityStatus,
    ExpenseValidationStatus,
    PriorPermissionStatus,
    QueryMessage,
    QueryStatus,
    TreatmentType,
)
from claims_kernel.exceptions import ValidationError

T = TypeVar("T")


def coerce_enum(enum_cls: type[Enum], value: Any, field_name: str):
    """Return ``value`` as a member of ``enum_cls`` or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except (ValueError, TypeError) as exc:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} {value!r}; expected one of: {allowed}",
            field=field_name,
            value=value,
        ) from exc


def validate_window(
    start: Any,
    end: Any,
    start_field: str = "start",
    end_field: str = "end",
) -> None:
    """Check an optional time window.

    Present bounds must be timezone-aware datetimes, and ``start`` must not
    be after ``end``.
    """
    for value, name in ((start, start_field), (end, end_field)):
        if value is None:
            continue
        if not isinstance(value, datetime):
            raise ValidationError(f"{name} must be a datetime", field=name, value=value)
        if value.utcoffset() is None:
            raise ValidationError(
                f"{name} must be timezone-aware", field=name, value=value.isoformat()
            )
    if start is not None and end is not None and start > end:
        raise ValidationError(
            f"{start_field} must not be after {end_field}",
            field=start_field,
            value=start.isoformat(),
        )


# =========================================================================
# Actor
# =========================================================================


@dataclass(frozen=True)
class Actor:
    """Authenticated identity resolved upstream, plus request metadata."""

    id: UUID
    role: ActorRole
    email: str | None = None
    name: str | None = None
    employee_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", coerce_enum(ActorRole, self.role, "role"))

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEWER_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


# =========================================================================
# Submission inputs
# =========================================================================


@dataclass(frozen=True)
class ApplicationData:
    """Descriptive fields supplied when a claim is submitted."""

    employee_name: str
    employee_id: str
    patient_name: str
    relationship_with_employee: str
    hospital_name: str
    treatment_type: TreatmentType | str
    department: str | None = None
    medical_card_number: str | None = None
    card_valid_until: date | None = None
    prior_permission: bool = False
    emergency_treatment: bool = False
    email: str | None = None
    mobile_number: str | None = None


@dataclass(frozen=True)
class ExpenseItemData:
    bill_number: str
    bill_date: date
    description: str
    amount_claimed: Decimal | int | str


@dataclass(frozen=True)
class SubmissionReceipt:
    id: UUID
    reference_number: str
    status: ApplicationStatus
    submitted_at: datetime


@dataclass(frozen=True)
class LedgerTotals:
    claimed: Decimal
    approved: Decimal


# =========================================================================
# Review inputs
# =========================================================================


@dataclass(frozen=True)
class EligibilityFlags:
    category_proof_valid: bool
    employee_id_verified: bool
    medical_card_valid: bool
    relationship_verified: bool = True
    is_within_limits: bool = True
    is_treatment_covered: bool = True
    has_pending_claims: bool = False
    prior_permission_status: PriorPermissionStatus | str = PriorPermissionStatus.NOT_REQUIRED
    eligibility_status: EligibilityStatus | str = EligibilityStatus.ELIGIBLE
    ineligibility_reasons: tuple[str, ...] = ()
    conditions: tuple[str, ...] = ()
    notes: str | None = None


@dataclass(frozen=True)
class DocumentReviewFlags:
    is_verified: bool
    is_authentic: bool = True
    is_legible: bool = True
    is_complete: bool = True
    issues_found: tuple[str, ...] = ()
    replacement_required: bool = False


@dataclass(frozen=True)
class ReviewFlags:
    eligibility_verified: bool = False
    documents_verified: bool = False
    medical_validity_checked: bool = False
    expenses_validated: bool = False
    completeness_score: int | None = None
    notes: str | None = None
    rejection_reasons: tuple[str, ...] = ()
    clarification_needed: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExpenseValidationFlags:
    validation_status: ExpenseValidationStatus | str
    is_within_policy: bool = True
    is_receipt_valid: bool = True
    is_amount_reasonable: bool = True
    has_prior_approval: bool = False
    validated_amount: Decimal | int | str | None = None
    adjustment_reason: str | None = None
    rejection_reason: str | None = None
    policy_reference: str | None = None


@dataclass(frozen=True)
class MedicalAssessmentFlags:
    diagnosis_verified: bool
    treatment_appropriate: bool
    prescription_valid: bool
    hospital_empaneled: bool = True
    treatment_duration_appropriate: bool = True
    medication_prescribed_correctly: bool = True
    requires_second_opinion: bool = False
    treatment_necessity: str | None = None
    concerns_raised: tuple[str, ...] = ()
    fraud_indicators: tuple[str, ...] = ()
    medical_opinion: str | None = None
    recommended_action: str | None = None
    alternative_treatment_suggested: str | None = None


# =========================================================================
# Audit
# =========================================================================


@dataclass(frozen=True)
class AuditEntryRequest:
    """Everything needed to append one audit entry."""

    entity_type: AuditEntityType
    entity_id: UUID
    action: AuditAction
    actor_id: UUID
    changes: Mapping[str, Any] = field(default_factory=dict)
    actor_email: str | None = None
    actor_role: ActorRole | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_actor(
        cls,
        actor: Actor,
        entity_type: AuditEntityType,
        entity_id: UUID,
        action: AuditAction,
        changes: Mapping[str, Any] | None = None,
    ) -> AuditEntryRequest:
        return cls(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor.id,
            changes=dict(changes or {}),
            actor_email=actor.email,
            actor_role=actor.role,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
        )


@dataclass(frozen=True)
class AuditLogFilter:
    entity_type: AuditEntityType | str | None = None
    entity_id: UUID | None = None
    action: AuditAction | str | None = None
    actor_id: UUID | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = None


# =========================================================================
# Listing
# =========================================================================


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class ApplicationFilter:
    status: ApplicationStatus | str | None = None
    employee_id: str | None = None
    reference_number: str | None = None
    submitted_from: datetime | None = None
    submitted_to: datetime | None = None


@dataclass(frozen=True)
class Page(Generic[T]):
    items: tuple[T, ...]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


# =========================================================================
# Query threads
# =========================================================================


@dataclass(frozen=True)
class QueryFilter:
    status: QueryStatus | str | None = None
    created_by_role: ActorRole | str | None = None
    application_id: UUID | None = None


@dataclass(frozen=True)
class QueryThread:
    """A query with its messages, oldest first, as one viewer may see them."""

    query: ApplicationQuery
    messages: tuple[QueryMessage, ...]


@dataclass(frozen=True)
class QueryStats:
    unread_count: int
    open_count: int
    user_replied_count: int
