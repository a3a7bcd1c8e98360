"""
ClaimsService -- application lifecycle surface.

Responsibility:
    Submission of a claim with its expense items, lookups, filtered and
    sorted listing, and delegation of status changes and deletion to the
    StatusStateMachine.

Architecture position:
    Kernel > Services -- the entry point the HTTP layer calls for
    application lifecycle operations (through ``ClaimsRuntime``).

Invariants enforced:
    - Submission is all-or-nothing: the application, every expense item
      and the single ``create`` audit entry are stored together or not
      at all.
    - ``total_amount_claimed`` equals the sum of the submitted items.
    - Reference numbers are ``{prefix}-{year}-{seq:04d}`` with ``seq``
      drawn from a per-year gateway counter; they are never random.
    - Sorting is restricted to ``ApplicationSortKey``; anything else is a
      ValidationError.
    - Actors without a reviewer role only ever see their own applications.

Failure modes:
    - ValidationError: missing descriptive fields, bad items, bad paging
      or sort parameters.
    - Errors from the state machine propagate unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID, uuid4

from claims_kernel.db.gateway import Between, PersistenceGateway
from claims_kernel.domain.claims import (
    Application,
    ApplicationDocument,
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
    ExpenseItem,
    TreatmentType,
)
from claims_kernel.domain.clock import Clock
from claims_kernel.domain.listing import (
    ApplicationSortKey,
    paginate,
    parse_sort,
    sort_applications,
    validate_paging,
)
from claims_kernel.domain.money import sum_amounts
from claims_kernel.domain.requests import (
    Actor,
    ApplicationData,
    ApplicationFilter,
    ExpenseItemData,
    Page,
    SortOrder,
    SubmissionReceipt,
    coerce_enum,
    validate_window,
)
from claims_kernel.exceptions import ValidationError
from claims_kernel.logging_config import LogContext, get_logger
from claims_kernel.services.atomic import atomic
from claims_kernel.services.auditor_service import AuditRecorder
from claims_kernel.services.base import BaseService
from claims_kernel.services.ledger_service import build_expense_item
from claims_kernel.services.status_service import StatusStateMachine

logger = get_logger("services.claims")

_REQUIRED_TEXT_FIELDS = (
    "employee_name",
    "employee_id",
    "patient_name",
    "relationship_with_employee",
    "hospital_name",
)


@dataclass(frozen=True)
class ApplicationDetails:
    """An application with the records it owns."""

    application: Application
    expense_items: tuple[ExpenseItem, ...]
    documents: tuple[ApplicationDocument, ...]


def reference_sequence_name(prefix: str, year: int) -> str:
    return f"reference_number:{prefix}:{year}"


def format_reference_number(prefix: str, year: int, seq: int) -> str:
    return f"{prefix}-{year}-{seq:04d}"


class ClaimsService(BaseService):
    """
    Application lifecycle operations.

    Contract:
        Every method that writes takes the acting identity explicitly.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        auditor: AuditRecorder,
        state_machine: StatusStateMachine,
        clock: Clock | None = None,
        reference_prefix: str = "MR",
    ):
        super().__init__(gateway, auditor, clock)
        self._state_machine = state_machine
        self._reference_prefix = reference_prefix

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _validated_fields(self, data: ApplicationData) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for name in _REQUIRED_TEXT_FIELDS:
            value = getattr(data, name)
            if value is None or not str(value).strip():
                raise ValidationError(f"{name} is required", field=name, value=value)
            fields[name] = str(value).strip()
        fields["treatment_type"] = coerce_enum(TreatmentType, data.treatment_type, "treatment_type")
        return fields

    def submit_application(
        self,
        data: ApplicationData,
        items: Sequence[ExpenseItemData],
        actor: Actor,
    ) -> SubmissionReceipt:
        fields = self._validated_fields(data)
        now = self._clock.now()
        application_id = uuid4()
        expense_items = [build_expense_item(application_id, item, now) for item in items]
        total_claimed = sum_amounts(item.amount_claimed for item in expense_items)

        applications = self._gateway.applications
        items_repo = self._gateway.expense_items
        with LogContext.bind(application_id=application_id, actor_id=actor.id):
            with atomic(self._gateway, "submit_application") as scope:
                seq = self._gateway.next_sequence(
                    reference_sequence_name(self._reference_prefix, now.year)
                )
                application = applications.create(Application(
                    id=application_id,
                    reference_number=format_reference_number(
                        self._reference_prefix, now.year, seq
                    ),
                    status=ApplicationStatus.PENDING,
                    submitted_at=now,
                    updated_at=now,
                    submitted_by=actor.id,
                    department=data.department,
                    medical_card_number=data.medical_card_number,
                    card_valid_until=data.card_valid_until,
                    prior_permission=data.prior_permission,
                    emergency_treatment=data.emergency_treatment,
                    email=data.email,
                    mobile_number=data.mobile_number,
                    total_amount_claimed=total_claimed,
                    total_amount_approved=Decimal("0.00"),
                    **fields,
                ))
                scope.created(applications, application.id)

                for item in expense_items:
                    items_repo.create(item)
                    scope.created(items_repo, item.id)

                self._audit(
                    actor,
                    AuditEntityType.APPLICATION,
                    application.id,
                    AuditAction.CREATE,
                    {
                        "status": ApplicationStatus.PENDING,
                        "reference_number": application.reference_number,
                        "total_amount_claimed": total_claimed,
                        "expense_items": len(expense_items),
                    },
                )

            logger.info(
                "application_submitted",
                extra={
                    "reference_number": application.reference_number,
                    "total_amount_claimed": str(total_claimed),
                    "expense_items": len(expense_items),
                },
            )
        return SubmissionReceipt(
            id=application.id,
            reference_number=application.reference_number,
            status=application.status,
            submitted_at=application.submitted_at,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_application(self, application_id: UUID) -> Application | None:
        return self._gateway.applications.find_by_id(application_id)

    def get_application_details(self, application_id: UUID) -> ApplicationDetails | None:
        application = self.get_application(application_id)
        if application is None:
            return None
        return ApplicationDetails(
            application=application,
            expense_items=tuple(self._gateway.find_expense_items(application_id)),
            documents=tuple(self._gateway.find_documents(application_id)),
        )

    def find_by_reference(self, reference_number: str) -> Application | None:
        return self._gateway.find_application_by_reference(reference_number)

    def list_applications(
        self,
        application_filter: ApplicationFilter | None = None,
        page: int = 1,
        page_size: int = 20,
        sort_key: ApplicationSortKey | str = ApplicationSortKey.SUBMITTED_AT,
        sort_order: SortOrder | str = SortOrder.DESC,
        actor: Actor | None = None,
    ) -> Page[Application]:
        validate_paging(page, page_size)
        sort_key, sort_order = parse_sort(sort_key, sort_order)
        application_filter = application_filter or ApplicationFilter()

        criteria: dict[str, Any] = {}
        if application_filter.status is not None:
            criteria["status"] = coerce_enum(ApplicationStatus, application_filter.status, "status")
        if application_filter.employee_id is not None:
            criteria["employee_id"] = application_filter.employee_id
        if application_filter.reference_number is not None:
            criteria["reference_number"] = application_filter.reference_number

        if actor is not None and not actor.is_reviewer:
            own = actor.employee_id or str(actor.id)
            if criteria.get("employee_id", own) != own:
                return Page(items=(), page=page, page_size=page_size, total=0)
            criteria["employee_id"] = own

        validate_window(
            application_filter.submitted_from,
            application_filter.submitted_to,
            "submitted_from",
            "submitted_to",
        )
        between = None
        if application_filter.submitted_from is not None or application_filter.submitted_to is not None:
            between = Between(
                "submitted_at",
                application_filter.submitted_from,
                application_filter.submitted_to,
            )

        found = self._gateway.applications.find_all(criteria, between=between)
        return paginate(sort_applications(found, sort_key, sort_order), page, page_size)

    def find_submitted_between(
        self, start: datetime | None, end: datetime | None
    ) -> list[Application]:
        validate_window(start, end)
        return self._gateway.find_applications_submitted_between(start, end)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def update_status(
        self,
        application_id: UUID,
        target: ApplicationStatus | str,
        actor: Actor,
        comments: str | None = None,
        approved_amount: Decimal | int | str | None = None,
        expected_status: ApplicationStatus | str | None = None,
    ) -> Application:
        return self._state_machine.transition(
            application_id,
            target,
            actor,
            comments=comments,
            approved_amount=approved_amount,
            expected_status=expected_status,
        )

    def delete_application(self, application_id: UUID, actor: Actor) -> bool:
        return self._state_machine.delete(application_id, actor)
