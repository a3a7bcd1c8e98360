"""
ExpenseLedger -- expense items of a claim and their arithmetic.

Responsibility:
    Builds and validates expense items, adds items to a pending claim,
    records reviewer-approved amounts per item and reports claimed vs.
    approved totals.

Architecture position:
    Kernel > Services -- used by ClaimsService at submission and directly
    by the review surface for item approval.

Invariants enforced:
    - Totals are recomputed from the items on every call, never cached.
    - ``amount_approved`` of an item is never negative and never exceeds
      its ``amount_claimed``, so the approved sum never exceeds the
      claimed sum.
    - ``Application.total_amount_claimed`` is re-synchronised with the
      item sum whenever an item is added.
    - Items are added only while the claim is pending.

Failure modes:
    - NotFoundError: application or item absent.
    - ValidationError: malformed item data or approval amount.
    - TransitionNotPermittedError: adding items after review started, or
      approving items of a closed claim.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from claims_kernel.domain.claims import (
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
    ExpenseItem,
)
from claims_kernel.domain.money import sum_amounts, to_amount
from claims_kernel.domain.requests import (
    Actor,
    ExpenseItemData,
    LedgerTotals,
)
from claims_kernel.exceptions import (
    NotFoundError,
    TransitionNotPermittedError,
    ValidationError,
)
from claims_kernel.logging_config import get_logger
from claims_kernel.services.atomic import atomic
from claims_kernel.services.base import BaseService

logger = get_logger("services.ledger")


def _require_text(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field, value=value)
    return str(value).strip()


def build_expense_item(
    application_id: UUID, data: ExpenseItemData, now: datetime
) -> ExpenseItem:
    """Validate ``data`` and return a new, unsaved ExpenseItem."""
    if not isinstance(data.bill_date, date):
        raise ValidationError("bill_date must be a date", field="bill_date", value=data.bill_date)
    if isinstance(data.bill_date, datetime):
        raise ValidationError(
            "bill_date must be a calendar date, not a timestamp",
            field="bill_date",
            value=data.bill_date,
        )
    return ExpenseItem(
        id=uuid4(),
        application_id=application_id,
        bill_number=_require_text(data.bill_number, "bill_number"),
        bill_date=data.bill_date,
        description=_require_text(data.description, "description"),
        amount_claimed=to_amount(data.amount_claimed, "amount_claimed"),
        created_at=now,
        updated_at=now,
    )


class ExpenseLedger(BaseService):
    """Owns expense items and the claimed/approved totals."""

    def add_item(
        self, application_id: UUID, data: ExpenseItemData, actor: Actor
    ) -> ExpenseItem:
        applications = self._gateway.applications
        items = self._gateway.expense_items
        with atomic(self._gateway, "add_expense_item") as scope:
            application = self._require_application(application_id)
            if application.status != ApplicationStatus.PENDING:
                raise TransitionNotPermittedError(
                    application_id,
                    application.status.value,
                    application.status.value,
                    "expense items can only be added while the application is pending",
                    action="add_expense_item",
                )

            now = self._clock.now()
            item = items.create(build_expense_item(application_id, data, now))
            scope.created(items, item.id)

            claimed = sum_amounts(
                i.amount_claimed for i in self._gateway.find_expense_items(application_id)
            )
            synced = applications.update(
                application_id,
                {"total_amount_claimed": claimed, "updated_at": now},
                expected={"status": ApplicationStatus.PENDING},
            )
            scope.updated(applications, application, synced)

            self._audit(
                actor,
                AuditEntityType.EXPENSE_ITEM,
                item.id,
                AuditAction.CREATE,
                {
                    "application_id": application_id,
                    "bill_number": item.bill_number,
                    "amount_claimed": item.amount_claimed,
                    "total_amount_claimed": claimed,
                },
            )

        logger.info(
            "expense_item_added",
            extra={
                "application_id": str(application_id),
                "item_id": str(item.id),
                "amount_claimed": str(item.amount_claimed),
            },
        )
        return item

    def approve_item(
        self, item_id: UUID, amount: Decimal | int | str, actor: Actor
    ) -> ExpenseItem:
        """Set the approved amount of one item.

        Raises:
            ValidationError: ``amount`` is negative or exceeds the item's
                claimed amount.
        """
        approved = to_amount(amount, "amount_approved")
        items = self._gateway.expense_items
        with atomic(self._gateway, "approve_expense_item") as scope:
            item = items.find_by_id(item_id)
            if item is None:
                raise NotFoundError("expense_item", item_id)
            if approved > item.amount_claimed:
                raise ValidationError(
                    f"amount_approved {approved} exceeds amount_claimed {item.amount_claimed}",
                    field="amount_approved",
                    value=str(approved),
                )
            application = self._require_application(item.application_id)
            if application.is_terminal:
                raise TransitionNotPermittedError(
                    application.id,
                    application.status.value,
                    application.status.value,
                    "approved amounts are fixed once a decision has been made",
                    action="approve_expense_item",
                )

            updated = items.update(
                item_id,
                {"amount_approved": approved, "updated_at": self._clock.now()},
            )
            if updated is None:
                raise NotFoundError("expense_item", item_id)
            scope.updated(items, item, updated)

            self._audit(
                actor,
                AuditEntityType.EXPENSE_ITEM,
                item_id,
                AuditAction.UPDATE,
                {
                    "application_id": item.application_id,
                    "old_amount_approved": item.amount_approved,
                    "new_amount_approved": approved,
                },
            )

        logger.info(
            "expense_item_approved",
            extra={
                "application_id": str(item.application_id),
                "item_id": str(item_id),
                "amount_approved": str(approved),
            },
        )
        return updated

    def totals(self, application_id: UUID) -> LedgerTotals:
        self._require_application(application_id)
        items = self._gateway.find_expense_items(application_id)
        return LedgerTotals(
            claimed=sum_amounts(i.amount_claimed for i in items),
            approved=sum_amounts(i.amount_approved for i in items),
        )

    def list_items(self, application_id: UUID) -> list[ExpenseItem]:
        self._require_application(application_id)
        return self._gateway.find_expense_items(application_id)
