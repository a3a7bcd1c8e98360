"""
StatusStateMachine -- the only writer of ``Application.status``.

Responsibility:
    Applies requested status transitions after consulting the claim
    workflow and the ReviewEngine summary, and performs guarded deletion
    of applications.

Architecture position:
    Kernel > Services -- imperative shell around ``domain.lifecycle``.

Invariants enforced:
    - A refused transition raises TransitionNotPermittedError and leaves
      the application untouched.
    - approved / completed require the latest final-stage review to be
      approved; rejected requires it to be rejected.
    - The write is a compare-and-set on the status read at the start of
      the operation: of two concurrent writers starting from the same
      status, exactly one succeeds and the other gets StaleStateError.
    - ``total_amount_approved`` never exceeds ``total_amount_claimed``.
    - Every successful transition writes exactly one audit entry holding
      the old and new status.
    - Deletion: owner while pending, administrator at any status.  Child
      deletions are audited before any record is removed; review records
      are historical and are kept.

Failure modes:
    - NotFoundError, ValidationError, StaleStateError,
      TransitionNotPermittedError.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from claims_kernel.db.gateway import PersistenceGateway
from claims_kernel.domain.claims import (
    Application,
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
    TERMINAL_APPLICATION_STATUSES,
)
from claims_kernel.domain.clock import Clock
from claims_kernel.domain.lifecycle import CLAIM_WORKFLOW, check_transition
from claims_kernel.domain.money import to_amount
from claims_kernel.domain.requests import Actor, coerce_enum
from claims_kernel.domain.workflow import Workflow
from claims_kernel.exceptions import (
    NotFoundError,
    StaleStateError,
    TransitionNotPermittedError,
    ValidationError,
)
from claims_kernel.logging_config import LogContext, get_logger
from claims_kernel.services.atomic import atomic
from claims_kernel.services.auditor_service import AuditRecorder
from claims_kernel.services.base import BaseService
from claims_kernel.services.review_service import ReviewEngine

logger = get_logger("services.status")

_AUDIT_ACTION_FOR_TARGET = {
    ApplicationStatus.APPROVED: AuditAction.APPROVE,
    ApplicationStatus.REJECTED: AuditAction.REJECT,
}


class StatusStateMachine(BaseService):
    """
    Gatekeeper for application status changes and deletion.

    Contract:
        ``transition`` returns the updated Application or raises; it never
        returns a partially applied result.

    Non-goals:
        - Does NOT notify anyone of the change.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        auditor: AuditRecorder,
        reviews: ReviewEngine,
        clock: Clock | None = None,
        workflow: Workflow = CLAIM_WORKFLOW,
    ):
        super().__init__(gateway, auditor, clock)
        self._reviews = reviews
        self._workflow = workflow

    def transition(
        self,
        application_id: UUID,
        target: ApplicationStatus | str,
        actor: Actor,
        comments: str | None = None,
        approved_amount: Decimal | int | str | None = None,
        expected_status: ApplicationStatus | str | None = None,
    ) -> Application:
        """Move an application to ``target``.

        ``expected_status`` lets a caller pin the status it last read; the
        transition then fails with StaleStateError if the stored status
        has moved on.
        """
        target = coerce_enum(ApplicationStatus, target, "status")
        if expected_status is not None:
            expected_status = coerce_enum(ApplicationStatus, expected_status, "expected_status")

        applications = self._gateway.applications
        with LogContext.bind(
            application_id=application_id, actor_id=actor.id, operation="update_status"
        ):
            with atomic(self._gateway, "update_status") as scope:
                application = self._require_application(application_id)
                current = application.status
                if expected_status is not None and current != expected_status:
                    raise StaleStateError(
                        "application", application_id, expected_status.value, current.value
                    )

                summary = self._reviews.summarize_application(application)
                check = check_transition(current, target, actor.role, summary, self._workflow)
                if not check.allowed:
                    logger.warning(
                        "status_transition_refused",
                        extra={
                            "from_status": current.value,
                            "to_status": target.value,
                            "reason": check.reason,
                        },
                    )
                    raise TransitionNotPermittedError(
                        application_id, current.value, target.value, check.reason
                    )

                now = self._clock.now()
                changes: dict = {
                    "status": target,
                    "updated_at": now,
                    "reviewed_by": actor.id,
                    "reviewed_at": now,
                }
                if comments is not None:
                    changes["review_comments"] = comments
                if target in TERMINAL_APPLICATION_STATUSES:
                    changes["processed_by"] = actor.id
                    changes["processed_at"] = now

                approved = None
                if approved_amount is not None:
                    approved = to_amount(approved_amount, "approved_amount")
                    if approved > application.total_amount_claimed:
                        raise ValidationError(
                            f"approved_amount {approved} exceeds total_amount_claimed "
                            f"{application.total_amount_claimed}",
                            field="approved_amount",
                            value=str(approved),
                        )
                    changes["total_amount_approved"] = approved

                updated = applications.update(
                    application_id, changes, expected={"status": current}
                )
                if updated is None:
                    raise NotFoundError("application", application_id)
                scope.updated(applications, application, updated)

                self._audit(
                    actor,
                    AuditEntityType.APPLICATION,
                    application_id,
                    _AUDIT_ACTION_FOR_TARGET.get(target, AuditAction.UPDATE),
                    {
                        "old_status": current,
                        "new_status": target,
                        "comments": comments,
                        "approved_amount": approved,
                        "transition": check.transition.action,
                    },
                )

            logger.info(
                "status_transition_applied",
                extra={
                    "from_status": current.value,
                    "to_status": target.value,
                    "transition": check.transition.action,
                },
            )
        return updated

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def _check_delete_permitted(self, application: Application, actor: Actor) -> None:
        if actor.is_admin:
            return
        if not self._is_owner(application, actor):
            reason = "only the owner or an administrator may delete an application"
        elif application.status != ApplicationStatus.PENDING:
            reason = "owners may delete an application only while it is pending"
        else:
            return
        raise TransitionNotPermittedError(
            application.id,
            application.status.value,
            "deleted",
            reason,
            action="delete",
        )

    def delete(self, application_id: UUID, actor: Actor) -> bool:
        """Delete an application together with its items and documents."""
        applications = self._gateway.applications
        items_repo = self._gateway.expense_items
        documents_repo = self._gateway.documents

        with atomic(self._gateway, "delete_application") as scope:
            application = self._require_application(application_id)
            self._check_delete_permitted(application, actor)

            items = self._gateway.find_expense_items(application_id)
            documents = self._gateway.find_documents(application_id)

            for item in items:
                self._audit(
                    actor, AuditEntityType.EXPENSE_ITEM, item.id, AuditAction.DELETE,
                    {"application_id": application_id, "amount_claimed": item.amount_claimed},
                )
            for document in documents:
                self._audit(
                    actor, AuditEntityType.DOCUMENT, document.id, AuditAction.DELETE,
                    {"application_id": application_id, "file_name": document.file_name},
                )
            self._audit(
                actor, AuditEntityType.APPLICATION, application_id, AuditAction.DELETE,
                {
                    "reference_number": application.reference_number,
                    "status": application.status,
                    "expense_items": len(items),
                    "documents": len(documents),
                },
            )

            for item in items:
                items_repo.delete(item.id)
                scope.deleted(items_repo, item)
            for document in documents:
                documents_repo.delete(document.id)
                scope.deleted(documents_repo, document)
            # Parent last: undo runs newest first and must recreate it before its children.
            applications.delete(application_id)
            scope.deleted(applications, application)

        logger.info(
            "application_deleted",
            extra={
                "application_id": str(application_id),
                "admin_override": actor.is_admin and application.status != ApplicationStatus.PENDING,
                "expense_items": len(items),
                "documents": len(documents),
            },
        )
        return True
