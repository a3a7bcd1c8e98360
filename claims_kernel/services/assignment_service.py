"""
ReviewAssignments -- routing applications to individual reviewers.

Responsibility:
    Creates review work items, moves them through the assignment workflow
    and lists a reviewer's open queue.

Architecture position:
    Kernel > Services -- imperative shell around ``domain.lifecycle``'s
    ASSIGNMENT_WORKFLOW.

Invariants enforced:
    - Only reviewers assign, and only to an active reviewer account.
    - A decided application takes no new assignments.
    - Assigning an application again for the same kind of work marks the
      previous open assignment reassigned, in the same operation.
    - Status changes follow the workflow; only the assignee or an
      administrator moves an assignment.  ``started_at`` is stamped on
      in_progress and ``completed_at`` on completed.
    - Status writes are compare-and-set on the status read first.

Failure modes:
    - NotFoundError: application, assignee or assignment absent.
    - ValidationError: empty assignment type, inactive or non-reviewer
      assignee, a due date in the past.
    - TransitionNotPermittedError, StaleStateError.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID, uuid4

from claims_kernel.domain.claims import (
    PRIORITY_RANK,
    REVIEWER_ROLES,
    AssignmentStatus,
    AuditAction,
    AuditEntityType,
    Priority,
    ReviewAssignment,
)
from claims_kernel.domain.lifecycle import ASSIGNMENT_WORKFLOW, check_transition
from claims_kernel.domain.requests import Actor, coerce_enum
from claims_kernel.exceptions import (
    NotFoundError,
    TransitionNotPermittedError,
    ValidationError,
)
from claims_kernel.logging_config import LogContext, get_logger
from claims_kernel.services.atomic import AtomicScope, atomic
from claims_kernel.services.base import BaseService

logger = get_logger("services.assignments")

ASSIGNMENT_SEQUENCE = "assignment"

OPEN_ASSIGNMENT_STATUSES = (AssignmentStatus.PENDING, AssignmentStatus.IN_PROGRESS)


def _queue_key(assignment: ReviewAssignment) -> tuple:
    return (
        PRIORITY_RANK[assignment.priority],
        assignment.due_date or date.max,
        assignment.assigned_at,
        assignment.seq,
    )


class ReviewAssignments(BaseService):
    """
    Assignment surface over one gateway.

    Non-goals:
        - Does NOT balance load or pick an assignee.
        - Does NOT gate review records on having an assignment.
    """

    def assign(
        self,
        application_id: UUID,
        assigned_to: UUID,
        assignment_type: str,
        actor: Actor,
        *,
        priority: Priority | str = Priority.NORMAL,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> ReviewAssignment:
        if assignment_type is None or not assignment_type.strip():
            raise ValidationError(
                "assignment_type is required", field="assignment_type", value=assignment_type
            )
        assignment_type = assignment_type.strip()
        priority = coerce_enum(Priority, priority, "priority")
        if due_date is not None:
            if isinstance(due_date, datetime) or not isinstance(due_date, date):
                raise ValidationError("due_date must be a date", field="due_date", value=due_date)
            if due_date < self._clock.now().date():
                raise ValidationError(
                    "due_date must not be in the past",
                    field="due_date",
                    value=due_date.isoformat(),
                )

        assignments = self._gateway.assignments
        with LogContext.bind(application_id=application_id, actor_id=actor.id, operation="assign_review"):
            with atomic(self._gateway, "assign_review") as scope:
                application = self._require_application(application_id)
                if not actor.is_reviewer:
                    raise TransitionNotPermittedError(
                        application_id, application.status.value, "assigned",
                        "only reviewers may assign reviews", action="assign_review",
                    )
                if application.is_terminal:
                    raise TransitionNotPermittedError(
                        application_id, application.status.value, "assigned",
                        "application is already decided", action="assign_review",
                    )
                assignee = self._gateway.users.find_by_id(assigned_to)
                if assignee is None:
                    raise NotFoundError("user", assigned_to)
                if not assignee.is_active or assignee.role not in REVIEWER_ROLES:
                    raise ValidationError(
                        "assignee must be an active reviewer",
                        field="assigned_to",
                        value=str(assigned_to),
                    )

                superseded = [
                    a for a in assignments.find_all({
                        "application_id": application_id,
                        "assignment_type": assignment_type,
                    })
                    if a.status in OPEN_ASSIGNMENT_STATUSES
                ]
                for previous in superseded:
                    self._move(previous, AssignmentStatus.REASSIGNED, actor, scope)

                assignment = assignments.create(ReviewAssignment(
                    id=uuid4(),
                    seq=self._gateway.next_sequence(ASSIGNMENT_SEQUENCE),
                    application_id=application_id,
                    assigned_to=assigned_to,
                    assigned_by=actor.id,
                    assignment_type=assignment_type,
                    priority=priority,
                    status=AssignmentStatus.PENDING,
                    assigned_at=self._clock.now(),
                    due_date=due_date,
                    notes=notes,
                ))
                scope.created(assignments, assignment.id)
                self._audit(actor, AuditEntityType.ASSIGNMENT, assignment.id, AuditAction.CREATE, {
                    "application_id": application_id,
                    "assigned_to": assigned_to,
                    "assignment_type": assignment_type,
                    "priority": priority,
                    "due_date": due_date,
                    "replaces": [a.id for a in superseded],
                })

            logger.info(
                "review_assigned",
                extra={
                    "assignment_id": str(assignment.id),
                    "assigned_to": str(assigned_to),
                    "priority": priority.value,
                    "reassigned": len(superseded),
                },
            )
        return assignment

    def _move(
        self,
        assignment: ReviewAssignment,
        target: AssignmentStatus,
        actor: Actor,
        scope: AtomicScope,
        notes: str | None = None,
    ) -> ReviewAssignment:
        check = check_transition(assignment.status, target, actor.role, None, ASSIGNMENT_WORKFLOW)
        if not check.allowed:
            raise TransitionNotPermittedError(
                assignment.id, assignment.status.value, target.value, check.reason,
                action="update_assignment", entity_type="assignment",
            )

        now = self._clock.now()
        changes: dict = {"status": target}
        if target == AssignmentStatus.IN_PROGRESS:
            changes["started_at"] = now
        elif target == AssignmentStatus.COMPLETED:
            changes["completed_at"] = now
        if notes is not None:
            changes["notes"] = notes

        assignments = self._gateway.assignments
        updated = assignments.update(
            assignment.id, changes, expected={"status": assignment.status}
        )
        if updated is None:
            raise NotFoundError("assignment", assignment.id)
        scope.updated(assignments, assignment, updated)
        self._audit(actor, AuditEntityType.ASSIGNMENT, assignment.id, AuditAction.UPDATE, {
            "application_id": assignment.application_id,
            "old_status": assignment.status,
            "new_status": target,
            "transition": check.transition.action,
        })
        return updated

    def update_assignment_status(
        self,
        assignment_id: UUID,
        status: AssignmentStatus | str,
        actor: Actor,
        notes: str | None = None,
    ) -> ReviewAssignment:
        target = coerce_enum(AssignmentStatus, status, "status")
        with atomic(self._gateway, "update_assignment") as scope:
            assignment = self._gateway.assignments.find_by_id(assignment_id)
            if assignment is None:
                raise NotFoundError("assignment", assignment_id)
            if actor.id != assignment.assigned_to and not actor.is_admin:
                raise TransitionNotPermittedError(
                    assignment_id, assignment.status.value, target.value,
                    "only the assignee or an administrator may update an assignment",
                    action="update_assignment", entity_type="assignment",
                )
            updated = self._move(assignment, target, actor, scope, notes)

        logger.info(
            "assignment_status_changed",
            extra={
                "assignment_id": str(assignment_id),
                "from_status": assignment.status.value,
                "to_status": target.value,
            },
        )
        return updated

    def my_assignments(
        self, reviewer_id: UUID, include_closed: bool = False
    ) -> list[ReviewAssignment]:
        """A reviewer's queue: most urgent first, then earliest due."""
        queue = self._gateway.find_assignments_for_reviewer(reviewer_id)
        if not include_closed:
            queue = [a for a in queue if a.status in OPEN_ASSIGNMENT_STATUSES]
        return sorted(queue, key=_queue_key)

    def list_for_application(self, application_id: UUID) -> list[ReviewAssignment]:
        self._require_application(application_id)
        return self._gateway.assignments.find_all(
            {"application_id": application_id},
            order_by=(("assigned_at", True), ("seq", True)),
        )
