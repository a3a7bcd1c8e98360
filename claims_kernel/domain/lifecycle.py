"""
Claim lifecycle -- the status workflow and its guard evaluation.

Responsibility:
    Declares the claim status workflow and decides, without I/O, whether a
    requested transition is permitted for a given actor and review summary.

Architecture position:
    Kernel > Domain -- pure.  StatusStateMachine loads the application and
    summary, calls ``check_transition`` and performs the write.

Invariants enforced:
    - pending -> under_review -> {approved | rejected | completed}.
    - under_review <-> clarification_required.
    - approved / completed require the latest final-stage review to be
      APPROVED; rejected requires it to be REJECTED.
    - Anything not declared is refused.
    - Review assignments: pending -> in_progress -> completed, with
      reassigned reachable from either open state; only reviewers move them.
"""

from __future__ import annotations

from dataclasses import dataclass

from claims_kernel.domain.claims import (
    REVIEWER_ROLES,
    ApplicationStatus,
    AssignmentStatus,
    ReviewDecision,
)
from claims_kernel.domain.review_rules import ReviewSummary
from claims_kernel.domain.workflow import Guard, Transition, Workflow
from claims_kernel.logging_config import get_logger

logger = get_logger("domain.lifecycle")

_REVIEWERS = frozenset(r.value for r in REVIEWER_ROLES)

FINAL_REVIEW_APPROVED = Guard(
    name="final_review_approved",
    description="Latest final-stage review decision is approved",
)

FINAL_REVIEW_REJECTED = Guard(
    name="final_review_rejected",
    description="Latest final-stage review decision is rejected",
)

_GUARD_DECISIONS: dict[str, ReviewDecision] = {
    FINAL_REVIEW_APPROVED.name: ReviewDecision.APPROVED,
    FINAL_REVIEW_REJECTED.name: ReviewDecision.REJECTED,
}

_S = ApplicationStatus

CLAIM_WORKFLOW = Workflow(
    name="medical_claim",
    description="Medical reimbursement claim review lifecycle",
    initial_state=_S.PENDING.value,
    states=tuple(s.value for s in _S),
    transitions=(
        Transition(_S.PENDING.value, _S.UNDER_REVIEW.value, "start_review", roles=_REVIEWERS),
        Transition(
            _S.UNDER_REVIEW.value, _S.APPROVED.value, "approve",
            guard=FINAL_REVIEW_APPROVED, roles=_REVIEWERS,
        ),
        Transition(
            _S.UNDER_REVIEW.value, _S.REJECTED.value, "reject",
            guard=FINAL_REVIEW_REJECTED, roles=_REVIEWERS,
        ),
        Transition(
            _S.UNDER_REVIEW.value, _S.COMPLETED.value, "complete",
            guard=FINAL_REVIEW_APPROVED, roles=_REVIEWERS,
        ),
        Transition(
            _S.UNDER_REVIEW.value, _S.CLARIFICATION_REQUIRED.value,
            "request_clarification", roles=_REVIEWERS,
        ),
        Transition(_S.CLARIFICATION_REQUIRED.value, _S.UNDER_REVIEW.value, "resume_review"),
    ),
    terminal_states=(_S.APPROVED.value, _S.REJECTED.value, _S.COMPLETED.value),
)


_A = AssignmentStatus

ASSIGNMENT_WORKFLOW = Workflow(
    name="review_assignment",
    description="Reviewer work-item lifecycle",
    initial_state=_A.PENDING.value,
    states=tuple(s.value for s in _A),
    transitions=(
        Transition(_A.PENDING.value, _A.IN_PROGRESS.value, "start", roles=_REVIEWERS),
        Transition(_A.PENDING.value, _A.COMPLETED.value, "complete", roles=_REVIEWERS),
        Transition(_A.IN_PROGRESS.value, _A.COMPLETED.value, "complete", roles=_REVIEWERS),
        Transition(_A.PENDING.value, _A.REASSIGNED.value, "reassign", roles=_REVIEWERS),
        Transition(_A.IN_PROGRESS.value, _A.REASSIGNED.value, "reassign", roles=_REVIEWERS),
    ),
    terminal_states=(_A.COMPLETED.value, _A.REASSIGNED.value),
)

for _workflow in (CLAIM_WORKFLOW, ASSIGNMENT_WORKFLOW):
    logger.info(
        "workflow_defined",
        extra={
            "workflow": _workflow.name,
            "states": len(_workflow.states),
            "transitions": len(_workflow.transitions),
        },
    )


@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    reason: str
    transition: Transition | None = None


def check_transition(
    current: ApplicationStatus | AssignmentStatus,
    target: ApplicationStatus | AssignmentStatus,
    actor_role: str,
    summary: ReviewSummary | None,
    workflow: Workflow = CLAIM_WORKFLOW,
) -> TransitionCheck:
    """Decide whether ``current -> target`` may fire for this actor."""
    if current.value in workflow.terminal_states:
        return TransitionCheck(False, f"status {current.value} is terminal")

    transition = workflow.find_transition(current.value, target.value)
    if transition is None:
        allowed = ", ".join(workflow.targets_from(current.value)) or "none"
        return TransitionCheck(
            False,
            f"no transition from {current.value} to {target.value} "
            f"(allowed: {allowed})",
        )

    role = getattr(actor_role, "value", actor_role)
    if transition.roles and role not in transition.roles:
        return TransitionCheck(
            False,
            f"role {role} may not perform {transition.action}",
            transition,
        )

    if transition.guard is not None:
        required = _GUARD_DECISIONS[transition.guard.name]
        decision = summary.latest_final_decision if summary is not None else None
        if decision is None:
            return TransitionCheck(False, "no final-stage review recorded", transition)
        if decision != required:
            reason = f"latest final review decision is {decision.value}"
            if decision == ReviewDecision.NEEDS_CLARIFICATION:
                reason += f"; move to {_S.CLARIFICATION_REQUIRED.value} instead"
            return TransitionCheck(False, reason, transition)

    return TransitionCheck(True, "permitted", transition)
