"""
Review rules -- pure derivations over review records.

Responsibility:
    Derives stored values from reviewer input (eligibility outcome,
    document verification status, validated expense amount) and folds the accretive review records
    of one application into a ``ReviewSummary`` read-model.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ReviewEngine loads
    the records through the gateway and calls into this module; the status
    state machine consumes the resulting summary.

Invariants enforced:
    - A failed critical verification (category proof, employee identity,
      medical card) always yields NOT_ELIGIBLE, whatever the caller asked for.
    - "Latest" is decided by timestamp, then insertion sequence.
    - An expense validation never stores more than was claimed, and its
      stored amount agrees with its verdict.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Sequence, TypeVar
from uuid import UUID

from claims_kernel.domain.claims import (
    Application,
    ApplicationDocument,
    ApplicationStatus,
    Comment,
    DocumentReview,
    EligibilityCheck,
    EligibilityStatus,
    ExpenseValidation,
    ExpenseValidationStatus,
    MedicalAssessment,
    Review,
    ReviewDecision,
    ReviewStage,
    VerificationStatus,
)
from claims_kernel.domain.requests import EligibilityFlags
from claims_kernel.exceptions import ValidationError

_CRITICAL_CHECKS: tuple[tuple[str, str], ...] = (
    ("category_proof_valid", "category proof not valid"),
    ("employee_id_verified", "employee identity not verified"),
    ("medical_card_valid", "medical card not valid"),
)


def derive_eligibility(
    flags: EligibilityFlags,
    requested: EligibilityStatus,
) -> tuple[EligibilityStatus, tuple[str, ...]]:
    """Return the status to store and the full list of ineligibility reasons.

    Failed critical checks force NOT_ELIGIBLE and contribute a reason each,
    appended after any reasons the reviewer supplied.
    """
    reasons = list(flags.ineligibility_reasons)
    failed = [reason for attr, reason in _CRITICAL_CHECKS if not getattr(flags, attr)]
    if not failed:
        return requested, tuple(reasons)
    for reason in failed:
        if reason not in reasons:
            reasons.append(reason)
    return EligibilityStatus.NOT_ELIGIBLE, tuple(reasons)


def derive_verification_status(is_verified: bool) -> VerificationStatus:
    if is_verified:
        return VerificationStatus.APPROVED
    return VerificationStatus.NEEDS_CLARIFICATION


def derive_validated_amount(
    status: ExpenseValidationStatus,
    original: Decimal,
    validated: Decimal | None,
) -> Decimal | None:
    """Return the amount to store for an expense validation verdict.

    approved keeps the full claimed amount, rejected stores zero,
    partially_approved needs an amount strictly between zero and the
    claim, and under_review stores none.
    """
    if status == ExpenseValidationStatus.UNDER_REVIEW:
        if validated is not None:
            raise ValidationError(
                "validated_amount is not recorded while under review",
                field="validated_amount",
                value=str(validated),
            )
        return None
    if status == ExpenseValidationStatus.APPROVED:
        expected = original
    elif status == ExpenseValidationStatus.REJECTED:
        expected = Decimal("0.00")
    else:
        if validated is None or not Decimal("0") < validated < original:
            raise ValidationError(
                f"partially_approved needs a validated_amount between 0 and {original}",
                field="validated_amount",
                value=None if validated is None else str(validated),
            )
        return validated
    if validated is not None and validated != expected:
        raise ValidationError(
            f"{status.value} requires validated_amount {expected}",
            field="validated_amount",
            value=str(validated),
        )
    return expected


# =========================================================================
# Summary
# =========================================================================


class ReviewOverallStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    READY_FOR_DECISION = "ready_for_decision"
    DECIDED = "decided"


SUMMARY_STEPS = ("eligibility", "documents", "comments", "final_review")


@dataclass(frozen=True)
class ReviewSummary:
    application_id: UUID
    application_status: ApplicationStatus
    overall_status: ReviewOverallStatus
    completion_percentage: int
    completed_steps: tuple[str, ...]
    latest_eligibility_status: EligibilityStatus | None
    total_documents: int
    documents_reviewed: int
    documents_verified: int
    total_comments: int
    unresolved_comments: int
    total_reviews: int
    approved_reviews: int
    rejected_reviews: int
    latest_review_stage: ReviewStage | None
    latest_review_decision: ReviewDecision | None
    latest_final_decision: ReviewDecision | None
    latest_final_review_id: UUID | None
    last_reviewed_at: datetime | None
    expense_validations: int = 0
    expenses_rejected: int = 0
    latest_medical_valid: bool | None = None
    requires_second_opinion: bool = False

    @property
    def documents_complete(self) -> bool:
        return self.documents_verified == self.total_documents


R = TypeVar("R", EligibilityCheck, DocumentReview, Review, MedicalAssessment)


def _latest(records: Iterable[R], timestamp_attr: str) -> R | None:
    latest = None
    for record in records:
        key = (getattr(record, timestamp_attr), record.seq)
        if latest is None or key > (getattr(latest, timestamp_attr), latest.seq):
            latest = record
    return latest


def latest_eligibility_check(checks: Iterable[EligibilityCheck]) -> EligibilityCheck | None:
    return _latest(checks, "checked_at")


def latest_review(reviews: Iterable[Review], stage: ReviewStage | None = None) -> Review | None:
    if stage is not None:
        reviews = [r for r in reviews if r.stage == stage]
    return _latest(reviews, "created_at")


def latest_medical_assessment(
    assessments: Iterable[MedicalAssessment],
) -> MedicalAssessment | None:
    return _latest(assessments, "assessed_at")


def summarize_records(
    application: Application,
    eligibility_checks: Sequence[EligibilityCheck],
    documents: Sequence[ApplicationDocument],
    document_reviews: Sequence[DocumentReview],
    comments: Sequence[Comment],
    reviews: Sequence[Review],
    expense_validations: Sequence[ExpenseValidation] = (),
    medical_assessments: Sequence[MedicalAssessment] = (),
) -> ReviewSummary:
    """Fold one application's review records into a summary."""
    eligibility = latest_eligibility_check(eligibility_checks)
    assessment = latest_medical_assessment(medical_assessments)

    document_ids = {d.id for d in documents}
    latest_per_document: dict[UUID, DocumentReview] = {}
    for review in document_reviews:
        if review.document_id not in document_ids:
            continue
        current = latest_per_document.get(review.document_id)
        if current is None or (review.reviewed_at, review.seq) > (current.reviewed_at, current.seq):
            latest_per_document[review.document_id] = review
    documents_verified = sum(
        1 for r in latest_per_document.values()
        if r.verification_status == VerificationStatus.APPROVED
    )

    unresolved = sum(1 for c in comments if not c.is_resolved)

    last = latest_review(reviews)
    final = latest_review(reviews, ReviewStage.FINAL)

    completed: list[str] = []
    if eligibility is not None:
        completed.append("eligibility")
    if documents_verified == len(document_ids):
        completed.append("documents")
    if unresolved == 0:
        completed.append("comments")
    if final is not None:
        completed.append("final_review")

    started = bool(
        eligibility_checks or document_reviews or comments or reviews
        or expense_validations or medical_assessments
    )
    final_decision = final.decision if final is not None else None
    if final_decision in (ReviewDecision.APPROVED, ReviewDecision.REJECTED):
        overall = ReviewOverallStatus.DECIDED
    elif final_decision == ReviewDecision.NEEDS_CLARIFICATION:
        overall = ReviewOverallStatus.AWAITING_CLARIFICATION
    elif not started:
        overall = ReviewOverallStatus.NOT_STARTED
    elif {"eligibility", "documents", "comments"} <= set(completed):
        overall = ReviewOverallStatus.READY_FOR_DECISION
    else:
        overall = ReviewOverallStatus.IN_PROGRESS

    # An untouched application has no progress even though it has
    # vacuously zero unresolved comments and zero unverified documents.
    percentage = round(100 * len(completed) / len(SUMMARY_STEPS)) if started else 0

    timestamps = [c.checked_at for c in eligibility_checks]
    timestamps += [r.reviewed_at for r in document_reviews]
    timestamps += [r.created_at for r in reviews]
    timestamps += [v.validated_at for v in expense_validations]
    timestamps += [a.assessed_at for a in medical_assessments]

    return ReviewSummary(
        application_id=application.id,
        application_status=application.status,
        overall_status=overall,
        completion_percentage=percentage,
        completed_steps=tuple(completed) if started else (),
        latest_eligibility_status=eligibility.eligibility_status if eligibility else None,
        total_documents=len(document_ids),
        documents_reviewed=len(latest_per_document),
        documents_verified=documents_verified,
        total_comments=len(comments),
        unresolved_comments=unresolved,
        total_reviews=len(reviews),
        approved_reviews=sum(1 for r in reviews if r.decision == ReviewDecision.APPROVED),
        rejected_reviews=sum(1 for r in reviews if r.decision == ReviewDecision.REJECTED),
        latest_review_stage=last.stage if last else None,
        latest_review_decision=last.decision if last else None,
        latest_final_decision=final_decision,
        latest_final_review_id=final.id if final else None,
        last_reviewed_at=max(timestamps) if timestamps else None,
        expense_validations=len(expense_validations),
        expenses_rejected=sum(
            1 for v in expense_validations
            if v.validation_status == ExpenseValidationStatus.REJECTED
        ),
        latest_medical_valid=assessment.is_medically_valid if assessment else None,
        requires_second_opinion=bool(assessment and assessment.requires_second_opinion),
    )
