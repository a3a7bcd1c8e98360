"""
ReviewEngine -- accretive review records and the review summary.

Responsibility:
    Records eligibility checks, per-document verifications, threaded
    comments, stage-scoped review decisions, per-expense validations and
    medical assessments against an application, and folds them into the
    ``ReviewSummary`` read-model consumed by the status state machine and
    reporting.

Architecture position:
    Kernel > Services -- imperative shell around ``domain.review_rules``.
    Every operation takes the acting identity explicitly.

Invariants enforced:
    - A failed critical verification forces ``not_eligible`` whatever the
      caller requested (derivation lives in ``review_rules``).
    - ``verification_status`` is derived from ``is_verified``.
    - Every record carries a gateway-allocated ``seq`` so "latest" is
      well defined even when timestamps collide.
    - An expense validation stores the item's claimed amount as
      ``original_amount`` and a validated amount consistent with its
      verdict, never above the claim.
    - Comments are never deleted; resolution is one-way and idempotent
      (a second resolve returns the stored record and writes no audit
      entry).
    - Each mutation and its audit entry succeed or fail together.

Failure modes:
    - NotFoundError: application, document, expense item, comment or parent
      comment absent (one on another application counts as absent).
    - ValidationError: empty comment text, completeness score outside
      0..100, unknown enum values, a validated amount that disagrees with
      its verdict, a rejection without a reason.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from claims_kernel.domain.claims import (
    Application,
    AuditAction,
    AuditEntityType,
    Comment,
    CommentType,
    DocumentReview,
    EligibilityCheck,
    EligibilityStatus,
    ExpenseValidation,
    ExpenseValidationStatus,
    MedicalAssessment,
    PriorPermissionStatus,
    Review,
    ReviewDecision,
    ReviewStage,
)
from claims_kernel.domain.money import to_amount
from claims_kernel.domain.requests import (
    Actor,
    DocumentReviewFlags,
    EligibilityFlags,
    ExpenseValidationFlags,
    MedicalAssessmentFlags,
    ReviewFlags,
    coerce_enum,
)
from claims_kernel.domain.review_rules import (
    ReviewSummary,
    derive_eligibility,
    derive_validated_amount,
    derive_verification_status,
    latest_medical_assessment,
    summarize_records,
)
from claims_kernel.exceptions import NotFoundError, ValidationError
from claims_kernel.logging_config import LogContext, get_logger
from claims_kernel.services.atomic import atomic
from claims_kernel.services.base import BaseService

logger = get_logger("services.review")

ELIGIBILITY_SEQUENCE = "eligibility_check"
DOCUMENT_REVIEW_SEQUENCE = "document_review"
COMMENT_SEQUENCE = "comment"
REVIEW_SEQUENCE = "review"
EXPENSE_VALIDATION_SEQUENCE = "expense_validation"
MEDICAL_ASSESSMENT_SEQUENCE = "medical_assessment"

_NEWEST_FIRST = (("seq", True),)
_OLDEST_FIRST = (("seq", False),)


class ReviewEngine(BaseService):
    """
    Review surface over one gateway.

    Contract:
        All writes go through ``atomic`` together with their audit entry.
        Reads return frozen records.

    Non-goals:
        - Does NOT change application status; StatusStateMachine does.
        - Does NOT enforce reviewer roles on record creation; role checks
          apply at status transitions.
    """

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def perform_eligibility_check(
        self, application_id: UUID, flags: EligibilityFlags, actor: Actor
    ) -> EligibilityCheck:
        requested = coerce_enum(EligibilityStatus, flags.eligibility_status, "eligibility_status")
        prior_permission = coerce_enum(
            PriorPermissionStatus, flags.prior_permission_status, "prior_permission_status"
        )
        status, reasons = derive_eligibility(flags, requested)
        if status != requested:
            logger.warning(
                "eligibility_status_overridden",
                extra={
                    "application_id": str(application_id),
                    "requested": requested.value,
                    "stored": status.value,
                },
            )

        checks = self._gateway.eligibility_checks
        with LogContext.bind(application_id=application_id, operation="eligibility_check"):
            with atomic(self._gateway, "perform_eligibility_check") as scope:
                self._require_application(application_id)
                check = checks.create(EligibilityCheck(
                    id=uuid4(),
                    seq=self._gateway.next_sequence(ELIGIBILITY_SEQUENCE),
                    application_id=application_id,
                    checked_by=actor.id,
                    category_proof_valid=flags.category_proof_valid,
                    employee_id_verified=flags.employee_id_verified,
                    medical_card_valid=flags.medical_card_valid,
                    relationship_verified=flags.relationship_verified,
                    is_within_limits=flags.is_within_limits,
                    is_treatment_covered=flags.is_treatment_covered,
                    has_pending_claims=flags.has_pending_claims,
                    prior_permission_status=prior_permission,
                    eligibility_status=status,
                    checked_at=self._clock.now(),
                    ineligibility_reasons=reasons,
                    conditions=tuple(flags.conditions),
                    notes=flags.notes,
                ))
                scope.created(checks, check.id)
                self._audit(actor, AuditEntityType.ELIGIBILITY_CHECK, check.id, AuditAction.CREATE, {
                    "application_id": application_id,
                    "eligibility_status": status,
                    "requested_status": requested,
                    "ineligibility_reasons": reasons,
                })
            logger.info(
                "eligibility_check_recorded",
                extra={"check_id": str(check.id), "eligibility_status": status.value},
            )
        return check

    def list_eligibility_checks(self, application_id: UUID) -> list[EligibilityCheck]:
        """Newest first."""
        self._require_application(application_id)
        return self._gateway.eligibility_checks.find_all(
            {"application_id": application_id},
            order_by=(("checked_at", True),) + _NEWEST_FIRST,
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def review_document(
        self,
        application_id: UUID,
        document_id: UUID,
        flags: DocumentReviewFlags,
        actor: Actor,
        remarks: str | None = None,
    ) -> DocumentReview:
        reviews = self._gateway.document_reviews
        with atomic(self._gateway, "review_document") as scope:
            self._require_application(application_id)
            document = self._gateway.documents.find_by_id(document_id)
            if document is None or document.application_id != application_id:
                raise NotFoundError("document", document_id)

            verification_status = derive_verification_status(flags.is_verified)
            review = reviews.create(DocumentReview(
                id=uuid4(),
                seq=self._gateway.next_sequence(DOCUMENT_REVIEW_SEQUENCE),
                application_id=application_id,
                document_id=document_id,
                reviewed_by=actor.id,
                is_verified=flags.is_verified,
                is_authentic=flags.is_authentic,
                is_legible=flags.is_legible,
                is_complete=flags.is_complete,
                verification_status=verification_status,
                reviewed_at=self._clock.now(),
                issues_found=tuple(flags.issues_found),
                remarks=remarks,
                replacement_required=flags.replacement_required,
            ))
            scope.created(reviews, review.id)
            self._audit(actor, AuditEntityType.DOCUMENT_REVIEW, review.id, AuditAction.CREATE, {
                "application_id": application_id,
                "document_id": document_id,
                "verification_status": verification_status,
            })

        logger.info(
            "document_reviewed",
            extra={
                "application_id": str(application_id),
                "document_id": str(document_id),
                "verification_status": verification_status.value,
            },
        )
        return review

    def list_document_reviews(self, application_id: UUID) -> list[DocumentReview]:
        self._require_application(application_id)
        return self._gateway.document_reviews.find_all(
            {"application_id": application_id},
            order_by=(("reviewed_at", True),) + _NEWEST_FIRST,
        )

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(
        self,
        application_id: UUID,
        text: str,
        comment_type: CommentType | str,
        actor: Actor,
        *,
        is_internal: bool = True,
        parent_comment_id: UUID | None = None,
    ) -> Comment:
        if text is None or not text.strip():
            raise ValidationError("comment text is required", field="text", value=text)
        comment_type = coerce_enum(CommentType, comment_type, "comment_type")

        comments = self._gateway.comments
        with atomic(self._gateway, "add_comment") as scope:
            self._require_application(application_id)
            if parent_comment_id is not None:
                parent = comments.find_by_id(parent_comment_id)
                if parent is None or parent.application_id != application_id:
                    raise NotFoundError("comment", parent_comment_id)

            comment = comments.create(Comment(
                id=uuid4(),
                seq=self._gateway.next_sequence(COMMENT_SEQUENCE),
                application_id=application_id,
                author_id=actor.id,
                author_role=actor.role,
                comment_type=comment_type,
                text=text.strip(),
                is_internal=is_internal,
                created_at=self._clock.now(),
                author_name=actor.name,
                parent_comment_id=parent_comment_id,
            ))
            scope.created(comments, comment.id)
            self._audit(actor, AuditEntityType.COMMENT, comment.id, AuditAction.CREATE, {
                "application_id": application_id,
                "comment_type": comment_type,
                "is_internal": is_internal,
                "parent_comment_id": parent_comment_id,
            })

        logger.info(
            "comment_added",
            extra={
                "application_id": str(application_id),
                "comment_id": str(comment.id),
                "comment_type": comment_type.value,
            },
        )
        return comment

    def resolve_comment(self, comment_id: UUID, actor: Actor) -> Comment:
        """Mark a comment resolved.  Resolving twice returns the stored record."""
        comments = self._gateway.comments
        with atomic(self._gateway, "resolve_comment") as scope:
            comment = comments.find_by_id(comment_id)
            if comment is None:
                raise NotFoundError("comment", comment_id)
            if comment.is_resolved:
                logger.info("comment_already_resolved", extra={"comment_id": str(comment_id)})
                return comment

            resolved = comments.update(
                comment_id,
                {
                    "is_resolved": True,
                    "resolved_by": actor.id,
                    "resolved_at": self._clock.now(),
                },
                expected={"is_resolved": False},
            )
            if resolved is None:
                raise NotFoundError("comment", comment_id)
            scope.updated(comments, comment, resolved)
            self._audit(actor, AuditEntityType.COMMENT, comment_id, AuditAction.UPDATE, {
                "application_id": comment.application_id,
                "is_resolved": {"old": False, "new": True},
            })

        logger.info("comment_resolved", extra={"comment_id": str(comment_id)})
        return resolved

    def list_comments(
        self, application_id: UUID, include_internal: bool = True
    ) -> list[Comment]:
        """Oldest first."""
        self._require_application(application_id)
        criteria: dict[str, Any] = {"application_id": application_id}
        if not include_internal:
            criteria["is_internal"] = False
        return self._gateway.comments.find_all(
            criteria, order_by=(("created_at", False),) + _OLDEST_FIRST
        )

    # ------------------------------------------------------------------
    # Stage reviews
    # ------------------------------------------------------------------

    def create_review(
        self,
        application_id: UUID,
        stage: ReviewStage | str,
        decision: ReviewDecision | str,
        flags: ReviewFlags,
        actor: Actor,
    ) -> Review:
        stage = coerce_enum(ReviewStage, stage, "stage")
        decision = coerce_enum(ReviewDecision, decision, "decision")
        score = flags.completeness_score
        if score is not None and (
            isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100
        ):
            raise ValidationError(
                "completeness_score must be an integer between 0 and 100",
                field="completeness_score",
                value=score,
            )

        reviews = self._gateway.reviews
        with atomic(self._gateway, "create_review") as scope:
            self._require_application(application_id)
            review = reviews.create(Review(
                id=uuid4(),
                seq=self._gateway.next_sequence(REVIEW_SEQUENCE),
                application_id=application_id,
                reviewer_id=actor.id,
                reviewer_role=actor.role,
                stage=stage,
                decision=decision,
                eligibility_verified=flags.eligibility_verified,
                documents_verified=flags.documents_verified,
                medical_validity_checked=flags.medical_validity_checked,
                expenses_validated=flags.expenses_validated,
                created_at=self._clock.now(),
                completeness_score=score,
                notes=flags.notes,
                rejection_reasons=tuple(flags.rejection_reasons),
                clarification_needed=tuple(flags.clarification_needed),
            ))
            scope.created(reviews, review.id)
            self._audit(actor, AuditEntityType.REVIEW, review.id, AuditAction.CREATE, {
                "application_id": application_id,
                "stage": stage,
                "decision": decision,
            })

        logger.info(
            "review_recorded",
            extra={
                "application_id": str(application_id),
                "review_id": str(review.id),
                "stage": stage.value,
                "decision": decision.value,
            },
        )
        return review

    def list_reviews(self, application_id: UUID) -> list[Review]:
        self._require_application(application_id)
        return self._gateway.reviews.find_all(
            {"application_id": application_id},
            order_by=(("created_at", True),) + _NEWEST_FIRST,
        )

    # ------------------------------------------------------------------
    # Expense validations and medical assessments
    # ------------------------------------------------------------------

    def validate_expense(
        self,
        application_id: UUID,
        expense_id: UUID,
        flags: ExpenseValidationFlags,
        actor: Actor,
    ) -> ExpenseValidation:
        """Record a verdict on one expense item of the application.

        The stored ``original_amount`` is the item's claimed amount at the
        time of validation.  Later validations of the same item supersede
        earlier ones without replacing them.
        """
        status = coerce_enum(ExpenseValidationStatus, flags.validation_status, "validation_status")
        requested = None
        if flags.validated_amount is not None:
            requested = to_amount(flags.validated_amount, "validated_amount")
        if status == ExpenseValidationStatus.REJECTED and not (flags.rejection_reason or "").strip():
            raise ValidationError(
                "rejection_reason is required to reject an expense", field="rejection_reason"
            )
        if status == ExpenseValidationStatus.PARTIALLY_APPROVED and not (
            flags.adjustment_reason or ""
        ).strip():
            raise ValidationError(
                "adjustment_reason is required for a partial approval", field="adjustment_reason"
            )

        validations = self._gateway.expense_validations
        with atomic(self._gateway, "validate_expense") as scope:
            self._require_application(application_id)
            item = self._gateway.expense_items.find_by_id(expense_id)
            if item is None or item.application_id != application_id:
                raise NotFoundError("expense_item", expense_id)
            validated = derive_validated_amount(status, item.amount_claimed, requested)

            validation = validations.create(ExpenseValidation(
                id=uuid4(),
                seq=self._gateway.next_sequence(EXPENSE_VALIDATION_SEQUENCE),
                application_id=application_id,
                expense_id=expense_id,
                validator_id=actor.id,
                original_amount=item.amount_claimed,
                validation_status=status,
                is_within_policy=flags.is_within_policy,
                is_receipt_valid=flags.is_receipt_valid,
                is_amount_reasonable=flags.is_amount_reasonable,
                has_prior_approval=flags.has_prior_approval,
                validated_at=self._clock.now(),
                validated_amount=validated,
                adjustment_reason=flags.adjustment_reason,
                rejection_reason=flags.rejection_reason,
                policy_reference=flags.policy_reference,
            ))
            scope.created(validations, validation.id)
            self._audit(
                actor, AuditEntityType.EXPENSE_VALIDATION, validation.id, AuditAction.CREATE,
                {
                    "application_id": application_id,
                    "expense_id": expense_id,
                    "validation_status": status,
                    "original_amount": item.amount_claimed,
                    "validated_amount": validated,
                },
            )

        logger.info(
            "expense_validated",
            extra={
                "application_id": str(application_id),
                "expense_id": str(expense_id),
                "validation_status": status.value,
            },
        )
        return validation

    def list_expense_validations(self, application_id: UUID) -> list[ExpenseValidation]:
        """Newest first."""
        self._require_application(application_id)
        return self._gateway.expense_validations.find_all(
            {"application_id": application_id},
            order_by=(("validated_at", True),) + _NEWEST_FIRST,
        )

    def assess_medical(
        self, application_id: UUID, flags: MedicalAssessmentFlags, actor: Actor
    ) -> MedicalAssessment:
        assessments = self._gateway.medical_assessments
        with atomic(self._gateway, "assess_medical") as scope:
            self._require_application(application_id)
            assessment = assessments.create(MedicalAssessment(
                id=uuid4(),
                seq=self._gateway.next_sequence(MEDICAL_ASSESSMENT_SEQUENCE),
                application_id=application_id,
                assessor_id=actor.id,
                diagnosis_verified=flags.diagnosis_verified,
                treatment_appropriate=flags.treatment_appropriate,
                prescription_valid=flags.prescription_valid,
                hospital_empaneled=flags.hospital_empaneled,
                treatment_duration_appropriate=flags.treatment_duration_appropriate,
                medication_prescribed_correctly=flags.medication_prescribed_correctly,
                requires_second_opinion=flags.requires_second_opinion,
                assessed_at=self._clock.now(),
                treatment_necessity=flags.treatment_necessity,
                concerns_raised=tuple(flags.concerns_raised),
                fraud_indicators=tuple(flags.fraud_indicators),
                medical_opinion=flags.medical_opinion,
                recommended_action=flags.recommended_action,
                alternative_treatment_suggested=flags.alternative_treatment_suggested,
            ))
            scope.created(assessments, assessment.id)
            self._audit(
                actor, AuditEntityType.MEDICAL_ASSESSMENT, assessment.id, AuditAction.CREATE,
                {
                    "application_id": application_id,
                    "is_medically_valid": assessment.is_medically_valid,
                    "requires_second_opinion": assessment.requires_second_opinion,
                    "fraud_indicators": assessment.fraud_indicators,
                },
            )

        if assessment.fraud_indicators:
            logger.warning(
                "fraud_indicators_recorded",
                extra={
                    "application_id": str(application_id),
                    "assessment_id": str(assessment.id),
                    "indicators": len(assessment.fraud_indicators),
                },
            )
        logger.info(
            "medical_assessment_recorded",
            extra={
                "application_id": str(application_id),
                "assessment_id": str(assessment.id),
                "is_medically_valid": assessment.is_medically_valid,
            },
        )
        return assessment

    def latest_medical_assessment(self, application_id: UUID) -> MedicalAssessment | None:
        self._require_application(application_id)
        return latest_medical_assessment(
            self._gateway.medical_assessments.find_all({"application_id": application_id})
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summarize(self, application_id: UUID) -> ReviewSummary:
        application = self._require_application(application_id)
        return self.summarize_application(application)

    def summarize_application(self, application: Application) -> ReviewSummary:
        criteria = {"application_id": application.id}
        return summarize_records(
            application,
            eligibility_checks=self._gateway.eligibility_checks.find_all(criteria),
            documents=self._gateway.find_documents(application.id),
            document_reviews=self._gateway.document_reviews.find_all(criteria),
            comments=self._gateway.comments.find_all(criteria),
            reviews=self._gateway.reviews.find_all(criteria),
            expense_validations=self._gateway.expense_validations.find_all(criteria),
            medical_assessments=self._gateway.medical_assessments.find_all(criteria),
        )
