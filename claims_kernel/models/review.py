"""
Module: claims_kernel.models.review
Responsibility: ORM persistence for the accretive review records of a
    claim: eligibility checks, document reviews, comments, stage
    decisions, expense validations and medical assessments.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Review records reference their claim by id only (no FK): they are
      historical and outlive a deleted claim.
    - Eligibility checks, stage reviews, expense validations and medical
      assessments are append-only; the ORM listeners at the bottom of
      this module reject UPDATE and DELETE.
    - A resolved comment cannot be reopened (listener).

Failure modes:
    - ImmutableRecordError on flush of a modified or deleted append-only row.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from claims_kernel.db.base import Base
from claims_kernel.exceptions import ImmutableRecordError

if TYPE_CHECKING:
    from claims_kernel.domain.claims import (
        Comment,
        DocumentReview,
        EligibilityCheck,
        ExpenseValidation,
        MedicalAssessment,
        Review,
    )


class EligibilityCheckModel(Base):
    __tablename__ = "eligibility_checks"

    __table_args__ = (
        Index("ix_eligibility_checks_application", "application_id", "checked_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    checked_by: Mapped[UUID] = mapped_column(nullable=False)
    category_proof_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    employee_id_verified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    medical_card_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    relationship_verified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_within_limits: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_treatment_covered: Mapped[bool] = mapped_column(Boolean, nullable=False)
    has_pending_claims: Mapped[bool] = mapped_column(Boolean, nullable=False)
    prior_permission_status: Mapped[str] = mapped_column(String(32), nullable=False)
    eligibility_status: Mapped[str] = mapped_column(String(32), nullable=False)
    checked_at: Mapped[datetime] = mapped_column(nullable=False)
    ineligibility_reasons: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    conditions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text)

    def to_dto(self) -> EligibilityCheck:
        from claims_kernel.domain.claims import (
            EligibilityCheck as EligibilityCheckDTO,
            EligibilityStatus,
            PriorPermissionStatus,
        )

        return EligibilityCheckDTO(
            id=self.id,
            seq=self.seq,
            application_id=self.application_id,
            checked_by=self.checked_by,
            category_proof_valid=self.category_proof_valid,
            employee_id_verified=self.employee_id_verified,
            medical_card_valid=self.medical_card_valid,
            relationship_verified=self.relationship_verified,
            is_within_limits=self.is_within_limits,
            is_treatment_covered=self.is_treatment_covered,
            has_pending_claims=self.has_pending_claims,
            prior_permission_status=PriorPermissionStatus(self.prior_permission_status),
            eligibility_status=EligibilityStatus(self.eligibility_status),
            checked_at=self.checked_at,
            ineligibility_reasons=tuple(self.ineligibility_reasons or ()),
            conditions=tuple(self.conditions or ()),
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: EligibilityCheck) -> EligibilityCheckModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            application_id=dto.application_id,
            checked_by=dto.checked_by,
            category_proof_valid=dto.category_proof_valid,
            employee_id_verified=dto.employee_id_verified,
            medical_card_valid=dto.medical_card_valid,
            relationship_verified=dto.relationship_verified,
            is_within_limits=dto.is_within_limits,
            is_treatment_covered=dto.is_treatment_covered,
            has_pending_claims=dto.has_pending_claims,
            prior_permission_status=dto.prior_permission_status.value,
            eligibility_status=dto.eligibility_status.value,
            checked_at=dto.checked_at,
            ineligibility_reasons=list(dto.ineligibility_reasons),
            conditions=list(dto.conditions),
            notes=dto.notes,
        )


class DocumentReviewModel(Base):
    __tablename__ = "document_reviews"

    __table_args__ = (
        Index("ix_document_reviews_application", "application_id"),
        Index("ix_document_reviews_document", "document_id", "reviewed_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    document_id: Mapped[UUID] = mapped_column(nullable=False)
    reviewed_by: Mapped[UUID] = mapped_column(nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_authentic: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_legible: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False)
    verification_status: Mapped[str] = mapped_column(String(32), nullable=False)
    reviewed_at: Mapped[datetime] = mapped_column(nullable=False)
    issues_found: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    remarks: Mapped[str | None] = mapped_column(Text)
    replacement_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self) -> DocumentReview:
        from claims_kernel.domain.claims import (
            DocumentReview as DocumentReviewDTO,
            VerificationStatus,
        )

        return DocumentReviewDTO(
            id=self.id,
            seq=self.seq,
            application_id=self.application_id,
            document_id=self.document_id,
            reviewed_by=self.reviewed_by,
            is_verified=self.is_verified,
            is_authentic=self.is_authentic,
            is_legible=self.is_legible,
            is_complete=self.is_complete,
            verification_status=VerificationStatus(self.verification_status),
            reviewed_at=self.reviewed_at,
            issues_found=tuple(self.issues_found or ()),
            remarks=self.remarks,
            replacement_required=self.replacement_required,
        )

    @classmethod
    def from_dto(cls, dto: DocumentReview) -> DocumentReviewModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            application_id=dto.application_id,
            document_id=dto.document_id,
            reviewed_by=dto.reviewed_by,
            is_verified=dto.is_verified,
            is_authentic=dto.is_authentic,
            is_legible=dto.is_legible,
            is_complete=dto.is_complete,
            verification_status=dto.verification_status.value,
            reviewed_at=dto.reviewed_at,
            issues_found=list(dto.issues_found),
            remarks=dto.remarks,
            replacement_required=dto.replacement_required,
        )


class CommentModel(Base):
    __tablename__ = "review_comments"

    __table_args__ = (
        Index("ix_review_comments_application", "application_id", "created_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    author_id: Mapped[UUID] = mapped_column(nullable=False)
    author_role: Mapped[str] = mapped_column(String(32), nullable=False)
    comment_type: Mapped[str] = mapped_column(String(32), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    author_name: Mapped[str | None] = mapped_column(String(200))
    parent_comment_id: Mapped[UUID | None] = mapped_column()
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[UUID | None] = mapped_column()
    resolved_at: Mapped[datetime | None] = mapped_column()

    def to_dto(self) -> Comment:
        from claims_kernel.domain.claims import (
            ActorRole,
            Comment as CommentDTO,
            CommentType,
        )

        return CommentDTO(
            id=self.id,
            seq=self.seq,
            application_id=self.application_id,
            author_id=self.author_id,
            author_role=ActorRole(self.author_role),
            comment_type=CommentType(self.comment_type),
            text=self.text,
            is_internal=self.is_internal,
            created_at=self.created_at,
            author_name=self.author_name,
            parent_comment_id=self.parent_comment_id,
            is_resolved=self.is_resolved,
            resolved_by=self.resolved_by,
            resolved_at=self.resolved_at,
        )

    @classmethod
    def from_dto(cls, dto: Comment) -> CommentModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            application_id=dto.application_id,
            author_id=dto.author_id,
            author_role=dto.author_role.value,
            comment_type=dto.comment_type.value,
            text=dto.text,
            is_internal=dto.is_internal,
            created_at=dto.created_at,
            author_name=dto.author_name,
            parent_comment_id=dto.parent_comment_id,
            is_resolved=dto.is_resolved,
            resolved_by=dto.resolved_by,
            resolved_at=dto.resolved_at,
        )


class ReviewModel(Base):
    __tablename__ = "application_reviews"

    __table_args__ = (
        Index("ix_application_reviews_application", "application_id", "stage", "created_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    reviewer_id: Mapped[UUID] = mapped_column(nullable=False)
    reviewer_role: Mapped[str] = mapped_column(String(32), nullable=False)
    stage: Mapped[str] = mapped_column(String(32), nullable=False)
    decision: Mapped[str] = mapped_column(String(32), nullable=False)
    eligibility_verified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    documents_verified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    medical_validity_checked: Mapped[bool] = mapped_column(Boolean, nullable=False)
    expenses_validated: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    completeness_score: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    rejection_reasons: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    clarification_needed: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    def to_dto(self) -> Review:
        from claims_kernel.domain.claims import (
            ActorRole,
            Review as ReviewDTO,
            ReviewDecision,
            ReviewStage,
        )

        return ReviewDTO(
            id=self.id,
            seq=self.seq,
            application_id=self.application_id,
            reviewer_id=self.reviewer_id,
            reviewer_role=ActorRole(self.reviewer_role),
            stage=ReviewStage(self.stage),
            decision=ReviewDecision(self.decision),
            eligibility_verified=self.eligibility_verified,
            documents_verified=self.documents_verified,
            medical_validity_checked=self.medical_validity_checked,
            expenses_validated=self.expenses_validated,
            created_at=self.created_at,
            completeness_score=self.completeness_score,
            notes=self.notes,
            rejection_reasons=tuple(self.rejection_reasons or ()),
            clarification_needed=tuple(self.clarification_needed or ()),
        )

    @classmethod
    def from_dto(cls, dto: Review) -> ReviewModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            application_id=dto.application_id,
            reviewer_id=dto.reviewer_id,
            reviewer_role=dto.reviewer_role.value,
            stage=dto.stage.value,
            decision=dto.decision.value,
            eligibility_verified=dto.eligibility_verified,
            documents_verified=dto.documents_verified,
            medical_validity_checked=dto.medical_validity_checked,
            expenses_validated=dto.expenses_validated,
            created_at=dto.created_at,
            completeness_score=dto.completeness_score,
            notes=dto.notes,
            rejection_reasons=list(dto.rejection_reasons),
            clarification_needed=list(dto.clarification_needed),
        )


class ExpenseValidationModel(Base):
    __tablename__ = "expense_validations"

    __table_args__ = (
        CheckConstraint(
            "validated_amount IS NULL OR "
            "(validated_amount >= 0 AND validated_amount <= original_amount)",
            name="ck_expense_validations_amount_range",
        ),
        Index("ix_expense_validations_application", "application_id", "validated_at"),
        Index("ix_expense_validations_expense", "expense_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    expense_id: Mapped[UUID] = mapped_column(nullable=False)
    validator_id: Mapped[UUID] = mapped_column(nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(nullable=False)
    validation_status: Mapped[str] = mapped_column(String(32), nullable=False)
    is_within_policy: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_receipt_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_amount_reasonable: Mapped[bool] = mapped_column(Boolean, nullable=False)
    has_prior_approval: Mapped[bool] = mapped_column(Boolean, nullable=False)
    validated_at: Mapped[datetime] = mapped_column(nullable=False)
    validated_amount: Mapped[Decimal | None] = mapped_column()
    adjustment_reason: Mapped[str | None] = mapped_column(Text)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    policy_reference: Mapped[str | None] = mapped_column(String(100))

    def to_dto(self) -> ExpenseValidation:
        from claims_kernel.domain.claims import (
            ExpenseValidation as ExpenseValidationDTO,
            ExpenseValidationStatus,
        )

        return ExpenseValidationDTO(
            id=self.id,
            seq=self.seq,
            application_id=self.application_id,
            expense_id=self.expense_id,
            validator_id=self.validator_id,
            original_amount=self.original_amount,
            validation_status=ExpenseValidationStatus(self.validation_status),
            is_within_policy=self.is_within_policy,
            is_receipt_valid=self.is_receipt_valid,
            is_amount_reasonable=self.is_amount_reasonable,
            has_prior_approval=self.has_prior_approval,
            validated_at=self.validated_at,
            validated_amount=self.validated_amount,
            adjustment_reason=self.adjustment_reason,
            rejection_reason=self.rejection_reason,
            policy_reference=self.policy_reference,
        )

    @classmethod
    def from_dto(cls, dto: ExpenseValidation) -> ExpenseValidationModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            application_id=dto.application_id,
            expense_id=dto.expense_id,
            validator_id=dto.validator_id,
            original_amount=dto.original_amount,
            validation_status=dto.validation_status.value,
            is_within_policy=dto.is_within_policy,
            is_receipt_valid=dto.is_receipt_valid,
            is_amount_reasonable=dto.is_amount_reasonable,
            has_prior_approval=dto.has_prior_approval,
            validated_at=dto.validated_at,
            validated_amount=dto.validated_amount,
            adjustment_reason=dto.adjustment_reason,
            rejection_reason=dto.rejection_reason,
            policy_reference=dto.policy_reference,
        )


class MedicalAssessmentModel(Base):
    __tablename__ = "medical_assessments"

    __table_args__ = (
        Index("ix_medical_assessments_application", "application_id", "assessed_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    assessor_id: Mapped[UUID] = mapped_column(nullable=False)
    diagnosis_verified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    treatment_appropriate: Mapped[bool] = mapped_column(Boolean, nullable=False)
    prescription_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    hospital_empaneled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    treatment_duration_appropriate: Mapped[bool] = mapped_column(Boolean, nullable=False)
    medication_prescribed_correctly: Mapped[bool] = mapped_column(Boolean, nullable=False)
    requires_second_opinion: Mapped[bool] = mapped_column(Boolean, nullable=False)
    assessed_at: Mapped[datetime] = mapped_column(nullable=False)
    treatment_necessity: Mapped[str | None] = mapped_column(String(32))
    concerns_raised: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    fraud_indicators: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    medical_opinion: Mapped[str | None] = mapped_column(Text)
    recommended_action: Mapped[str | None] = mapped_column(Text)
    alternative_treatment_suggested: Mapped[str | None] = mapped_column(Text)

    def to_dto(self) -> MedicalAssessment:
        from claims_kernel.domain.claims import MedicalAssessment as MedicalAssessmentDTO

        return MedicalAssessmentDTO(
            id=self.id,
            seq=self.seq,
            application_id=self.application_id,
            assessor_id=self.assessor_id,
            diagnosis_verified=self.diagnosis_verified,
            treatment_appropriate=self.treatment_appropriate,
            prescription_valid=self.prescription_valid,
            hospital_empaneled=self.hospital_empaneled,
            treatment_duration_appropriate=self.treatment_duration_appropriate,
            medication_prescribed_correctly=self.medication_prescribed_correctly,
            requires_second_opinion=self.requires_second_opinion,
            assessed_at=self.assessed_at,
            treatment_necessity=self.treatment_necessity,
            concerns_raised=tuple(self.concerns_raised or ()),
            fraud_indicators=tuple(self.fraud_indicators or ()),
            medical_opinion=self.medical_opinion,
            recommended_action=self.recommended_action,
            alternative_treatment_suggested=self.alternative_treatment_suggested,
        )

    @classmethod
    def from_dto(cls, dto: MedicalAssessment) -> MedicalAssessmentModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            application_id=dto.application_id,
            assessor_id=dto.assessor_id,
            diagnosis_verified=dto.diagnosis_verified,
            treatment_appropriate=dto.treatment_appropriate,
            prescription_valid=dto.prescription_valid,
            hospital_empaneled=dto.hospital_empaneled,
            treatment_duration_appropriate=dto.treatment_duration_appropriate,
            medication_prescribed_correctly=dto.medication_prescribed_correctly,
            requires_second_opinion=dto.requires_second_opinion,
            assessed_at=dto.assessed_at,
            treatment_necessity=dto.treatment_necessity,
            concerns_raised=list(dto.concerns_raised),
            fraud_indicators=list(dto.fraud_indicators),
            medical_opinion=dto.medical_opinion,
            recommended_action=dto.recommended_action,
            alternative_treatment_suggested=dto.alternative_treatment_suggested,
        )


# =============================================================================
# Append-only enforcement
# =============================================================================


@event.listens_for(EligibilityCheckModel, "before_update")
def _prevent_eligibility_update(mapper, connection, target):
    raise ImmutableRecordError("eligibility_check", target.id, "eligibility checks are append-only")


@event.listens_for(EligibilityCheckModel, "before_delete")
def _prevent_eligibility_delete(mapper, connection, target):
    raise ImmutableRecordError("eligibility_check", target.id, "eligibility checks are append-only")


@event.listens_for(ReviewModel, "before_update")
def _prevent_review_update(mapper, connection, target):
    raise ImmutableRecordError("review", target.id, "stage reviews are append-only")


@event.listens_for(ReviewModel, "before_delete")
def _prevent_review_delete(mapper, connection, target):
    raise ImmutableRecordError("review", target.id, "stage reviews are append-only")


@event.listens_for(ExpenseValidationModel, "before_update")
def _prevent_expense_validation_update(mapper, connection, target):
    raise ImmutableRecordError("expense_validation", target.id, "expense validations are append-only")


@event.listens_for(ExpenseValidationModel, "before_delete")
def _prevent_expense_validation_delete(mapper, connection, target):
    raise ImmutableRecordError("expense_validation", target.id, "expense validations are append-only")


@event.listens_for(MedicalAssessmentModel, "before_update")
def _prevent_assessment_update(mapper, connection, target):
    raise ImmutableRecordError("medical_assessment", target.id, "medical assessments are append-only")


@event.listens_for(MedicalAssessmentModel, "before_delete")
def _prevent_assessment_delete(mapper, connection, target):
    raise ImmutableRecordError("medical_assessment", target.id, "medical assessments are append-only")


@event.listens_for(CommentModel, "before_update")
def _prevent_comment_reopen(mapper, connection, target):
    from sqlalchemy import inspect

    history = inspect(target).attrs.is_resolved.history
    if history.deleted and history.deleted[0] and not target.is_resolved:
        raise ImmutableRecordError("comment", target.id, "resolved comments cannot be reopened")
