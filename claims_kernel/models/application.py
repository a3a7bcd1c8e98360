"""
Module: claims_kernel.models.application
Responsibility: ORM persistence for claims and the records they own
    (expense items and uploaded document metadata).

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - reference_number is unique.
    - status is one of the claim lifecycle values (check constraint).
    - Expense items and documents reference an existing claim (FK);
      the service layer deletes them before the claim.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from claims_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from claims_kernel.domain.claims import (
        Application,
        ApplicationDocument,
        ExpenseItem,
    )


class ApplicationModel(Base):
    """Persistent reimbursement claim."""

    __tablename__ = "medical_applications"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'under_review', 'clarification_required', "
            "'approved', 'rejected', 'completed')",
            name="ck_medical_applications_valid_status",
        ),
        CheckConstraint(
            "total_amount_claimed >= 0 AND total_amount_approved >= 0",
            name="ck_medical_applications_non_negative_amounts",
        ),
        Index("ix_medical_applications_status", "status"),
        Index("ix_medical_applications_employee", "employee_id"),
        Index("ix_medical_applications_submitted", "submitted_at"),
    )

    reference_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    employee_name: Mapped[str] = mapped_column(String(200), nullable=False)
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    patient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    relationship_with_employee: Mapped[str] = mapped_column(String(64), nullable=False)
    hospital_name: Mapped[str] = mapped_column(String(300), nullable=False)
    treatment_type: Mapped[str] = mapped_column(String(32), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    submitted_by: Mapped[UUID] = mapped_column(nullable=False)
    department: Mapped[str | None] = mapped_column(String(200))
    medical_card_number: Mapped[str | None] = mapped_column(String(64))
    card_valid_until: Mapped[date | None] = mapped_column(Date)
    prior_permission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    emergency_treatment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email: Mapped[str | None] = mapped_column(String(320))
    mobile_number: Mapped[str | None] = mapped_column(String(32))
    total_amount_claimed: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount_approved: Mapped[Decimal] = mapped_column(nullable=False)
    reviewed_by: Mapped[UUID | None] = mapped_column()
    reviewed_at: Mapped[datetime | None] = mapped_column()
    review_comments: Mapped[str | None] = mapped_column(Text)
    processed_by: Mapped[UUID | None] = mapped_column()
    processed_at: Mapped[datetime | None] = mapped_column()

    def __repr__(self) -> str:
        return f"<Application {self.reference_number} status={self.status}>"

    def to_dto(self) -> Application:
        from claims_kernel.domain.claims import (
            Application as ApplicationDTO,
            ApplicationStatus,
            TreatmentType,
        )

        return ApplicationDTO(
            id=self.id,
            reference_number=self.reference_number,
            status=ApplicationStatus(self.status),
            employee_name=self.employee_name,
            employee_id=self.employee_id,
            patient_name=self.patient_name,
            relationship_with_employee=self.relationship_with_employee,
            hospital_name=self.hospital_name,
            treatment_type=TreatmentType(self.treatment_type),
            submitted_at=self.submitted_at,
            updated_at=self.updated_at,
            submitted_by=self.submitted_by,
            department=self.department,
            medical_card_number=self.medical_card_number,
            card_valid_until=self.card_valid_until,
            prior_permission=self.prior_permission,
            emergency_treatment=self.emergency_treatment,
            email=self.email,
            mobile_number=self.mobile_number,
            total_amount_claimed=self.total_amount_claimed,
            total_amount_approved=self.total_amount_approved,
            reviewed_by=self.reviewed_by,
            reviewed_at=self.reviewed_at,
            review_comments=self.review_comments,
            processed_by=self.processed_by,
            processed_at=self.processed_at,
        )

    @classmethod
    def from_dto(cls, dto: Application) -> ApplicationModel:
        return cls(
            id=dto.id,
            reference_number=dto.reference_number,
            status=dto.status.value,
            employee_name=dto.employee_name,
            employee_id=dto.employee_id,
            patient_name=dto.patient_name,
            relationship_with_employee=dto.relationship_with_employee,
            hospital_name=dto.hospital_name,
            treatment_type=dto.treatment_type.value,
            submitted_at=dto.submitted_at,
            updated_at=dto.updated_at,
            submitted_by=dto.submitted_by,
            department=dto.department,
            medical_card_number=dto.medical_card_number,
            card_valid_until=dto.card_valid_until,
            prior_permission=dto.prior_permission,
            emergency_treatment=dto.emergency_treatment,
            email=dto.email,
            mobile_number=dto.mobile_number,
            total_amount_claimed=dto.total_amount_claimed,
            total_amount_approved=dto.total_amount_approved,
            reviewed_by=dto.reviewed_by,
            reviewed_at=dto.reviewed_at,
            review_comments=dto.review_comments,
            processed_by=dto.processed_by,
            processed_at=dto.processed_at,
        )


class ExpenseItemModel(Base):
    """Persistent bill line attached to a claim."""

    __tablename__ = "expense_items"

    __table_args__ = (
        CheckConstraint(
            "amount_claimed >= 0 AND amount_approved >= 0 "
            "AND amount_approved <= amount_claimed",
            name="ck_expense_items_amounts",
        ),
        Index("ix_expense_items_application", "application_id"),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medical_applications.id"), nullable=False,
    )
    bill_number: Mapped[str] = mapped_column(String(100), nullable=False)
    bill_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount_claimed: Mapped[Decimal] = mapped_column(nullable=False)
    amount_approved: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> ExpenseItem:
        from claims_kernel.domain.claims import ExpenseItem as ExpenseItemDTO

        return ExpenseItemDTO(
            id=self.id,
            application_id=self.application_id,
            bill_number=self.bill_number,
            bill_date=self.bill_date,
            description=self.description,
            amount_claimed=self.amount_claimed,
            amount_approved=self.amount_approved,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: ExpenseItem) -> ExpenseItemModel:
        return cls(
            id=dto.id,
            application_id=dto.application_id,
            bill_number=dto.bill_number,
            bill_date=dto.bill_date,
            description=dto.description,
            amount_claimed=dto.amount_claimed,
            amount_approved=dto.amount_approved,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
        )


class ApplicationDocumentModel(Base):
    """Persistent metadata for an uploaded file."""

    __tablename__ = "application_documents"

    __table_args__ = (
        CheckConstraint("file_size >= 0", name="ck_application_documents_size"),
        Index("ix_application_documents_application", "application_id"),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medical_applications.id"), nullable=False,
    )
    document_type: Mapped[str] = mapped_column(String(32), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_locator: Mapped[str] = mapped_column(String(1024), nullable=False)
    uploaded_by: Mapped[UUID] = mapped_column(nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> ApplicationDocument:
        from claims_kernel.domain.claims import (
            ApplicationDocument as ApplicationDocumentDTO,
            DocumentType,
        )

        return ApplicationDocumentDTO(
            id=self.id,
            application_id=self.application_id,
            document_type=DocumentType(self.document_type),
            file_name=self.file_name,
            mime_type=self.mime_type,
            file_size=self.file_size,
            storage_locator=self.storage_locator,
            uploaded_by=self.uploaded_by,
            uploaded_at=self.uploaded_at,
        )

    @classmethod
    def from_dto(cls, dto: ApplicationDocument) -> ApplicationDocumentModel:
        return cls(
            id=dto.id,
            application_id=dto.application_id,
            document_type=dto.document_type.value,
            file_name=dto.file_name,
            mime_type=dto.mime_type,
            file_size=dto.file_size,
            storage_locator=dto.storage_locator,
            uploaded_by=dto.uploaded_by,
            uploaded_at=dto.uploaded_at,
        )
