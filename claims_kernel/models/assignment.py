"""
Module: claims_kernel.models.assignment
Responsibility: ORM persistence for review assignments.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status and priority are drawn from their closed sets (check constraints).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from claims_kernel.db.base import Base

if TYPE_CHECKING:
    from claims_kernel.domain.claims import ReviewAssignment


class ReviewAssignmentModel(Base):
    __tablename__ = "review_assignments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'reassigned')",
            name="ck_review_assignments_valid_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'normal', 'high', 'urgent')",
            name="ck_review_assignments_valid_priority",
        ),
        Index("ix_review_assignments_assignee", "assigned_to", "status"),
        Index("ix_review_assignments_application", "application_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    assigned_to: Mapped[UUID] = mapped_column(nullable=False)
    assigned_by: Mapped[UUID] = mapped_column(nullable=False)
    assignment_type: Mapped[str] = mapped_column(String(64), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    started_at: Mapped[datetime | None] = mapped_column()
    completed_at: Mapped[datetime | None] = mapped_column()
    notes: Mapped[str | None] = mapped_column(Text)

    def to_dto(self) -> ReviewAssignment:
        from claims_kernel.domain.claims import (
            AssignmentStatus,
            Priority,
            ReviewAssignment as ReviewAssignmentDTO,
        )

        return ReviewAssignmentDTO(
            id=self.id,
            seq=self.seq,
            application_id=self.application_id,
            assigned_to=self.assigned_to,
            assigned_by=self.assigned_by,
            assignment_type=self.assignment_type,
            priority=Priority(self.priority),
            status=AssignmentStatus(self.status),
            assigned_at=self.assigned_at,
            due_date=self.due_date,
            started_at=self.started_at,
            completed_at=self.completed_at,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: ReviewAssignment) -> ReviewAssignmentModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            application_id=dto.application_id,
            assigned_to=dto.assigned_to,
            assigned_by=dto.assigned_by,
            assignment_type=dto.assignment_type,
            priority=dto.priority.value,
            status=dto.status.value,
            assigned_at=dto.assigned_at,
            due_date=dto.due_date,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            notes=dto.notes,
        )
