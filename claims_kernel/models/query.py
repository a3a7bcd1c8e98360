"""
Module: claims_kernel.models.query
Responsibility: ORM persistence for reviewer-to-claimant query threads
    and their messages.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status is one of the query thread values (check constraint).
    - Messages belong to an existing query (FK) and are append-only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from claims_kernel.db.base import Base, UUIDString
from claims_kernel.exceptions import ImmutableRecordError

if TYPE_CHECKING:
    from claims_kernel.domain.claims import ApplicationQuery, QueryMessage


class ApplicationQueryModel(Base):
    __tablename__ = "application_queries"

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'user_replied', 'admin_replied', 'resolved', 'closed')",
            name="ck_application_queries_valid_status",
        ),
        CheckConstraint("total_messages >= 0", name="ck_application_queries_message_count"),
        Index("ix_application_queries_application", "application_id", "created_at"),
        Index("ix_application_queries_status", "status", "last_message_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    application_id: Mapped[UUID] = mapped_column(nullable=False)
    subject: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    created_by: Mapped[UUID] = mapped_column(nullable=False)
    created_by_role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    last_message_at: Mapped[datetime] = mapped_column(nullable=False)
    last_message_by: Mapped[str] = mapped_column(String(16), nullable=False)
    total_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unread_by_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    unread_by_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    employee_email: Mapped[str | None] = mapped_column(String(320))
    resolved_at: Mapped[datetime | None] = mapped_column()
    resolved_by: Mapped[UUID | None] = mapped_column()

    def to_dto(self) -> ApplicationQuery:
        from claims_kernel.domain.claims import (
            ActorRole,
            ApplicationQuery as ApplicationQueryDTO,
            Priority,
            QueryParty,
            QueryStatus,
        )

        return ApplicationQueryDTO(
            id=self.id,
            seq=self.seq,
            application_id=self.application_id,
            subject=self.subject,
            status=QueryStatus(self.status),
            priority=Priority(self.priority),
            created_by=self.created_by,
            created_by_role=ActorRole(self.created_by_role),
            created_at=self.created_at,
            updated_at=self.updated_at,
            last_message_at=self.last_message_at,
            last_message_by=QueryParty(self.last_message_by),
            total_messages=self.total_messages,
            unread_by_admin=self.unread_by_admin,
            unread_by_user=self.unread_by_user,
            employee_email=self.employee_email,
            resolved_at=self.resolved_at,
            resolved_by=self.resolved_by,
        )

    @classmethod
    def from_dto(cls, dto: ApplicationQuery) -> ApplicationQueryModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            application_id=dto.application_id,
            subject=dto.subject,
            status=dto.status.value,
            priority=dto.priority.value,
            created_by=dto.created_by,
            created_by_role=dto.created_by_role.value,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            last_message_at=dto.last_message_at,
            last_message_by=dto.last_message_by.value,
            total_messages=dto.total_messages,
            unread_by_admin=dto.unread_by_admin,
            unread_by_user=dto.unread_by_user,
            employee_email=dto.employee_email,
            resolved_at=dto.resolved_at,
            resolved_by=dto.resolved_by,
        )


class QueryMessageModel(Base):
    __tablename__ = "query_messages"

    __table_args__ = (
        Index("ix_query_messages_query", "query_id", "created_at", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    query_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("application_queries.id"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    sender_type: Mapped[str] = mapped_column(String(16), nullable=False)
    sender_id: Mapped[UUID] = mapped_column(nullable=False)
    sender_role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    sender_name: Mapped[str | None] = mapped_column(String(200))
    is_internal_note: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self) -> QueryMessage:
        from claims_kernel.domain.claims import (
            ActorRole,
            QueryMessage as QueryMessageDTO,
            QueryParty,
        )

        return QueryMessageDTO(
            id=self.id,
            seq=self.seq,
            query_id=self.query_id,
            message=self.message,
            sender_type=QueryParty(self.sender_type),
            sender_id=self.sender_id,
            sender_role=ActorRole(self.sender_role),
            created_at=self.created_at,
            sender_name=self.sender_name,
            is_internal_note=self.is_internal_note,
        )

    @classmethod
    def from_dto(cls, dto: QueryMessage) -> QueryMessageModel:
        return cls(
            id=dto.id,
            seq=dto.seq,
            query_id=dto.query_id,
            message=dto.message,
            sender_type=dto.sender_type.value,
            sender_id=dto.sender_id,
            sender_role=dto.sender_role.value,
            created_at=dto.created_at,
            sender_name=dto.sender_name,
            is_internal_note=dto.is_internal_note,
        )


@event.listens_for(QueryMessageModel, "before_update")
def _prevent_message_update(mapper, connection, target):
    raise ImmutableRecordError("query_message", target.id, "query messages are append-only")


@event.listens_for(QueryMessageModel, "before_delete")
def _prevent_message_delete(mapper, connection, target):
    raise ImmutableRecordError("query_message", target.id, "query messages are append-only")
