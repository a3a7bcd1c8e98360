"""
Module: claims_kernel.models.audit_log
Responsibility: ORM persistence for the append-only audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit rows are append-only; the listeners below reject UPDATE and
      DELETE at flush time, independently of the repository check.
    - seq is unique and allocated from the gateway's "audit_log" sequence;
      it breaks timestamp ties when ordering.
    - entity_id is a weak reference: no foreign key, so entries outlive
      the records they describe.

Failure modes:
    - ImmutableRecordError on any UPDATE/DELETE attempt.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from claims_kernel.db.base import Base
from claims_kernel.exceptions import ImmutableRecordError


class AuditLogModel(Base):
    """Persistent audit entry."""

    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id", "timestamp", "seq"),
        Index("ix_audit_logs_timestamp", "timestamp", "seq"),
        Index("ix_audit_logs_actor", "actor_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    changes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    actor_email: Mapped[str | None] = mapped_column(String(320))
    actor_role: Mapped[str | None] = mapped_column(String(32))
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(512))

    def __repr__(self) -> str:
        return f"<AuditLog seq={self.seq} {self.entity_type}:{self.entity_id} {self.action}>"

    def to_dto(self):
        from claims_kernel.domain.claims import (
            ActorRole,
            AuditAction,
            AuditEntityType,
            AuditLogEntry,
        )

        return AuditLogEntry(
            id=self.id,
            seq=self.seq,
            entity_type=AuditEntityType(self.entity_type),
            entity_id=self.entity_id,
            action=AuditAction(self.action),
            actor_id=self.actor_id,
            timestamp=self.timestamp,
            changes=dict(self.changes or {}),
            actor_email=self.actor_email,
            actor_role=ActorRole(self.actor_role) if self.actor_role else None,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )

    @classmethod
    def from_dto(cls, dto) -> "AuditLogModel":
        return cls(
            id=dto.id,
            seq=dto.seq,
            entity_type=dto.entity_type.value,
            entity_id=dto.entity_id,
            action=dto.action.value,
            actor_id=dto.actor_id,
            timestamp=dto.timestamp,
            changes=dict(dto.changes),
            actor_email=dto.actor_email,
            actor_role=dto.actor_role.value if dto.actor_role else None,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
        )


@event.listens_for(AuditLogModel, "before_update")
def _prevent_audit_update(mapper, connection, target):
    raise ImmutableRecordError("audit_log", target.id, "audit entries are append-only")


@event.listens_for(AuditLogModel, "before_delete")
def _prevent_audit_delete(mapper, connection, target):
    raise ImmutableRecordError("audit_log", target.id, "audit entries are append-only")
