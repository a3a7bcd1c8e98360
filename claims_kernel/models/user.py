"""
Module: claims_kernel.models.user
Responsibility: ORM persistence for user directory entries (role counts,
    reviewer identity).  Credentials are owned by the upstream auth
    service and are not stored here.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from claims_kernel.db.base import Base

if TYPE_CHECKING:
    from claims_kernel.domain.claims import User


class UserModel(Base):
    __tablename__ = "users"

    __table_args__ = (
        Index("ix_users_role", "role"),
    )

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    employee_id: Mapped[str | None] = mapped_column(String(64))
    department: Mapped[str | None] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> User:
        from claims_kernel.domain.claims import ActorRole, User as UserDTO

        return UserDTO(
            id=self.id,
            email=self.email,
            name=self.name,
            role=ActorRole(self.role),
            created_at=self.created_at,
            updated_at=self.updated_at,
            employee_id=self.employee_id,
            department=self.department,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto: User) -> UserModel:
        return cls(
            id=dto.id,
            email=dto.email,
            name=dto.name,
            role=dto.role.value,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            employee_id=dto.employee_id,
            department=dto.department,
            is_active=dto.is_active,
        )
