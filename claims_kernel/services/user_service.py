"""
UserDirectory -- registered users and their roles.

Emails are stored lower-cased and are unique; a second registration
with the same address raises DuplicateRecordError.  Users are never
deleted, only deactivated.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from claims_kernel.domain.claims import ActorRole, AuditAction, AuditEntityType, User
from claims_kernel.domain.requests import Actor, coerce_enum
from claims_kernel.exceptions import DuplicateRecordError, NotFoundError, ValidationError
from claims_kernel.logging_config import get_logger
from claims_kernel.services.atomic import atomic
from claims_kernel.services.base import BaseService

logger = get_logger("services.users")


def normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    local, _, domain = value.partition("@")
    if not local or not domain:
        raise ValidationError("a valid email address is required", field="email", value=email)
    return value


class UserDirectory(BaseService):
    def register_user(
        self,
        email: str,
        name: str,
        role: ActorRole | str,
        actor: Actor,
        employee_id: str | None = None,
        department: str | None = None,
    ) -> User:
        email = normalize_email(email)
        if name is None or not name.strip():
            raise ValidationError("name is required", field="name", value=name)
        role = coerce_enum(ActorRole, role, "role")

        users = self._gateway.users
        with atomic(self._gateway, "register_user") as scope:
            if self._gateway.find_user_by_email(email) is not None:
                raise DuplicateRecordError("user", "email", email)
            now = self._clock.now()
            user = users.create(User(
                id=uuid4(),
                email=email,
                name=name.strip(),
                role=role,
                created_at=now,
                updated_at=now,
                employee_id=employee_id,
                department=department,
            ))
            scope.created(users, user.id)
            self._audit(actor, AuditEntityType.USER, user.id, AuditAction.CREATE, {
                "email": email,
                "role": role,
            })

        logger.info("user_registered", extra={"user_id": str(user.id), "role": role.value})
        return user

    def deactivate_user(self, user_id: UUID, actor: Actor) -> User:
        users = self._gateway.users
        with atomic(self._gateway, "deactivate_user") as scope:
            user = users.find_by_id(user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            if not user.is_active:
                return user
            updated = users.update(
                user_id, {"is_active": False, "updated_at": self._clock.now()}
            )
            scope.updated(users, user, updated)
            self._audit(actor, AuditEntityType.USER, user_id, AuditAction.UPDATE, {
                "is_active": {"old": True, "new": False},
            })

        logger.info("user_deactivated", extra={"user_id": str(user_id)})
        return updated

    def get_user(self, user_id: UUID) -> User | None:
        return self._gateway.users.find_by_id(user_id)

    def find_by_email(self, email: str) -> User | None:
        return self._gateway.find_user_by_email(normalize_email(email))

    def find_by_role(self, role: ActorRole | str) -> list[User]:
        return self._gateway.find_users_by_role(coerce_enum(ActorRole, role, "role"))
