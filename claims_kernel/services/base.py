"""
BaseService -- common constructor for the mutating services.

Responsibility:
    Holds the injected gateway, audit recorder and clock, and offers the
    one-line audit helper every mutation uses.

Architecture position:
    Kernel > Services -- infrastructure.  Every service that writes
    through the gateway extends this class.

Invariants enforced:
    - Services never open or close the gateway; the runtime owns its
      lifecycle.
    - Multi-record writes run inside ``services.atomic.atomic``.
"""

from abc import ABC
from typing import Any, Mapping
from uuid import UUID

from claims_kernel.db.gateway import PersistenceGateway
from claims_kernel.domain.claims import Application, AuditAction, AuditEntityType, AuditLogEntry
from claims_kernel.domain.clock import Clock, SystemClock
from claims_kernel.domain.requests import Actor, AuditEntryRequest
from claims_kernel.exceptions import NotFoundError
from claims_kernel.services.auditor_service import AuditRecorder


class BaseService(ABC):
    """
    Abstract base class for services that write.

    Contract:
        Receives the single process-wide gateway by injection.

    Non-goals:
        - Does NOT manage connection lifecycle.
        - Read-only reporting belongs in ``claims_kernel/selectors/``.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        auditor: AuditRecorder,
        clock: Clock | None = None,
    ):
        self._gateway = gateway
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def _require_application(self, application_id: UUID) -> Application:
        application = self._gateway.applications.find_by_id(application_id)
        if application is None:
            raise NotFoundError("application", application_id)
        return application

    @staticmethod
    def _is_owner(application: Application, actor: Actor) -> bool:
        return actor.id == application.submitted_by or (
            actor.employee_id is not None and actor.employee_id == application.employee_id
        )

    def _audit(
        self,
        actor: Actor,
        entity_type: AuditEntityType,
        entity_id: UUID,
        action: AuditAction,
        changes: Mapping[str, Any] | None = None,
    ) -> AuditLogEntry:
        return self._auditor.record(
            AuditEntryRequest.from_actor(actor, entity_type, entity_id, action, changes)
        )
