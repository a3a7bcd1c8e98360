"""
DocumentService -- uploaded-document metadata of an application.

The storage locator is produced by the file-storage collaborator and is
stored verbatim; this service never parses it.  Deletion is allowed
while the parent application is pending by its owner, or at any time by
a reviewer.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from claims_kernel.domain.claims import (
    Application,
    ApplicationDocument,
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
    DocumentType,
)
from claims_kernel.domain.requests import Actor, coerce_enum
from claims_kernel.exceptions import (
    NotFoundError,
    TransitionNotPermittedError,
    ValidationError,
)
from claims_kernel.logging_config import get_logger
from claims_kernel.services.atomic import atomic
from claims_kernel.services.base import BaseService

logger = get_logger("services.documents")


class DocumentService(BaseService):
    def register_document(
        self,
        application_id: UUID,
        document_type: DocumentType | str,
        file_name: str,
        mime_type: str,
        file_size: int,
        storage_locator: str,
        actor: Actor,
    ) -> ApplicationDocument:
        document_type = coerce_enum(DocumentType, document_type, "document_type")
        for name, value in (
            ("file_name", file_name),
            ("mime_type", mime_type),
            ("storage_locator", storage_locator),
        ):
            if value is None or not str(value).strip():
                raise ValidationError(f"{name} is required", field=name, value=value)
        if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0:
            raise ValidationError(
                "file_size must be a non-negative integer", field="file_size", value=file_size
            )

        documents = self._gateway.documents
        with atomic(self._gateway, "register_document") as scope:
            self._require_application(application_id)
            document = documents.create(ApplicationDocument(
                id=uuid4(),
                application_id=application_id,
                document_type=document_type,
                file_name=file_name.strip(),
                mime_type=mime_type.strip(),
                file_size=file_size,
                storage_locator=storage_locator,
                uploaded_by=actor.id,
                uploaded_at=self._clock.now(),
            ))
            scope.created(documents, document.id)
            self._audit(actor, AuditEntityType.DOCUMENT, document.id, AuditAction.CREATE, {
                "application_id": application_id,
                "document_type": document_type,
                "file_name": document.file_name,
                "file_size": file_size,
            })

        logger.info(
            "document_registered",
            extra={
                "application_id": str(application_id),
                "document_id": str(document.id),
                "document_type": document_type.value,
            },
        )
        return document

    def list_documents(
        self, application_id: UUID, document_type: DocumentType | str | None = None
    ) -> list[ApplicationDocument]:
        self._require_application(application_id)
        if document_type is not None:
            document_type = coerce_enum(DocumentType, document_type, "document_type")
        return self._gateway.find_documents(application_id, document_type)

    def _check_delete_permitted(self, application: Application, actor: Actor) -> None:
        if actor.is_reviewer:
            return
        if not self._is_owner(application, actor):
            reason = "only the owner or a reviewer may remove documents"
        elif application.status != ApplicationStatus.PENDING:
            reason = "documents can only be removed while the application is pending"
        else:
            return
        raise TransitionNotPermittedError(
            application.id,
            application.status.value,
            application.status.value,
            reason,
            action="delete_document",
        )

    def delete_document(self, document_id: UUID, actor: Actor) -> bool:
        documents = self._gateway.documents
        with atomic(self._gateway, "delete_document") as scope:
            document = documents.find_by_id(document_id)
            if document is None:
                raise NotFoundError("document", document_id)
            application = self._require_application(document.application_id)
            self._check_delete_permitted(application, actor)

            self._audit(actor, AuditEntityType.DOCUMENT, document_id, AuditAction.DELETE, {
                "application_id": application.id,
                "file_name": document.file_name,
                "document_type": document.document_type,
            })
            documents.delete(document_id)
            scope.deleted(documents, document)

        logger.info(
            "document_deleted",
            extra={"application_id": str(application.id), "document_id": str(document_id)},
        )
        return True
