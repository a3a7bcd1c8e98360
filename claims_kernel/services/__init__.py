"""Services for the claims kernel (write side)."""

from claims_kernel.services.assignment_service import ReviewAssignments
from claims_kernel.services.atomic import AtomicScope, atomic
from claims_kernel.services.auditor_service import AuditRecorder
from claims_kernel.services.claims_service import ApplicationDetails, ClaimsService
from claims_kernel.services.document_service import DocumentService
from claims_kernel.services.ledger_service import ExpenseLedger
from claims_kernel.services.query_service import QueryDesk
from claims_kernel.services.review_service import ReviewEngine
from claims_kernel.services.status_service import StatusStateMachine
from claims_kernel.services.user_service import UserDirectory

__all__ = [
    "ApplicationDetails",
    "AtomicScope",
    "AuditRecorder",
    "ClaimsService",
    "DocumentService",
    "ExpenseLedger",
    "QueryDesk",
    "ReviewAssignments",
    "ReviewEngine",
    "StatusStateMachine",
    "UserDirectory",
    "atomic",
]
