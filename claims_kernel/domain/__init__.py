"""
Pure domain layer.

Value objects, enumerations and decision logic with NO dependencies on:
- ORM (SQLAlchemy) or any storage driver
- Wall-clock time (see clock.py)
- I/O

All domain objects are immutable and deterministic.
"""

from claims_kernel.domain.claims import (
    ADMIN_ROLES,
    REVIEWER_ROLES,
    TERMINAL_APPLICATION_STATUSES,
    ActorRole,
    Application,
    ApplicationDocument,
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
    AuditLogEntry,
    Comment,
    CommentType,
    DocumentReview,
    DocumentType,
    EligibilityCheck,
    EligibilityStatus,
    ExpenseItem,
    PriorPermissionStatus,
    Review,
    ReviewDecision,
    ReviewStage,
    TreatmentType,
    User,
    VerificationStatus,
)
from claims_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from claims_kernel.domain.requests import (
    Actor,
    ApplicationData,
    ApplicationFilter,
    AuditEntryRequest,
    AuditLogFilter,
    DocumentReviewFlags,
    EligibilityFlags,
    ExpenseItemData,
    LedgerTotals,
    Page,
    ReviewFlags,
    SortOrder,
    SubmissionReceipt,
)
from claims_kernel.domain.review_rules import ReviewOverallStatus, ReviewSummary

__all__ = [
    "ADMIN_ROLES",
    "REVIEWER_ROLES",
    "TERMINAL_APPLICATION_STATUSES",
    "Actor",
    "ActorRole",
    "Application",
    "ApplicationData",
    "ApplicationDocument",
    "ApplicationFilter",
    "ApplicationStatus",
    "AuditAction",
    "AuditEntityType",
    "AuditEntryRequest",
    "AuditLogEntry",
    "AuditLogFilter",
    "Clock",
    "Comment",
    "CommentType",
    "DeterministicClock",
    "DocumentReview",
    "DocumentReviewFlags",
    "DocumentType",
    "EligibilityCheck",
    "EligibilityFlags",
    "EligibilityStatus",
    "ExpenseItem",
    "ExpenseItemData",
    "LedgerTotals",
    "Page",
    "PriorPermissionStatus",
    "Review",
    "ReviewDecision",
    "ReviewFlags",
    "ReviewOverallStatus",
    "ReviewStage",
    "ReviewSummary",
    "SortOrder",
    "SubmissionReceipt",
    "SystemClock",
    "TreatmentType",
    "User",
    "VerificationStatus",
]
