"""
SQLAlchemy ORM models for the SQL persistence adapter.

Each model maps exactly one domain record via ``to_dto``/``from_dto``.
Importing this package registers every table on ``Base.metadata``.
"""

from claims_kernel.models.application import (
    ApplicationDocumentModel,
    ApplicationModel,
    ExpenseItemModel,
)
from claims_kernel.models.assignment import ReviewAssignmentModel
from claims_kernel.models.audit_log import AuditLogModel
from claims_kernel.models.query import ApplicationQueryModel, QueryMessageModel
from claims_kernel.models.review import (
    CommentModel,
    DocumentReviewModel,
    EligibilityCheckModel,
    ExpenseValidationModel,
    MedicalAssessmentModel,
    ReviewModel,
)
from claims_kernel.models.sequence import SequenceCounterModel
from claims_kernel.models.user import UserModel

__all__ = [
    "ApplicationDocumentModel",
    "ApplicationModel",
    "ApplicationQueryModel",
    "AuditLogModel",
    "CommentModel",
    "DocumentReviewModel",
    "EligibilityCheckModel",
    "ExpenseItemModel",
    "ExpenseValidationModel",
    "MedicalAssessmentModel",
    "QueryMessageModel",
    "ReviewAssignmentModel",
    "ReviewModel",
    "SequenceCounterModel",
    "UserModel",
]
