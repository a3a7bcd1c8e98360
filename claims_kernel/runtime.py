"""
ClaimsRuntime -- composition root.

Responsibility:
    Builds the single PersistenceGateway named by the settings, wires it
    into every service and selector, and exposes the operations the
    outer layers (HTTP, jobs) call.

Architecture position:
    Outermost layer of the kernel.  This is the only place where the
    gateway is constructed; services receive it by injection and there is
    no module-level connection.

Invariants enforced:
    - Exactly one gateway per runtime, chosen at build time.  An unknown
      provider fails here with UnsupportedProviderError, before any
      request is served.
    - Every write surface takes the acting identity explicitly.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Iterator, Sequence
from uuid import UUID

from claims_kernel.db.factory import create_gateway
from claims_kernel.db.gateway import PersistenceGateway
from claims_kernel.domain.claims import (
    Application,
    ApplicationStatus,
    AuditLogEntry,
    Comment,
    CommentType,
    DocumentReview,
    EligibilityCheck,
    ExpenseValidation,
    MedicalAssessment,
    Priority,
    QueryMessage,
    Review,
    ReviewAssignment,
    ReviewDecision,
    ReviewStage,
)
from claims_kernel.domain.clock import Clock, SystemClock
from claims_kernel.domain.listing import ApplicationSortKey
from claims_kernel.domain.requests import (
    Actor,
    ApplicationData,
    ApplicationFilter,
    AuditLogFilter,
    DocumentReviewFlags,
    EligibilityFlags,
    ExpenseItemData,
    ExpenseValidationFlags,
    MedicalAssessmentFlags,
    Page,
    QueryThread,
    ReviewFlags,
    SortOrder,
    SubmissionReceipt,
)
from claims_kernel.domain.review_rules import ReviewSummary
from claims_kernel.logging_config import configure_logging, get_logger
from claims_kernel.selectors.dashboard_selector import DashboardAggregator, DashboardSnapshot
from claims_kernel.selectors.timeline_selector import ReviewTimeline, TimelineEntry
from claims_kernel.services.assignment_service import ReviewAssignments
from claims_kernel.services.auditor_service import AuditRecorder
from claims_kernel.services.claims_service import ClaimsService
from claims_kernel.services.document_service import DocumentService
from claims_kernel.services.ledger_service import ExpenseLedger
from claims_kernel.services.query_service import QueryDesk
from claims_kernel.services.review_service import ReviewEngine
from claims_kernel.services.status_service import StatusStateMachine
from claims_kernel.services.user_service import UserDirectory

logger = get_logger("runtime")


class ClaimsRuntime:
    """
    All services over one gateway.

    Contract:
        The caller owns the gateway lifecycle (``connect``/``disconnect``
        or ``open_runtime``).  Service attributes are public for callers
        that need the less common operations.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        clock: Clock | None = None,
        *,
        environment: str = "development",
        dashboard_recent_limit: int = 5,
        reference_prefix: str = "MR",
    ):
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.audit = AuditRecorder(gateway, self.clock)
        self.ledger = ExpenseLedger(gateway, self.audit, self.clock)
        self.reviews = ReviewEngine(gateway, self.audit, self.clock)
        self.state_machine = StatusStateMachine(gateway, self.audit, self.reviews, self.clock)
        self.claims = ClaimsService(
            gateway, self.audit, self.state_machine, self.clock,
            reference_prefix=reference_prefix,
        )
        self.documents = DocumentService(gateway, self.audit, self.clock)
        self.users = UserDirectory(gateway, self.audit, self.clock)
        self.queries = QueryDesk(gateway, self.audit, self.clock)
        self.assignments = ReviewAssignments(gateway, self.audit, self.clock)
        self.dashboard = DashboardAggregator(
            gateway, self.clock, environment=environment, recent_limit=dashboard_recent_limit,
        )
        self.timeline = ReviewTimeline(gateway)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        self.gateway.connect()

    def disconnect(self) -> None:
        self.gateway.disconnect()

    # ------------------------------------------------------------------
    # Application lifecycle
    # ------------------------------------------------------------------

    def submit_application(
        self, data: ApplicationData, items: Sequence[ExpenseItemData], actor: Actor
    ) -> SubmissionReceipt:
        return self.claims.submit_application(data, items, actor)

    def get_application(self, application_id: UUID) -> Application | None:
        return self.claims.get_application(application_id)

    def list_applications(
        self,
        application_filter: ApplicationFilter | None = None,
        page: int = 1,
        page_size: int = 20,
        sort_key: ApplicationSortKey | str = ApplicationSortKey.SUBMITTED_AT,
        sort_order: SortOrder | str = SortOrder.DESC,
        actor: Actor | None = None,
    ) -> Page[Application]:
        return self.claims.list_applications(
            application_filter, page, page_size, sort_key, sort_order, actor
        )

    def update_status(
        self,
        application_id: UUID,
        target: ApplicationStatus | str,
        actor: Actor,
        comments: str | None = None,
        approved_amount: Decimal | int | str | None = None,
        expected_status: ApplicationStatus | str | None = None,
    ) -> Application:
        return self.claims.update_status(
            application_id, target, actor, comments, approved_amount, expected_status
        )

    def delete_application(self, application_id: UUID, actor: Actor) -> bool:
        return self.claims.delete_application(application_id, actor)

    # ------------------------------------------------------------------
    # Review surface
    # ------------------------------------------------------------------

    def perform_eligibility_check(
        self, application_id: UUID, flags: EligibilityFlags, actor: Actor
    ) -> EligibilityCheck:
        return self.reviews.perform_eligibility_check(application_id, flags, actor)

    def review_document(
        self,
        application_id: UUID,
        document_id: UUID,
        flags: DocumentReviewFlags,
        actor: Actor,
        remarks: str | None = None,
    ) -> DocumentReview:
        return self.reviews.review_document(application_id, document_id, flags, actor, remarks)

    def add_comment(
        self,
        application_id: UUID,
        text: str,
        comment_type: CommentType | str,
        actor: Actor,
        **options: Any,
    ) -> Comment:
        return self.reviews.add_comment(application_id, text, comment_type, actor, **options)

    def resolve_comment(self, comment_id: UUID, actor: Actor) -> Comment:
        return self.reviews.resolve_comment(comment_id, actor)

    def create_review(
        self,
        application_id: UUID,
        stage: ReviewStage | str,
        decision: ReviewDecision | str,
        flags: ReviewFlags,
        actor: Actor,
    ) -> Review:
        return self.reviews.create_review(application_id, stage, decision, flags, actor)

    def validate_expense(
        self,
        application_id: UUID,
        expense_id: UUID,
        flags: ExpenseValidationFlags,
        actor: Actor,
    ) -> ExpenseValidation:
        return self.reviews.validate_expense(application_id, expense_id, flags, actor)

    def assess_medical(
        self, application_id: UUID, flags: MedicalAssessmentFlags, actor: Actor
    ) -> MedicalAssessment:
        return self.reviews.assess_medical(application_id, flags, actor)

    def summarize(self, application_id: UUID) -> ReviewSummary:
        return self.reviews.summarize(application_id)

    def review_timeline(self, application_id: UUID) -> list[TimelineEntry]:
        return self.timeline.for_application(application_id)

    # ------------------------------------------------------------------
    # Assignments and queries
    # ------------------------------------------------------------------

    def assign_review(
        self,
        application_id: UUID,
        assigned_to: UUID,
        assignment_type: str,
        actor: Actor,
        *,
        priority: Priority | str = Priority.NORMAL,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> ReviewAssignment:
        return self.assignments.assign(
            application_id, assigned_to, assignment_type, actor,
            priority=priority, due_date=due_date, notes=notes,
        )

    def open_query(
        self,
        application_id: UUID,
        subject: str,
        message: str,
        actor: Actor,
        priority: Priority | str = Priority.NORMAL,
    ) -> QueryThread:
        return self.queries.open_query(application_id, subject, message, actor, priority)

    def reply_to_query(
        self, query_id: UUID, message: str, actor: Actor, *, is_internal_note: bool = False
    ) -> QueryMessage:
        return self.queries.reply(query_id, message, actor, is_internal_note=is_internal_note)

    # ------------------------------------------------------------------
    # Audit and reporting
    # ------------------------------------------------------------------

    def query_audit_log(self, audit_filter: AuditLogFilter | None = None) -> list[AuditLogEntry]:
        return self.audit.query(audit_filter or AuditLogFilter())

    def dashboard_snapshot(self) -> DashboardSnapshot:
        return self.dashboard.snapshot()


def build_runtime(settings, clock: Clock | None = None) -> ClaimsRuntime:
    """Build (but do not connect) a runtime from ``claims_config.ClaimsSettings``."""
    gateway = create_gateway(settings.persistence)
    runtime = ClaimsRuntime(
        gateway,
        clock,
        environment=settings.environment,
        dashboard_recent_limit=settings.dashboard_recent_limit,
        reference_prefix=settings.reference_prefix,
    )
    logger.info(
        "runtime_built",
        extra={"provider": gateway.provider, "environment": settings.environment},
    )
    return runtime


@contextmanager
def open_runtime(
    settings,
    clock: Clock | None = None,
    *,
    configure_logs: bool = True,
) -> Iterator[ClaimsRuntime]:
    """Build, connect, yield and finally disconnect a runtime."""
    if configure_logs:
        configure_logging(level=settings.logging.level)
    runtime = build_runtime(settings, clock)
    runtime.connect()
    try:
        yield runtime
    finally:
        runtime.disconnect()
