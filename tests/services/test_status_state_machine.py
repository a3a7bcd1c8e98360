"""
StatusStateMachine tests: guarded transitions, approval amounts, audit
entries and deletion rules, on every adapter.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from claims_kernel.domain.claims import (
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
)
from claims_kernel.domain.requests import AuditLogFilter
from claims_kernel.exceptions import (
    NotFoundError,
    StaleStateError,
    TransitionNotPermittedError,
    ValidationError,
)


def _status_entries(runtime, application_id):
    return [
        e for e in runtime.query_audit_log(AuditLogFilter(entity_id=application_id))
        if e.action != AuditAction.CREATE
    ]


class TestTransitions:

    def test_start_review(self, runtime, submit, medical_officer, deterministic_clock):
        receipt = submit()
        deterministic_clock.advance(300)
        updated = runtime.update_status(receipt.id, "under_review", medical_officer, comments="picked up")
        assert updated.status == ApplicationStatus.UNDER_REVIEW
        assert updated.reviewed_by == medical_officer.id
        assert updated.reviewed_at == deterministic_clock.now()
        assert updated.updated_at == deterministic_clock.now()
        assert updated.review_comments == "picked up"
        assert updated.processed_at is None

    def test_transition_writes_one_audit_entry(self, runtime, submit, medical_officer):
        receipt = submit()
        runtime.update_status(receipt.id, "under_review", medical_officer)
        entries = _status_entries(runtime, receipt.id)
        assert len(entries) == 1
        assert entries[0].action == AuditAction.UPDATE
        assert entries[0].changes["old_status"] == "pending"
        assert entries[0].changes["new_status"] == "under_review"
        assert entries[0].changes["transition"] == "start_review"

    def test_employee_cannot_start_review(self, runtime, submit, employee):
        receipt = submit()
        with pytest.raises(TransitionNotPermittedError) as exc_info:
            runtime.update_status(receipt.id, "under_review", employee)
        assert exc_info.value.from_status == "pending"
        assert exc_info.value.to_status == "under_review"
        assert runtime.get_application(receipt.id).status == ApplicationStatus.PENDING

    def test_refusal_is_logged_and_not_audited(self, runtime, submit, medical_officer, captured_logs):
        receipt = submit()
        with pytest.raises(TransitionNotPermittedError):
            runtime.update_status(receipt.id, "approved", medical_officer)
        refused = [r for r in captured_logs() if r["message"] == "status_transition_refused"]
        assert refused[0]["level"] == "WARNING"
        assert refused[0]["to_status"] == "approved"
        assert _status_entries(runtime, receipt.id) == []

    def test_unknown_target_status(self, runtime, submit, medical_officer):
        receipt = submit()
        with pytest.raises(ValidationError):
            runtime.update_status(receipt.id, "archived", medical_officer)

    def test_missing_application(self, runtime, medical_officer):
        with pytest.raises(NotFoundError):
            runtime.update_status(uuid4(), "under_review", medical_officer)

    def test_clarification_round_trip(self, runtime, under_review, medical_officer, employee):
        receipt = under_review()
        runtime.update_status(receipt.id, "clarification_required", medical_officer, comments="need bills")
        resumed = runtime.update_status(receipt.id, "under_review", employee)
        assert resumed.status == ApplicationStatus.UNDER_REVIEW
        transitions = [e.changes["transition"] for e in _status_entries(runtime, receipt.id)]
        assert transitions == ["resume_review", "request_clarification", "start_review"]


class TestDecisions:

    def test_approval_requires_final_review(self, runtime, under_review, admin):
        receipt = under_review()
        with pytest.raises(TransitionNotPermittedError) as exc_info:
            runtime.update_status(receipt.id, "approved", admin)
        assert "no final-stage review" in exc_info.value.reason

    def test_approval_with_amount(self, runtime, under_review, final_review, admin):
        receipt = under_review()
        final_review(receipt.id, "approved")
        approved = runtime.update_status(receipt.id, "approved", admin, approved_amount="1800.00")
        assert approved.status == ApplicationStatus.APPROVED
        assert approved.total_amount_approved == Decimal("1800.00")
        assert approved.processed_by == admin.id
        assert approved.processed_at is not None

        entry = _status_entries(runtime, receipt.id)[0]
        assert entry.action == AuditAction.APPROVE
        assert entry.changes["approved_amount"] == "1800.00"

    def test_approved_amount_cannot_exceed_claimed(self, runtime, under_review, final_review, admin):
        receipt = under_review()
        final_review(receipt.id, "approved")
        with pytest.raises(ValidationError) as exc_info:
            runtime.update_status(receipt.id, "approved", admin, approved_amount="2000.51")
        assert exc_info.value.field == "approved_amount"
        assert runtime.get_application(receipt.id).status == ApplicationStatus.UNDER_REVIEW

    def test_rejection_needs_rejected_review(self, runtime, under_review, final_review, admin):
        receipt = under_review()
        final_review(receipt.id, "approved")
        with pytest.raises(TransitionNotPermittedError):
            runtime.update_status(receipt.id, "rejected", admin)
        final_review(receipt.id, "rejected")
        rejected = runtime.update_status(receipt.id, "rejected", admin, comments="not covered")
        assert rejected.status == ApplicationStatus.REJECTED
        assert _status_entries(runtime, receipt.id)[0].action == AuditAction.REJECT

    def test_latest_final_review_wins(self, runtime, under_review, final_review, admin, deterministic_clock):
        receipt = under_review()
        final_review(receipt.id, "rejected")
        deterministic_clock.advance(60)
        final_review(receipt.id, "approved")
        assert runtime.update_status(receipt.id, "completed", admin).status == ApplicationStatus.COMPLETED

    def test_terminal_status_is_final(self, runtime, under_review, final_review, admin):
        receipt = under_review()
        final_review(receipt.id, "approved")
        runtime.update_status(receipt.id, "approved", admin)
        with pytest.raises(TransitionNotPermittedError) as exc_info:
            runtime.update_status(receipt.id, "under_review", admin)
        assert "terminal" in exc_info.value.reason


class TestExpectedStatus:

    def test_matching_expected_status(self, runtime, submit, medical_officer):
        receipt = submit()
        updated = runtime.update_status(
            receipt.id, "under_review", medical_officer, expected_status="pending"
        )
        assert updated.status == ApplicationStatus.UNDER_REVIEW

    def test_stale_expected_status(self, runtime, under_review, medical_officer):
        receipt = under_review()
        with pytest.raises(StaleStateError) as exc_info:
            runtime.update_status(
                receipt.id, "clarification_required", medical_officer, expected_status="pending"
            )
        assert exc_info.value.expected == "pending"
        assert exc_info.value.actual == "under_review"


class TestDeletion:

    def test_owner_deletes_pending_claim(self, runtime, submit, employee, register_document):
        receipt = submit()
        document = register_document(receipt.id)
        assert runtime.delete_application(receipt.id, employee) is True

        assert runtime.get_application(receipt.id) is None
        assert runtime.gateway.expense_items.count({"application_id": receipt.id}) == 0
        assert runtime.gateway.documents.find_by_id(document.id) is None

        deletes = runtime.query_audit_log(AuditLogFilter(action="delete"))
        kinds = sorted(e.entity_type.value for e in deletes)
        assert kinds == ["application", "document", "expense_item", "expense_item"]

    def test_audit_history_survives_deletion(self, runtime, submit, employee):
        receipt = submit()
        runtime.delete_application(receipt.id, employee)
        history = runtime.audit.find_by_entity(AuditEntityType.APPLICATION, receipt.id)
        assert [e.action for e in history] == [AuditAction.DELETE, AuditAction.CREATE]

    def test_owner_cannot_delete_after_review_started(self, runtime, under_review, employee):
        receipt = under_review()
        with pytest.raises(TransitionNotPermittedError) as exc_info:
            runtime.delete_application(receipt.id, employee)
        assert exc_info.value.action == "delete"
        assert runtime.get_application(receipt.id) is not None

    def test_other_employee_cannot_delete(self, runtime, submit, other_employee):
        receipt = submit()
        with pytest.raises(TransitionNotPermittedError):
            runtime.delete_application(receipt.id, other_employee)

    def test_medical_officer_is_not_an_administrator(self, runtime, submit, medical_officer):
        receipt = submit()
        with pytest.raises(TransitionNotPermittedError):
            runtime.delete_application(receipt.id, medical_officer)

    def test_admin_deletes_at_any_status(self, runtime, under_review, final_review, admin):
        receipt = under_review()
        final_review(receipt.id, "approved")
        runtime.update_status(receipt.id, "approved", admin)
        assert runtime.delete_application(receipt.id, admin) is True
        assert runtime.get_application(receipt.id) is None

    def test_review_records_are_kept(self, runtime, under_review, final_review, admin):
        receipt = under_review()
        review = final_review(receipt.id, "approved")
        runtime.delete_application(receipt.id, admin)
        assert runtime.gateway.reviews.find_by_id(review.id) == review

    def test_delete_missing(self, runtime, admin):
        with pytest.raises(NotFoundError):
            runtime.delete_application(uuid4(), admin)
