"""Review timeline tests."""

from uuid import uuid4

import pytest

from claims_kernel.domain.claims import AuditAction, AuditEntityType
from claims_kernel.domain.requests import EligibilityFlags, ExpenseValidationFlags
from claims_kernel.exceptions import NotFoundError


class TestReviewTimeline:

    def test_submission_and_status_change(self, runtime, under_review, medical_officer):
        receipt = under_review()
        timeline = runtime.review_timeline(receipt.id)

        assert [(e.entity_type, e.action) for e in timeline] == [
            (AuditEntityType.APPLICATION, AuditAction.CREATE),
            (AuditEntityType.APPLICATION, AuditAction.UPDATE),
        ]
        change = timeline[-1]
        assert change.previous_status == "pending"
        assert change.new_status == "under_review"
        assert change.actor_id == medical_officer.id
        assert change.description == "application pending -> under_review"

    def test_collects_owned_records_in_order(
        self, runtime, under_review, medical_officer, employee, deterministic_clock
    ):
        receipt = under_review()
        deterministic_clock.advance(60)
        check = runtime.perform_eligibility_check(
            receipt.id,
            EligibilityFlags(category_proof_valid=True, employee_id_verified=True, medical_card_valid=True),
            medical_officer,
        )
        deterministic_clock.advance(60)
        item = runtime.gateway.find_expense_items(receipt.id)[0]
        validation = runtime.validate_expense(
            receipt.id, item.id, ExpenseValidationFlags("approved"), medical_officer
        )
        deterministic_clock.advance(60)
        thread = runtime.open_query(receipt.id, "Prescription", "Please attach it.", medical_officer)
        deterministic_clock.advance(60)
        reply = runtime.reply_to_query(thread.query.id, "Attached.", employee)

        ids = [e.entity_id for e in runtime.review_timeline(receipt.id)]
        assert ids[2:] == [check.id, validation.id, thread.query.id, reply.id]
        timestamps = [e.timestamp for e in runtime.review_timeline(receipt.id)]
        assert timestamps == sorted(timestamps)

    def test_other_applications_excluded(self, runtime, under_review, medical_officer):
        mine = under_review()
        other = under_review()
        runtime.open_query(other.id, "Elsewhere", "Not this claim.", medical_officer)
        entity_ids = {e.entity_id for e in runtime.review_timeline(mine.id)}
        assert entity_ids == {mine.id}

    def test_reply_carries_thread_status(self, runtime, under_review, medical_officer, employee):
        receipt = under_review()
        thread = runtime.open_query(receipt.id, "Bill", "Original bill please.", medical_officer)
        runtime.reply_to_query(thread.query.id, "Sent.", employee)
        reply_entry = runtime.review_timeline(receipt.id)[-1]
        assert reply_entry.entity_type == AuditEntityType.QUERY_MESSAGE
        assert reply_entry.previous_status == "open"
        assert reply_entry.new_status == "user_replied"

    def test_unknown_application(self, runtime):
        with pytest.raises(NotFoundError):
            runtime.review_timeline(uuid4())
