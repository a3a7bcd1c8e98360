"""Tests for ClaimsService: submission, lookup and listing."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from claims_kernel.domain.claims import (
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
    TreatmentType,
)
from claims_kernel.domain.requests import ApplicationFilter, AuditLogFilter
from claims_kernel.exceptions import ValidationError
from claims_kernel.services.claims_service import format_reference_number, reference_sequence_name


class TestReferenceNumbers:

    def test_format(self):
        assert format_reference_number("MR", 2024, 7) == "MR-2024-0007"
        assert format_reference_number("MR", 2024, 12345) == "MR-2024-12345"

    def test_sequence_name_is_per_prefix_and_year(self):
        assert reference_sequence_name("MR", 2024) != reference_sequence_name("MR", 2025)

    def test_sequential_within_year(self, submit):
        assert [submit().reference_number for _ in range(3)] == [
            "MR-2024-0001", "MR-2024-0002", "MR-2024-0003",
        ]

    def test_counter_restarts_each_year(self, submit, deterministic_clock):
        submit()
        deterministic_clock.set_time(datetime(2025, 1, 2, tzinfo=timezone.utc))
        assert submit().reference_number == "MR-2025-0001"


class TestSubmitApplication:

    def test_creates_pending_application_with_items(self, runtime, submit, employee):
        receipt = submit()
        assert receipt.status == ApplicationStatus.PENDING

        details = runtime.claims.get_application_details(receipt.id)
        assert details.application.total_amount_claimed == Decimal("2000.50")
        assert details.application.total_amount_approved == Decimal("0")
        assert details.application.submitted_by == employee.id
        assert details.application.treatment_type == TreatmentType.OPD
        assert [i.bill_number for i in details.expense_items] == ["B-1", "B-2"]
        assert details.documents == ()

    def test_single_create_audit_entry(self, runtime, submit, employee):
        receipt = submit()
        entries = runtime.query_audit_log(AuditLogFilter(entity_id=receipt.id))
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == AuditAction.CREATE
        assert entry.entity_type == AuditEntityType.APPLICATION
        assert entry.actor_id == employee.id
        assert entry.actor_email == employee.email
        assert entry.changes["reference_number"] == receipt.reference_number
        assert entry.changes["expense_items"] == 2
        assert entry.changes["status"] == "pending"

    def test_submission_without_items(self, runtime, submit):
        receipt = submit(items=[])
        assert runtime.get_application(receipt.id).total_amount_claimed == Decimal("0")

    def test_descriptive_fields_trimmed(self, runtime, submit):
        receipt = submit(hospital_name="  Apollo Clinic  ")
        assert runtime.get_application(receipt.id).hospital_name == "Apollo Clinic"

    @pytest.mark.parametrize("field", ["employee_name", "patient_name", "hospital_name"])
    def test_missing_required_field(self, runtime, submit, field):
        with pytest.raises(ValidationError) as exc_info:
            submit(**{field: "  "})
        assert exc_info.value.field == field
        assert runtime.gateway.applications.count() == 0

    def test_unknown_treatment_type(self, submit):
        with pytest.raises(ValidationError) as exc_info:
            submit(treatment_type="spa")
        assert exc_info.value.field == "treatment_type"

    def test_invalid_item_rejects_whole_submission(self, runtime, submit, expense_data):
        with pytest.raises(ValidationError):
            submit(items=[expense_data("B-1", "100"), expense_data("B-2", "-5")])
        assert runtime.gateway.applications.count() == 0
        assert runtime.gateway.expense_items.count() == 0
        assert runtime.gateway.audit_log.count() == 0

    def test_bill_date_must_be_a_date(self, submit, expense_data):
        with pytest.raises(ValidationError) as exc_info:
            submit(items=[expense_data(bill_date=datetime(2024, 2, 1, tzinfo=timezone.utc))])
        assert exc_info.value.field == "bill_date"

    def test_submission_logged(self, submit, captured_logs):
        receipt = submit()
        logs = [r for r in captured_logs() if r["message"] == "application_submitted"]
        assert logs[0]["reference_number"] == receipt.reference_number
        assert logs[0]["application_id"] == str(receipt.id)
        assert logs[0]["total_amount_claimed"] == "2000.50"


class TestLookups:

    def test_get_missing_application(self, runtime):
        assert runtime.get_application(uuid4()) is None
        assert runtime.claims.get_application_details(uuid4()) is None

    def test_find_by_reference(self, runtime, submit):
        receipt = submit()
        assert runtime.claims.find_by_reference(receipt.reference_number).id == receipt.id
        assert runtime.claims.find_by_reference("MR-1999-0001") is None

    def test_find_submitted_between(self, runtime, submit, deterministic_clock):
        first = submit()
        deterministic_clock.advance(days=2)
        second = submit()
        start = deterministic_clock.now() - timedelta(days=1)
        found = runtime.claims.find_submitted_between(start, None)
        assert [a.id for a in found] == [second.id]
        assert first.id not in [a.id for a in found]

    def test_naive_bounds_rejected(self, runtime, submit):
        submit()
        with pytest.raises(ValidationError) as exc_info:
            runtime.claims.find_submitted_between(datetime(2024, 1, 1), None)
        assert exc_info.value.field == "start"


class TestListApplications:

    @pytest.fixture
    def three_claims(self, submit, other_employee, deterministic_clock):
        receipts = []
        for actor in (None, other_employee, None):
            receipts.append(submit(actor=actor))
            deterministic_clock.advance(60)
        return receipts

    def test_default_newest_first(self, runtime, three_claims):
        page = runtime.list_applications()
        assert [a.id for a in page.items] == [r.id for r in reversed(three_claims)]
        assert page.total == 3

    def test_sort_and_page(self, runtime, three_claims):
        page = runtime.list_applications(
            page=2, page_size=2, sort_key="reference_number", sort_order="asc"
        )
        assert [a.reference_number for a in page.items] == ["MR-2024-0003"]
        assert page.total_pages == 2
        assert not page.has_next

    def test_filter_by_status_and_employee(self, runtime, three_claims, medical_officer):
        runtime.update_status(three_claims[0].id, "under_review", medical_officer)
        pending = runtime.list_applications(ApplicationFilter(status="pending"))
        assert pending.total == 2
        mine = runtime.list_applications(ApplicationFilter(employee_id="EMP-002"))
        assert [a.id for a in mine.items] == [three_claims[1].id]

    def test_filter_by_submission_window(self, runtime, three_claims, deterministic_clock):
        first = runtime.get_application(three_claims[0].id)
        page = runtime.list_applications(ApplicationFilter(
            submitted_from=first.submitted_at, submitted_to=first.submitted_at + timedelta(seconds=60),
        ))
        assert page.total == 2

    def test_naive_submission_window_rejected(self, runtime, three_claims):
        with pytest.raises(ValidationError) as exc_info:
            runtime.list_applications(ApplicationFilter(submitted_to=datetime(2025, 1, 1)))
        assert exc_info.value.field == "submitted_to"

    def test_inverted_submission_window_rejected(self, runtime, three_claims):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        with pytest.raises(ValidationError) as exc_info:
            runtime.list_applications(ApplicationFilter(
                submitted_from=now, submitted_to=now - timedelta(days=1),
            ))
        assert exc_info.value.field == "submitted_from"

    def test_employee_sees_only_own(self, runtime, three_claims, employee, other_employee):
        own = runtime.list_applications(actor=employee)
        assert own.total == 2
        assert all(a.employee_id == "EMP-001" for a in own.items)
        other = runtime.list_applications(ApplicationFilter(employee_id="EMP-002"), actor=employee)
        assert other.total == 0
        assert runtime.list_applications(actor=other_employee).total == 1

    def test_reviewer_sees_all(self, runtime, three_claims, medical_officer):
        assert runtime.list_applications(actor=medical_officer).total == 3

    def test_invalid_sort_key(self, runtime):
        with pytest.raises(ValidationError):
            runtime.list_applications(sort_key="patient_name")

    def test_invalid_status_filter(self, runtime):
        with pytest.raises(ValidationError):
            runtime.list_applications(ApplicationFilter(status="lost"))

    def test_invalid_page(self, runtime):
        with pytest.raises(ValidationError):
            runtime.list_applications(page=0)
