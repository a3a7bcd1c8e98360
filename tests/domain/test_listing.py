"""Tests for sorting, paging and request value objects."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from claims_kernel.domain.claims import ActorRole, Application, ApplicationStatus, TreatmentType
from claims_kernel.domain.listing import (
    MAX_PAGE_SIZE,
    ApplicationSortKey,
    paginate,
    parse_sort,
    sort_applications,
    validate_paging,
)
from claims_kernel.domain.requests import Actor, Page, SortOrder, coerce_enum
from claims_kernel.exceptions import ValidationError

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _application(n: int, **overrides) -> Application:
    values = dict(
        id=uuid4(),
        reference_number=f"MR-2024-{n:04d}",
        status=ApplicationStatus.PENDING,
        employee_name=f"Employee {n}",
        employee_id=f"EMP-{n:03d}",
        patient_name="Patient",
        relationship_with_employee="self",
        hospital_name="Hospital",
        treatment_type=TreatmentType.OPD,
        submitted_at=T0 + timedelta(hours=n),
        updated_at=T0 + timedelta(hours=n),
        submitted_by=uuid4(),
        total_amount_claimed=Decimal(n * 100),
    )
    values.update(overrides)
    return Application(**values)


class TestParseSort:

    def test_strings_coerced(self):
        assert parse_sort("reference_number", "asc") == (
            ApplicationSortKey.REFERENCE_NUMBER, SortOrder.ASC
        )

    def test_unknown_sort_key_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_sort("submitted_at; DROP TABLE", "asc")
        assert exc_info.value.field == "sort_key"

    def test_unknown_order_rejected(self):
        with pytest.raises(ValidationError):
            parse_sort(ApplicationSortKey.STATUS, "sideways")


class TestSortApplications:

    def test_descending_by_submission(self):
        apps = [_application(1), _application(3), _application(2)]
        ordered = sort_applications(apps, ApplicationSortKey.SUBMITTED_AT, SortOrder.DESC)
        assert [a.reference_number for a in ordered] == [
            "MR-2024-0003", "MR-2024-0002", "MR-2024-0001",
        ]

    def test_employee_name_case_insensitive(self):
        apps = [
            _application(1, employee_name="bala"),
            _application(2, employee_name="Anand"),
            _application(3, employee_name="Chitra"),
        ]
        ordered = sort_applications(apps, ApplicationSortKey.EMPLOYEE_NAME, SortOrder.ASC)
        assert [a.employee_name for a in ordered] == ["Anand", "bala", "Chitra"]

    def test_ties_broken_deterministically(self):
        base = _application(1)
        apps = [replace(base, id=uuid4(), reference_number=f"R{i}") for i in range(5)]
        first = sort_applications(apps, ApplicationSortKey.STATUS, SortOrder.ASC)
        second = sort_applications(list(reversed(apps)), ApplicationSortKey.STATUS, SortOrder.ASC)
        assert [a.id for a in first] == [a.id for a in second]


class TestPaging:

    def test_paginate_slices(self):
        apps = [_application(n) for n in range(1, 6)]
        page = paginate(apps, page=2, page_size=2)
        assert [a.reference_number for a in page.items] == ["MR-2024-0003", "MR-2024-0004"]
        assert page.total == 5
        assert page.total_pages == 3
        assert page.has_next

    def test_page_past_end_is_empty(self):
        page = paginate([_application(1)], page=3, page_size=10)
        assert page.items == ()
        assert not page.has_next

    def test_empty_page_has_no_pages(self):
        assert Page(items=(), page=1, page_size=20, total=0).total_pages == 0

    @pytest.mark.parametrize(
        "page, page_size",
        [(0, 10), (-1, 10), (1, 0), (1, MAX_PAGE_SIZE + 1), (True, 10), (1, "10")],
    )
    def test_invalid_paging_rejected(self, page, page_size):
        with pytest.raises(ValidationError):
            validate_paging(page, page_size)


class TestActor:

    def test_role_coerced_from_string(self):
        actor = Actor(id=uuid4(), role="medical_officer")
        assert actor.role == ActorRole.MEDICAL_OFFICER
        assert actor.is_reviewer
        assert not actor.is_admin

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            Actor(id=uuid4(), role="janitor")

    def test_super_admin_is_admin_and_reviewer(self):
        actor = Actor(id=uuid4(), role=ActorRole.SUPER_ADMIN)
        assert actor.is_admin
        assert actor.is_reviewer


class TestCoerceEnum:

    def test_member_and_value_accepted(self):
        assert coerce_enum(ApplicationStatus, "approved", "status") == ApplicationStatus.APPROVED
        assert coerce_enum(ApplicationStatus, ApplicationStatus.PENDING, "status") is ApplicationStatus.PENDING

    @pytest.mark.parametrize("value", [["pending"], {"status": "pending"}, None, 3, "Pending"])
    def test_non_members_are_validation_errors(self, value):
        with pytest.raises(ValidationError) as exc_info:
            coerce_enum(ApplicationStatus, value, "status")
        assert exc_info.value.field == "status"
