"""
Gateway contract tests.

Every adapter that can run without a server is exercised through the same
assertions (``gateway`` fixture: memory, sqlite, and postgres when
CLAIMS_TEST_POSTGRES_URL is set).  The contract lives in
claims_kernel/db/gateway.py; adapters must not diverge from it.
"""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from claims_kernel.db.gateway import Between, EntityKind
from claims_kernel.db.memory import InMemoryGateway
from claims_kernel.domain.claims import (
    ActorRole,
    Application,
    ApplicationQuery,
    ApplicationStatus,
    AuditAction,
    AuditEntityType,
    AuditLogEntry,
    Comment,
    CommentType,
    EligibilityCheck,
    EligibilityStatus,
    ExpenseItem,
    Priority,
    PriorPermissionStatus,
    QueryMessage,
    QueryParty,
    QueryStatus,
    TreatmentType,
    User,
)
from claims_kernel.exceptions import (
    DuplicateRecordError,
    ImmutableRecordError,
    NotConnectedError,
    StaleStateError,
    UnsupportedOperationError,
    ValidationError,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _application(n: int = 1, **overrides) -> Application:
    values = dict(
        id=uuid4(),
        reference_number=f"MR-2024-{n:04d}",
        status=ApplicationStatus.PENDING,
        employee_name="Asha Verma",
        employee_id="EMP-001",
        patient_name="Meera Verma",
        relationship_with_employee="daughter",
        hospital_name="City General Hospital",
        treatment_type=TreatmentType.INPATIENT,
        submitted_at=T0 + timedelta(hours=n),
        updated_at=T0 + timedelta(hours=n),
        submitted_by=uuid4(),
        card_valid_until=date(2025, 12, 31),
        total_amount_claimed=Decimal("1250.75"),
    )
    values.update(overrides)
    return Application(**values)


def _audit_entry(seq: int, at: datetime, entity_id=None) -> AuditLogEntry:
    return AuditLogEntry(
        id=uuid4(),
        seq=seq,
        entity_type=AuditEntityType.APPLICATION,
        entity_id=entity_id or uuid4(),
        action=AuditAction.CREATE,
        actor_id=uuid4(),
        timestamp=at,
        changes={"status": "pending", "amounts": ["1.00", "2.00"]},
        actor_role=ActorRole.EMPLOYEE,
    )


def _eligibility(application_id) -> EligibilityCheck:
    return EligibilityCheck(
        id=uuid4(), seq=1, application_id=application_id, checked_by=uuid4(),
        category_proof_valid=True, employee_id_verified=True, medical_card_valid=True,
        relationship_verified=True, is_within_limits=True, is_treatment_covered=True,
        has_pending_claims=False, prior_permission_status=PriorPermissionStatus.OBTAINED,
        eligibility_status=EligibilityStatus.CONDITIONAL, checked_at=T0,
        conditions=("submit original bills",),
    )


def _comment(application_id, resolved=False) -> Comment:
    return Comment(
        id=uuid4(), seq=1, application_id=application_id, author_id=uuid4(),
        author_role=ActorRole.MEDICAL_OFFICER, comment_type=CommentType.INQUIRY,
        text="Missing prescription", is_internal=True, created_at=T0,
        is_resolved=resolved,
    )


class TestLifecycle:

    def test_operations_require_connection(self, gateway):
        gateway.disconnect()
        with pytest.raises(NotConnectedError) as exc_info:
            gateway.applications.find_all()
        assert exc_info.value.code == "NOT_CONNECTED"
        with pytest.raises(NotConnectedError):
            gateway.next_sequence("anything")
        gateway.connect()

    def test_connect_is_idempotent(self, gateway):
        gateway.connect()
        assert gateway.is_connected()

    def test_context_manager_connects_and_disconnects(self):
        gw = InMemoryGateway()
        with gw as connected:
            assert connected.is_connected()
        assert not gw.is_connected()


class TestCrud:

    def test_create_and_find_round_trip(self, gateway):
        app = _application()
        gateway.applications.create(app)
        loaded = gateway.applications.find_by_id(app.id)
        assert loaded == app
        assert loaded.submitted_at.tzinfo is not None
        assert isinstance(loaded.total_amount_claimed, Decimal)

    def test_missing_record_is_none(self, gateway):
        assert gateway.applications.find_by_id(uuid4()) is None
        assert gateway.applications.update(uuid4(), {"employee_name": "X"}) is None
        assert gateway.applications.delete(uuid4()) is False

    def test_create_rejects_wrong_type(self, gateway):
        with pytest.raises(ValidationError):
            gateway.applications.create(_comment(uuid4()))

    def test_duplicate_reference_number(self, gateway):
        gateway.applications.create(_application(1))
        with pytest.raises(DuplicateRecordError) as exc_info:
            gateway.applications.create(_application(1))
        assert exc_info.value.field == "reference_number"

    def test_update_returns_new_record(self, gateway):
        app = gateway.applications.create(_application())
        updated = gateway.applications.update(
            app.id, {"status": ApplicationStatus.UNDER_REVIEW, "review_comments": "checking"}
        )
        assert updated.status == ApplicationStatus.UNDER_REVIEW
        assert updated.review_comments == "checking"
        assert app.status == ApplicationStatus.PENDING

    def test_update_rejects_id_and_unknown_fields(self, gateway):
        app = gateway.applications.create(_application())
        with pytest.raises(ValidationError):
            gateway.applications.update(app.id, {"id": uuid4()})
        with pytest.raises(ValidationError):
            gateway.applications.update(app.id, {"colour": "red"})
        with pytest.raises(ValidationError):
            gateway.applications.update(app.id, {})

    def test_compare_and_set(self, gateway):
        app = gateway.applications.create(_application())
        gateway.applications.update(
            app.id, {"status": ApplicationStatus.UNDER_REVIEW},
            expected={"status": ApplicationStatus.PENDING},
        )
        with pytest.raises(StaleStateError) as exc_info:
            gateway.applications.update(
                app.id, {"status": ApplicationStatus.APPROVED},
                expected={"status": ApplicationStatus.PENDING},
            )
        assert exc_info.value.code == "STALE_STATE"
        assert gateway.applications.find_by_id(app.id).status == ApplicationStatus.UNDER_REVIEW

    def test_delete_and_count(self, gateway):
        first = gateway.applications.create(_application(1))
        gateway.applications.create(_application(2, employee_id="EMP-002"))
        assert gateway.applications.count() == 2
        assert gateway.applications.count({"employee_id": "EMP-002"}) == 1
        assert gateway.applications.delete(first.id) is True
        assert gateway.applications.count() == 1

    def test_tuple_fields_round_trip(self, gateway):
        check = gateway.eligibility_checks.create(_eligibility(uuid4()))
        loaded = gateway.eligibility_checks.find_by_id(check.id)
        assert loaded.conditions == ("submit original bills",)
        assert loaded.ineligibility_reasons == ()

    def test_date_fields_round_trip(self, gateway):
        item = ExpenseItem(
            id=uuid4(), application_id=uuid4(), bill_number="B-7",
            bill_date=date(2024, 2, 29), description="MRI", amount_claimed=Decimal("8000.00"),
            created_at=T0, updated_at=T0,
        )
        if gateway.provider == "sqlalchemy":
            gateway.applications.create(_application(id=item.application_id))
        gateway.expense_items.create(item)
        assert gateway.expense_items.find_by_id(item.id).bill_date == date(2024, 2, 29)


class TestQueries:

    def test_filter_order_and_limit(self, gateway):
        for n in (1, 2, 3):
            gateway.applications.create(_application(n))
        found = gateway.applications.find_all(
            {"status": ApplicationStatus.PENDING},
            order_by=(("submitted_at", True),),
            limit=2,
        )
        assert [a.reference_number for a in found] == ["MR-2024-0003", "MR-2024-0002"]

    def test_between_is_inclusive(self, gateway):
        for n in (1, 2, 3, 4):
            gateway.applications.create(_application(n))
        found = gateway.applications.find_all(
            between=Between("submitted_at", T0 + timedelta(hours=2), T0 + timedelta(hours=3)),
            order_by=(("submitted_at", False),),
        )
        assert [a.reference_number for a in found] == ["MR-2024-0002", "MR-2024-0003"]

    def test_naive_range_bounds_rejected(self, gateway):
        gateway.applications.create(_application(1))
        with pytest.raises(ValidationError) as exc_info:
            gateway.find_applications_submitted_between(datetime(2024, 1, 1), None)
        assert exc_info.value.field == "submitted_at"
        with pytest.raises(ValidationError):
            gateway.find_audit_entries_between(None, datetime(2025, 1, 1))

    def test_null_criteria(self, gateway):
        gateway.applications.create(_application(1))
        gateway.applications.create(_application(2, department="Finance"))
        found = gateway.applications.find_all({"department": None})
        assert [a.reference_number for a in found] == ["MR-2024-0001"]

    def test_unknown_fields_rejected(self, gateway):
        with pytest.raises(ValidationError):
            gateway.applications.find_all({"nope": 1})
        with pytest.raises(ValidationError):
            gateway.applications.find_all(order_by=(("nope", True),))
        with pytest.raises(ValidationError):
            gateway.applications.find_all(between=Between("nope", 1, 2))
        with pytest.raises(ValidationError):
            gateway.applications.find_all(limit=-1)

    def test_entity_finders(self, gateway):
        app = gateway.applications.create(_application(1))
        gateway.applications.create(_application(2, employee_id="EMP-009"))
        assert gateway.find_application_by_reference("MR-2024-0001") == app
        assert gateway.find_application_by_reference("MR-2024-9999") is None
        assert [a.id for a in gateway.find_applications_by_employee("EMP-001")] == [app.id]
        assert len(gateway.find_applications_by_status(ApplicationStatus.PENDING)) == 2

    def test_audit_entries_newest_first_with_seq_tiebreak(self, gateway):
        entity_id = uuid4()
        gateway.audit_log.create(_audit_entry(1, T0, entity_id))
        gateway.audit_log.create(_audit_entry(2, T0 + timedelta(minutes=1), entity_id))
        gateway.audit_log.create(_audit_entry(3, T0 + timedelta(minutes=1), entity_id))
        entries = gateway.find_audit_entries_for_entity(AuditEntityType.APPLICATION, entity_id)
        assert [e.seq for e in entries] == [3, 2, 1]
        assert entries[0].changes == {"status": "pending", "amounts": ["1.00", "2.00"]}

    def test_users_by_email_and_role(self, gateway):
        user = gateway.users.create(User(
            id=uuid4(), email="mo@example.org", name="Dr. Rao",
            role=ActorRole.MEDICAL_OFFICER, created_at=T0, updated_at=T0,
        ))
        assert gateway.find_user_by_email("mo@example.org") == user
        assert gateway.find_users_by_role(ActorRole.MEDICAL_OFFICER) == [user]
        assert gateway.find_users_by_role(ActorRole.ADMIN) == []


class TestImmutability:

    @pytest.mark.parametrize("kind", [
        EntityKind.AUDIT_LOG,
        EntityKind.ELIGIBILITY_CHECK,
        EntityKind.REVIEW,
        EntityKind.EXPENSE_VALIDATION,
        EntityKind.MEDICAL_ASSESSMENT,
        EntityKind.QUERY_MESSAGE,
    ])
    def test_append_only_kinds_reject_update_and_delete(self, gateway, kind):
        repo = gateway.repository(kind)
        with pytest.raises(ImmutableRecordError):
            repo.update(uuid4(), {"seq": 5})
        with pytest.raises(ImmutableRecordError):
            repo.delete(uuid4())

    def test_audit_entries_never_discarded(self, gateway):
        entry = gateway.audit_log.create(_audit_entry(1, T0))
        with pytest.raises(ImmutableRecordError):
            gateway.audit_log.discard(entry.id)
        assert gateway.audit_log.find_by_id(entry.id) == entry

    def test_resolved_comment_cannot_reopen(self, gateway):
        comment = gateway.comments.create(_comment(uuid4(), resolved=True))
        with pytest.raises(ImmutableRecordError):
            gateway.comments.update(comment.id, {"is_resolved": False})
        assert gateway.comments.find_by_id(comment.id).is_resolved

    def test_restore_puts_back_snapshot(self, gateway):
        app = gateway.applications.create(_application())
        gateway.applications.update(app.id, {"status": ApplicationStatus.UNDER_REVIEW})
        gateway.applications.restore(app)
        assert gateway.applications.find_by_id(app.id) == app

    def test_guarded_restore_keeps_a_later_write(self, gateway):
        app = gateway.applications.create(_application())
        written = gateway.applications.update(app.id, {"status": ApplicationStatus.UNDER_REVIEW})
        gateway.applications.update(app.id, {"status": ApplicationStatus.APPROVED})
        with pytest.raises(StaleStateError):
            gateway.applications.restore(app, expected={"status": written.status})
        assert gateway.applications.find_by_id(app.id).status == ApplicationStatus.APPROVED

        gateway.applications.restore(app, expected={"status": ApplicationStatus.APPROVED})
        assert gateway.applications.find_by_id(app.id) == app


def _query(application_id, seq, at, status=QueryStatus.OPEN) -> ApplicationQuery:
    return ApplicationQuery(
        id=uuid4(), seq=seq, application_id=application_id, subject="Missing bill",
        status=status, priority=Priority.HIGH, created_by=uuid4(),
        created_by_role=ActorRole.MEDICAL_OFFICER, created_at=at, updated_at=at,
        last_message_at=at, last_message_by=QueryParty.ADMIN, total_messages=1,
    )


class TestQueryThreads:

    def test_query_round_trip_and_ordering(self, gateway):
        application_id = uuid4()
        older = gateway.queries.create(_query(application_id, 1, T0))
        newer = gateway.queries.create(
            _query(application_id, 2, T0 + timedelta(hours=1), QueryStatus.USER_REPLIED)
        )
        gateway.queries.create(_query(uuid4(), 3, T0 + timedelta(hours=2)))

        assert gateway.queries.find_by_id(older.id) == older
        assert [q.id for q in gateway.find_queries(application_id)] == [newer.id, older.id]
        assert [q.id for q in gateway.find_queries(status=QueryStatus.USER_REPLIED)] == [newer.id]
        assert gateway.queries.count({"unread_by_user": True}) == 3

    def test_messages_oldest_first(self, gateway):
        query = gateway.queries.create(_query(uuid4(), 1, T0))
        later = gateway.query_messages.create(QueryMessage(
            id=uuid4(), seq=2, query_id=query.id, message="second", sender_type=QueryParty.USER,
            sender_id=uuid4(), sender_role=ActorRole.EMPLOYEE, created_at=T0 + timedelta(minutes=5),
        ))
        first = gateway.query_messages.create(QueryMessage(
            id=uuid4(), seq=1, query_id=query.id, message="first", sender_type=QueryParty.ADMIN,
            sender_id=uuid4(), sender_role=ActorRole.MEDICAL_OFFICER, created_at=T0,
            is_internal_note=True,
        ))
        messages = gateway.find_query_messages(query.id)
        assert [m.id for m in messages] == [first.id, later.id]
        assert messages[0].is_internal_note is True

    def test_guarded_update_on_counter(self, gateway):
        query = gateway.queries.create(_query(uuid4(), 1, T0))
        gateway.queries.update(query.id, {"total_messages": 2}, expected={"total_messages": 1})
        with pytest.raises(StaleStateError):
            gateway.queries.update(query.id, {"total_messages": 2}, expected={"total_messages": 1})


class TestSequencesAndCapabilities:

    def test_sequences_are_independent_and_increasing(self, gateway):
        assert [gateway.next_sequence("a") for _ in range(3)] == [1, 2, 3]
        assert gateway.next_sequence("b") == 1
        assert gateway.next_sequence("a") == 4

    def test_empty_sequence_name_rejected(self, gateway):
        with pytest.raises(ValidationError):
            gateway.next_sequence("")

    def test_raw_query_follows_capability(self, gateway):
        if gateway.capabilities.raw_query:
            gateway.applications.create(_application())
            rows = gateway.raw_query("SELECT count(*) AS n FROM medical_applications")
            assert rows == [{"n": 1}]
        else:
            with pytest.raises(UnsupportedOperationError) as exc_info:
                gateway.raw_query("SELECT 1")
            assert exc_info.value.operation == "raw_query"

    def test_transaction_follows_capability(self, gateway):
        if not gateway.capabilities.transactions:
            with pytest.raises(UnsupportedOperationError):
                with gateway.transaction():
                    pass
            return
        app = _application()
        with pytest.raises(RuntimeError):
            with gateway.transaction():
                gateway.applications.create(app)
                raise RuntimeError("abort")
        assert gateway.applications.find_by_id(app.id) is None

    def test_records_are_frozen_values(self, gateway):
        app = gateway.applications.create(_application())
        with pytest.raises(AttributeError):
            app.status = ApplicationStatus.APPROVED
        assert replace(app, employee_name="Other") != gateway.applications.find_by_id(app.id)
