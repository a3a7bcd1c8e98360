"""
QueryDesk tests: opening threads, replies from both sides, internal notes,
resolution, read marks and listings.
"""

from uuid import uuid4

import pytest

from claims_kernel.domain.claims import (
    ActorRole,
    AuditAction,
    AuditEntityType,
    Priority,
    QueryParty,
    QueryStatus,
)
from claims_kernel.domain.requests import AuditLogFilter, QueryFilter
from claims_kernel.exceptions import (
    NotFoundError,
    TransitionNotPermittedError,
    ValidationError,
)


@pytest.fixture
def open_query(runtime, under_review, medical_officer):
    """Open a query on a fresh claim under review."""

    def _open(subject="Missing discharge summary", message="Please upload the discharge summary.", **kwargs):
        receipt = under_review()
        return runtime.open_query(receipt.id, subject, message, medical_officer, **kwargs)

    return _open


class TestOpenQuery:

    def test_opened_with_first_message(self, runtime, open_query, medical_officer, captured_logs):
        thread = open_query(priority="high")
        query = thread.query
        assert query.status == QueryStatus.OPEN
        assert query.priority == Priority.HIGH
        assert query.total_messages == 1
        assert query.unread_by_user is True
        assert query.unread_by_admin is False
        assert query.last_message_by == QueryParty.ADMIN
        assert query.employee_email == "asha@example.org"

        (first,) = thread.messages
        assert first.sender_type == QueryParty.ADMIN
        assert first.sender_id == medical_officer.id
        assert first.message == "Please upload the discharge summary."

        entry = runtime.query_audit_log(AuditLogFilter(entity_id=query.id))[0]
        assert entry.entity_type == AuditEntityType.QUERY
        assert entry.action == AuditAction.CREATE
        assert entry.changes["message_id"] == str(first.id)
        assert any(r["message"] == "query_opened" for r in captured_logs())

    def test_only_reviewers_open(self, runtime, under_review, employee):
        receipt = under_review()
        with pytest.raises(TransitionNotPermittedError) as exc:
            runtime.open_query(receipt.id, "Question", "Why?", employee)
        assert exc.value.action == "open_query"
        assert runtime.gateway.queries.count() == 0
        assert runtime.gateway.query_messages.count() == 0

    def test_subject_and_message_required(self, runtime, under_review, medical_officer):
        receipt = under_review()
        with pytest.raises(ValidationError) as exc:
            runtime.open_query(receipt.id, "  ", "body", medical_officer)
        assert exc.value.field == "subject"
        with pytest.raises(ValidationError) as exc:
            runtime.open_query(receipt.id, "Subject", "", medical_officer)
        assert exc.value.field == "message"

    def test_unknown_priority(self, runtime, under_review, medical_officer):
        receipt = under_review()
        with pytest.raises(ValidationError):
            runtime.open_query(receipt.id, "Subject", "body", medical_officer, priority="whenever")

    def test_unknown_application(self, runtime, medical_officer):
        with pytest.raises(NotFoundError):
            runtime.open_query(uuid4(), "Subject", "body", medical_officer)


class TestReplies:

    def test_claimant_reply_flags_reviewer_side(self, runtime, open_query, employee, deterministic_clock):
        thread = open_query()
        deterministic_clock.advance(120)
        reply = runtime.reply_to_query(thread.query.id, "Uploaded it now.", employee)
        assert reply.sender_type == QueryParty.USER

        query = runtime.gateway.queries.find_by_id(thread.query.id)
        assert query.status == QueryStatus.USER_REPLIED
        assert query.total_messages == 2
        assert query.unread_by_admin is True
        assert query.last_message_by == QueryParty.USER
        assert query.last_message_at == deterministic_clock.now()

        entry = runtime.query_audit_log(AuditLogFilter(entity_id=reply.id))[0]
        assert entry.entity_type == AuditEntityType.QUERY_MESSAGE
        assert entry.changes["old_status"] == "open"
        assert entry.changes["new_status"] == "user_replied"

    def test_reviewer_reply_flags_claimant_side(self, runtime, open_query, employee, admin):
        thread = open_query()
        runtime.reply_to_query(thread.query.id, "Uploaded.", employee)
        runtime.queries.get_thread(thread.query.id, employee)
        runtime.reply_to_query(thread.query.id, "Thanks, checking.", admin)

        query = runtime.gateway.queries.find_by_id(thread.query.id)
        assert query.status == QueryStatus.ADMIN_REPLIED
        assert query.unread_by_user is True
        assert query.total_messages == 3

    def test_internal_note_leaves_status_alone(self, runtime, open_query, medical_officer):
        thread = open_query()
        note = runtime.reply_to_query(
            thread.query.id, "Looks like a duplicate bill.", medical_officer, is_internal_note=True
        )
        assert note.is_internal_note is True

        query = runtime.gateway.queries.find_by_id(thread.query.id)
        assert query.status == QueryStatus.OPEN
        assert query.total_messages == 2
        assert query.last_message_at == thread.query.last_message_at

    def test_claimant_cannot_add_internal_note(self, runtime, open_query, employee):
        thread = open_query()
        with pytest.raises(ValidationError) as exc:
            runtime.reply_to_query(thread.query.id, "secret", employee, is_internal_note=True)
        assert exc.value.field == "is_internal_note"
        assert runtime.gateway.query_messages.count() == 1

    def test_other_employee_refused(self, runtime, open_query, other_employee):
        thread = open_query()
        with pytest.raises(TransitionNotPermittedError) as exc:
            runtime.reply_to_query(thread.query.id, "hello", other_employee)
        assert exc.value.entity_type == "query"
        assert runtime.gateway.queries.find_by_id(thread.query.id).total_messages == 1

    def test_resolved_thread_takes_no_replies(self, runtime, open_query, employee, medical_officer):
        thread = open_query()
        runtime.queries.resolve_query(thread.query.id, medical_officer)
        with pytest.raises(TransitionNotPermittedError):
            runtime.reply_to_query(thread.query.id, "one more thing", employee)
        assert runtime.gateway.query_messages.count() == 1

    def test_unknown_query(self, runtime, employee):
        with pytest.raises(NotFoundError):
            runtime.reply_to_query(uuid4(), "hello", employee)


class TestStatusChanges:

    def test_resolve(self, runtime, open_query, medical_officer, deterministic_clock):
        thread = open_query()
        deterministic_clock.advance(60)
        query = runtime.queries.resolve_query(thread.query.id, medical_officer)
        assert query.status == QueryStatus.RESOLVED
        assert query.resolved_by == medical_officer.id
        assert query.resolved_at == deterministic_clock.now()

    def test_resolve_twice_writes_once(self, runtime, open_query, medical_officer):
        thread = open_query()
        first = runtime.queries.resolve_query(thread.query.id, medical_officer)
        second = runtime.queries.resolve_query(thread.query.id, medical_officer)
        assert second.status == QueryStatus.RESOLVED
        assert second.resolved_at == first.resolved_at
        updates = runtime.query_audit_log(
            AuditLogFilter(entity_id=thread.query.id, action=AuditAction.UPDATE)
        )
        assert len(updates) == 1

    def test_claimant_cannot_resolve(self, runtime, open_query, employee):
        thread = open_query()
        with pytest.raises(TransitionNotPermittedError):
            runtime.queries.resolve_query(thread.query.id, employee)

    def test_reopen_resolved(self, runtime, open_query, medical_officer, employee):
        thread = open_query()
        runtime.queries.resolve_query(thread.query.id, medical_officer)
        query = runtime.queries.reopen_query(thread.query.id, medical_officer)
        assert query.status == QueryStatus.ADMIN_REPLIED
        assert query.resolved_at is None
        assert query.resolved_by is None
        runtime.reply_to_query(thread.query.id, "Sent again.", employee)

    def test_reopen_requires_resolved(self, runtime, open_query, medical_officer):
        thread = open_query()
        with pytest.raises(TransitionNotPermittedError):
            runtime.queries.reopen_query(thread.query.id, medical_officer)

    def test_closed_is_final(self, runtime, open_query, medical_officer, admin):
        thread = open_query()
        closed = runtime.queries.close_query(thread.query.id, admin)
        assert closed.status == QueryStatus.CLOSED
        with pytest.raises(TransitionNotPermittedError):
            runtime.queries.close_query(thread.query.id, admin)
        with pytest.raises(TransitionNotPermittedError):
            runtime.queries.resolve_query(thread.query.id, medical_officer)
        with pytest.raises(TransitionNotPermittedError):
            runtime.queries.reopen_query(thread.query.id, medical_officer)
        with pytest.raises(TransitionNotPermittedError):
            runtime.reply_to_query(thread.query.id, "anyone?", medical_officer)


class TestReadingThreads:

    def test_claimant_read_clears_flag_and_is_audited(self, runtime, open_query, employee):
        thread = open_query()
        view = runtime.queries.get_thread(thread.query.id, employee)
        assert view.query.unread_by_user is False
        assert runtime.gateway.queries.find_by_id(thread.query.id).unread_by_user is False

        views = runtime.query_audit_log(
            AuditLogFilter(entity_id=thread.query.id, action=AuditAction.VIEW)
        )
        assert len(views) == 1
        assert views[0].actor_id == employee.id
        assert views[0].changes["read_by"] == "user"

    def test_second_read_is_not_audited(self, runtime, open_query, employee):
        thread = open_query()
        runtime.queries.get_thread(thread.query.id, employee)
        runtime.queries.get_thread(thread.query.id, employee)
        views = runtime.query_audit_log(
            AuditLogFilter(entity_id=thread.query.id, action=AuditAction.VIEW)
        )
        assert len(views) == 1

    def test_internal_notes_hidden_from_claimant(
        self, runtime, open_query, employee, medical_officer, deterministic_clock
    ):
        thread = open_query()
        deterministic_clock.advance(10)
        runtime.reply_to_query(thread.query.id, "check with hospital", medical_officer, is_internal_note=True)
        deterministic_clock.advance(10)
        runtime.reply_to_query(thread.query.id, "Here it is.", employee)

        claimant_view = runtime.queries.get_thread(thread.query.id, employee)
        assert [m.sender_type for m in claimant_view.messages] == [QueryParty.ADMIN, QueryParty.USER]

        reviewer_view = runtime.queries.get_thread(thread.query.id, medical_officer)
        assert len(reviewer_view.messages) == 3
        assert reviewer_view.messages[1].is_internal_note is True

    def test_messages_oldest_first(self, runtime, open_query, employee, admin, deterministic_clock):
        thread = open_query()
        deterministic_clock.advance(5)
        runtime.reply_to_query(thread.query.id, "first reply", employee)
        deterministic_clock.advance(5)
        runtime.reply_to_query(thread.query.id, "second reply", admin)
        view = runtime.queries.get_thread(thread.query.id, admin)
        assert [m.message for m in view.messages][1:] == ["first reply", "second reply"]

    def test_stranger_cannot_read(self, runtime, open_query, other_employee):
        thread = open_query()
        with pytest.raises(TransitionNotPermittedError):
            runtime.queries.get_thread(thread.query.id, other_employee)


class TestListings:

    def test_queries_of_an_application_newest_first(
        self, runtime, under_review, medical_officer, deterministic_clock
    ):
        receipt = under_review()
        first = runtime.open_query(receipt.id, "First", "one", medical_officer)
        deterministic_clock.advance(60)
        second = runtime.open_query(receipt.id, "Second", "two", medical_officer)
        listed = runtime.queries.list_queries(receipt.id)
        assert [q.id for q in listed] == [second.query.id, first.query.id]

    def test_filter_by_status(self, runtime, open_query, employee, deterministic_clock):
        quiet = open_query()
        deterministic_clock.advance(60)
        answered = open_query()
        runtime.reply_to_query(answered.query.id, "Done.", employee)

        replied = runtime.queries.list_all_queries(QueryFilter(status="user_replied"))
        assert [q.id for q in replied] == [answered.query.id]
        everything = runtime.queries.list_all_queries()
        assert [q.id for q in everything] == [answered.query.id, quiet.query.id]

    def test_filter_by_creator_role(self, runtime, open_query):
        open_query()
        assert runtime.queries.list_all_queries(QueryFilter(created_by_role=ActorRole.ADMIN)) == []
        assert len(runtime.queries.list_all_queries(QueryFilter(created_by_role="medical_officer"))) == 1

    def test_stats(self, runtime, open_query, employee):
        open_query()
        answered = open_query()
        runtime.reply_to_query(answered.query.id, "Done.", employee)
        stats = runtime.queries.query_stats()
        assert stats.open_count == 1
        assert stats.user_replied_count == 1
        assert stats.unread_count == 1
