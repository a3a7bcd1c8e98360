"""
QueryDesk -- reviewer-to-claimant query threads.

Responsibility:
    Lets a reviewer raise a question about an application and carry on a
    threaded exchange with the claimant until the question is resolved.
    Keeps the thread's status, message counter and per-side unread flags
    in step with its messages.

Architecture position:
    Kernel > Services.  Identity is the explicit ``Actor``: reviewers speak
    for the admin side, the application's owner for the user side.

Invariants enforced:
    - Only reviewers open, resolve, reopen or close a query.
    - Only the application's owner or a reviewer reads or replies.
    - Internal notes are reviewer-only and never shown to the owner; they
      do not change the thread's status or the owner's unread flag.
    - A reply moves the status to the replying side (admin_replied or
      user_replied) and marks the thread unread for the other side.
    - Resolved and closed threads take no replies; closed is final.
    - Message writes and counter updates are compare-and-set on the
      thread's status and message count, and are audited together.

Failure modes:
    - NotFoundError: query or application absent.
    - ValidationError: empty subject or message, owner internal note.
    - TransitionNotPermittedError: caller may not act on the thread, or
      its status does not allow the action.
    - StaleStateError: another writer changed the thread first.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from claims_kernel.domain.claims import (
    ActorRole,
    Application,
    ApplicationQuery,
    AuditAction,
    AuditEntityType,
    Priority,
    QueryMessage,
    QueryParty,
    QueryStatus,
)
from claims_kernel.domain.requests import (
    Actor,
    QueryFilter,
    QueryStats,
    QueryThread,
    coerce_enum,
)
from claims_kernel.exceptions import (
    NotFoundError,
    StaleStateError,
    TransitionNotPermittedError,
    ValidationError,
)
from claims_kernel.logging_config import LogContext, get_logger
from claims_kernel.services.atomic import atomic
from claims_kernel.services.base import BaseService

logger = get_logger("services.queries")

QUERY_SEQUENCE = "query"
QUERY_MESSAGE_SEQUENCE = "query_message"


def _required_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required", field=field, value=value)
    return value.strip()


class QueryDesk(BaseService):
    """
    Query threads over one gateway.

    Contract:
        Writes return the stored records; ``get_thread`` returns the view
        the caller is allowed to see and clears that side's unread flag.

    Non-goals:
        - Does NOT change application status; a claimant's reply does not
          resume a review.
        - Does NOT send notifications or hold attachments.
    """

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    @staticmethod
    def _refuse(query: ApplicationQuery, target: str, action: str, reason: str):
        return TransitionNotPermittedError(
            query.id, query.status.value, target, reason,
            action=action, entity_type="query",
        )

    def _require_query(self, query_id: UUID) -> ApplicationQuery:
        query = self._gateway.queries.find_by_id(query_id)
        if query is None:
            raise NotFoundError("query", query_id)
        return query

    def _party(
        self, query: ApplicationQuery, application: Application, actor: Actor, action: str
    ) -> QueryParty:
        if actor.is_reviewer:
            return QueryParty.ADMIN
        if self._is_owner(application, actor):
            return QueryParty.USER
        raise self._refuse(
            query, query.status.value, action,
            "only the claimant or a reviewer may take part in this query",
        )

    def _require_reviewer(
        self, query: ApplicationQuery, actor: Actor, target: str, action: str
    ) -> None:
        if not actor.is_reviewer:
            raise self._refuse(query, target, action, "only reviewers may change query status")

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def open_query(
        self,
        application_id: UUID,
        subject: str,
        message: str,
        actor: Actor,
        priority: Priority | str = Priority.NORMAL,
    ) -> QueryThread:
        """Open a query with its first message from the reviewer."""
        subject = _required_text(subject, "subject")
        message = _required_text(message, "message")
        priority = coerce_enum(Priority, priority, "priority")

        queries = self._gateway.queries
        messages = self._gateway.query_messages
        with LogContext.bind(application_id=application_id, actor_id=actor.id, operation="open_query"):
            with atomic(self._gateway, "open_query") as scope:
                application = self._require_application(application_id)
                if not actor.is_reviewer:
                    raise TransitionNotPermittedError(
                        application_id, application.status.value, QueryStatus.OPEN.value,
                        "only reviewers may open a query", action="open_query",
                    )
                now = self._clock.now()
                query = queries.create(ApplicationQuery(
                    id=uuid4(),
                    seq=self._gateway.next_sequence(QUERY_SEQUENCE),
                    application_id=application_id,
                    subject=subject,
                    status=QueryStatus.OPEN,
                    priority=priority,
                    created_by=actor.id,
                    created_by_role=actor.role,
                    created_at=now,
                    updated_at=now,
                    last_message_at=now,
                    last_message_by=QueryParty.ADMIN,
                    total_messages=1,
                    unread_by_admin=False,
                    unread_by_user=True,
                    employee_email=application.email,
                ))
                scope.created(queries, query.id)
                first = messages.create(QueryMessage(
                    id=uuid4(),
                    seq=self._gateway.next_sequence(QUERY_MESSAGE_SEQUENCE),
                    query_id=query.id,
                    message=message,
                    sender_type=QueryParty.ADMIN,
                    sender_id=actor.id,
                    sender_role=actor.role,
                    created_at=now,
                    sender_name=actor.name,
                ))
                scope.created(messages, first.id)
                self._audit(actor, AuditEntityType.QUERY, query.id, AuditAction.CREATE, {
                    "application_id": application_id,
                    "subject": subject,
                    "priority": priority,
                    "message_id": first.id,
                })

            logger.info(
                "query_opened",
                extra={"query_id": str(query.id), "priority": priority.value},
            )
        return QueryThread(query=query, messages=(first,))

    def reply(
        self,
        query_id: UUID,
        message: str,
        actor: Actor,
        *,
        is_internal_note: bool = False,
    ) -> QueryMessage:
        """Add a message to an open thread from whichever side ``actor`` is on."""
        message = _required_text(message, "message")

        queries = self._gateway.queries
        messages = self._gateway.query_messages
        with atomic(self._gateway, "reply_to_query") as scope:
            query = self._require_query(query_id)
            application = self._require_application(query.application_id)
            party = self._party(query, application, actor, "reply")
            if party == QueryParty.USER and is_internal_note:
                raise ValidationError(
                    "only reviewers may add internal notes", field="is_internal_note", value=True
                )
            if query.is_closed:
                raise self._refuse(
                    query, query.status.value, "reply",
                    f"query is {query.status.value}; reopen it before replying",
                )

            now = self._clock.now()
            changes: dict = {
                "total_messages": query.total_messages + 1,
                "updated_at": now,
            }
            if not is_internal_note:
                changes["last_message_at"] = now
                changes["last_message_by"] = party
                if party == QueryParty.ADMIN:
                    changes["status"] = QueryStatus.ADMIN_REPLIED
                    changes["unread_by_user"] = True
                else:
                    changes["status"] = QueryStatus.USER_REPLIED
                    changes["unread_by_admin"] = True

            reply = messages.create(QueryMessage(
                id=uuid4(),
                seq=self._gateway.next_sequence(QUERY_MESSAGE_SEQUENCE),
                query_id=query_id,
                message=message,
                sender_type=party,
                sender_id=actor.id,
                sender_role=actor.role,
                created_at=now,
                sender_name=actor.name,
                is_internal_note=is_internal_note,
            ))
            scope.created(messages, reply.id)
            updated = queries.update(
                query_id, changes,
                expected={"status": query.status, "total_messages": query.total_messages},
            )
            if updated is None:
                raise NotFoundError("query", query_id)
            scope.updated(queries, query, updated)
            self._audit(actor, AuditEntityType.QUERY_MESSAGE, reply.id, AuditAction.CREATE, {
                "query_id": query_id,
                "application_id": query.application_id,
                "sender_type": party,
                "is_internal_note": is_internal_note,
                "old_status": query.status,
                "new_status": updated.status,
            })

        logger.info(
            "query_replied",
            extra={
                "query_id": str(query_id),
                "sender_type": party.value,
                "is_internal_note": is_internal_note,
            },
        )
        return reply

    def _set_status(
        self,
        query: ApplicationQuery,
        target: QueryStatus,
        changes: dict,
        actor: Actor,
        operation: str,
    ) -> ApplicationQuery:
        queries = self._gateway.queries
        changes = {"status": target, "updated_at": self._clock.now(), **changes}
        with atomic(self._gateway, operation) as scope:
            updated = queries.update(query.id, changes, expected={"status": query.status})
            if updated is None:
                raise NotFoundError("query", query.id)
            scope.updated(queries, query, updated)
            self._audit(actor, AuditEntityType.QUERY, query.id, AuditAction.UPDATE, {
                "application_id": query.application_id,
                "old_status": query.status,
                "new_status": target,
            })
        logger.info(
            "query_status_changed",
            extra={
                "query_id": str(query.id),
                "from_status": query.status.value,
                "to_status": target.value,
            },
        )
        return updated

    def resolve_query(self, query_id: UUID, actor: Actor) -> ApplicationQuery:
        """Mark a query resolved.  Resolving twice returns the stored record."""
        query = self._require_query(query_id)
        self._require_reviewer(query, actor, QueryStatus.RESOLVED.value, "resolve_query")
        if query.status == QueryStatus.RESOLVED:
            logger.info("query_already_resolved", extra={"query_id": str(query_id)})
            return query
        if query.status == QueryStatus.CLOSED:
            raise self._refuse(query, QueryStatus.RESOLVED.value, "resolve_query", "query is closed")
        return self._set_status(
            query, QueryStatus.RESOLVED,
            {"resolved_at": self._clock.now(), "resolved_by": actor.id},
            actor, "resolve_query",
        )

    def reopen_query(self, query_id: UUID, actor: Actor) -> ApplicationQuery:
        query = self._require_query(query_id)
        self._require_reviewer(query, actor, QueryStatus.ADMIN_REPLIED.value, "reopen_query")
        if query.status != QueryStatus.RESOLVED:
            raise self._refuse(
                query, QueryStatus.ADMIN_REPLIED.value, "reopen_query",
                "only resolved queries can be reopened",
            )
        return self._set_status(
            query, QueryStatus.ADMIN_REPLIED,
            {"resolved_at": None, "resolved_by": None},
            actor, "reopen_query",
        )

    def close_query(self, query_id: UUID, actor: Actor) -> ApplicationQuery:
        query = self._require_query(query_id)
        self._require_reviewer(query, actor, QueryStatus.CLOSED.value, "close_query")
        if query.status == QueryStatus.CLOSED:
            raise self._refuse(query, QueryStatus.CLOSED.value, "close_query", "query is already closed")
        return self._set_status(query, QueryStatus.CLOSED, {}, actor, "close_query")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_thread(self, query_id: UUID, actor: Actor) -> QueryThread:
        """Return the thread as ``actor`` may see it and mark it read for that side.

        The owner never sees internal notes.  The read mark is skipped,
        not forced, when a new message lands in between.
        """
        queries = self._gateway.queries
        with atomic(self._gateway, "read_query") as scope:
            query = self._require_query(query_id)
            application = self._require_application(query.application_id)
            party = self._party(query, application, actor, "read")
            flag = "unread_by_admin" if party == QueryParty.ADMIN else "unread_by_user"

            if getattr(query, flag):
                try:
                    updated = queries.update(
                        query_id, {flag: False},
                        expected={flag: True, "total_messages": query.total_messages},
                    )
                except StaleStateError:
                    logger.info("query_read_mark_skipped", extra={"query_id": str(query_id)})
                else:
                    if updated is not None:
                        scope.updated(queries, query, updated)
                        query = updated
                        self._audit(actor, AuditEntityType.QUERY, query_id, AuditAction.VIEW, {
                            "application_id": query.application_id,
                            "read_by": party,
                        })

            thread = self._gateway.find_query_messages(query_id)
            if party == QueryParty.USER:
                thread = [m for m in thread if not m.is_internal_note]
        return QueryThread(query=query, messages=tuple(thread))

    def list_queries(self, application_id: UUID) -> list[ApplicationQuery]:
        """Queries on one application, newest first."""
        self._require_application(application_id)
        return self._gateway.queries.find_all(
            {"application_id": application_id},
            order_by=(("created_at", True), ("seq", True)),
        )

    def list_all_queries(self, query_filter: QueryFilter | None = None) -> list[ApplicationQuery]:
        """Queries across applications, most recently active first."""
        query_filter = query_filter or QueryFilter()
        status = None
        if query_filter.status is not None:
            status = coerce_enum(QueryStatus, query_filter.status, "status")
        role = None
        if query_filter.created_by_role is not None:
            role = coerce_enum(ActorRole, query_filter.created_by_role, "created_by_role")
        return self._gateway.find_queries(query_filter.application_id, status, role)

    def query_stats(self) -> QueryStats:
        queries = self._gateway.queries
        return QueryStats(
            unread_count=queries.count({"unread_by_admin": True}),
            open_count=queries.count({"status": QueryStatus.OPEN}),
            user_replied_count=queries.count({"status": QueryStatus.USER_REPLIED}),
        )
