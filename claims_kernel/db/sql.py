"""
SQLAlchemy persistence adapter.

Responsibility:
    Implements the gateway over any SQLAlchemy-supported relational
    database (PostgreSQL in production, SQLite for tests and local runs).
    Each repository maps its domain record through the ORM model's
    ``from_dto``/``to_dto`` pair.

Architecture position:
    Kernel > DB.  Owns the engine and session factory for this gateway
    instance; there is no module-level engine.

Invariants enforced:
    - Outside ``transaction()`` every repository call runs in its own
      session and commits on success, rolls back on error.
    - Inside ``transaction()`` all calls in the same context share one
      session; the block commits or rolls back as a unit.
    - Compare-and-set updates are a single conditional ``UPDATE ... WHERE``
      so two writers racing on the same pre-read cannot both succeed.
    - Sequence counters are created with INSERT ... ON CONFLICT DO NOTHING
      and incremented under ``SELECT ... FOR UPDATE``.
    - On a shared single-connection pool (in-memory SQLite) sessions and
      transactions never interleave.

Failure modes:
    - DuplicateRecordError when a unique constraint rejects an insert.
    - StaleStateError when a conditional update matches no row although the
      record exists.
    - Other SQLAlchemy errors propagate unchanged.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager, nullcontext
from contextvars import ContextVar
from enum import Enum
from typing import Any, Iterator
from uuid import UUID, uuid4

from sqlalchemy import create_engine, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from claims_kernel.db.base import Base
from claims_kernel.db.gateway import (
    Between,
    EntityKind,
    EntitySpec,
    GatewayCapabilities,
    PersistenceGateway,
    Repository,
)
from claims_kernel.exceptions import DuplicateRecordError, StaleStateError
from claims_kernel.logging_config import get_logger
from claims_kernel.models import (
    ApplicationDocumentModel,
    ApplicationModel,
    ApplicationQueryModel,
    AuditLogModel,
    CommentModel,
    DocumentReviewModel,
    EligibilityCheckModel,
    ExpenseItemModel,
    ExpenseValidationModel,
    MedicalAssessmentModel,
    QueryMessageModel,
    ReviewAssignmentModel,
    ReviewModel,
    SequenceCounterModel,
    UserModel,
)

logger = get_logger("db.sql")

MODEL_FOR_KIND: dict[EntityKind, type[Base]] = {
    EntityKind.APPLICATION: ApplicationModel,
    EntityKind.EXPENSE_ITEM: ExpenseItemModel,
    EntityKind.DOCUMENT: ApplicationDocumentModel,
    EntityKind.ELIGIBILITY_CHECK: EligibilityCheckModel,
    EntityKind.DOCUMENT_REVIEW: DocumentReviewModel,
    EntityKind.COMMENT: CommentModel,
    EntityKind.REVIEW: ReviewModel,
    EntityKind.USER: UserModel,
    EntityKind.AUDIT_LOG: AuditLogModel,
    EntityKind.EXPENSE_VALIDATION: ExpenseValidationModel,
    EntityKind.MEDICAL_ASSESSMENT: MedicalAssessmentModel,
    EntityKind.ASSIGNMENT: ReviewAssignmentModel,
    EntityKind.QUERY: ApplicationQueryModel,
    EntityKind.QUERY_MESSAGE: QueryMessageModel,
}


def to_column_value(value: Any) -> Any:
    """Domain value -> column value for partial updates and filters."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value


class SqlRepository(Repository):
    def __init__(self, gateway: SqlAlchemyGateway, spec: EntitySpec, model: type[Base]):
        super().__init__(gateway, spec)
        self._sql = gateway
        self._model = model

    def _column(self, name: str):
        return getattr(self._model, name)

    def _where(self, criteria: dict[str, Any], between: Between | None) -> list:
        clauses = []
        for name, value in criteria.items():
            column = self._column(name)
            if value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == to_column_value(value))
        if between is not None:
            column = self._column(between.field)
            if between.start is not None:
                clauses.append(column >= between.start)
            if between.end is not None:
                clauses.append(column <= between.end)
        return clauses

    def _duplicate_from(self, exc: IntegrityError, entity: Any) -> DuplicateRecordError:
        message = str(exc.orig).lower()
        for name in self.spec.unique_fields:
            if name in message:
                return DuplicateRecordError(self.kind.value, name, getattr(entity, name))
        return DuplicateRecordError(self.kind.value, "id", entity.id)

    def _insert(self, entity):
        try:
            with self._sql.session() as session:
                session.add(self._model.from_dto(entity))
                session.flush()
        except IntegrityError as exc:
            raise self._duplicate_from(exc, entity) from exc
        return entity

    def _get(self, entity_id: UUID):
        with self._sql.session() as session:
            row = session.get(self._model, entity_id, populate_existing=True)
            return None if row is None else row.to_dto()

    def _select(self, criteria, between, order_by, limit):
        stmt = select(self._model).where(*self._where(criteria, between))
        for name, descending in order_by:
            column = self._column(name)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._sql.session() as session:
            rows = session.execute(
                stmt.execution_options(populate_existing=True)
            ).scalars().all()
            return [row.to_dto() for row in rows]

    def _update(self, entity_id, changes, expected):
        values = {name: to_column_value(v) for name, v in changes.items()}
        with self._sql.session() as session:
            if expected:
                stmt = (
                    update(self._model)
                    .where(self._model.id == entity_id)
                    .where(*self._where(expected, None))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                try:
                    result = session.execute(stmt)
                except IntegrityError as exc:
                    raise DuplicateRecordError(self.kind.value, "update", entity_id) from exc
                if result.rowcount == 0:
                    row = session.get(self._model, entity_id, populate_existing=True)
                    if row is None:
                        return None
                    name = next(iter(expected))
                    raise StaleStateError(
                        self.kind.value,
                        entity_id,
                        to_column_value(expected[name]),
                        getattr(row, name),
                    )
                row = session.get(self._model, entity_id, populate_existing=True)
                return row.to_dto()

            row = session.get(self._model, entity_id, populate_existing=True)
            if row is None:
                return None
            for name, value in values.items():
                setattr(row, name, value)
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateRecordError(self.kind.value, "update", entity_id) from exc
            return row.to_dto()

    def _remove(self, entity_id):
        with self._sql.session() as session:
            row = session.get(self._model, entity_id)
            if row is None:
                return False
            session.delete(row)
            session.flush()
            return True

    def _count(self, criteria):
        stmt = select(func.count()).select_from(self._model).where(
            *self._where(criteria, None)
        )
        with self._sql.session() as session:
            return int(session.execute(stmt).scalar_one())


class SqlAlchemyGateway(PersistenceGateway):
    """
    Relational gateway.

    Contract:
        ``url`` is any SQLAlchemy database URL.  The schema is created on
        connect when ``create_schema`` is True.

    Guarantees:
        - ``capabilities.transactions`` and ``capabilities.raw_query`` are True.
        - In-memory SQLite URLs share one connection across threads so
          every session sees the same database; a gateway-level lock
          holds that connection for one session or transaction at a time.
    """

    provider = "sqlalchemy"
    capabilities = GatewayCapabilities(transactions=True, raw_query=True)

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        create_schema: bool = True,
        pool_size: int | None = None,
        pool_pre_ping: bool = True,
    ):
        super().__init__()
        self._url = url
        self._echo = echo
        self._create_schema = create_schema
        self._pool_size = pool_size
        self._pool_pre_ping = pool_pre_ping
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None
        self._active_session: ContextVar[Session | None] = ContextVar(
            f"claims_sql_session_{id(self)}", default=None
        )
        # One DBAPI connection shared by every thread: sessions take turns.
        self._shared_connection_lock: threading.RLock | None = (
            threading.RLock() if self._uses_shared_connection() else None
        )

    @property
    def engine(self) -> Engine | None:
        return self._engine

    def _uses_shared_connection(self) -> bool:
        return self._url.startswith("sqlite") and (
            ":memory:" in self._url
            or self._url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:")
        )

    def _serialized(self):
        if self._shared_connection_lock is None:
            return nullcontext()
        return self._shared_connection_lock

    def _engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self._echo}
        if self._url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
            if self._uses_shared_connection():
                options["poolclass"] = StaticPool
        else:
            options["pool_pre_ping"] = self._pool_pre_ping
            if self._pool_size is not None:
                options["pool_size"] = self._pool_size
        return options

    def _open(self) -> None:
        self._engine = create_engine(self._url, **self._engine_options())
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        if self._create_schema:
            Base.metadata.create_all(self._engine)
        logger.info(
            "sql_engine_created",
            extra={"dialect": self._engine.dialect.name, "schema_created": self._create_schema},
        )

    def _close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def _make_repository(self, spec: EntitySpec) -> Repository:
        return SqlRepository(self, spec, MODEL_FOR_KIND[spec.kind])

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield the active transaction's session, or a self-committing one."""
        active = self._active_session.get()
        if active is not None:
            yield active
            return
        with self._serialized():
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        if self._active_session.get() is not None:
            # Joined: the outermost block owns commit/rollback.
            yield
            return
        with self._serialized():
            session = self._session_factory()
            token = self._active_session.set(session)
            try:
                yield
                session.commit()
                logger.debug("sql_transaction_committed")
            except Exception:
                session.rollback()
                logger.info("sql_transaction_rolled_back")
                raise
            finally:
                self._active_session.reset(token)
                session.close()

    def _raw_query(self, statement: str, params: dict[str, Any]) -> list[dict]:
        with self.session() as session:
            result = session.execute(text(statement), params)
            if not result.returns_rows:
                return []
            return [dict(row._mapping) for row in result]

    def _ensure_counter(self, session: Session, name: str) -> None:
        dialect = session.get_bind().dialect.name
        insert_fn = _UPSERT_INSERTS.get(dialect)
        if insert_fn is not None:
            session.execute(
                insert_fn(SequenceCounterModel)
                .values(id=uuid4(), name=name, current_value=0)
                .on_conflict_do_nothing(index_elements=["name"])
            )
            return
        exists = session.execute(
            select(SequenceCounterModel.id).where(SequenceCounterModel.name == name)
        ).first()
        if exists is None:
            session.add(SequenceCounterModel(id=uuid4(), name=name, current_value=0))
            session.flush()

    def _next_sequence(self, name: str) -> int:
        with self.session() as session:
            self._ensure_counter(session, name)
            counter = session.execute(
                select(SequenceCounterModel)
                .where(SequenceCounterModel.name == name)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            counter.current_value += 1
            session.flush()
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": name, "value": counter.current_value},
            )
            return counter.current_value


_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}
