"""
Atomic operations -- all-or-nothing writes on any adapter.

Responsibility:
    Gives services one way to group the writes of a logical operation
    (e.g. claim + expense items + audit entry).  On a gateway that
    supports transactions the block runs inside ``gateway.transaction()``.
    Otherwise the scope records an undo step for every write and, if the
    block raises, replays them newest-first before re-raising.

Architecture position:
    Kernel > Services -- infrastructure used by every mutating service.

Failure modes:
    - The original exception always propagates.
    - A failing undo step is logged with ``compensation_failed`` and the
      remaining steps still run.
    - A restore step whose record was changed again by another writer
      fails with StaleStateError and is logged the same way.
"""

from __future__ import annotations

import dataclasses
from contextlib import contextmanager
from typing import Any, Callable, Iterator
from uuid import UUID

from claims_kernel.db.gateway import PersistenceGateway, Repository
from claims_kernel.logging_config import get_logger

logger = get_logger("services.atomic")


class AtomicScope:
    """Collects undo steps for a non-transactional gateway."""

    def __init__(self, gateway: PersistenceGateway, operation: str):
        self.operation = operation
        self.transactional = gateway.capabilities.transactions
        self._undo: list[tuple[str, Callable[[], Any]]] = []

    def created(self, repository: Repository, entity_id: UUID) -> None:
        if not self.transactional:
            self._undo.append(
                (f"discard {repository.kind.value} {entity_id}",
                 lambda: repository.discard(entity_id))
            )

    def updated(self, repository: Repository, snapshot: Any, written: Any) -> None:
        """Register an undo for an update from ``snapshot`` to ``written``.

        The undo only applies while the record still holds the values this
        operation wrote.
        """
        if self.transactional or written is None:
            return
        expected = {
            f.name: getattr(written, f.name)
            for f in dataclasses.fields(written)
            if getattr(written, f.name) != getattr(snapshot, f.name)
        }
        self._undo.append(
            (f"restore {repository.kind.value} {snapshot.id}",
             lambda: repository.restore(snapshot, expected=expected))
        )

    def deleted(self, repository: Repository, snapshot: Any) -> None:
        if not self.transactional:
            self._undo.append(
                (f"recreate {repository.kind.value} {snapshot.id}",
                 lambda: repository.create(snapshot))
            )

    def compensate(self, error: BaseException) -> None:
        logger.warning(
            "operation_compensating",
            extra={
                "operation": self.operation,
                "steps": len(self._undo),
                "error_type": type(error).__name__,
            },
        )
        while self._undo:
            description, undo = self._undo.pop()
            try:
                undo()
            except Exception:
                logger.exception(
                    "compensation_failed",
                    extra={"operation": self.operation, "step": description},
                )


@contextmanager
def atomic(gateway: PersistenceGateway, operation: str) -> Iterator[AtomicScope]:
    """Run a block of gateway writes as one unit."""
    scope = AtomicScope(gateway, operation)
    if scope.transactional:
        with gateway.transaction():
            yield scope
        return
    try:
        yield scope
    except Exception as exc:
        scope.compensate(exc)
        raise
