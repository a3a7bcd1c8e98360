"""
Canonical workflow types (``claims_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for status state machines: a ``Workflow`` is a closed
set of states plus the ``Transition`` edges between them, each optionally
gated by a named ``Guard`` and restricted to a set of actor roles.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Guards are
descriptive; ``domain/lifecycle.py`` evaluates them.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Guard:
    """A named condition that must hold before a transition fires."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A permitted edge.  Empty ``roles`` means any actor may request it."""

    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    roles: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a record lifecycle."""

    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in known or t.to_state not in known:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references "
                    f"undeclared state ({t.from_state} -> {t.to_state})"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    "has an outgoing transition"
                )

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def targets_from(self, from_state: str) -> tuple[str, ...]:
        return tuple(t.to_state for t in self.transitions if t.from_state == from_state)
