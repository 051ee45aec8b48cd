"""
Canonical workflow types (``billing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the invoice and payment state machines.  Guard,
Transition and Workflow are defined once here; ``domain/invoice.py`` and
``domain/payment.py`` declare the concrete machines.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions for ``command`` actions.
"""

from __future__ import annotations

from dataclasses import dataclass

from billing_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``system=True`` marks transitions driven by another entity (a payment
    moving its invoice) rather than by a direct command.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    system: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} "
                    f"{t.from_state}->{t.to_state} references unknown state"
                )
            if t.from_state in self.terminal_states and not t.system:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    f"has command transition {t.action!r}"
                )

    def targets(self, from_state: str, action: str) -> tuple[str, ...]:
        """All states reachable from ``from_state`` via ``action``."""
        return tuple(
            t.to_state for t in self.transitions
            if t.from_state == from_state and t.action == action
        )

    def allows(self, from_state: str, action: str, to_state: str | None = None) -> bool:
        targets = self.targets(from_state, action)
        if to_state is None:
            return bool(targets)
        return to_state in targets

    def actions_from(self, from_state: str) -> tuple[str, ...]:
        """Distinct actions available from a state, in declaration order."""
        seen: dict[str, None] = {}
        for t in self.transitions:
            if t.from_state == from_state:
                seen.setdefault(t.action, None)
        return tuple(seen)

    def require(
        self,
        entity_type: str,
        entity_id: object,
        from_state: str,
        action: str,
        to_state: str | None = None,
    ) -> str:
        """
        Return the target state for ``action`` or raise.

        When ``to_state`` is omitted the action must have exactly one target.

        Raises:
            InvalidTransitionError: The workflow has no such transition.
        """
        targets = self.targets(from_state, action)
        if to_state is not None:
            if to_state not in targets:
                raise InvalidTransitionError(entity_type, str(entity_id), from_state, action)
            return to_state
        if len(targets) != 1:
            raise InvalidTransitionError(entity_type, str(entity_id), from_state, action)
        return targets[0]
