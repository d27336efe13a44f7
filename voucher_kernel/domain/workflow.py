"""
Canonical workflow types (``voucher_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the document lifecycle state machine.  The
PostingValidator and DocumentService consult ``DOCUMENT_WORKFLOW`` instead
of hard-coding which status moves are legal.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the service performing the transition evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition.  ``posts_entry=True`` marks the posting move."""
    from_state: str
    to_state: str
    action: str
    guards: tuple[Guard, ...] = ()
    posts_entry: bool = False


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
            raise ValueError(f"initial_state {self.initial_state!r} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"transition {t.action!r} references unknown state "
                    f"({t.from_state!r} -> {t.to_state!r})"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"terminal state {t.from_state!r} has outgoing transition {t.action!r}"
                )

    def transition_for(self, from_state: str, action: str) -> Transition | None:
        """The transition fired by ``action`` in ``from_state``, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


BALANCED_ENTRIES_GUARD = Guard(
    name="balanced_entries",
    description="Sum of debits equals sum of credits within the posting tolerance",
)

DOCUMENT_NUMBER_GUARD = Guard(
    name="document_number_assigned",
    description="Document has an allocated document number",
)

DOCUMENT_WORKFLOW = Workflow(
    name="document",
    description="Voucher lifecycle: draft documents are either posted or cancelled",
    initial_state="draft",
    states=("draft", "posted", "cancelled"),
    transitions=(
        Transition(
            from_state="draft",
            to_state="posted",
            action="post",
            guards=(DOCUMENT_NUMBER_GUARD, BALANCED_ENTRIES_GUARD),
            posts_entry=True,
        ),
        Transition(from_state="draft", to_state="cancelled", action="cancel"),
    ),
    terminal_states=("posted", "cancelled"),
)
