"""Explicit state machines for the floor workflows.

Each workflow declares its states and events as enums and lists every legal
(state, event) pair in a ``TransitionTable``. Any pair missing from the table
is rejected with a ConflictError, so an illegal transition can never be
committed by accident.
"""
from enum import Enum
from typing import Generic, Mapping, TypeVar

from cardroom.errors import ConflictError

S = TypeVar("S", bound=Enum)
E = TypeVar("E", bound=Enum)


class TransitionTable(Generic[S, E]):
    """Maps (state, event) pairs to the next state."""

    def __init__(self, name: str, transitions: Mapping[tuple[S, E], S]):
        """Initialize the table.

        Args:
            name: Workflow name used in rejection messages.
            transitions: Every legal (from_state, event) -> to_state.
        """
        self.name = name
        self._transitions = dict(transitions)

    def next_state(self, state: S, event: E) -> S:
        """Resolve the state reached by applying an event.

        Raises:
            ConflictError: If the event is not allowed in the given state.
        """
        try:
            return self._transitions[(state, event)]
        except KeyError:
            raise ConflictError(
                f"Cannot {event.value.replace('_', ' ')} a {self.name} "
                f"in state '{state.value}'",
                code="ILLEGAL_TRANSITION",
            ) from None

    def can_apply(self, state: S, event: E) -> bool:
        return (state, event) in self._transitions

    def events_from(self, state: S) -> list[E]:
        """List the events accepted in a state, in declaration order."""
        return [event for (src, event) in self._transitions if src == state]

    def is_terminal(self, state: S) -> bool:
        """A state is terminal when no event leads out of it."""
        return not self.events_from(state)
