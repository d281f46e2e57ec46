"""
TicketKeeper State Machine Base

Table-driven state machine used by authentication sessions:
- All state changes go through an explicit transition table
- Invariants are checked before a transition is committed
- Every committed transition is recorded for later inspection

Transition handlers are pure: they compute the next context from the event
and the current context and never touch the outside world.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Tuple, TypeVar

import attrs
import structlog
from returns.result import Failure, Result, Success

from ticketkeeper.core.exceptions import InvariantViolation

logger = structlog.get_logger()


S = TypeVar("S", bound=Enum)  # State type
E = TypeVar("E")  # Event type
C = TypeVar("C")  # Context type


@attrs.define(frozen=True, slots=True)
class Transition(Generic[S]):
    """Immutable record of a committed state transition."""

    from_state: S
    event_type: str
    to_state: S
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.name,
            "event_type": self.event_type,
            "to_state": self.to_state.name,
            "timestamp": self.timestamp.isoformat(),
        }


InvariantFn = Callable[[Any, Any], bool]

# (next_state, context_updater)
TransitionEntry = Tuple[Any, Callable[[Any, Any], Any]]


@attrs.define
class StateMachineBase(ABC, Generic[S, E, C]):
    """
    Base state machine with invariant checking.

    Usage:
        class SessionMachine(StateMachineBase[SessionState, Any, SessionContext]):
            def initial_state(self) -> SessionState:
                return SessionState.IDLE

            def transition_table(self):
                return {
                    (SessionState.IDLE, AuthenticationStarted): (
                        SessionState.AUTHENTICATING,
                        self._handle_start,
                    ),
                }
    """

    _state: S = attrs.field(alias="_state")
    _context: C = attrs.field(alias="_context")
    _history: List[Transition[S]] = attrs.field(factory=list, alias="_history")
    _invariants: List[Tuple[str, InvariantFn]] = attrs.field(factory=list, alias="_invariants")
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="_logger")

    @abstractmethod
    def initial_state(self) -> S:
        """Return the initial state for this state machine."""
        ...

    @abstractmethod
    def transition_table(self) -> Dict[Tuple[S, type], TransitionEntry]:
        """Map (current_state, event_type) to (next_state, context_updater)."""
        ...

    @property
    def state(self) -> S:
        return self._state

    @property
    def context(self) -> C:
        return self._context

    def can_accept(self, event_type: type) -> bool:
        """True if the current state has a transition for event_type."""
        return (self._state, event_type) in self.transition_table()

    def process_event(self, event: E) -> Result[S, str]:
        """
        Process an event and transition to the next state.

        Returns:
            Success(new_state) if the transition was committed
            Failure(error_message) if no transition exists or the
            context update failed

        Raises:
            InvariantViolation: If an invariant fails for the new state
        """
        event_type = type(event)
        table = self.transition_table()
        key = (self._state, event_type)

        if key not in table:
            self._logger.warning(
                "invalid_transition",
                current_state=self._state.name,
                event_type=event_type.__name__,
            )
            return Failure(
                f"No transition for state {self._state.name} with event {event_type.__name__}"
            )

        next_state, context_updater = table[key]

        try:
            new_context = context_updater(event, self._context)
        except Exception as e:
            self._logger.error(
                "context_update_failed",
                error=str(e),
                current_state=self._state.name,
                event_type=event_type.__name__,
            )
            return Failure(f"Context update failed: {e}")

        for name, invariant in self._invariants:
            if not invariant(next_state, new_context):
                self._logger.error(
                    "invariant_violated",
                    invariant=name,
                    from_state=self._state.name,
                    to_state=next_state.name,
                )
                raise InvariantViolation(f"Invariant '{name}' violated")

        self._history.append(
            Transition(
                from_state=self._state,
                event_type=event_type.__name__,
                to_state=next_state,
                timestamp=datetime.now(timezone.utc),
            )
        )
        self._logger.debug(
            "state_transition",
            from_state=self._state.name,
            to_state=next_state.name,
            event_type=event_type.__name__,
        )

        self._state = next_state
        self._context = new_context
        return Success(next_state)

    def add_invariant(self, name: str, invariant: InvariantFn) -> None:
        """Register an invariant (state, context) -> bool checked on every transition."""
        self._invariants.append((name, invariant))

    def get_trace(self) -> List[Transition[S]]:
        """Copy of the transition history."""
        return list(self._history)

    def export_trace(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self._history]
