"""
CredGuard Request State Machine

Table-driven state machine used to model one workflow request.

Each machine:
- looks up ``(state, event type)`` in a transition table
- computes the next context with a pure updater
- checks registered invariants against the candidate (state, context)
  before committing it
- records every committed transition, redacted, for inspection and export

An event with no table entry is refused with ``StateError`` and leaves the
machine untouched. A failed invariant raises ``InvariantViolation``.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Tuple, TypeVar

import attrs
import structlog
from returns.result import Failure, Result, Success

from credguard.core.exceptions import InvariantViolation, StateError
from credguard.core.types import utcnow

logger = structlog.get_logger()


S = TypeVar("S", bound=Enum)
E = TypeVar("E")
C = TypeVar("C")

InvariantFn = Callable[[Any, Any], bool]

# (next_state, context_updater)
TransitionEntry = Tuple[Any, Callable[[Any, Any], Any]]


def _public(attribute: attrs.Attribute, value: Any) -> bool:
    return attribute.repr and not attribute.name.startswith("_")


def _plain(inst: Any, attribute: attrs.Attribute, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    if attrs.has(type(value)):
        return f"<{type(value).__name__}>"
    return value


def redacted_snapshot(obj: Any) -> Dict[str, Any]:
    """
    JSON-safe view of an attrs instance.

    Private fields and fields declared with ``repr=False`` (secrets, tokens)
    are left out.
    """
    if not attrs.has(type(obj)):
        return {}
    return attrs.asdict(obj, filter=_public, value_serializer=_plain)


@attrs.define(frozen=True, slots=True)
class Transition(Generic[S, E]):
    """One committed state change."""

    from_state: S
    event_type: str
    to_state: S
    timestamp: datetime
    context_snapshot: Dict[str, Any] = attrs.Factory(dict)
    event_data: Dict[str, Any] = attrs.Factory(dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.name,
            "event_type": self.event_type,
            "to_state": self.to_state.name,
            "timestamp": self.timestamp.isoformat(),
            "context_snapshot": self.context_snapshot,
            "event_data": self.event_data,
        }


@attrs.define
class StateMachineBase(ABC, Generic[S, E, C]):
    """
    Base class for request state machines.

    Subclasses provide ``initial_state`` and ``transition_table``; context
    updaters must return a new context rather than mutate the old one.

    Example:
        class LogoutMachine(StateMachineBase[FlowState, Any, Ctx]):
            def initial_state(self):
                return FlowState.IN

            def transition_table(self):
                return {(FlowState.IN, LoggedOut): (FlowState.OUT, self._clear)}
    """

    _state: S = attrs.field(alias="_state")
    _context: C = attrs.field(alias="_context")
    _history: List[Transition[S, E]] = attrs.field(factory=list, alias="_history")
    _invariants: List[Tuple[str, InvariantFn]] = attrs.field(factory=list, alias="_invariants")
    _clock: Callable[[], datetime] = attrs.field(default=utcnow, alias="_clock")
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="_logger")

    @abstractmethod
    def initial_state(self) -> S:
        ...

    @abstractmethod
    def transition_table(self) -> Dict[Tuple[S, type], TransitionEntry]:
        """Map ``(state, event type)`` to ``(next state, context updater)``."""
        ...

    @property
    def state(self) -> S:
        return self._state

    @property
    def context(self) -> C:
        return self._context

    def accepts(self, event: E) -> bool:
        """Check whether the current state has a transition for ``event``."""
        return (self._state, type(event)) in self.transition_table()

    def process_event(self, event: E) -> Result[S, StateError]:
        """
        Apply an event.

        Returns:
            Success(new_state), or Failure(StateError) when the event is not
            valid in the current state or its context updater fails

        Raises:
            InvariantViolation: If the candidate state breaks an invariant
        """
        name = type(event).__name__
        entry = self.transition_table().get((self._state, type(event)))
        if entry is None:
            self._logger.warning("invalid_transition", state=self._state.name, event_type=name)
            return Failure(StateError(f"{name} is not valid in state {self._state.name}"))

        next_state, update = entry
        try:
            next_context = update(event, self._context)
        except (TypeError, ValueError, AttributeError) as e:
            self._logger.error(
                "context_update_failed", state=self._state.name, event_type=name, error=str(e)
            )
            return Failure(StateError(f"Context update for {name} failed: {e}"))

        self._check_invariants(next_state, next_context)

        self._history.append(
            Transition(
                from_state=self._state,
                event_type=name,
                to_state=next_state,
                timestamp=self._clock(),
                context_snapshot=redacted_snapshot(next_context),
                event_data=redacted_snapshot(event),
            )
        )
        self._logger.debug(
            "state_transition",
            from_state=self._state.name,
            to_state=next_state.name,
            event_type=name,
        )
        self._state, self._context = next_state, next_context
        return Success(next_state)

    def add_invariant(self, name: str, invariant: InvariantFn) -> None:
        """Register ``invariant(state, context) -> bool``, checked on every transition."""
        self._invariants.append((name, invariant))

    def get_trace(self) -> List[Transition[S, E]]:
        return list(self._history)

    def export_trace_json(self) -> str:
        """Serialize the recorded trace."""
        return json.dumps(
            {
                "machine": type(self).__name__,
                "initial_state": self.initial_state().name,
                "final_state": self._state.name,
                "transitions": [t.to_dict() for t in self._history],
            },
            indent=2,
        )

    def reset(self) -> None:
        """Return to the initial state and drop the trace. Context is left alone."""
        self._state = self.initial_state()
        self._history = []

    def _check_invariants(self, state: S, context: C) -> None:
        for name, invariant in self._invariants:
            if not invariant(state, context):
                self._logger.error(
                    "invariant_violated",
                    invariant=name,
                    from_state=self._state.name,
                    to_state=state.name,
                )
                raise InvariantViolation(f"Invariant '{name}' violated")


def verify_trace(
    trace: List[Transition],
    allowed_transitions: Dict[Tuple[str, str], str],
) -> List[str]:
    """
    Check a trace against ``{(from_state, event_type): to_state}``.

    Returns:
        One message per offending transition; empty when the trace conforms
    """
    errors = []
    for index, t in enumerate(trace):
        step = f"{t.from_state.name} --[{t.event_type}]--> {t.to_state.name}"
        expected = allowed_transitions.get((t.from_state.name, t.event_type))
        if expected is None:
            errors.append(f"Transition {index}: Invalid transition {step}")
        elif expected != t.to_state.name:
            errors.append(f"Transition {index}: Expected {expected}, got {step}")
    return errors
