"""
Trigger condition evaluation.

Conditions are conjunctive: a trigger fires only when every condition holds
for the firing event's payload and the current game state. Unknown condition
kinds never hold.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from ..state.event_bus import EventType
from ..state.schema import (
    Condition,
    EventDataCondition,
    GameState,
    MessageReadCondition,
    SoftwareInstalledCondition,
    UnknownCondition,
)

logger = logging.getLogger(__name__)

StateAccessor = Callable[[], GameState | dict]

_MISSING = object()

# Bus event each condition kind listens on. event_data needs an explicit event.
CONDITION_EVENTS: dict[type, str] = {
    MessageReadCondition: EventType.MESSAGE_READ.value,
    SoftwareInstalledCondition: EventType.SOFTWARE_INSTALLED.value,
}


def matches_payload(match: dict[str, Any] | None, event_data: dict[str, Any]) -> bool:
    """Exact key/value match. A key missing from the payload never matches."""
    return all(event_data.get(key, _MISSING) == value for key, value in (match or {}).items())


def as_game_state(value: GameState | dict | None) -> GameState:
    """Accept either a GameState or a plain dict from the host."""
    if value is None:
        return GameState()
    if isinstance(value, GameState):
        return value
    return GameState.model_validate(value)


def derive_events(conditions: Iterable[Condition] | None, explicit_event: str | None = None) -> set[str]:
    """
    Bus events a trigger must subscribe to.

    Args:
        conditions: The trigger's condition list
        explicit_event: Event name that overrides derivation

    Returns:
        Set of event names (empty when nothing can fire the trigger)
    """
    if explicit_event:
        return {explicit_event}

    events: set[str] = set()
    for condition in conditions or []:
        event = CONDITION_EVENTS.get(type(condition))
        if event:
            events.add(event)
    return events


def evaluate_condition(condition: Condition, event_data: dict[str, Any], state: GameState) -> bool:
    """Evaluate one condition against an event payload and a state snapshot."""
    if isinstance(condition, MessageReadCondition):
        # A message-read event for a different message must not satisfy this
        if "message_id" in event_data:
            return event_data["message_id"] == condition.message_id
        message = state.message(condition.message_id)
        return bool(message and message.read)

    if isinstance(condition, SoftwareInstalledCondition):
        if event_data.get("software_id") == condition.software_id:
            return True
        return condition.software_id in state.software

    if isinstance(condition, EventDataCondition):
        return matches_payload(condition.match, event_data)

    if isinstance(condition, UnknownCondition):
        logger.warning(f"Unknown condition type {condition.kind!r}, treating as unmet")
        return False

    logger.warning(f"Unhandled condition {condition!r}, treating as unmet")
    return False


def check_all_conditions(
    conditions: list[Condition] | None,
    event_data: dict[str, Any] | None,
    state_accessor: StateAccessor | None = None,
) -> bool:
    """
    True when every condition holds.

    With no accessor the state is treated as empty, so state-backed checks
    can only be satisfied by the event payload itself.
    """
    if not conditions:
        return True

    state = as_game_state(state_accessor() if state_accessor else None)
    data = event_data or {}
    return all(evaluate_condition(c, data, state) for c in conditions)
