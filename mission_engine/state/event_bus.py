"""
Event bus for the mission engine.

Every component talks to every other component through this bus. Dispatch is
synchronous: emit() returns only after every subscriber has run, in the order
they subscribed.

Usage:
    from .event_bus import EventBus, EventType

    bus = EventBus()
    unsubscribe = bus.on(EventType.MISSION_AVAILABLE, my_handler)

    bus.emit(EventType.MISSION_AVAILABLE, mission_id="tutorial-1", mission=definition)

    # Handler receives event
    def my_handler(event: GameEvent):
        print(f"Mission {event.data['mission_id']} is available")

    unsubscribe()

Event names may also be plain strings, so mission definitions can trigger on
events the engine does not know about ("new-game-started", "boot-complete").
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable


class EventType(str, Enum):
    """Events the mission engine consumes or produces."""

    # Player actions observed by the engine
    MESSAGE_READ = "message-read"
    SOFTWARE_INSTALLED = "software-installed"
    NETWORK_CONNECTED = "network-connected"
    NETWORK_SCAN_COMPLETE = "network-scan-complete"
    FILE_SYSTEM_CONNECTED = "file-system-connected"
    FILE_OPERATION_COMPLETE = "file-operation-complete"
    CREDENTIAL_REGISTERED = "credential-registered"
    SECURE_DELETE_COMPLETE = "secure-delete-complete"
    DEVICE_LOGS_VIEWED = "device-logs-viewed"

    # Mission lifecycle
    MISSION_AVAILABLE = "mission-available"
    MISSION_COMPLETE = "mission-complete"
    MISSION_STATUS_CHANGED = "mission-status-changed"
    MISSION_SUBMITTABLE = "mission-submittable"
    MISSION_EXTENDED = "mission-extended"
    OBJECTIVE_COMPLETE = "objective-complete"

    # Story and scripted content
    STORY_EVENT_TRIGGERED = "story-event-triggered"
    SCRIPTED_EVENT_START = "scripted-event-start"
    SEND_MISSION_INTRO_MESSAGE = "send-mission-intro-message"

    # Mission board
    MISSION_POOL_UPDATED = "mission-pool-updated"


EventName = EventType | str


def event_key(event_type: EventName) -> str:
    """Normalize an enum member or raw string to the bus key."""
    if isinstance(event_type, Enum):
        return event_type.value
    return str(event_type)


@dataclass
class GameEvent:
    """
    Event payload for the event bus.

    Attributes:
        type: Event name (always the normalized string key)
        data: Event-specific payload as dict
        timestamp: When the event was emitted
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __str__(self) -> str:
        return f"[{self.type}] {self.data}"


# Type alias for event handlers
EventHandler = Callable[[GameEvent], None]
Unsubscribe = Callable[[], None]


@dataclass
class _Subscription:
    handler: EventHandler
    once: bool = False
    active: bool = True


class EventBus:
    """
    Synchronous publish/subscribe dispatcher.

    Design decisions:
    - Synchronous: handlers run inside emit(), in subscription order
    - No error isolation: a raising handler propagates out of emit()
    - Instance-scoped: owned by MissionContext, never a process global
    """

    def __init__(self, history_limit: int = 100):
        self._listeners: dict[str, list[_Subscription]] = {}
        self._history: list[GameEvent] = []
        self._history_limit = history_limit

    def on(self, event_type: EventName, handler: EventHandler) -> Unsubscribe:
        """
        Subscribe to an event.

        Args:
            event_type: Event to listen for (EventType or raw name)
            handler: Callback that receives the GameEvent

        Returns:
            A function that removes exactly this subscription
        """
        return self._subscribe(event_key(event_type), handler, once=False)

    def once(self, event_type: EventName, handler: EventHandler) -> Unsubscribe:
        """Subscribe for a single delivery. The subscription is dropped before the handler runs."""
        return self._subscribe(event_key(event_type), handler, once=True)

    def _subscribe(self, key: str, handler: EventHandler, once: bool) -> Unsubscribe:
        sub = _Subscription(handler=handler, once=once)
        self._listeners.setdefault(key, []).append(sub)

        def unsubscribe() -> None:
            self._remove(key, sub)

        return unsubscribe

    def _remove(self, key: str, sub: _Subscription) -> None:
        sub.active = False
        subs = self._listeners.get(key)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._listeners[key]

    def off(self, event_type: EventName, handler: EventHandler) -> None:
        """
        Remove every subscription of a handler for an event.

        Args:
            event_type: The event to unsubscribe from
            handler: The handler to remove
        """
        key = event_key(event_type)
        for sub in list(self._listeners.get(key, [])):
            if sub.handler == handler:
                self._remove(key, sub)

    def emit(
        self,
        event_type: EventName,
        payload: dict[str, Any] | None = None,
        **data,
    ) -> GameEvent:
        """
        Emit an event to all current subscribers.

        Args:
            event_type: The event name
            payload: Event data as a dict (merged with keyword data)
            **data: Event-specific data

        Returns:
            The emitted GameEvent (for chaining/testing)
        """
        merged = dict(payload or {})
        merged.update(data)
        event = GameEvent(type=event_key(event_type), data=merged)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit :]

        # Snapshot so handlers that (un)subscribe during dispatch don't affect this emit
        for sub in list(self._listeners.get(event.type, [])):
            if not sub.active:
                continue
            if sub.once:
                self._remove(event.type, sub)
            sub.handler(event)

        return event

    def subscription_counts(self) -> dict[str, int]:
        """Current number of subscriptions per event name."""
        return {key: len(subs) for key, subs in self._listeners.items() if subs}

    def listener_count(self, event_type: EventName) -> int:
        """Get number of listeners for an event."""
        return len(self._listeners.get(event_key(event_type), []))

    def clear(self) -> None:
        """Remove all subscriptions and history. Used on full reset."""
        for subs in self._listeners.values():
            for sub in subs:
                sub.active = False
        self._listeners.clear()
        self._history.clear()

    def get_history(self, event_type: EventName | None = None) -> list[GameEvent]:
        """
        Get recent event history.

        Args:
            event_type: Filter by event, or None for all events

        Returns:
            List of recent events, oldest first
        """
        if event_type is None:
            return list(self._history)
        key = event_key(event_type)
        return [e for e in self._history if e.type == key]
