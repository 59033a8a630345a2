"""
Trigger & mission registry.

Owns the catalogue of mission and story-event definitions and wires each one
to the event bus:

- Story events: condition-derived (or explicit) bus events -> conditions ->
  delayed `story-event-triggered`, deduplicated by message subject
- Mission start triggers: named event or predecessor completion -> delayed
  activation -> `mission-available` (+ optional intro message)
- Scripted events: objective completion or secure delete of named files ->
  delayed `scripted-event-start` via the executor
- Consequences: `mission-complete` -> success/failure messages, each with its
  own delay

Every delayed follow-up goes through schedule_pending_event(), which is what
makes in-flight timers serializable across save/load.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable
from uuid import uuid4

from ..config import EngineConfig
from ..state.event_bus import EventBus, EventType, GameEvent, Unsubscribe
from ..state.scheduler import GameTimeScheduler, normalize_delay
from ..state.schema import (
    MissionDefinition,
    MissionStatus,
    PendingEvent,
    PendingEventRecord,
    PendingEventType,
    ScriptedEvent,
    ScriptedTriggerType,
    StartTriggerType,
    StoryEvent,
    verification_objective,
)
from .conditions import StateAccessor, check_all_conditions, derive_events, matches_payload
from .scripted import ScriptedEventExecutor

logger = logging.getLogger(__name__)


def normalize_definition(definition: MissionDefinition) -> MissionDefinition:
    """
    Return a registered copy of a definition.

    - Missions with objectives always end in a verification objective
    - Briefings without attachments get one credential attachment per network
    """
    mission = definition.model_copy(deep=True)

    if mission.objectives and not mission.has_verification():
        mission.objectives.append(verification_objective())

    briefing = mission.briefing_message
    if briefing is not None and mission.networks and not briefing.attachments:
        briefing.attachments = [
            n.credential_attachment().model_dump(mode="json") for n in mission.networks
        ]

    return mission


def story_dedup_key(payload: dict[str, Any]) -> str | None:
    """Stable key for a story/consequence delivery: explicit key, then subject, then event id."""
    if payload.get("dedup_key"):
        return payload["dedup_key"]
    message = payload.get("message") or {}
    return message.get("subject") or payload.get("event_id")


class MissionRegistry:
    """
    Catalogue of mission definitions and their bus subscriptions.

    Constructed once per MissionContext; never a process global.
    """

    def __init__(
        self,
        bus: EventBus,
        scheduler: GameTimeScheduler,
        executor: ScriptedEventExecutor | None = None,
        config: EngineConfig | None = None,
        state_accessor: StateAccessor | None = None,
    ):
        self.bus = bus
        self.scheduler = scheduler
        self.executor = executor or ScriptedEventExecutor(bus)
        self.timing = (config or EngineConfig()).timing
        self.state_accessor = state_accessor

        self.missions: dict[str, MissionDefinition] = {}
        self._unsubscribers: dict[str, list[Unsubscribe]] = {}
        self._fired_events: set[str] = set()
        self._pending: dict[str, PendingEvent] = {}
        self._pending_counter = 0
        self._catalogue_loaded = False
        self._consequence_unsub: Unsubscribe | None = None

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, definition: MissionDefinition | dict) -> MissionDefinition:
        """
        Normalize, store and subscribe a definition.

        Re-registering an id replaces the previous definition and its
        subscriptions.
        """
        if isinstance(definition, dict):
            definition = MissionDefinition.model_validate(definition)

        mission = normalize_definition(definition)
        if mission.mission_id in self.missions:
            logger.info(f"Re-registering {mission.mission_id}")
            self.unregister(mission.mission_id)

        self.missions[mission.mission_id] = mission

        for story_event in mission.events:
            if story_event.trigger is not None:
                self._subscribe_story_event(mission, story_event)

        if mission.triggers.start is not None:
            self._subscribe_start_trigger(mission)

        for scripted_event in mission.scripted_events:
            self._subscribe_scripted_event(mission, scripted_event)

        logger.debug(f"Registered {mission.mission_id} ({len(mission.objectives)} objectives)")
        return mission

    def register_all(self, definitions: Iterable[MissionDefinition | dict]) -> int:
        """
        Load the authored catalogue once and enable consequence delivery.

        Returns:
            Number of definitions registered (0 if already loaded)
        """
        if self._catalogue_loaded:
            logger.info("Mission catalogue already loaded, skipping")
            return 0

        count = 0
        for definition in definitions:
            self.register(definition)
            count += 1

        self._catalogue_loaded = True
        self.subscribe_consequences()
        logger.info(f"Registered {count} mission definitions")
        return count

    def unregister(self, mission_id: str) -> bool:
        """Remove a definition and every subscription made for it."""
        for unsubscribe in self._unsubscribers.pop(mission_id, []):
            unsubscribe()
        return self.missions.pop(mission_id, None) is not None

    def clear(self) -> None:
        """Unregister everything (full reset)."""
        for unsubscribers in self._unsubscribers.values():
            for unsubscribe in unsubscribers:
                unsubscribe()
        self._unsubscribers.clear()
        self.missions.clear()
        self._catalogue_loaded = False
        if self._consequence_unsub is not None:
            self._consequence_unsub()
            self._consequence_unsub = None

    def get(self, mission_id: str) -> MissionDefinition | None:
        return self.missions.get(mission_id)

    def all_missions(self) -> list[MissionDefinition]:
        return list(self.missions.values())

    def set_state_accessor(self, accessor: StateAccessor | None) -> None:
        self.state_accessor = accessor

    def _track(self, mission_id: str, unsubscribe: Unsubscribe) -> None:
        self._unsubscribers.setdefault(mission_id, []).append(unsubscribe)

    # -------------------------------------------------------------------------
    # Trigger Subscriptions
    # -------------------------------------------------------------------------

    def _subscribe_story_event(self, mission: MissionDefinition, story_event: StoryEvent) -> None:
        trigger = story_event.trigger
        events = derive_events(trigger.conditions, trigger.event)
        if not events:
            logger.warning(f"No events to subscribe to for {story_event.id}, conditions may be misconfigured")
            return

        def on_event(event: GameEvent) -> None:
            if not check_all_conditions(trigger.conditions, event.data, self.state_accessor):
                logger.debug(f"Conditions not met for {story_event.id}")
                return
            payload = {
                "story_event_id": mission.mission_id,
                "event_id": story_event.id,
                "message": story_event.message.model_dump(mode="json") if story_event.message else None,
            }
            self.schedule_pending_event(PendingEventType.STORY_EVENT, payload, trigger.delay)

        for name in sorted(events):
            self._track(mission.mission_id, self.bus.on(name, on_event))

    def _subscribe_start_trigger(self, mission: MissionDefinition) -> None:
        start = mission.triggers.start
        mission_id = mission.mission_id

        if start.type == StartTriggerType.TIME_SINCE_EVENT:
            if not start.event:
                logger.warning(f"Start trigger for {mission_id} has no event name")
                return

            def on_event(event: GameEvent) -> None:
                if start.condition and not matches_payload(start.condition, event.data):
                    return
                self._schedule_activation(mission_id, start.delay)

            self._track(mission_id, self.bus.on(start.event, on_event))

        elif start.type == StartTriggerType.AFTER_MISSION_COMPLETE:

            def on_complete(event: GameEvent) -> None:
                if event.get("mission_id") != start.mission_id:
                    return
                self._schedule_activation(mission_id, start.delay)

            self._track(mission_id, self.bus.on(EventType.MISSION_COMPLETE, on_complete))

    def _schedule_activation(self, mission_id: str, delay: int) -> None:
        logger.debug(f"Scheduling activation of {mission_id} in {delay}ms game time")
        self.schedule_pending_event(PendingEventType.MISSION_ACTIVATION, {"mission_id": mission_id}, delay)

    def _subscribe_scripted_event(self, mission: MissionDefinition, scripted_event: ScriptedEvent) -> None:
        trigger = scripted_event.trigger
        mission_id = mission.mission_id

        if trigger.type == ScriptedTriggerType.AFTER_OBJECTIVE_COMPLETE:

            def on_objective(event: GameEvent) -> None:
                # Pre-completion is provisional; the later promotion fires the trigger
                if event.get("is_pre_completed"):
                    return
                if event.get("mission_id") != mission_id or event.get("objective_id") != trigger.objective_id:
                    return
                self._schedule_scripted_event(mission_id, scripted_event)

            self._track(mission_id, self.bus.on(EventType.OBJECTIVE_COMPLETE, on_objective))

        elif trigger.type == ScriptedTriggerType.SECURE_DELETE:

            def on_delete(event: GameEvent) -> None:
                if event.get("file_name") not in trigger.target_files:
                    return
                logger.info(f"Critical file secure-deleted: {event.get('file_name')}")
                self._schedule_scripted_event(mission_id, scripted_event)

            self._track(mission_id, self.bus.on(EventType.SECURE_DELETE_COMPLETE, on_delete))

    def _schedule_scripted_event(self, mission_id: str, scripted_event: ScriptedEvent) -> None:
        # One in-flight run per scripted event; a second match while waiting is absorbed
        for pending in self._pending.values():
            if (
                pending.type == PendingEventType.SCRIPTED_EVENT
                and pending.payload.get("mission_id") == mission_id
                and pending.payload.get("event_id") == scripted_event.id
            ):
                return

        payload = {
            "mission_id": mission_id,
            "event_id": scripted_event.id,
            "scripted_event": scripted_event.model_dump(mode="json"),
        }
        self.schedule_pending_event(PendingEventType.SCRIPTED_EVENT, payload, scripted_event.trigger.delay)

    # -------------------------------------------------------------------------
    # Activation and Delivery
    # -------------------------------------------------------------------------

    def activate_mission(self, mission_id: str) -> bool:
        """
        Make a mission selectable: optional delayed intro, then `mission-available`.

        Returns:
            False if the mission is not registered
        """
        mission = self.missions.get(mission_id)
        if mission is None:
            logger.warning(f"Cannot activate {mission_id}: mission not registered")
            return False

        start = mission.triggers.start
        intro = start.intro_message if start else None
        if intro is not None:
            payload = {"mission_id": mission_id, "intro_message": intro.model_dump(mode="json")}
            self.schedule_pending_event(PendingEventType.INTRO_MESSAGE, payload, intro.delay)

        logger.info(f"Activating mission {mission.title or mission_id}")
        self.bus.emit(EventType.MISSION_AVAILABLE, mission_id=mission_id, mission=mission)
        return True

    def _deliver_story_event(self, payload: dict[str, Any]) -> bool:
        key = story_dedup_key(payload)
        if key in self._fired_events:
            logger.debug(f"Story event {payload.get('event_id')} already fired ({key}), skipping")
            return False
        if key is not None:
            self._fired_events.add(key)

        data = {k: v for k, v in payload.items() if k != "dedup_key"}
        self.bus.emit(EventType.STORY_EVENT_TRIGGERED, data)
        return True

    def _run_scripted_event(self, payload: dict[str, Any]) -> None:
        mission_id = payload.get("mission_id")
        scripted_event = ScriptedEvent.model_validate(payload["scripted_event"])
        self.executor.execute(mission_id, scripted_event, self.missions.get(mission_id))

    def _callback_for(self, event_type: PendingEventType, payload: dict[str, Any]) -> Callable[[], None]:
        if event_type in (PendingEventType.STORY_EVENT, PendingEventType.CONSEQUENCE_MESSAGE):
            return lambda: self._deliver_story_event(payload)
        if event_type == PendingEventType.MISSION_ACTIVATION:
            return lambda: self.activate_mission(payload.get("mission_id"))
        if event_type == PendingEventType.INTRO_MESSAGE:
            return lambda: self.bus.emit(EventType.SEND_MISSION_INTRO_MESSAGE, payload)
        if event_type == PendingEventType.SCRIPTED_EVENT:
            return lambda: self._run_scripted_event(payload)
        raise ValueError(f"Unsupported pending event type: {event_type}")

    # -------------------------------------------------------------------------
    # Consequences
    # -------------------------------------------------------------------------

    def subscribe_consequences(self) -> None:
        """Listen for `mission-complete` and deliver consequence messages (idempotent)."""
        if self._consequence_unsub is not None:
            return
        self._consequence_unsub = self.bus.on(EventType.MISSION_COMPLETE, self._on_mission_complete)

    def _on_mission_complete(self, event: GameEvent) -> None:
        mission_id = event.get("mission_id")
        try:
            mission = self.missions.get(mission_id)
            if mission is None or mission.consequences is None:
                logger.debug(f"No consequences for {mission_id}")
                return

            failed = event.get("status") == MissionStatus.FAILED
            consequence = mission.consequences.failure if failed else mission.consequences.success
            if consequence is None or not consequence.messages:
                return

            for index, message in enumerate(consequence.messages):
                event_id = message.id or f"{mission_id}-consequence-{index}"
                payload = {
                    "story_event_id": mission_id,
                    "event_id": event_id,
                    "message": message.model_dump(mode="json"),
                    # Unique per scheduling: a restored copy of this timer can't
                    # deliver twice, but a later retry of the mission still delivers
                    "dedup_key": f"{event_id}-{uuid4().hex[:8]}",
                }
                self.schedule_pending_event(PendingEventType.CONSEQUENCE_MESSAGE, payload, message.delay)
        except Exception:
            logger.exception(f"Error delivering consequences for {mission_id}")

    # -------------------------------------------------------------------------
    # Pending Events and Persistence
    # -------------------------------------------------------------------------

    def schedule_pending_event(
        self,
        event_type: PendingEventType,
        payload: dict[str, Any],
        delay_ms: float | None,
        callback: Callable[[], None] | None = None,
    ) -> str:
        """
        Schedule a tracked follow-up on the game clock.

        Args:
            event_type: Kind of follow-up (determines the callback on restore)
            payload: JSON-serializable data the callback needs
            delay_ms: Game-time delay
            callback: Override for the default callback of event_type

        Returns:
            Pending event id
        """
        self._pending_counter += 1
        event_id = f"{event_type.value}-{self._pending_counter}"
        delay = normalize_delay(delay_ms)
        action = callback or self._callback_for(event_type, payload)

        def fire() -> None:
            self._pending.pop(event_id, None)
            action()

        timer_id = self.scheduler.schedule(fire, delay)
        self._pending[event_id] = PendingEvent(
            id=event_id,
            type=event_type,
            payload=payload,
            scheduled_at=self.scheduler.now(),
            delay_ms=delay,
            speed=self.scheduler.speed,
            timer_id=timer_id,
        )
        return event_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get_pending_events(self) -> list[PendingEventRecord]:
        """Serializable records with the game time each still has to wait."""
        now = self.scheduler.now()
        return [pending.to_record(now) for pending in self._pending.values()]

    def set_pending_events(self, records: Iterable[PendingEventRecord | dict] | None) -> int:
        """
        Reschedule pending events from a save.

        Each waits max(floor, remaining + buffer) game ms to absorb load-time
        jitter.

        Returns:
            Number of events restored
        """
        count = 0
        for record in records or []:
            if isinstance(record, dict):
                record = PendingEventRecord.model_validate(record)
            delay = max(
                self.timing.restore_floor_ms,
                record.remaining_delay_ms + self.timing.restore_buffer_ms,
            )
            self.schedule_pending_event(record.type, record.payload, delay)
            count += 1

        if count:
            logger.info(f"Restored {count} pending events")
        return count

    def clear_pending_events(self) -> int:
        """Cancel every pending follow-up (sleep/logout)."""
        for pending in self._pending.values():
            self.scheduler.cancel(pending.timer_id)
        count = len(self._pending)
        self._pending.clear()
        return count

    def get_fired_events(self) -> list[str]:
        return sorted(self._fired_events)

    def set_fired_events(self, keys: Iterable[str] | None) -> None:
        self._fired_events = set(keys or [])

    def has_fired(self, key: str) -> bool:
        return key in self._fired_events

    def set_time_speed(self, multiplier: float) -> None:
        """
        Apply a new global speed to every live timer.

        Pending-event records are rebased alongside the scheduler's timers so
        their remaining time stays exact.
        """
        now = self.scheduler.now()
        self.scheduler.reschedule_all(multiplier)
        for pending in self._pending.values():
            pending.delay_ms = pending.remaining_ms(now)
            pending.scheduled_at = now
            pending.speed = multiplier
