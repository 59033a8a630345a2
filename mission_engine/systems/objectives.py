"""
Objective state machine.

Each accepted mission gets an ActiveMission with its own copy of the
objectives. Objectives move pending -> complete, or pending -> pre_completed
-> complete when they are satisfied before an earlier required objective.

Rules:
- An objective is reachable once every earlier required, non-verification
  objective is complete. Satisfied-but-unreachable objectives are recorded as
  pre_completed and promoted in one pass as soon as they become reachable.
- Verification completes only by explicit request, and only after every other
  objective is complete. It completes the mission with status success.
- A mission is submittable once every required objective is complete, even if
  optional objectives remain.

Every transition emits `objective-complete` with `is_pre_completed` telling
provisional records apart from real completions.
"""

from __future__ import annotations

import logging
from typing import Any

from ..state.event_bus import EventBus, EventType, GameEvent, Unsubscribe
from ..state.scheduler import GameTimeScheduler
from ..state.schema import (
    ActiveMission,
    GameState,
    MissionDefinition,
    MissionStatus,
    Objective,
    ObjectiveStatus,
    ObjectiveType,
)
from .conditions import StateAccessor, as_game_state

logger = logging.getLogger(__name__)


# Bus event that can satisfy each objective type
OBJECTIVE_EVENTS: dict[ObjectiveType, EventType] = {
    ObjectiveType.NETWORK_CONNECTION: EventType.NETWORK_CONNECTED,
    ObjectiveType.NETWORK_SCAN: EventType.NETWORK_SCAN_COMPLETE,
    ObjectiveType.FILE_SYSTEM_CONNECTION: EventType.FILE_SYSTEM_CONNECTED,
    ObjectiveType.FILE_OPERATION: EventType.FILE_OPERATION_COMPLETE,
    ObjectiveType.CREDENTIAL_REGISTRATION: EventType.CREDENTIAL_REGISTERED,
    ObjectiveType.INVESTIGATION: EventType.DEVICE_LOGS_VIEWED,
}

MS_PER_MINUTE = 60_000


# -----------------------------------------------------------------------------
# Predicates
# -----------------------------------------------------------------------------


def check_network_connection(objective: Objective, data: dict[str, Any]) -> bool:
    target = objective.target
    return target is not None and target in (data.get("network_id"), data.get("network_name"))


def _machine_keys(machines: list[dict[str, Any]]) -> set[str]:
    keys = set()
    for machine in machines or []:
        for field in ("hostname", "ip", "id"):
            if machine.get(field):
                keys.add(machine[field])
    return keys


def check_network_scan(objective: Objective, data: dict[str, Any]) -> bool:
    """Scan found the expected machine, or every machine in expected_results."""
    found = _machine_keys(data.get("machines") or [])
    if objective.expected_results:
        return all(expected in found for expected in objective.expected_results)
    if objective.expected_result:
        return objective.expected_result in found
    # No expectation: any scan of the target network counts
    return objective.target is None or data.get("network_id") == objective.target


def check_file_system_connection(objective: Objective, data: dict[str, Any]) -> bool:
    target = objective.target
    return target is not None and target in (data.get("ip"), data.get("file_system_id"))


def check_credential_registration(objective: Objective, data: dict[str, Any]) -> bool:
    if data.get("authorized") is False:
        return False
    return objective.target is not None and data.get("network_id") == objective.target


def check_investigation(objective: Objective, data: dict[str, Any]) -> bool:
    if not objective.correct_file_system_id:
        return False
    return data.get("file_system_id") == objective.correct_file_system_id


def check_file_operation(objective: Objective, data: dict[str, Any], active: ActiveMission) -> bool:
    """
    File operations are cumulative across events.

    Without target files only the operation type has to match the latest
    event. A paste with a destination needs every target file pasted there.
    """
    if not objective.target_files:
        return data.get("operation") == objective.operation

    if objective.operation == "paste" and objective.destination:
        return all(
            active.paste_destinations.get(name) == objective.destination
            for name in objective.target_files
        )

    done = active.file_operations.get(objective.operation or "", set())
    return all(name in done for name in objective.target_files)


def file_operation_progress(objective: Objective, active: ActiveMission) -> tuple[int, int] | None:
    """(current, total) for file objectives with target files, else None."""
    if not objective.target_files:
        return None
    if objective.operation == "paste" and objective.destination:
        current = sum(
            1 for name in objective.target_files
            if active.paste_destinations.get(name) == objective.destination
        )
    else:
        done = active.file_operations.get(objective.operation or "", set())
        current = sum(1 for name in objective.target_files if name in done)
    return current, len(objective.target_files)


def objective_satisfied(objective: Objective, data: dict[str, Any], active: ActiveMission) -> bool:
    """Dispatch to the predicate for the objective's type."""
    kind = objective.type
    if kind == ObjectiveType.NETWORK_CONNECTION:
        return check_network_connection(objective, data)
    if kind == ObjectiveType.NETWORK_SCAN:
        return check_network_scan(objective, data)
    if kind == ObjectiveType.FILE_SYSTEM_CONNECTION:
        return check_file_system_connection(objective, data)
    if kind == ObjectiveType.FILE_OPERATION:
        return check_file_operation(objective, data, active)
    if kind == ObjectiveType.CREDENTIAL_REGISTRATION:
        return check_credential_registration(objective, data)
    if kind == ObjectiveType.INVESTIGATION:
        return check_investigation(objective, data)
    return False


def record_file_operation(active: ActiveMission, data: dict[str, Any]) -> None:
    """Fold a file-operation-complete payload into the mission's cumulative record."""
    operation = data.get("operation")
    if not operation:
        return
    names = data.get("file_names") or []
    active.file_operations.setdefault(operation, set()).update(names)
    if operation == "paste":
        destination = data.get("destination") or data.get("file_system")
        if destination:
            for name in names:
                active.paste_destinations[name] = destination


def catch_up_payloads(objective: Objective, state: GameState) -> list[dict[str, Any]]:
    """Payloads equivalent to state that is already true when a mission is accepted."""
    kind = objective.type
    if kind == ObjectiveType.NETWORK_CONNECTION:
        return list(state.active_connections)
    if kind == ObjectiveType.NETWORK_SCAN:
        return [state.last_scan_results] if state.last_scan_results else []
    if kind == ObjectiveType.FILE_SYSTEM_CONNECTION:
        return list(state.file_system_connections)
    if kind == ObjectiveType.CREDENTIAL_REGISTRATION:
        return list(state.credentials)
    if kind == ObjectiveType.INVESTIGATION:
        return list(state.viewed_device_logs)
    return []


# -----------------------------------------------------------------------------
# Tracker
# -----------------------------------------------------------------------------


class ObjectiveTracker:
    """
    Runs the objective state machine for every accepted mission.

    Usage:
        tracker = ObjectiveTracker(bus, scheduler, state_accessor=get_state)
        tracker.start_mission(definition)
        bus.emit(EventType.NETWORK_CONNECTED, network_id="corp-net")
        tracker.complete_verification(definition.mission_id)
    """

    def __init__(
        self,
        bus: EventBus,
        scheduler: GameTimeScheduler,
        state_accessor: StateAccessor | None = None,
    ):
        self.bus = bus
        self.scheduler = scheduler
        self.state_accessor = state_accessor
        self.missions: dict[str, ActiveMission] = {}
        self._unsubscribers: dict[str, list[Unsubscribe]] = {}

    def set_state_accessor(self, accessor: StateAccessor | None) -> None:
        self.state_accessor = accessor

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start_mission(self, definition: MissionDefinition, now: float | None = None) -> ActiveMission:
        """
        Begin tracking an accepted mission.

        Objectives are copied, the objective events are subscribed, a catch-up
        check runs against the current state, and a deadline timer is armed
        for timed missions.
        """
        mission_id = definition.mission_id
        if mission_id in self.missions:
            self._stop(mission_id)

        active = ActiveMission(
            mission_id=mission_id,
            definition=definition,
            objectives=[o.model_copy(update={"status": ObjectiveStatus.PENDING}) for o in definition.objectives],
            accepted_at=self.scheduler.now() if now is None else now,
            payout=definition.base_payout,
        )
        self.missions[mission_id] = active

        subs = self._unsubscribers.setdefault(mission_id, [])
        for event_type in set(OBJECTIVE_EVENTS.values()):
            subs.append(self.bus.on(event_type, lambda e, m=mission_id: self._on_event(m, e)))
        subs.append(self.bus.on(EventType.MISSION_STATUS_CHANGED, lambda e, m=mission_id: self._on_status_changed(m, e)))

        if definition.time_limit_minutes:
            active.deadline_timer_id = self.scheduler.schedule(
                lambda m=mission_id: self._on_deadline(m),
                definition.time_limit_minutes * MS_PER_MINUTE,
            )

        logger.info(f"Tracking mission {mission_id} ({len(active.objectives)} objectives)")
        self._catch_up(active)
        return active

    def _stop(self, mission_id: str) -> None:
        for unsubscribe in self._unsubscribers.pop(mission_id, []):
            unsubscribe()
        active = self.missions.get(mission_id)
        if active is not None:
            self.scheduler.cancel(active.deadline_timer_id)
            active.deadline_timer_id = None

    def abandon(self, mission_id: str) -> bool:
        """Stop tracking without emitting completion."""
        if mission_id not in self.missions:
            return False
        self._stop(mission_id)
        del self.missions[mission_id]
        return True

    def clear(self) -> None:
        for mission_id in list(self.missions):
            self._stop(mission_id)
        self.missions.clear()

    def get_active(self, mission_id: str) -> ActiveMission | None:
        return self.missions.get(mission_id)

    def active_missions(self) -> list[ActiveMission]:
        return [m for m in self.missions.values() if not m.completed]

    # -------------------------------------------------------------------------
    # Event Handling
    # -------------------------------------------------------------------------

    def _on_event(self, mission_id: str, event: GameEvent) -> None:
        active = self.missions.get(mission_id)
        if active is None or active.completed:
            return

        if event.type == EventType.FILE_OPERATION_COMPLETE.value:
            record_file_operation(active, event.data)

        for objective in list(active.objectives):
            if active.completed:
                return
            if objective.status != ObjectiveStatus.PENDING or objective.is_verification:
                continue
            if OBJECTIVE_EVENTS.get(objective.type).value != event.type:
                continue
            if objective_satisfied(objective, event.data, active):
                self._mark_satisfied(active, objective)

    def _catch_up(self, active: ActiveMission) -> None:
        if self.state_accessor is None:
            return
        state = as_game_state(self.state_accessor())
        for objective in list(active.objectives):
            if active.completed:
                return
            if objective.status != ObjectiveStatus.PENDING or objective.is_verification:
                continue
            if any(objective_satisfied(objective, data, active) for data in catch_up_payloads(objective, state)):
                logger.debug(f"Catch-up: {objective.id} already satisfied")
                self._mark_satisfied(active, objective)

    def _on_status_changed(self, mission_id: str, event: GameEvent) -> None:
        if event.get("mission_id") != mission_id:
            return
        if event.get("status") == MissionStatus.FAILED:
            self.fail_mission(mission_id, event.get("failure_reason") or event.get("reason") or "scripted")

    def _on_deadline(self, mission_id: str) -> None:
        active = self.missions.get(mission_id)
        if active is None or active.completed:
            return
        active.deadline_timer_id = None
        logger.info(f"Mission {mission_id} ran out of time")
        self.fail_mission(mission_id, "deadline")

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def is_reachable(self, active: ActiveMission, objective: Objective) -> bool:
        """True when every earlier required, non-verification objective is complete."""
        for earlier in active.objectives:
            if earlier is objective:
                return True
            if earlier.optional or earlier.is_verification:
                continue
            if earlier.status != ObjectiveStatus.COMPLETE:
                return False
        return True

    def _emit_objective(self, active: ActiveMission, objective: Objective, pre_completed: bool) -> None:
        self.bus.emit(
            EventType.OBJECTIVE_COMPLETE,
            objective_id=objective.id,
            mission_id=active.mission_id,
            is_pre_completed=pre_completed,
        )

    def _mark_satisfied(self, active: ActiveMission, objective: Objective) -> None:
        if self.is_reachable(active, objective):
            objective.status = ObjectiveStatus.COMPLETE
            logger.info(f"Objective {objective.id} complete ({active.mission_id})")
            self._emit_objective(active, objective, pre_completed=False)
            self._promote(active)
        else:
            objective.status = ObjectiveStatus.PRE_COMPLETED
            logger.info(f"Objective {objective.id} pre-completed ({active.mission_id})")
            self._emit_objective(active, objective, pre_completed=True)
        self._check_submittable(active)

    def _promote(self, active: ActiveMission) -> None:
        """Flip every pre-completed objective that is now reachable, in mission order."""
        for objective in list(active.objectives):
            if active.completed:
                return
            if objective.status == ObjectiveStatus.PRE_COMPLETED and self.is_reachable(active, objective):
                objective.status = ObjectiveStatus.COMPLETE
                self._emit_objective(active, objective, pre_completed=False)

    def _check_submittable(self, active: ActiveMission) -> None:
        if active.completed or active.submittable:
            return
        if all(o.is_complete for o in active.required_objectives()):
            active.submittable = True
            self.bus.emit(EventType.MISSION_SUBMITTABLE, mission_id=active.mission_id)

    def is_submittable(self, mission_id: str) -> bool:
        active = self.missions.get(mission_id)
        if active is None or active.completed:
            return False
        return all(o.is_complete for o in active.required_objectives())

    def complete_verification(self, mission_id: str) -> dict:
        """
        Complete the verification objective and, with it, the mission.

        Returns:
            Dict with success or error
        """
        active = self.missions.get(mission_id)
        if active is None or active.completed:
            return {"error": f"Mission {mission_id} is not active"}

        verification = next((o for o in active.objectives if o.is_verification), None)
        if verification is None:
            return {"error": f"Mission {mission_id} has no verification objective"}

        remaining = [o.id for o in active.real_objectives() if not o.is_complete]
        if remaining:
            return {"error": "Objectives still incomplete", "remaining": remaining}

        verification.status = ObjectiveStatus.COMPLETE
        self._emit_objective(active, verification, pre_completed=False)
        self._finish(active, MissionStatus.SUCCESS)
        return {"success": True, "mission_id": mission_id, "payout": active.payout}

    def submit_mission(self, mission_id: str) -> dict:
        """Player-initiated completion once every required objective is done."""
        if not self.is_submittable(mission_id):
            return {"error": f"Mission {mission_id} is not submittable"}
        active = self.missions[mission_id]
        self._finish(active, MissionStatus.SUCCESS, submitted=True)
        return {"success": True, "mission_id": mission_id, "payout": active.payout}

    def fail_mission(self, mission_id: str, reason: str = "failed") -> bool:
        active = self.missions.get(mission_id)
        if active is None or active.completed:
            return False
        self._finish(active, MissionStatus.FAILED, reason=reason)
        return True

    def _finish(self, active: ActiveMission, status: MissionStatus, **extra) -> None:
        active.completed = True
        self._stop(active.mission_id)
        logger.info(f"Mission {active.mission_id} finished: {status.value}")
        self.bus.emit(
            EventType.MISSION_COMPLETE,
            mission_id=active.mission_id,
            status=status.value,
            payout=active.payout,
            **extra,
        )

    # -------------------------------------------------------------------------
    # Extensions and Progress
    # -------------------------------------------------------------------------

    def insert_objectives(self, mission_id: str, objectives: list[Objective]) -> bool:
        """Insert objectives just before the verification objective."""
        active = self.missions.get(mission_id)
        if active is None or active.completed or not objectives:
            return False

        index = next(
            (i for i, o in enumerate(active.objectives) if o.is_verification),
            len(active.objectives),
        )
        copies = [o.model_copy(update={"status": ObjectiveStatus.PENDING}) for o in objectives]
        active.objectives[index:index] = copies
        if any(not o.optional for o in copies):
            active.submittable = False
        return True

    def get_progress(self, mission_id: str) -> dict | None:
        active = self.missions.get(mission_id)
        if active is None:
            return None
        real = active.real_objectives()
        completed = sum(1 for o in real if o.is_complete)
        return {
            "completed": completed,
            "total": len(real),
            "fraction": completed / len(real) if real else 1.0,
            "all_real_complete": completed == len(real),
            "submittable": self.is_submittable(mission_id),
        }
