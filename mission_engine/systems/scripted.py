"""
Scripted-event executor.

Turns a scripted event's authored action list into a concrete one and hands
it to the host via `scripted-event-start`. The host performs the actions
(deleting files, dropping connections, failing the mission); this module never
touches game state itself.
"""

from __future__ import annotations

import logging

from ..state.event_bus import EventBus, EventType
from ..state.schema import (
    Action,
    ForceFileOperationAction,
    MissionDefinition,
    MissionStatus,
    ScriptedEvent,
    SetMissionStatusAction,
)

logger = logging.getLogger(__name__)

# Symbolic file targets resolved against the mission's networks.
# Both refer to the files that start out corrupted: "all-repaired" is used
# after the player has repaired them.
CORRUPTED_FILE_INDICATORS = ("all-corrupted", "all-repaired")


def resolve_file_indicator(indicator: str, mission: MissionDefinition | None) -> list[str]:
    """
    Resolve a symbolic file target to concrete file names.

    Files are collected in network, file system, then file order. An unknown
    indicator or a mission without matching files yields an empty list.
    """
    if indicator not in CORRUPTED_FILE_INDICATORS:
        logger.warning(f"Unknown file indicator {indicator!r}, no files resolved")
        return []
    if mission is None:
        return []

    names = []
    for network in mission.networks:
        for fs in network.file_systems:
            names.extend(f.name for f in fs.files if f.corrupted)
    return names


def enrich_actions(actions: list[Action], mission: MissionDefinition | None) -> list[Action]:
    """
    Return copies of actions with mission data filled in.

    - Failing the mission carries the mission's failure consequences
    - Symbolic file targets become resolved_file_names
    """
    enriched: list[Action] = []
    for action in actions:
        if isinstance(action, SetMissionStatusAction):
            failure = mission.consequences.failure if mission and mission.consequences else None
            if action.status == MissionStatus.FAILED and failure is not None:
                action = action.model_copy(update={"failure_consequences": failure})
        elif isinstance(action, ForceFileOperationAction) and isinstance(action.files, str):
            names = resolve_file_indicator(action.files, mission)
            action = action.model_copy(update={"resolved_file_names": names})
        enriched.append(action)
    return enriched


class ScriptedEventExecutor:
    """Emits enriched scripted events for the host to carry out."""

    def __init__(self, bus: EventBus):
        self.bus = bus

    def execute(
        self,
        mission_id: str,
        scripted_event: ScriptedEvent,
        mission: MissionDefinition | None = None,
    ) -> list[Action]:
        """
        Enrich and emit a scripted event.

        Args:
            mission_id: Owning mission
            scripted_event: The event whose trigger and delay have elapsed
            mission: Mission definition used for enrichment

        Returns:
            The enriched actions that were emitted
        """
        if mission is None:
            logger.warning(f"Scripted event {scripted_event.id}: mission {mission_id} not registered")

        actions = enrich_actions(scripted_event.actions, mission)
        logger.info(f"Executing scripted event {scripted_event.id} ({len(actions)} actions)")

        self.bus.emit(
            EventType.SCRIPTED_EVENT_START,
            mission_id=mission_id,
            event_id=scripted_event.id,
            actions=[a.model_dump(mode="json") for a in actions],
        )
        return actions
