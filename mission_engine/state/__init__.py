"""Engine state: event bus, game-time scheduler, data model and snapshot storage."""

from .schema import (
    Action,
    ActiveMission,
    Condition,
    Consequence,
    Consequences,
    CredentialAttachment,
    Difficulty,
    EngineSnapshot,
    Extension,
    FileEntry,
    FileSystem,
    GameState,
    Message,
    MissionArchetype,
    MissionDefinition,
    MissionPoolEntry,
    MissionStatus,
    Network,
    Objective,
    ObjectiveStatus,
    ObjectiveType,
    PendingEvent,
    PendingEventRecord,
    PendingEventType,
    PoolState,
    ScriptedEvent,
    StoryEvent,
    VERIFICATION_OBJECTIVE_ID,
)
from .event_bus import EventBus, EventType, GameEvent
from .scheduler import GameTimeScheduler, ManualClock, MonotonicClock
from .store import SnapshotStore, JsonSnapshotStore, MemorySnapshotStore

__all__ = [
    # Schema
    "Action",
    "ActiveMission",
    "Condition",
    "Consequence",
    "Consequences",
    "CredentialAttachment",
    "Difficulty",
    "EngineSnapshot",
    "Extension",
    "FileEntry",
    "FileSystem",
    "GameState",
    "Message",
    "MissionArchetype",
    "MissionDefinition",
    "MissionPoolEntry",
    "MissionStatus",
    "Network",
    "Objective",
    "ObjectiveStatus",
    "ObjectiveType",
    "PendingEvent",
    "PendingEventRecord",
    "PendingEventType",
    "PoolState",
    "ScriptedEvent",
    "StoryEvent",
    "VERIFICATION_OBJECTIVE_ID",
    # Events
    "EventBus",
    "EventType",
    "GameEvent",
    # Scheduling
    "GameTimeScheduler",
    "ManualClock",
    "MonotonicClock",
    # Store
    "SnapshotStore",
    "JsonSnapshotStore",
    "MemorySnapshotStore",
]
