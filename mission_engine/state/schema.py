"""
Pydantic models for mission definitions and engine bookkeeping.

Definitions are authored as JSON/YAML and validated here. Conditions and
scripted actions are tagged unions keyed on their "type" field, so each kind
is a distinct model and evaluation sites can match on the class.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class ObjectiveType(str, Enum):
    NETWORK_CONNECTION = "network_connection"
    NETWORK_SCAN = "network_scan"
    FILE_SYSTEM_CONNECTION = "file_system_connection"
    FILE_OPERATION = "file_operation"
    CREDENTIAL_REGISTRATION = "credential_registration"
    INVESTIGATION = "investigation"
    VERIFICATION = "verification"


class ObjectiveStatus(str, Enum):
    PENDING = "pending"
    PRE_COMPLETED = "pre_completed"    # Satisfied out of order, not yet counted
    COMPLETE = "complete"


class MissionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class MissionArchetype(str, Enum):
    REPAIR = "repair"
    BACKUP = "backup"
    TRANSFER = "transfer"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class StartTriggerType(str, Enum):
    TIME_SINCE_EVENT = "time_since_event"
    AFTER_MISSION_COMPLETE = "after_mission_complete"


class ScriptedTriggerType(str, Enum):
    AFTER_OBJECTIVE_COMPLETE = "after_objective_complete"
    SECURE_DELETE = "secure_delete"


class PendingEventType(str, Enum):
    STORY_EVENT = "story_event"
    CONSEQUENCE_MESSAGE = "consequence_message"
    MISSION_ACTIVATION = "mission_activation"
    INTRO_MESSAGE = "intro_message"
    SCRIPTED_EVENT = "scripted_event"


VERIFICATION_OBJECTIVE_ID = "obj-verify"


# -----------------------------------------------------------------------------
# Messages and Topology
# -----------------------------------------------------------------------------


class Message(BaseModel):
    """
    A message delivered to the player's inbox by the external mail client.

    Extra keys are preserved untouched so authored content can carry fields
    the engine does not interpret.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    sender: str = ""
    subject: str = ""
    body: str = ""
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    delay: int = 0  # Game ms after the triggering moment


class CredentialAttachment(BaseModel):
    """Briefing attachment that grants access to a simulated network."""
    type: Literal["network_address"] = "network_address"
    network_id: str
    network_name: str = ""
    address: str = ""
    device_ips: list[str] = Field(default_factory=list)


class FileEntry(BaseModel):
    name: str
    size: str = ""
    size_bytes: int = 0
    corrupted: bool = False
    target_file: bool = False


class FileSystem(BaseModel):
    id: str
    ip: str = ""
    name: str = ""
    files: list[FileEntry] = Field(default_factory=list)
    accessible: bool = True


class Network(BaseModel):
    network_id: str
    network_name: str = ""
    address: str = ""  # Subnet, e.g. 10.42.7.0/24
    bandwidth: int = 50
    file_systems: list[FileSystem] = Field(default_factory=list)

    def credential_attachment(self) -> CredentialAttachment:
        return CredentialAttachment(
            network_id=self.network_id,
            network_name=self.network_name,
            address=self.address,
            device_ips=[fs.ip for fs in self.file_systems if fs.ip],
        )


# -----------------------------------------------------------------------------
# Objectives
# -----------------------------------------------------------------------------


class Objective(BaseModel):
    """One sub-task of a mission. Type-specific fields are optional."""
    id: str
    description: str = ""
    type: ObjectiveType
    status: ObjectiveStatus = ObjectiveStatus.PENDING
    optional: bool = False

    target: str | None = None                 # network id/name, fs ip/id, credential network id
    expected_result: str | None = None        # scan: any one machine hostname/ip/id
    expected_results: list[str] = Field(default_factory=list)  # scan: every listed machine
    operation: str | None = None              # file_operation: copy, paste, repair, delete
    target_files: list[str] = Field(default_factory=list)
    destination: str | None = None            # paste destination fs ip
    correct_file_system_id: str | None = None  # investigation

    @property
    def is_verification(self) -> bool:
        return self.type == ObjectiveType.VERIFICATION

    @property
    def is_complete(self) -> bool:
        return self.status == ObjectiveStatus.COMPLETE


def verification_objective() -> Objective:
    return Objective(
        id=VERIFICATION_OBJECTIVE_ID,
        description="Verify mission completion",
        type=ObjectiveType.VERIFICATION,
    )


# -----------------------------------------------------------------------------
# Conditions (tagged union)
# -----------------------------------------------------------------------------


class MessageReadCondition(BaseModel):
    type: Literal["message_read"] = "message_read"
    message_id: str


class SoftwareInstalledCondition(BaseModel):
    type: Literal["software_installed"] = "software_installed"
    software_id: str


class EventDataCondition(BaseModel):
    """Exact key/value match against the firing event's payload."""
    type: Literal["event_data"] = "event_data"
    match: dict[str, Any] = Field(default_factory=dict)


class UnknownCondition(BaseModel):
    """Placeholder for an unrecognized condition type. Never satisfied."""
    type: Literal["unknown"] = "unknown"
    kind: str
    raw: dict[str, Any] = Field(default_factory=dict)


Condition = Annotated[
    Union[MessageReadCondition, SoftwareInstalledCondition, EventDataCondition, UnknownCondition],
    Field(discriminator="type"),
]

KNOWN_CONDITION_TYPES = {"message_read", "software_installed", "event_data", "unknown"}


def coerce_conditions(value: Any) -> Any:
    """Wrap condition dicts with an unrecognized type so they load as UnknownCondition."""
    if value is None:
        return []
    if not isinstance(value, list):
        return value
    coerced = []
    for item in value:
        if isinstance(item, dict) and item.get("type") not in KNOWN_CONDITION_TYPES:
            item = {"type": "unknown", "kind": str(item.get("type")), "raw": dict(item)}
        coerced.append(item)
    return coerced


# -----------------------------------------------------------------------------
# Scripted Actions (tagged union)
# -----------------------------------------------------------------------------


class Consequence(BaseModel):
    """Outcome applied by the host on success or failure."""
    credits: int = 0
    reputation: int = 0
    messages: list[Message] = Field(default_factory=list)


class Consequences(BaseModel):
    success: Consequence | None = None
    failure: Consequence | None = None


class _ActionBase(BaseModel):
    delay: int = 0  # Game ms offset applied by the external runner


class ForceFileOperationAction(_ActionBase):
    """Forced operation on mission files (sabotage). `files` may be a symbolic indicator."""
    type: Literal["force_file_operation"] = "force_file_operation"
    operation: str = "delete"
    files: str | list[str] = Field(default_factory=list)
    duration: int = 0
    player_control: bool = False
    resolved_file_names: list[str] | None = None


class ForceDisconnectAction(_ActionBase):
    type: Literal["force_disconnect"] = "force_disconnect"
    network: str
    reason: str = ""
    administrator_message: str | None = None


class SetMissionStatusAction(_ActionBase):
    type: Literal["set_mission_status"] = "set_mission_status"
    status: MissionStatus
    failure_reason: str | None = None
    failure_consequences: Consequence | None = None


class RevokeCredentialAction(_ActionBase):
    type: Literal["revoke_credential"] = "revoke_credential"
    network: str
    reason: str = ""


class SendMessageAction(_ActionBase):
    type: Literal["send_message"] = "send_message"
    message: Message


Action = Annotated[
    Union[
        ForceFileOperationAction,
        ForceDisconnectAction,
        SetMissionStatusAction,
        RevokeCredentialAction,
        SendMessageAction,
    ],
    Field(discriminator="type"),
]


# -----------------------------------------------------------------------------
# Triggers and Events
# -----------------------------------------------------------------------------


class StoryTrigger(BaseModel):
    """Conjunctive condition set plus delay. `event` overrides derived event names."""
    type: Literal["time_since_event"] = "time_since_event"
    conditions: list[Condition] = Field(default_factory=list)
    delay: int = 0
    event: str | None = None

    @field_validator("conditions", mode="before")
    @classmethod
    def wrap_unknown_conditions(cls, value: Any) -> Any:
        return coerce_conditions(value)


class MissionStartTrigger(BaseModel):
    type: StartTriggerType
    event: str | None = None                    # time_since_event: bus event name
    condition: dict[str, Any] | None = None     # exact match against event payload
    mission_id: str | None = None               # after_mission_complete: predecessor
    delay: int = 0
    intro_message: Message | None = None


class ScriptedTrigger(BaseModel):
    type: ScriptedTriggerType
    objective_id: str | None = None
    target_files: list[str] = Field(default_factory=list)
    delay: int = 0


class StoryEvent(BaseModel):
    id: str
    trigger: StoryTrigger | None = None
    message: Message | None = None


class ScriptedEvent(BaseModel):
    id: str
    trigger: ScriptedTrigger
    actions: list[Action] = Field(default_factory=list)


class MissionTriggers(BaseModel):
    start: MissionStartTrigger | None = None


# -----------------------------------------------------------------------------
# Mission Definition
# -----------------------------------------------------------------------------


class MissionDefinition(BaseModel):
    """
    A declarative mission or story-event bundle.

    Story-only bundles (welcome messages, tutorials) have events but no
    objectives. Procedurally generated missions fill the metadata fields
    below the divider.
    """

    mission_id: str
    title: str = ""
    description: str = ""
    objectives: list[Objective] = Field(default_factory=list)
    events: list[StoryEvent] = Field(default_factory=list)
    scripted_events: list[ScriptedEvent] = Field(default_factory=list)
    triggers: MissionTriggers = Field(default_factory=MissionTriggers)
    consequences: Consequences | None = None
    networks: list[Network] = Field(default_factory=list)
    briefing_message: Message | None = None

    # --- procedural metadata ---
    client: str | None = None                 # Display name
    client_id: str | None = None
    client_type: str | None = None
    min_reputation: int = 0
    difficulty: Difficulty | None = None
    archetype: MissionArchetype | None = None
    base_payout: int = 0
    time_limit_minutes: int | None = None
    arc_id: str | None = None
    arc_name: str | None = None
    arc_sequence: int | None = None
    arc_total: int | None = None
    requires_completed_mission: str | None = None
    target_files: list[str] = Field(default_factory=list)
    total_data_bytes: int = 0
    generated_at: float | None = None

    def get_objective(self, objective_id: str) -> Objective | None:
        for obj in self.objectives:
            if obj.id == objective_id:
                return obj
        return None

    def has_verification(self) -> bool:
        return any(o.is_verification or o.id == VERIFICATION_OBJECTIVE_ID for o in self.objectives)

    def real_objectives(self) -> list[Objective]:
        """Objectives that count toward progress (everything except verification)."""
        return [o for o in self.objectives if not o.is_verification]


# -----------------------------------------------------------------------------
# Pending Events (scheduler persistence)
# -----------------------------------------------------------------------------


class PendingEvent(BaseModel):
    """
    A scheduled-but-not-yet-fired occurrence owned by the registry.

    scheduled_at is real ms from the scheduler clock; delay_ms is game time.
    """

    id: str
    type: PendingEventType
    payload: dict[str, Any] = Field(default_factory=dict)
    scheduled_at: float
    delay_ms: float
    speed: float = 1.0
    timer_id: int | None = None

    def remaining_ms(self, now: float) -> float:
        """Game time still to wait, never negative."""
        elapsed_game = (now - self.scheduled_at) * self.speed
        return max(0.0, self.delay_ms - elapsed_game)

    def to_record(self, now: float) -> "PendingEventRecord":
        return PendingEventRecord(
            id=self.id,
            type=self.type,
            payload=self.payload,
            remaining_delay_ms=self.remaining_ms(now),
        )


class PendingEventRecord(BaseModel):
    """Serialized pending event as written to a save."""
    id: str
    type: PendingEventType
    payload: dict[str, Any] = Field(default_factory=dict)
    remaining_delay_ms: float = 0


# -----------------------------------------------------------------------------
# Game State Snapshot (read-only view supplied by the host)
# -----------------------------------------------------------------------------


class MessageState(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    read: bool = False


class GameState(BaseModel):
    """
    Snapshot returned by the state accessor.

    Only messages and software are required; the remaining fields feed the
    catch-up check when a mission is accepted.
    """

    model_config = ConfigDict(extra="allow")

    messages: list[MessageState] = Field(default_factory=list)
    software: list[str] = Field(default_factory=list)
    active_connections: list[dict[str, Any]] = Field(default_factory=list)
    last_scan_results: dict[str, Any] | None = None
    file_system_connections: list[dict[str, Any]] = Field(default_factory=list)
    credentials: list[dict[str, Any]] = Field(default_factory=list)
    viewed_device_logs: list[dict[str, Any]] = Field(default_factory=list)

    def message(self, message_id: str) -> MessageState | None:
        for msg in self.messages:
            if msg.id == message_id:
                return msg
        return None


# -----------------------------------------------------------------------------
# Active Missions
# -----------------------------------------------------------------------------


class ActiveMission(BaseModel):
    """
    Per-acceptance state of a mission in progress.

    Objectives are a private copy; the registered definition is never mutated.
    """

    mission_id: str
    definition: MissionDefinition
    objectives: list[Objective]
    accepted_at: float = 0
    payout: int = 0
    file_operations: dict[str, set[str]] = Field(default_factory=dict)
    paste_destinations: dict[str, str] = Field(default_factory=dict)
    submittable: bool = False
    completed: bool = False
    extended: bool = False
    deadline_timer_id: int | None = None

    def get_objective(self, objective_id: str) -> Objective | None:
        for obj in self.objectives:
            if obj.id == objective_id:
                return obj
        return None

    def real_objectives(self) -> list[Objective]:
        return [o for o in self.objectives if not o.is_verification]

    def required_objectives(self) -> list[Objective]:
        return [o for o in self.real_objectives() if not o.optional]


# -----------------------------------------------------------------------------
# Mission Pool
# -----------------------------------------------------------------------------


class MissionPoolEntry(BaseModel):
    """A generated mission on (or waiting for) the mission board."""
    mission: MissionDefinition
    client_id: str
    client_type: str | None = None
    min_reputation: int = 0
    arc_id: str | None = None
    offered_at: float = 0
    visible_at: float = 0          # Game ms; hidden until reached
    expires_at: float | None = None
    replaces_mission_id: str | None = None

    @property
    def mission_id(self) -> str:
        return self.mission.mission_id

    def is_accessible(self, reputation: int) -> bool:
        return self.min_reputation <= reputation

    def is_visible(self, now: float) -> bool:
        return self.visible_at <= now


class PoolState(BaseModel):
    """Serializable state of the mission pool."""
    missions: list[MissionPoolEntry] = Field(default_factory=list)
    pending_arc_missions: dict[str, list[MissionPoolEntry]] = Field(default_factory=dict)
    active_missions: dict[str, MissionPoolEntry] = Field(default_factory=dict)  # Accepted, in progress
    completed_missions: list[str] = Field(default_factory=list)
    active_client_ids: list[str] = Field(default_factory=list)
    last_refresh: float | None = None


class Extension(BaseModel):
    """Objectives appended to an in-progress mission."""
    pattern: Literal["more_files", "new_network"]
    objectives: list[Objective]
    payout_multiplier: float
    is_post_completion: bool = False
    network: Network | None = None
    file_system_id: str | None = None   # more_files: server receiving the new files
    files: list[FileEntry] = Field(default_factory=list)
    credential_attachment: CredentialAttachment | None = None


# -----------------------------------------------------------------------------
# Snapshots
# -----------------------------------------------------------------------------


class EngineSnapshot(BaseModel):
    """The engine's own bookkeeping as written to a save slot."""
    slot: str = "default"
    fired_events: list[str] = Field(default_factory=list)
    pending_events: list[PendingEventRecord] = Field(default_factory=list)
    pool: PoolState | None = None
    time_speed: float = 1.0
    game_time: float = 0          # Game ms elapsed when saved
    saved_at: datetime = Field(default_factory=datetime.now)
