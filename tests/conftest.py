"""
Pytest fixtures for mission engine tests.

Every fixture uses a ManualClock so timers only fire when a test advances time.
"""

import random
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mission_engine.config import EngineConfig
from mission_engine.context import MissionContext
from mission_engine.state.event_bus import EventBus
from mission_engine.state.scheduler import GameTimeScheduler, ManualClock
from mission_engine.state.schema import (
    FileEntry,
    FileSystem,
    GameState,
    MessageState,
    MissionDefinition,
    Network,
    Objective,
    ObjectiveType,
)
from mission_engine.systems.clients import ClientRoster
from mission_engine.systems.objectives import ObjectiveTracker
from mission_engine.systems.registry import MissionRegistry


class EventRecorder:
    """Collects every event of the given names emitted on a bus."""

    def __init__(self, bus, *names):
        self.events = []
        for name in names:
            bus.on(name, self.events.append)

    def of(self, name):
        key = getattr(name, "value", name)
        return [e for e in self.events if e.type == key]

    def __len__(self):
        return len(self.events)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def scheduler(clock):
    return GameTimeScheduler(clock)


@pytest.fixture
def game_state():
    """Mutable game state the accessor fixtures read from."""
    return GameState()


@pytest.fixture
def state_accessor(game_state):
    return lambda: game_state


@pytest.fixture
def registry(bus, scheduler, state_accessor):
    return MissionRegistry(bus, scheduler, state_accessor=state_accessor)


@pytest.fixture
def tracker(bus, scheduler):
    return ObjectiveTracker(bus, scheduler)


@pytest.fixture
def recorder_factory(bus):
    def make(*names):
        return EventRecorder(bus, *names)
    return make


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def roster(rng):
    return ClientRoster.load(rng=rng)


@pytest.fixture
def context(clock):
    return MissionContext(config=EngineConfig(), clock=clock, rng=random.Random(99))


@pytest.fixture
def sample_network():
    """One file server with two corrupted files and one clean file."""
    return Network(
        network_id="corp-net",
        network_name="Corp Network",
        address="10.1.1.0/24",
        file_systems=[
            FileSystem(
                id="fs-1",
                ip="10.1.1.10",
                name="corp-fileserver-01",
                files=[
                    FileEntry(name="ledger.db", corrupted=True),
                    FileEntry(name="notes.txt"),
                    FileEntry(name="payroll.xlsx", corrupted=True),
                ],
            )
        ],
    )


@pytest.fixture
def scan_then_repair(sample_network):
    """Mission: connect, scan, repair, verify."""
    return MissionDefinition(
        mission_id="repair-1",
        title="Repair job",
        networks=[sample_network],
        objectives=[
            Objective(id="obj-1", type=ObjectiveType.NETWORK_CONNECTION, target="corp-net"),
            Objective(
                id="obj-2",
                type=ObjectiveType.NETWORK_SCAN,
                target="corp-net",
                expected_results=["10.1.1.10"],
            ),
            Objective(
                id="obj-3",
                type=ObjectiveType.FILE_OPERATION,
                operation="repair",
                target_files=["ledger.db", "payroll.xlsx"],
            ),
        ],
    )


@pytest.fixture
def read_messages(game_state):
    """Mark message ids as read in the shared game state."""
    def mark(*ids):
        for message_id in ids:
            game_state.messages.append(MessageState(id=message_id, read=True))
    return mark
