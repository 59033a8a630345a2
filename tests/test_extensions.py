"""Tests for mid-mission and post-completion extensions."""

import math
import random

import pytest

from mission_engine.config import EngineConfig, ExtensionConfig
from mission_engine.state.event_bus import EventType
from mission_engine.state.schema import MissionArchetype, ObjectiveStatus
from mission_engine.systems.extensions import ExtensionSystem
from mission_engine.systems.generator import MissionGenerator


def make_system(bus, tracker, roster, **options):
    config = EngineConfig(extension=ExtensionConfig(**options))
    rng = random.Random(3)
    generator = MissionGenerator(roster, config, rng)
    system = ExtensionSystem(bus, tracker, generator, config, rng)
    system.start()
    return system, generator


def connect_and_scan(bus, mission):
    """Complete obj-1 and obj-2 of a generated mission."""
    network = mission.networks[0]
    bus.emit(EventType.NETWORK_CONNECTED, network_id=network.network_id)
    scan = mission.get_objective("obj-2")
    bus.emit(
        EventType.NETWORK_SCAN_COMPLETE,
        network_id=network.network_id,
        machines=[{"ip": ip} for ip in scan.expected_results],
    )


@pytest.fixture
def always(bus, tracker, roster):
    return make_system(bus, tracker, roster, mid_mission_chance=1.0, post_completion_chance=1.0, new_network_chance=0)


class TestTrigger:
    def test_below_threshold_never_extends(self, bus, tracker, always):
        """One of three objectives done is under the 50% threshold."""
        system, generator = always
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        tracker.start_mission(mission)

        bus.emit(EventType.NETWORK_CONNECTED, network_id=mission.networks[0].network_id)

        assert tracker.get_active(mission.mission_id).extended is False

    def test_mid_mission_extension(self, bus, tracker, always, recorder_factory):
        system, generator = always
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        active = tracker.start_mission(mission)
        rec = recorder_factory(EventType.MISSION_EXTENDED)

        connect_and_scan(bus, mission)

        assert active.extended is True
        assert len(rec) == 1
        event = rec.events[0]
        assert event.get("pattern") == "more_files"
        assert event.get("is_post_completion") is False
        assert 1.3 <= event.get("payout_multiplier") <= 1.5
        assert event.get("payout") == math.floor(mission.base_payout * event.get("payout_multiplier"))
        assert active.payout == event.get("payout")
        assert event.get("file_system_id") == mission.networks[0].file_systems[0].id
        assert len(event.get("files")) == len(event.get("objectives")[0]["target_files"])

    def test_objectives_inserted_before_verification(self, bus, tracker, always):
        system, generator = always
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        active = tracker.start_mission(mission)

        connect_and_scan(bus, mission)

        ids = [o.id for o in active.objectives]
        assert ids[-1] == "obj-verify"
        assert ids[3].startswith("obj-ext")
        assert len(ids) == len(mission.objectives) + 1

    def test_extends_once(self, bus, tracker, always, recorder_factory):
        system, generator = always
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        tracker.start_mission(mission)
        rec = recorder_factory(EventType.MISSION_EXTENDED)

        connect_and_scan(bus, mission)
        assert system.extend(mission.mission_id) is False
        assert system.should_trigger(mission.mission_id) == (False, False)
        assert len(rec) == 1

    def test_zero_chance_never_extends(self, bus, tracker, roster):
        system, generator = make_system(bus, tracker, roster, mid_mission_chance=0, post_completion_chance=0)
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        active = tracker.start_mission(mission)

        connect_and_scan(bus, mission)

        assert active.extended is False

    def test_post_completion_roll(self, bus, tracker, always):
        """With every real objective done the post-completion roll applies."""
        system, generator = always
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        active = tracker.start_mission(mission)
        for objective in active.real_objectives():
            objective.status = ObjectiveStatus.COMPLETE

        assert system.should_trigger(mission.mission_id) == (True, True)

    def test_authored_missions_are_skipped(self, bus, tracker, always, scan_then_repair):
        system, _ = always
        tracker.start_mission(scan_then_repair)
        assert system.should_trigger("repair-1") == (False, False)

    def test_stop_unsubscribes(self, bus, tracker, always):
        system, generator = always
        system.stop()
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        active = tracker.start_mission(mission)

        connect_and_scan(bus, mission)

        assert active.extended is False


class TestPatterns:
    def test_new_network_carries_credentials(self, bus, tracker, roster, recorder_factory):
        system, generator = make_system(bus, tracker, roster, mid_mission_chance=1.0, new_network_chance=1.0)
        mission = generator.generate_mission("swift-courier", archetype=MissionArchetype.TRANSFER)
        tracker.start_mission(mission)
        rec = recorder_factory(EventType.MISSION_EXTENDED)

        assert system.extend(mission.mission_id) is True

        event = rec.events[0]
        assert event.get("pattern") == "new_network"
        network = event.get("network")
        assert event.get("credential_attachment")["network_id"] == network["network_id"]
        kinds = [o["type"] for o in event.get("objectives")]
        assert kinds[:2] == ["network_connection", "network_scan"]
        assert event.get("objectives")[-1]["operation"] == "paste"

    def test_post_completion_multiplier_range(self, bus, tracker, always, recorder_factory):
        system, generator = always
        mission = generator.generate_mission("harbor-credit-union", archetype="backup")
        tracker.start_mission(mission)
        rec = recorder_factory(EventType.MISSION_EXTENDED)

        system.extend(mission.mission_id, is_post_completion=True)

        assert 1.5 <= rec.events[0].get("payout_multiplier") <= 1.8
        assert rec.events[0].get("is_post_completion") is True

    def test_submittable_reset_by_required_extension(self, bus, tracker, always):
        system, generator = always
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        active = tracker.start_mission(mission)
        active.submittable = True

        system.extend(mission.mission_id)

        assert active.submittable is False


class TestVerification:
    def complete_real_objectives(self, bus, mission):
        connect_and_scan(bus, mission)
        repair = mission.get_objective("obj-3")
        bus.emit(EventType.FILE_OPERATION_COMPLETE, operation="repair", file_names=list(repair.target_files))

    def test_verification_never_extends(self, bus, tracker, roster, recorder_factory):
        """Completing verification finishes the mission without a last-moment extension."""
        system, generator = make_system(bus, tracker, roster, mid_mission_chance=0, post_completion_chance=0)
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        active = tracker.start_mission(mission)
        self.complete_real_objectives(bus, mission)
        system.config.extension.post_completion_chance = 1.0
        rec = recorder_factory(EventType.MISSION_EXTENDED, EventType.MISSION_COMPLETE)

        result = tracker.complete_verification(mission.mission_id)

        assert result["success"] is True
        assert rec.of(EventType.MISSION_EXTENDED) == []
        assert rec.of(EventType.MISSION_COMPLETE)[0].get("payout") == mission.base_payout
        assert all(o.is_complete for o in active.objectives)

    def test_verified_mission_cannot_be_extended(self, bus, tracker, always):
        system, generator = always
        mission = generator.generate_mission("harbor-credit-union", archetype="repair")
        active = tracker.start_mission(mission)
        for objective in active.objectives:
            objective.status = ObjectiveStatus.COMPLETE

        assert system.should_trigger(mission.mission_id) == (False, False)
        assert system.extend(mission.mission_id) is False
