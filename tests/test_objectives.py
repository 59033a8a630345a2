"""Tests for the objective state machine."""

from mission_engine.state.event_bus import EventType
from mission_engine.state.schema import (
    GameState,
    MissionDefinition,
    Objective,
    ObjectiveStatus,
    ObjectiveType,
)
from mission_engine.systems.objectives import (
    ObjectiveTracker,
    check_network_scan,
    check_credential_registration,
)
from mission_engine.systems.registry import normalize_definition


def statuses(active):
    return {o.id: o.status for o in active.objectives}


def file_then_scan():
    """[A(file operation), B(network scan), verification]"""
    return normalize_definition(MissionDefinition(
        mission_id="ordered",
        objectives=[
            Objective(id="A", type=ObjectiveType.FILE_OPERATION, operation="copy", target_files=["a.db"]),
            Objective(id="B", type=ObjectiveType.NETWORK_SCAN, target="net", expected_result="srv-01"),
        ],
    ))


class TestOrdering:
    def test_out_of_order_then_catch_up(self, tracker, bus, recorder_factory):
        """B pre-completes, A completes, B flips without a new event, verification waits."""
        rec = recorder_factory(EventType.OBJECTIVE_COMPLETE, EventType.MISSION_COMPLETE)
        active = tracker.start_mission(file_then_scan())

        bus.emit(EventType.NETWORK_SCAN_COMPLETE, network_id="net", machines=[{"hostname": "srv-01"}])
        assert statuses(active)["B"] == ObjectiveStatus.PRE_COMPLETED
        assert statuses(active)["A"] == ObjectiveStatus.PENDING

        bus.emit(EventType.FILE_OPERATION_COMPLETE, operation="copy", file_names=["a.db"])
        assert statuses(active)["A"] == ObjectiveStatus.COMPLETE
        assert statuses(active)["B"] == ObjectiveStatus.COMPLETE
        assert statuses(active)["obj-verify"] == ObjectiveStatus.PENDING
        assert rec.of(EventType.MISSION_COMPLETE) == []

        result = tracker.complete_verification("ordered")
        assert result["success"] is True
        assert statuses(active)["obj-verify"] == ObjectiveStatus.COMPLETE

        completes = rec.of(EventType.MISSION_COMPLETE)
        assert len(completes) == 1
        assert completes[0].get("status") == "success"

    def test_transition_events_carry_pre_completed_flag(self, tracker, bus, recorder_factory):
        """Each transition emits objective-complete with is_pre_completed."""
        rec = recorder_factory(EventType.OBJECTIVE_COMPLETE)
        tracker.start_mission(file_then_scan())

        bus.emit(EventType.NETWORK_SCAN_COMPLETE, machines=[{"hostname": "srv-01"}])
        bus.emit(EventType.FILE_OPERATION_COMPLETE, operation="copy", file_names=["a.db"])

        flags = [(e.get("objective_id"), e.get("is_pre_completed")) for e in rec.events]
        assert flags == [("B", True), ("A", False), ("B", False)]
        assert all(e.get("mission_id") == "ordered" for e in rec.events)

    def test_verification_refused_while_incomplete(self, tracker):
        """Verification lists what is still outstanding."""
        tracker.start_mission(file_then_scan())
        result = tracker.complete_verification("ordered")
        assert "error" in result
        assert result["remaining"] == ["A", "B"]

    def test_optional_objectives_do_not_block_reachability(self, tracker, bus):
        """A later objective is reachable past an optional one."""
        definition = normalize_definition(MissionDefinition(
            mission_id="opt",
            objectives=[
                Objective(id="bonus", type=ObjectiveType.INVESTIGATION, correct_file_system_id="fs-9", optional=True),
                Objective(id="main", type=ObjectiveType.NETWORK_CONNECTION, target="net"),
            ],
        ))
        active = tracker.start_mission(definition)

        bus.emit(EventType.NETWORK_CONNECTED, network_id="net")

        assert statuses(active)["main"] == ObjectiveStatus.COMPLETE


class TestSubmittable:
    def optional_mission(self):
        return normalize_definition(MissionDefinition(
            mission_id="sub",
            objectives=[
                Objective(id="req", type=ObjectiveType.NETWORK_CONNECTION, target="net"),
                Objective(id="opt", type=ObjectiveType.FILE_SYSTEM_CONNECTION, target="10.0.0.5", optional=True),
            ],
        ))

    def test_submittable_with_optional_pending(self, tracker, bus, recorder_factory):
        """Required objectives done -> submittable, optional still pending."""
        rec = recorder_factory(EventType.MISSION_SUBMITTABLE, EventType.MISSION_COMPLETE)
        tracker.start_mission(self.optional_mission())

        assert tracker.is_submittable("sub") is False
        bus.emit(EventType.NETWORK_CONNECTED, network_id="net")

        assert tracker.is_submittable("sub") is True
        assert len(rec.of(EventType.MISSION_SUBMITTABLE)) == 1
        assert "error" in tracker.complete_verification("sub")

        result = tracker.submit_mission("sub")
        assert result["success"] is True
        completes = rec.of(EventType.MISSION_COMPLETE)
        assert completes[0].get("status") == "success"
        assert completes[0].get("submitted") is True

    def test_submit_refused_before_required_done(self, tracker):
        """Submitting early is an error."""
        tracker.start_mission(self.optional_mission())
        assert "error" in tracker.submit_mission("sub")


class TestFileOperations:
    def test_cumulative_across_events(self, tracker, bus, scan_then_repair):
        """Repairs spread over several events add up."""
        active = tracker.start_mission(normalize_definition(scan_then_repair))
        bus.emit(EventType.NETWORK_CONNECTED, network_id="corp-net")
        bus.emit(EventType.NETWORK_SCAN_COMPLETE, machines=[{"ip": "10.1.1.10"}])

        bus.emit(EventType.FILE_OPERATION_COMPLETE, operation="repair", file_names=["ledger.db"])
        assert statuses(active)["obj-3"] == ObjectiveStatus.PENDING

        bus.emit(EventType.FILE_OPERATION_COMPLETE, operation="repair", file_names=["payroll.xlsx"])
        assert statuses(active)["obj-3"] == ObjectiveStatus.COMPLETE

    def test_paste_needs_destination(self, tracker, bus):
        """Pastes only count on the configured destination."""
        definition = normalize_definition(MissionDefinition(
            mission_id="paste",
            objectives=[Objective(
                id="p", type=ObjectiveType.FILE_OPERATION, operation="paste",
                target_files=["a.db"], destination="10.0.0.50",
            )],
        ))
        active = tracker.start_mission(definition)

        bus.emit(EventType.FILE_OPERATION_COMPLETE, operation="paste", file_names=["a.db"], destination="10.0.0.9")
        assert statuses(active)["p"] == ObjectiveStatus.PENDING

        bus.emit(EventType.FILE_OPERATION_COMPLETE, operation="paste", file_names=["a.db"], file_system="10.0.0.50")
        assert statuses(active)["p"] == ObjectiveStatus.COMPLETE


class TestPredicates:
    def test_scan_expected_results_need_all(self):
        """Every listed machine must be found."""
        objective = Objective(id="s", type=ObjectiveType.NETWORK_SCAN, expected_results=["10.0.0.1", "10.0.0.2"])
        assert not check_network_scan(objective, {"machines": [{"ip": "10.0.0.1"}]})
        assert check_network_scan(objective, {"machines": [{"ip": "10.0.0.1"}, {"ip": "10.0.0.2"}]})

    def test_unauthorized_credentials_rejected(self):
        """Credentials flagged unauthorized never count."""
        objective = Objective(id="c", type=ObjectiveType.CREDENTIAL_REGISTRATION, target="net")
        assert check_credential_registration(objective, {"network_id": "net"})
        assert not check_credential_registration(objective, {"network_id": "net", "authorized": False})


class TestLifecycle:
    def test_catch_up_on_start(self, bus, scheduler):
        """State already true at acceptance completes objectives immediately."""
        state = GameState(active_connections=[{"network_id": "corp-net"}])
        tracker = ObjectiveTracker(bus, scheduler, state_accessor=lambda: state)
        definition = normalize_definition(MissionDefinition(
            mission_id="c",
            objectives=[Objective(id="o1", type=ObjectiveType.NETWORK_CONNECTION, target="corp-net")],
        ))

        active = tracker.start_mission(definition)

        assert statuses(active)["o1"] == ObjectiveStatus.COMPLETE

    def test_definition_is_not_mutated(self, tracker, bus):
        """Progress lives on the active copy only."""
        definition = file_then_scan()
        tracker.start_mission(definition)
        bus.emit(EventType.NETWORK_SCAN_COMPLETE, machines=[{"hostname": "srv-01"}])
        assert all(o.status == ObjectiveStatus.PENDING for o in definition.objectives)

    def test_deadline_fails_mission(self, tracker, clock, recorder_factory):
        """Timed missions fail when the game-time limit passes."""
        rec = recorder_factory(EventType.MISSION_COMPLETE)
        definition = file_then_scan().model_copy(update={"time_limit_minutes": 3})
        tracker.start_mission(definition)

        clock.advance(3 * 60_000)
        tracker.scheduler.tick()

        assert rec.events[0].get("status") == "failed"
        assert rec.events[0].get("reason") == "deadline"
        assert tracker.get_active("ordered").completed

    def test_scripted_status_change_fails_mission(self, tracker, bus, recorder_factory):
        """mission-status-changed to failed ends the mission."""
        rec = recorder_factory(EventType.MISSION_COMPLETE)
        tracker.start_mission(file_then_scan())

        bus.emit(EventType.MISSION_STATUS_CHANGED, mission_id="ordered", status="failed", failure_reason="wiped")

        assert rec.events[0].get("reason") == "wiped"

    def test_completed_mission_ignores_events(self, tracker, bus, recorder_factory):
        """No transitions after completion."""
        tracker.start_mission(file_then_scan())
        tracker.fail_mission("ordered", "quit")
        rec = recorder_factory(EventType.OBJECTIVE_COMPLETE)

        bus.emit(EventType.FILE_OPERATION_COMPLETE, operation="copy", file_names=["a.db"])

        assert len(rec) == 0
        assert tracker.fail_mission("ordered") is False

    def test_abandon_unsubscribes(self, tracker, bus):
        """Abandoning drops listeners without completing."""
        tracker.start_mission(file_then_scan())
        before = bus.listener_count(EventType.NETWORK_CONNECTED)
        assert tracker.abandon("ordered")
        assert bus.listener_count(EventType.NETWORK_CONNECTED) == before - 1


class TestExtensionsHook:
    def test_insert_before_verification(self, tracker, bus):
        """Inserted objectives land before obj-verify and block submission."""
        active = tracker.start_mission(file_then_scan())
        tracker.insert_objectives("ordered", [
            Objective(id="extra", type=ObjectiveType.NETWORK_CONNECTION, target="annex"),
        ])
        assert [o.id for o in active.objectives] == ["A", "B", "extra", "obj-verify"]

        progress = tracker.get_progress("ordered")
        assert progress["total"] == 3
        assert progress["completed"] == 0
