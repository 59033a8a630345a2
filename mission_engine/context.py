"""
Application context.

Owns one instance of every engine component and passes them to each other by
reference. Nothing in the engine is a process global, so several contexts can
run side by side (one per save, one per test).

Usage:
    ctx = MissionContext(config=load_config("engine.yaml"))
    ctx.set_state_accessor(lambda: game.snapshot())
    ctx.load_catalogue(authored_missions)
    ctx.initialize_pool()

    # host loop
    ctx.tick()
"""

from __future__ import annotations

import logging
import random
from typing import Iterable

from .config import EngineConfig
from .state.event_bus import EventBus, EventType, GameEvent, Unsubscribe
from .state.scheduler import Clock, GameTimeScheduler, MonotonicClock
from .state.schema import EngineSnapshot, MissionDefinition
from .state.store import SnapshotStore
from .systems.clients import ClientRoster, Storyline
from .systems.conditions import StateAccessor
from .systems.extensions import ExtensionSystem
from .systems.generator import MissionGenerator
from .systems.objectives import ObjectiveTracker
from .systems.pool import MissionPool
from .systems.registry import MissionRegistry
from .systems.scripted import ScriptedEventExecutor

logger = logging.getLogger(__name__)


class MissionContext:
    """Top-level wiring for the mission engine."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        roster: ClientRoster | None = None,
        storylines: list[Storyline] | None = None,
    ):
        self.config = config or EngineConfig()
        self.clock = clock or MonotonicClock()
        self.rng = rng or random.Random()

        self.bus = EventBus(history_limit=self.config.timing.history_limit)
        self.scheduler = GameTimeScheduler(self.clock)
        self.executor = ScriptedEventExecutor(self.bus)
        self.registry = MissionRegistry(self.bus, self.scheduler, self.executor, self.config)
        self.tracker = ObjectiveTracker(self.bus, self.scheduler)
        self.roster = roster or ClientRoster.load(rng=self.rng)
        self.generator = MissionGenerator(self.roster, self.config, self.rng)
        self.pool = MissionPool(
            self.bus, self.scheduler, self.generator, self.roster, self.config, self.rng, storylines
        )
        self.extensions = ExtensionSystem(self.bus, self.tracker, self.generator, self.config, self.rng)

        self.reputation = 1
        self._game_ms = 0.0
        self._real_mark = self.clock.now()
        self._pool_unsub: Unsubscribe | None = None
        self._wire()

    def _wire(self) -> None:
        self.registry.subscribe_consequences()
        self.extensions.start()
        self._pool_unsub = self.bus.on(EventType.MISSION_COMPLETE, self._on_mission_complete)

    def _on_mission_complete(self, event: GameEvent) -> None:
        self.pool.handle_mission_complete(
            event.get("mission_id"), event.get("status"), self.reputation, self.game_time()
        )

    # -------------------------------------------------------------------------
    # Clock
    # -------------------------------------------------------------------------

    def game_time(self) -> float:
        """Game ms elapsed, advancing at the current speed."""
        now = self.clock.now()
        self._game_ms += (now - self._real_mark) * self.scheduler.speed
        self._real_mark = now
        return self._game_ms

    def set_time_speed(self, multiplier: float) -> None:
        """Change global speed and rescale every live timer."""
        self.game_time()
        self.registry.set_time_speed(multiplier)
        logger.info(f"Time speed set to {multiplier}x")

    def set_state_accessor(self, accessor: StateAccessor | None) -> None:
        self.registry.set_state_accessor(accessor)
        self.tracker.set_state_accessor(accessor)

    def tick(self) -> int:
        """Fire due timers. Returns how many fired."""
        return self.scheduler.tick()

    # -------------------------------------------------------------------------
    # Missions
    # -------------------------------------------------------------------------

    def load_catalogue(self, definitions: Iterable[MissionDefinition | dict]) -> int:
        return self.registry.register_all(definitions)

    def start_mission(self, mission_id: str) -> dict:
        """Begin tracking a registered (authored) mission."""
        mission = self.registry.get(mission_id)
        if mission is None:
            return {"error": f"Unknown mission: {mission_id}"}
        self.tracker.start_mission(mission)
        return {"success": True, "mission_id": mission_id}

    def initialize_pool(self) -> list[str]:
        self.pool.initialize(self.reputation, self.game_time())
        return self.pool.mission_ids()

    def refresh_pool(self, active_mission_id: str | None = None) -> list[str]:
        """Expire stale offers and top up. Returns expired ids."""
        return self.pool.refresh(self.reputation, self.game_time(), active_mission_id)

    def accept_mission(self, mission_id: str) -> dict:
        """
        Accept an offer from the pool.

        The mission is registered so its consequences are delivered on
        completion, then tracked.

        Returns:
            Dict with success or error
        """
        entry = self.pool.accept(mission_id, self.reputation, self.game_time())
        if entry is None:
            return {"error": f"Mission {mission_id} is not available"}

        mission = self.registry.register(entry.mission)
        active = self.tracker.start_mission(mission)
        return {
            "success": True,
            "mission_id": mission_id,
            "payout": active.payout,
            "time_limit_minutes": mission.time_limit_minutes,
        }

    def dismiss_mission(self, mission_id: str) -> bool:
        return self.pool.dismiss(mission_id, self.reputation, self.game_time())

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def snapshot(self, slot: str = "default") -> EngineSnapshot:
        return EngineSnapshot(
            slot=slot,
            fired_events=self.registry.get_fired_events(),
            pending_events=self.registry.get_pending_events(),
            pool=self.pool.state.model_copy(deep=True),
            time_speed=self.scheduler.speed,
            game_time=self.game_time(),
        )

    def restore(self, snapshot: EngineSnapshot | dict) -> None:
        """
        Load engine bookkeeping from a snapshot.

        Fired events are restored before pending ones so a restored timer can
        never deliver something already delivered.
        """
        if isinstance(snapshot, dict):
            snapshot = EngineSnapshot.model_validate(snapshot)

        self.registry.clear_pending_events()
        self.registry.set_time_speed(snapshot.time_speed)
        self._game_ms = snapshot.game_time
        self._real_mark = self.clock.now()

        self.registry.set_fired_events(snapshot.fired_events)
        self.registry.set_pending_events(snapshot.pending_events)
        if snapshot.pool is not None:
            self.pool.load_state(snapshot.pool, now=self._game_ms)
        logger.info(f"Restored snapshot {snapshot.slot} ({len(snapshot.pending_events)} pending events)")

    def save(self, store: SnapshotStore, slot: str = "default") -> EngineSnapshot:
        snapshot = self.snapshot(slot)
        store.save(snapshot)
        return snapshot

    def load(self, store: SnapshotStore, slot: str = "default") -> bool:
        snapshot = store.load(slot)
        if snapshot is None:
            logger.warning(f"No snapshot in slot {slot}")
            return False
        self.restore(snapshot)
        return True

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def sleep(self) -> int:
        """
        Drop every in-flight timer before the game state is replaced.

        Returns:
            Number of pending events cancelled
        """
        count = self.registry.clear_pending_events()
        self.scheduler.cancel_all()
        logger.info(f"Sleep: cancelled {count} pending events")
        return count

    def reset(self) -> None:
        """Return to a freshly constructed state (new game)."""
        self.sleep()
        self.tracker.clear()
        self.registry.clear()
        self.registry.set_fired_events([])
        self.pool.clear()
        self.extensions.stop()
        self.bus.clear()
        self._game_ms = 0.0
        self._real_mark = self.clock.now()
        self._wire()
