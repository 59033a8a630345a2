"""
Mission extensions.

Procedural missions can grow while in progress. Once half the objectives are
done (mid-mission) or all of them are done but not yet verified
(post-completion), a roll may append extra objectives before verification and
raise the payout. Each mission is extended at most once.
"""

from __future__ import annotations

import logging
import math
import random

from ..config import EngineConfig
from ..state.event_bus import EventBus, EventType, GameEvent, Unsubscribe
from ..state.schema import ActiveMission
from .generator import MissionGenerator
from .objectives import ObjectiveTracker

logger = logging.getLogger(__name__)


def is_verified(active: ActiveMission) -> bool:
    return any(o.is_verification and o.is_complete for o in active.objectives)


class ExtensionSystem:
    """
    Listens for objective completions and extends missions.

    Usage:
        extensions = ExtensionSystem(bus, tracker, generator, config, rng)
        extensions.start()
    """

    def __init__(
        self,
        bus: EventBus,
        tracker: ObjectiveTracker,
        generator: MissionGenerator,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.bus = bus
        self.tracker = tracker
        self.generator = generator
        self.config = config or EngineConfig()
        self.rng = rng or random.Random()
        self._unsubscribe: Unsubscribe | None = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.on(EventType.OBJECTIVE_COMPLETE, self._on_objective_complete)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def should_trigger(self, mission_id: str) -> tuple[bool, bool]:
        """
        Roll for an extension.

        Returns:
            (trigger, is_post_completion)
        """
        active = self.tracker.get_active(mission_id)
        if active is None or active.completed or active.extended:
            return False, False
        if not active.definition.client_id:
            return False, False
        if is_verified(active):
            return False, False

        progress = self.tracker.get_progress(mission_id)
        cfg = self.config.extension
        if progress["all_real_complete"]:
            return self.rng.random() < cfg.post_completion_chance, True
        if progress["fraction"] >= cfg.trigger_threshold:
            return self.rng.random() < cfg.mid_mission_chance, False
        return False, False

    def _on_objective_complete(self, event: GameEvent) -> None:
        if event.get("is_pre_completed"):
            return
        mission_id = event.get("mission_id")
        active = self.tracker.get_active(mission_id)
        objective = active.get_objective(event.get("objective_id")) if active else None
        if objective is None or objective.is_verification:
            return
        trigger, post = self.should_trigger(mission_id)
        if trigger:
            self.extend(mission_id, is_post_completion=post)

    def extend(self, mission_id: str, is_post_completion: bool = False) -> bool:
        """Generate and apply an extension. Returns True if applied."""
        active = self.tracker.get_active(mission_id)
        if active is None or active.completed or active.extended or is_verified(active):
            return False

        extension = self.generator.generate_extension(active.definition, is_post_completion)
        if extension is None or not self.tracker.insert_objectives(mission_id, extension.objectives):
            logger.warning(f"Could not extend mission {mission_id}")
            return False

        active.extended = True
        active.payout = math.floor(active.payout * extension.payout_multiplier)
        logger.info(
            f"Extended {mission_id} ({extension.pattern}, +{len(extension.objectives)} objectives, "
            f"x{extension.payout_multiplier})"
        )

        self.bus.emit(
            EventType.MISSION_EXTENDED,
            mission_id=mission_id,
            pattern=extension.pattern,
            objectives=[o.model_dump(mode="json") for o in extension.objectives],
            payout_multiplier=extension.payout_multiplier,
            payout=active.payout,
            is_post_completion=is_post_completion,
            network=extension.network.model_dump(mode="json") if extension.network else None,
            file_system_id=extension.file_system_id,
            files=[f.model_dump(mode="json") for f in extension.files],
            credential_attachment=(
                extension.credential_attachment.model_dump(mode="json")
                if extension.credential_attachment else None
            ),
        )
        return True
