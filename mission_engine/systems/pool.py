"""
Mission pool manager.

Keeps the board of offered procedural missions within bounds:

- between pool.min and pool.max entries (hidden replacements count)
- at least pool.min_accessible entries the player can take at current reputation
- one entry per client at a time

Arcs are generated whole. Only the current part sits on the board; later parts
wait in pending_arc_missions until the previous part succeeds, and are dropped
if it fails or the arc's offer expires or is dismissed.

Expired, dismissed and accepted entries are replaced at once, but the
replacement stays hidden for timing.regeneration_delay_ms of game time. A
scheduler timer announces it with `mission-pool-updated` when it shows up.

Usage:
    pool = MissionPool(bus, scheduler, generator, roster)
    pool.initialize(reputation=1, now=0)
    entry = pool.accept(mission_id, reputation=1, now=5_000)
"""

from __future__ import annotations

import logging
import random

from ..config import EngineConfig
from ..state.event_bus import EventBus, EventType
from ..state.scheduler import GameTimeScheduler
from ..state.schema import MissionDefinition, MissionPoolEntry, MissionStatus, PoolState
from .clients import Client, ClientRoster, Storyline, load_storylines
from .generator import MissionGenerator

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000

# Chance a non-mandatory slot still goes to an accessible client
ACCESSIBLE_PREFERENCE = 0.7


class MissionPool:
    """Stateful manager for the mission board."""

    def __init__(
        self,
        bus: EventBus,
        scheduler: GameTimeScheduler,
        generator: MissionGenerator,
        roster: ClientRoster,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
        storylines: list[Storyline] | None = None,
    ):
        self.bus = bus
        self.scheduler = scheduler
        self.generator = generator
        self.roster = roster
        self.config = config or EngineConfig()
        self.rng = rng or random.Random()
        self.storylines = load_storylines() if storylines is None else storylines
        self.state = PoolState()
        self._timers: set[int] = set()  # Pending reveal timers

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self.state.missions)

    def get(self, mission_id: str) -> MissionPoolEntry | None:
        for entry in self.state.missions:
            if entry.mission_id == mission_id:
                return entry
        return None

    def mission_ids(self) -> list[str]:
        return [e.mission_id for e in self.state.missions]

    def visible_missions(self, now: float) -> list[MissionPoolEntry]:
        return [e for e in self.state.missions if e.is_visible(now)]

    def accessible_count(self, reputation: int) -> int:
        return sum(1 for e in self.state.missions if e.is_accessible(reputation))

    def needs_refresh(self, reputation: int) -> bool:
        """True if the board is below its minimum size or accessible count."""
        if self.size < self.config.pool.min:
            return True
        return self.accessible_count(reputation) < self.config.pool.min_accessible

    def stats(self, reputation: int) -> dict:
        missions = [e.mission for e in self.state.missions]
        by_difficulty: dict[str, int] = {"easy": 0, "medium": 0, "hard": 0}
        by_archetype: dict[str, int] = {}
        for m in missions:
            if m.difficulty:
                by_difficulty[m.difficulty.value] = by_difficulty.get(m.difficulty.value, 0) + 1
            if m.archetype:
                by_archetype[m.archetype.value] = by_archetype.get(m.archetype.value, 0) + 1

        accessible = self.accessible_count(reputation)
        arcs = sum(1 for e in self.state.missions if e.arc_id)
        timed = sum(1 for m in missions if m.time_limit_minutes)
        return {
            "total_missions": len(missions),
            "accessible_count": accessible,
            "locked_count": len(missions) - accessible,
            "arc_count": arcs,
            "single_count": len(missions) - arcs,
            "timed_count": timed,
            "untimed_count": len(missions) - timed,
            "pending_arc_count": len(self.state.pending_arc_missions),
            "active_client_count": len(self.state.active_client_ids),
            "by_difficulty": by_difficulty,
            "by_archetype": by_archetype,
        }

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def _expires_at(self, mission: MissionDefinition, now: float) -> float:
        cfg = self.config.expiration
        difficulty = mission.difficulty.value if mission.difficulty else "medium"
        hours = getattr(cfg, difficulty, cfg.medium) + self.rng.uniform(-cfg.variance, cfg.variance)
        return now + max(cfg.minimum, hours) * MS_PER_HOUR

    def _entry(self, mission: MissionDefinition, now: float, visible_at: float) -> MissionPoolEntry:
        return MissionPoolEntry(
            mission=mission,
            client_id=mission.client_id or "",
            client_type=mission.client_type,
            min_reputation=mission.min_reputation,
            arc_id=mission.arc_id,
            offered_at=now,
            visible_at=visible_at,
            expires_at=self._expires_at(mission, visible_at),
        )

    def _pick_client(self, reputation: int, exclude: set[str], must_be_accessible: bool) -> Client | None:
        if must_be_accessible or self.rng.random() < ACCESSIBLE_PREFERENCE:
            client = self.roster.random_accessible(reputation, exclude)
            if client is not None or must_be_accessible:
                return client
        return self.roster.random_locked(reputation, exclude) or self.roster.random_accessible(reputation, exclude)

    def select_arc_clients(
        self,
        storyline: Storyline,
        first: Client,
        exclude: set[str],
        reputation: int,
    ) -> list[Client]:
        """
        One client per arc part. A part with no industry filter reuses the
        previous part's client; otherwise an unused accessible client from the
        listed industries, falling back to the previous client.
        """
        clients = [first]
        used = set(exclude) | {first.id}
        for step in storyline.mission_sequence[1:]:
            candidate = None
            if step.industries:
                candidate = self.roster.random_accessible(reputation, used, step.industries)
            candidate = candidate or clients[-1]
            clients.append(candidate)
            used.add(candidate.id)
        return clients

    def _generate(self, reputation: int, now: float, visible_at: float, must_be_accessible: bool) -> list[MissionPoolEntry]:
        """
        Generate one offer (single mission or arc).

        Returns:
            Entries with the board entry first and any hidden arc parts after it,
            or an empty list if no client is free
        """
        exclude = set(self.state.active_client_ids)
        client = self._pick_client(reputation, exclude, must_be_accessible)
        if client is None:
            return []

        if self.storylines and self.rng.random() < self.config.pool.arc_chance:
            storyline = self.rng.choice(self.storylines)
            clients = self.select_arc_clients(storyline, client, exclude, reputation)
            missions = self.generator.generate_arc(storyline, clients, now=now)
            if missions:
                return [self._entry(m, now, visible_at) for m in missions]

        mission = self.generator.generate_mission(client.id, now=now)
        return [self._entry(mission, now, visible_at)] if mission else []

    def _add_offer(self, entries: list[MissionPoolEntry]) -> MissionPoolEntry:
        head, rest = entries[0], entries[1:]
        self.state.missions.append(head)
        if rest:
            self.state.pending_arc_missions[head.arc_id] = rest
        for entry in entries:
            self._claim_client(entry.client_id)
        return head

    def _claim_client(self, client_id: str) -> None:
        if client_id and client_id not in self.state.active_client_ids:
            self.state.active_client_ids.append(client_id)

    def _free_client(self, client_id: str) -> None:
        if client_id in self.state.active_client_ids:
            self.state.active_client_ids.remove(client_id)

    def _evict_locked(self, reputation: int, count: int) -> None:
        """Drop locked single-mission offers (newest first) to make room."""
        for entry in reversed(list(self.state.missions)):
            if count <= 0:
                return
            if not entry.is_accessible(reputation) and not entry.arc_id:
                self._remove(entry)
                count -= 1

    def _top_up(self, reputation: int, now: float, delay_ms: float = 0) -> list[MissionPoolEntry]:
        """Fill the board back to a random size in [min, max] with enough accessible offers."""
        cfg = self.config.pool
        target = self.rng.randint(cfg.min, cfg.max)
        need_accessible = max(0, cfg.min_accessible - self.accessible_count(reputation))

        room = cfg.max - self.size
        if need_accessible > room:
            self._evict_locked(reputation, need_accessible - room)

        to_add = min(cfg.max - self.size, max(need_accessible, target - self.size))
        visible_at = now + delay_ms
        added: list[MissionPoolEntry] = []
        accessible_added = 0

        for _ in range(max(0, to_add)):
            must = accessible_added < need_accessible
            entries = self._generate(reputation, now, visible_at, must)
            if not entries:
                logger.warning("Mission pool ran out of free clients")
                break
            head = self._add_offer(entries)
            added.append(head)
            if head.is_accessible(reputation):
                accessible_added += 1

        if added and delay_ms > 0:
            self._schedule_reveal([e.mission_id for e in added], delay_ms)
        return added

    def _schedule_reveal(self, mission_ids: list[str], delay_ms: float) -> None:
        timer_id = None

        def reveal() -> None:
            self._timers.discard(timer_id)
            self._on_regenerated(mission_ids)

        timer_id = self.scheduler.schedule(reveal, delay_ms)
        self._timers.add(timer_id)

    def _on_regenerated(self, mission_ids: list[str]) -> None:
        shown = [m for m in mission_ids if self.get(m) is not None]
        if shown:
            logger.debug(f"Replacement missions visible: {shown}")
            self._emit_updated("regenerated", revealed=shown)

    def _emit_updated(self, reason: str, **extra) -> None:
        self.bus.emit(EventType.MISSION_POOL_UPDATED, missions=self.mission_ids(), reason=reason, **extra)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self, reputation: int, now: float) -> PoolState:
        """Start a fresh board."""
        self.clear()
        self._top_up(reputation, now)
        self.state.last_refresh = now
        logger.info(f"Mission pool initialized with {self.size} missions")
        self._emit_updated("initialized")
        return self.state

    def _remove(self, entry: MissionPoolEntry, drop_arc: bool = True) -> None:
        self.state.missions = [e for e in self.state.missions if e.mission_id != entry.mission_id]
        self._free_client(entry.client_id)
        if drop_arc and entry.arc_id:
            self._drop_arc(entry.arc_id)

    def _drop_arc(self, arc_id: str) -> None:
        for part in self.state.pending_arc_missions.pop(arc_id, []):
            self._free_client(part.client_id)

    def refresh(self, reputation: int, now: float, active_mission_id: str | None = None) -> list[str]:
        """
        Expire stale offers and top the board back up.

        Args:
            reputation: Player's current reputation
            now: Current game time (ms)
            active_mission_id: Entry that must not expire

        Returns:
            Ids of expired missions
        """
        expired = [
            e for e in self.state.missions
            if e.mission_id != active_mission_id and e.expires_at is not None and now > e.expires_at
        ]
        for entry in expired:
            logger.info(f"Mission offer expired: {entry.mission_id}")
            self._remove(entry)

        delay = self.config.timing.regeneration_delay_ms if expired else 0
        added = self._top_up(reputation, now, delay)
        self.state.last_refresh = now
        if expired or added:
            self._emit_updated("refreshed", expired=[e.mission_id for e in expired])
        return [e.mission_id for e in expired]

    def accept(self, mission_id: str, reputation: int, now: float) -> MissionPoolEntry | None:
        """
        Take a visible, accessible offer off the board.

        Arc parts after it stay pending until it completes. A hidden
        replacement keeps the board at size.
        """
        entry = self.get(mission_id)
        if entry is None:
            logger.warning(f"Mission not in pool: {mission_id}")
            return None
        if not entry.is_visible(now) or not entry.is_accessible(reputation):
            logger.warning(f"Mission {mission_id} cannot be accepted yet")
            return None

        self.state.missions.remove(entry)
        if not (entry.arc_id and self.state.pending_arc_missions.get(entry.arc_id)):
            self._free_client(entry.client_id)
        self.state.active_missions[mission_id] = entry

        self._top_up(reputation, now, self.config.timing.regeneration_delay_ms)
        self._emit_updated("accepted", mission_id=mission_id)
        return entry

    def dismiss(self, mission_id: str, reputation: int, now: float) -> bool:
        """Player declines an offer. Dismissing an arc offer drops the whole arc."""
        entry = self.get(mission_id)
        if entry is None:
            return False

        self._remove(entry)
        self._top_up(reputation, now, self.config.timing.regeneration_delay_ms)
        logger.info(f"Mission dismissed: {mission_id}")
        self._emit_updated("dismissed", mission_id=mission_id)
        return True

    def handle_mission_complete(
        self,
        mission_id: str,
        status: MissionStatus | str,
        reputation: int,
        now: float,
    ) -> MissionPoolEntry | None:
        """
        Advance or end an arc after an accepted mission finishes.

        Returns:
            The revealed next arc part, if any
        """
        entry = self.state.active_missions.pop(mission_id, None)
        if entry is None:
            return None

        if MissionStatus(status) == MissionStatus.FAILED:
            if entry.arc_id:
                self._drop_arc(entry.arc_id)
                logger.info(f"Arc {entry.arc_id} ended by failure of {mission_id}")
            self._free_client(entry.client_id)
            self._emit_updated("arc-failed" if entry.arc_id else "mission-failed", mission_id=mission_id)
            return None

        self.state.completed_missions.append(mission_id)
        pending = self.state.pending_arc_missions.get(entry.arc_id or "")
        if not pending:
            self.state.pending_arc_missions.pop(entry.arc_id or "", None)
            if entry.arc_id:
                logger.info(f"Arc complete: {entry.mission.arc_name}")
            self._free_client(entry.client_id)
            return None

        next_entry = pending.pop(0)
        if not pending:
            del self.state.pending_arc_missions[entry.arc_id]
        if entry.client_id != next_entry.client_id and not any(
            p.client_id == entry.client_id for p in pending
        ):
            self._free_client(entry.client_id)

        next_entry.offered_at = now
        next_entry.visible_at = now
        next_entry.expires_at = self._expires_at(next_entry.mission, now)
        if self.size >= self.config.pool.max:
            self._evict_locked(reputation, self.size - self.config.pool.max + 1)
        self.state.missions.append(next_entry)
        self._claim_client(next_entry.client_id)
        logger.info(f"Arc {entry.arc_id} advanced to {next_entry.mission_id}")
        self._emit_updated("arc-progress", mission_id=next_entry.mission_id)
        return next_entry

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load_state(self, state: PoolState | dict, now: float | None = None) -> None:
        """Replace pool state. With `now`, hidden entries get their reveal timers back."""
        self.clear()
        self.state = state if isinstance(state, PoolState) else PoolState.model_validate(state)
        if now is None:
            return
        hidden: dict[float, list[str]] = {}
        for entry in self.state.missions:
            if entry.visible_at > now:
                hidden.setdefault(entry.visible_at, []).append(entry.mission_id)
        for visible_at, ids in hidden.items():
            self._schedule_reveal(ids, visible_at - now)

    def clear(self) -> None:
        for timer_id in self._timers:
            self.scheduler.cancel(timer_id)
        self._timers.clear()
        self.state = PoolState()
