"""
Snapshot storage.

Keeps persistence out of the engine so tests can run without disk I/O.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from .schema import EngineSnapshot

logger = logging.getLogger(__name__)


@runtime_checkable
class SnapshotStore(Protocol):
    """
    Storage interface for engine snapshots, keyed by save slot.

    Implementations:
    - JsonSnapshotStore: File-based persistence (production)
    - MemorySnapshotStore: In-memory storage (testing)
    """

    def save(self, snapshot: EngineSnapshot) -> None:
        """Persist a snapshot under its slot."""
        ...

    def load(self, slot: str) -> EngineSnapshot | None:
        """Load a slot. Returns None if missing or unreadable."""
        ...

    def delete(self, slot: str) -> bool:
        """Delete a slot. Returns True if deleted."""
        ...

    def list_all(self) -> list[dict]:
        """List saved slots with metadata."""
        ...

    def exists(self, slot: str) -> bool:
        ...


class JsonSnapshotStore:
    """
    One JSON file per slot. The previous save is kept as <slot>.json.bak.
    """

    def __init__(self, saves_dir: Path | str = "saves"):
        self.saves_dir = Path(saves_dir)
        self.saves_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, slot: str) -> Path:
        return self.saves_dir / f"{slot}.json"

    def save(self, snapshot: EngineSnapshot) -> None:
        snapshot_file = self._path(snapshot.slot)

        # Backup previous save
        if snapshot_file.exists():
            backup = snapshot_file.with_suffix(".json.bak")
            backup.write_text(snapshot_file.read_text())

        snapshot_file.write_text(snapshot.model_dump_json(indent=2))
        logger.debug(f"Saved snapshot {snapshot.slot} to {snapshot_file}")

    def load(self, slot: str) -> EngineSnapshot | None:
        snapshot_file = self._path(slot)
        if not snapshot_file.exists():
            return None
        try:
            return EngineSnapshot.model_validate(json.loads(snapshot_file.read_text()))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Could not read snapshot {snapshot_file}: {e}")
            return None

    def delete(self, slot: str) -> bool:
        snapshot_file = self._path(slot)
        if snapshot_file.exists():
            snapshot_file.unlink()
            return True
        return False

    def list_all(self) -> list[dict]:
        """
        List slots, most recently written first.

        Returns list of dicts with: slot, saved_at, pending_count
        """
        slots = []
        for f in sorted(self.saves_dir.glob("*.json"), key=lambda x: x.stat().st_mtime, reverse=True):
            try:
                data = json.loads(f.read_text())
                slots.append({
                    "slot": data.get("slot", f.stem),
                    "saved_at": datetime.fromisoformat(data.get("saved_at", "2000-01-01")),
                    "pending_count": len(data.get("pending_events", [])),
                })
            except (json.JSONDecodeError, ValueError, AttributeError):
                continue
        return slots

    def exists(self, slot: str) -> bool:
        return self._path(slot).exists()


class MemorySnapshotStore:
    """
    In-memory snapshot storage for testing.

    Snapshots are stored as JSON so loads return independent copies.
    """

    def __init__(self):
        self.snapshots: dict[str, str] = {}

    def save(self, snapshot: EngineSnapshot) -> None:
        self.snapshots[snapshot.slot] = snapshot.model_dump_json()

    def load(self, slot: str) -> EngineSnapshot | None:
        raw = self.snapshots.get(slot)
        return EngineSnapshot.model_validate_json(raw) if raw is not None else None

    def delete(self, slot: str) -> bool:
        if slot in self.snapshots:
            del self.snapshots[slot]
            return True
        return False

    def list_all(self) -> list[dict]:
        slots = []
        for slot in self.snapshots:
            snapshot = self.load(slot)
            slots.append({
                "slot": slot,
                "saved_at": snapshot.saved_at,
                "pending_count": len(snapshot.pending_events),
            })
        return slots

    def exists(self, slot: str) -> bool:
        return slot in self.snapshots
