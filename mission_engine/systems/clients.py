"""
Client roster and arc storylines.

Clients are the organizations that post procedural missions. Each one has a
minimum reputation; the mission pool only counts a mission as accessible when
the player's reputation reaches its client's minimum.
"""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


class ClientLocation(BaseModel):
    city: str = ""
    region: str = ""
    type: str = "office"  # office, facility, datacenter, offshore, vessel, remote, warehouse


class Client(BaseModel):
    id: str
    name: str
    industry: str
    client_type: str
    min_reputation: int = 1
    location: ClientLocation = Field(default_factory=ClientLocation)


class StorylineStep(BaseModel):
    archetype: str
    industries: list[str] | None = None  # None = same client as previous part
    narrative: str = ""
    referral: str | None = None
    timed: bool = False


class Storyline(BaseModel):
    id: str
    name: str
    description: str = ""
    mission_sequence: list[StorylineStep] = Field(default_factory=list)

    @property
    def length(self) -> int:
        return len(self.mission_sequence)


def load_storylines(path: Path | None = None) -> list[Storyline]:
    """Load arc storylines from JSON."""
    path = path or DEFAULT_DATA_DIR / "storylines.json"
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return [Storyline.model_validate(s) for s in data.get("storylines", [])]


class ClientRoster:
    """
    Lookup and filtering over the client database.

    Usage:
        roster = ClientRoster.load()
        client = roster.random_accessible(reputation=3, exclude={"swift-courier"})
    """

    def __init__(self, clients: list[Client], rng: random.Random | None = None):
        self.clients = list(clients)
        self.rng = rng or random.Random()
        self._by_id = {c.id: c for c in self.clients}

    @classmethod
    def load(cls, path: Path | None = None, rng: random.Random | None = None) -> "ClientRoster":
        path = path or DEFAULT_DATA_DIR / "clients.json"
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        clients = [Client.model_validate(c) for c in data.get("clients", [])]
        logger.debug(f"Loaded {len(clients)} clients from {path}")
        return cls(clients, rng=rng)

    def __len__(self) -> int:
        return len(self.clients)

    def get(self, client_id: str | None) -> Client | None:
        if client_id is None:
            return None
        return self._by_id.get(client_id)

    def by_industry(self, industry: str) -> list[Client]:
        return [c for c in self.clients if c.industry == industry]

    def accessible(self, reputation: int) -> list[Client]:
        return [c for c in self.clients if c.min_reputation <= reputation]

    def locked(self, reputation: int) -> list[Client]:
        return [c for c in self.clients if c.min_reputation > reputation]

    def is_accessible(self, client_id: str, reputation: int) -> bool:
        client = self._by_id.get(client_id)
        return client is not None and client.min_reputation <= reputation

    def random_accessible(
        self,
        reputation: int,
        exclude: set[str] | None = None,
        industries: list[str] | None = None,
    ) -> Client | None:
        """Random client the player can work for, not already in use."""
        exclude = exclude or set()
        candidates = [
            c for c in self.accessible(reputation)
            if c.id not in exclude and (not industries or c.industry in industries)
        ]
        return self.rng.choice(candidates) if candidates else None

    def random_locked(self, reputation: int, exclude: set[str] | None = None) -> Client | None:
        """Random client above the player's reputation (shown as a locked offer)."""
        exclude = exclude or set()
        candidates = [c for c in self.locked(reputation) if c.id not in exclude]
        return self.rng.choice(candidates) if candidates else None
