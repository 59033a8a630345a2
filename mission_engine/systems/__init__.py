"""Mission systems built on the event bus and scheduler."""

from .conditions import check_all_conditions, derive_events
from .registry import MissionRegistry
from .objectives import ObjectiveTracker
from .scripted import ScriptedEventExecutor, resolve_file_indicator
from .clients import Client, ClientRoster, Storyline, load_storylines
from .generator import MissionGenerator, calculate_payout, calculate_time_limit
from .extensions import ExtensionSystem
from .pool import MissionPool

__all__ = [
    "check_all_conditions",
    "derive_events",
    "MissionRegistry",
    "ObjectiveTracker",
    "ScriptedEventExecutor",
    "resolve_file_indicator",
    "Client",
    "ClientRoster",
    "Storyline",
    "load_storylines",
    "MissionGenerator",
    "calculate_payout",
    "calculate_time_limit",
    "ExtensionSystem",
    "MissionPool",
]
