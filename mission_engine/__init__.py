"""
Mission orchestration engine.

Event bus, game-time scheduler, trigger and mission registry, objective
state machine, scripted events, procedural missions and the mission pool.
"""

from .config import EngineConfig, load_config
from .context import MissionContext

__version__ = "0.1.0"

__all__ = ["EngineConfig", "load_config", "MissionContext", "__version__"]
