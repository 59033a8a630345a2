"""
Engine configuration.

All tunable values live here. Defaults are the pydantic field defaults; a
YAML file can override any subset of keys:

    pool:
      min: 3
    timing:
      restore_buffer_ms: 5000

Missing files and unreadable files fall back to defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class TimingConfig(BaseModel):
    restore_buffer_ms: int = 3000        # Added to remaining delay on restore
    restore_floor_ms: int = 1000         # Minimum restored delay
    regeneration_delay_ms: int = 60_000  # Replacement mission stays hidden this long
    history_limit: int = 100             # Event bus history length


class PoolConfig(BaseModel):
    min: int = 4
    max: int = 6
    min_accessible: int = 2
    arc_chance: float = 0.2


class ExpirationConfig(BaseModel):
    """Offer lifetime in game hours."""
    easy: float = 8
    medium: float = 6
    hard: float = 4
    variance: float = 1
    minimum: float = 1


class TimeLimitConfig(BaseModel):
    min_minutes: int = 3
    max_minutes: int = 10
    base_minutes: int = 3
    per_objective: float = 0.8
    chance: float = 0.3      # Probability a generated mission is timed


class PayoutConfig(BaseModel):
    base_per_objective: int = 200
    time_bonus: int = 300             # Scaled by 10 / time limit
    data_bonus_per_100mb: int = 50
    failure_penalty: dict[str, float] = Field(
        default_factory=lambda: {"easy": 0.25, "medium": 0.5, "hard": 0.75}
    )
    tier_multiplier: dict[str, float] = Field(
        default_factory=lambda: {
            "bank-local": 1.0, "bank-regional": 1.3, "bank-national": 1.8,
            "gov-library": 0.8, "gov-municipal": 1.1, "gov-state": 1.4, "gov-federal": 2.0,
            "health-clinic": 1.0, "health-hospital": 1.3, "health-research": 1.7,
            "corp-small": 1.0, "corp-medium": 1.3, "corp-enterprise": 1.8,
            "util-local": 1.1, "util-regional": 1.5,
            "ship-courier": 1.0, "ship-logistics": 1.3, "ship-global": 1.7,
            "emerg-volunteer": 0.9, "emerg-municipal": 1.3,
            "nonprofit-local": 0.7, "nonprofit-national": 1.0,
            "cultural-local": 0.8, "cultural-major": 1.2,
        }
    )
    location_multiplier: dict[str, float] = Field(
        default_factory=lambda: {
            "offshore": 1.25, "vessel": 1.2, "remote": 1.3, "datacenter": 1.1,
        }
    )

    def tier(self, client_type: str | None) -> float:
        return self.tier_multiplier.get(client_type or "", 1.0)

    def location(self, location_type: str | None) -> float:
        return self.location_multiplier.get(location_type or "", 1.0)


class ChainConfig(BaseModel):
    min_length: int = 2     # Storylines outside these bounds are not generated
    max_length: int = 4
    escalation: float = 1.25  # Payout bonus per arc position


class ExtensionConfig(BaseModel):
    trigger_threshold: float = 0.5
    mid_mission_chance: float = 0.25
    post_completion_chance: float = 0.2
    mid_mission_multiplier: tuple[float, float] = (1.3, 1.5)
    post_completion_multiplier: tuple[float, float] = (1.5, 1.8)
    new_network_chance: float = 0.3


class ReputationConfig(BaseModel):
    """Reputation change applied by generated consequences."""
    success: dict[str, int] = Field(default_factory=lambda: {"easy": 1, "medium": 1, "hard": 2})
    failure: dict[str, int] = Field(default_factory=lambda: {"easy": -1, "medium": -2, "hard": -3})


class EngineConfig(BaseModel):
    timing: TimingConfig = Field(default_factory=TimingConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    expiration: ExpirationConfig = Field(default_factory=ExpirationConfig)
    time_limit: TimeLimitConfig = Field(default_factory=TimeLimitConfig)
    payout: PayoutConfig = Field(default_factory=PayoutConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    extension: ExtensionConfig = Field(default_factory=ExtensionConfig)
    reputation: ReputationConfig = Field(default_factory=ReputationConfig)
    archetype_weights: dict[str, float] = Field(
        default_factory=lambda: {"repair": 0.4, "backup": 0.35, "transfer": 0.25}
    )


DEFAULT_CONFIG: dict[str, Any] = EngineConfig().model_dump()


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into a copy of base."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None) -> EngineConfig:
    """
    Load configuration from a YAML file layered over the defaults.

    Args:
        path: YAML file to read, or None for defaults

    Returns:
        Validated EngineConfig (defaults if the file is missing or invalid)
    """
    if path is None:
        return EngineConfig()

    path = Path(path)
    if not path.exists():
        return EngineConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}
        if not isinstance(overrides, dict):
            logger.warning(f"Ignoring config {path}: top level must be a mapping")
            return EngineConfig()
        return EngineConfig.model_validate(deep_merge(DEFAULT_CONFIG, overrides))
    except (yaml.YAMLError, ValidationError, OSError) as e:
        logger.warning(f"Could not load config {path}, using defaults: {e}")
        return EngineConfig()


def save_config(config: EngineConfig, path: Path | str) -> bool:
    """Write a config to YAML. Returns True on success."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config.model_dump(mode="json"), f, sort_keys=False)
        return True
    except OSError as e:
        logger.warning(f"Could not save config {path}: {e}")
        return False
