"""Engine configuration, world rollups, and the results of a tick or dream check."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from croniter import croniter
from pydantic import BaseModel, Field, field_validator

from divine_kernel.models.deity import DeityMood
from divine_kernel.models.karma import DeityName
from divine_kernel.models.manifestation import (
    ManifestationEffect,
    ManifestationSubtype,
    ManifestationType,
)


class RestKind(str, Enum):
    SHORT_REST = "short_rest"
    FULL_REST = "full_rest"
    HOTEL = "hotel"
    CAMP = "camp"
    HOME = "home"


class EngineConfig(BaseModel):
    """
    Tunable game-balance constants. None of these numbers is a contract;
    they are configuration and may be replaced at runtime.
    """

    # Scheduling
    tick_schedule: str = "*/10 * * * *"
    maintenance_schedule: str = "0 5 * * *"
    max_watched_per_cycle: int = Field(ge=0, default=100)
    max_new_per_cycle: int = Field(ge=0, default=50)
    discovery_min_affinity: float = Field(ge=0, le=100, default=25.0)
    discovery_min_total_actions: int = Field(ge=0, default=20)
    evaluation_workers: int = Field(ge=1, default=1)
    message_timeout_seconds: float = Field(gt=0, default=2.0)

    # Attention signals
    affinity_coefficient: float = 0.75
    affinity_cap: float = 60.0
    dimension_coefficient: float = 0.5
    dimension_cap: float = 30.0
    activity_bonus_per_action: float = 2.0
    activity_cap: float = 20.0
    activity_window_hours: float = 24.0
    moral_conflict_bonus: float = 15.0
    rival_favored_bonus: float = 10.0
    rival_favored_threshold: float = 50.0
    recent_intervention_hours: float = 4.0
    recent_intervention_damping: float = 0.5
    lingering_intervention_hours: float = 8.0
    lingering_intervention_damping: float = 0.75

    # Interest signals
    volatile_interest_bonus: float = 20.0
    dramatic_interest_bonus: float = 15.0
    dramatic_action_count: int = 3
    leader_interest_bonus: float = 15.0
    officer_interest_bonus: float = 8.0
    level_interest_divisor: float = 5.0
    level_interest_cap: float = 10.0
    boon_interest_bonus: float = 5.0
    threshold_interest_bonus: float = 15.0
    threshold_proximity: float = 5.0

    # Trend classification
    trend_variance_threshold: float = 25.0
    trend_mean_threshold: float = 2.0
    dramatic_delta: float = 5.0

    # Intervention probability
    probability_floor: float = Field(ge=0, le=1, default=0.1)
    probability_ceiling: float = Field(gt=0, le=1, default=0.35)
    interest_probability_bonus: float = 0.5
    type_base_chance: Dict[ManifestationType, float] = {
        ManifestationType.WHISPER: 0.10,
        ManifestationType.OMEN: 0.08,
        ManifestationType.STRANGER: 0.05,
        ManifestationType.DREAM: 0.15,
    }
    type_cooldown_hours: Dict[ManifestationType, float] = {
        ManifestationType.WHISPER: 6.0,
        ManifestationType.OMEN: 12.0,
        ManifestationType.STRANGER: 72.0,
        ManifestationType.DREAM: 8.0,
    }
    default_global_cooldown_hours: float = Field(ge=0, default=1.0)

    # Dream check
    dream_min_total_attention: float = 10.0
    rest_multipliers: Dict[RestKind, float] = {
        RestKind.FULL_REST: 2.0,
        RestKind.HOTEL: 2.0,
        RestKind.HOME: 1.67,
        RestKind.CAMP: 1.0,
        RestKind.SHORT_REST: 1.0,
    }

    # Mood aggregation
    mood_window_hours: float = 24.0

    # Retention
    attention_retention_days: float = 30.0
    attention_retention_max_score: float = 5.0
    manifestation_history_days: float = 90.0

    @field_validator("tick_schedule", "maintenance_schedule")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        if not croniter.is_valid(value):
            raise ValueError(f"Invalid cron expression: {value!r}")
        return value


class WorldMoodFactors(BaseModel):
    """Population-wide counters over a trailing window."""

    honorable_actions: int = 0
    justice_served: int = 0
    fair_duels: int = 0
    cheaters_exposed: int = 0
    laws_broken: int = 0
    prison_escapes: int = 0
    chaos_events: int = 0
    rebellion_acts: int = 0
    total_players_active: int = 0
    major_events: int = 0


class TickSummary(BaseModel):
    """Structured result of one batch cycle, suitable for logs and metrics."""

    evaluated: int = 0
    discovered: int = 0
    failures: int = 0
    interventions_by_deity: Dict[DeityName, int] = {}
    mood_by_deity: Dict[DeityName, DeityMood] = {}
    duration_ms: float = 0.0
    started_at: datetime


class DreamResult(BaseModel):
    deity: DeityName
    manifestation_id: str
    subtype: ManifestationSubtype
    message: str
    effect_hints: Optional[ManifestationEffect] = None


class MaintenanceReport(BaseModel):
    attention_removed: int = 0
    manifestations_pruned: int = 0
    effects_expired: int = 0
