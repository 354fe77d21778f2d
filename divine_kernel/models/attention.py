"""Attention Record — how closely one deity is watching one character."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from divine_kernel.models.karma import DeityName
from divine_kernel.models.manifestation import ManifestationType


class Trend(str, Enum):
    IMPROVING = "IMPROVING"
    DECLINING = "DECLINING"
    STABLE = "STABLE"
    VOLATILE = "VOLATILE"


class LeadershipRole(str, Enum):
    NONE = "NONE"
    OFFICER = "OFFICER"
    LEADER = "LEADER"


class KarmaTrajectory(BaseModel):
    """Recent behaviour read as a trajectory, for one deity."""

    direction: Trend = Trend.STABLE
    velocity_per_day: float = 0.0           # Mean bucket delta
    consistency: float = Field(ge=0, le=1, default=1.0)
    recent_dramatic_actions: int = 0        # Major actions witnessed by this deity
    days_analyzed: int = 0


class AttentionTriggers(BaseModel):
    """Boolean reasons a deity finds a character noteworthy."""

    high_karma: bool = False
    recent_drama: bool = False
    rival_favored: bool = False
    moral_conflict: bool = False
    gang_leader: bool = False
    frequent_gambler: bool = False          # Gambler only
    law_breaker: bool = False               # Outlaw King only
    active_quester: bool = False


class AttentionRecord(BaseModel):
    """
    One per (character, deity). Scores are recomputed every tick; cooldowns
    and counters only move when a manifestation is dispatched.
    """

    character_id: str
    deity: DeityName
    attention: float = Field(ge=0, le=100, default=0.0)
    interest: float = Field(ge=0, le=100, default=0.0)
    triggers: AttentionTriggers = AttentionTriggers()
    trend: Trend = Trend.STABLE
    cooldown_until: Dict[ManifestationType, datetime] = {}
    intervention_counts: Dict[ManifestationType, int] = {}
    last_evaluated_at: Optional[datetime] = None
    last_intervention_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def can_receive(self, manifestation_type: ManifestationType, at: datetime) -> bool:
        """A type is eligible once its individual cooldown has expired."""
        until = self.cooldown_until.get(manifestation_type)
        return until is None or until <= at

    def hours_since_intervention(self, at: datetime) -> Optional[float]:
        if self.last_intervention_at is None:
            return None
        return (at - self.last_intervention_at).total_seconds() / 3600.0
