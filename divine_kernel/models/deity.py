"""Deity Agent State — the global, per-deity value passed through each tick."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from divine_kernel.models.karma import DeityName


class DeityMood(str, Enum):
    WRATHFUL = "WRATHFUL"
    DISPLEASED = "DISPLEASED"
    NEUTRAL = "NEUTRAL"
    AMUSED = "AMUSED"
    PLEASED = "PLEASED"


class DeityPhase(str, Enum):
    DORMANT = "DORMANT"        # No intervention possible
    WATCHING = "WATCHING"
    ACTIVE = "ACTIVE"
    FERVENT = "FERVENT"


class DeityAgentState(BaseModel):
    """
    Exactly one per deity. Mood and phase are replaced by the mood pass each
    cycle; the dials are tuned by operators and bias the decision engine.
    """

    deity: DeityName
    mood: DeityMood = DeityMood.NEUTRAL
    phase: DeityPhase = DeityPhase.WATCHING
    mood_score: float = Field(ge=0, le=100, default=50.0)
    last_intervention_at: Optional[datetime] = None
    global_cooldown_hours: float = Field(ge=0, default=1.0)

    # Stat dials (50 = no bias)
    influence: float = Field(ge=0, le=100, default=50.0)     # Scales every intervention chance
    patience: float = Field(ge=0, le=100, default=50.0)      # Stretches the global cooldown
    wrath: float = Field(ge=0, le=100, default=50.0)         # Favors harsh manifestations
    benevolence: float = Field(ge=0, le=100, default=50.0)   # Favors benevolent manifestations

    total_interventions: int = 0
    updated_at: Optional[datetime] = None

    @property
    def effective_cooldown(self) -> timedelta:
        """Global cooldown stretched (or shrunk) by patience: 0.5x .. 1.5x."""
        factor = 0.5 + self.patience / 100.0
        return timedelta(hours=self.global_cooldown_hours * factor)

    def cooldown_expires_at(self) -> Optional[datetime]:
        if self.last_intervention_at is None:
            return None
        return self.last_intervention_at + self.effective_cooldown

    def can_intervene(self, at: datetime) -> bool:
        """Globally eligible: not dormant and not inside the global cooldown."""
        if self.phase == DeityPhase.DORMANT:
            return False
        expires = self.cooldown_expires_at()
        return expires is None or expires <= at
