"""Karma Profile — the moral ledger snapshot a deity reads for one character."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


KARMA_MIN = -100.0
KARMA_MAX = 100.0
MAX_RECENT_ACTIONS = 100


class DeityName(str, Enum):
    GAMBLER = "GAMBLER"            # Order: honor, justice, fate, fair play
    OUTLAW_KING = "OUTLAW_KING"    # Chaos: freedom, survival, rebellion

    @property
    def rival(self) -> "DeityName":
        if self is DeityName.GAMBLER:
            return DeityName.OUTLAW_KING
        return DeityName.GAMBLER

    @property
    def display_name(self) -> str:
        if self is DeityName.GAMBLER:
            return "The Gambler"
        return "The Outlaw King"


class KarmaDimension(str, Enum):
    MERCY = "mercy"
    CRUELTY = "cruelty"
    GREED = "greed"
    CHARITY = "charity"
    JUSTICE = "justice"
    CHAOS = "chaos"
    HONOR = "honor"
    DECEPTION = "deception"
    SURVIVAL = "survival"
    LOYALTY = "loyalty"


class Witness(str, Enum):
    """Which deity (if any) noticed a karma action."""
    GAMBLER = "GAMBLER"
    OUTLAW_KING = "OUTLAW_KING"
    BOTH = "BOTH"
    NONE = "NONE"

    def includes(self, deity: DeityName) -> bool:
        return self is Witness.BOTH or self.value == deity.value


# Pairs of dimensions that pull a character in opposite directions.
OPPOSING_DIMENSIONS = [
    (KarmaDimension.MERCY, KarmaDimension.CRUELTY),
    (KarmaDimension.CHARITY, KarmaDimension.GREED),
    (KarmaDimension.JUSTICE, KarmaDimension.CHAOS),
    (KarmaDimension.HONOR, KarmaDimension.DECEPTION),
    (KarmaDimension.LOYALTY, KarmaDimension.SURVIVAL),
]
MORAL_CONFLICT_THRESHOLD = 30.0


class KarmaValues(BaseModel):
    """The ten independent moral dimensions, each bounded."""

    mercy: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    cruelty: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    greed: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    charity: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    justice: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    chaos: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    honor: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    deception: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    survival: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    loyalty: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)

    def get(self, dimension: KarmaDimension) -> float:
        return getattr(self, dimension.value)


class KarmaAction(BaseModel):
    """A single discrete action recorded by the ledger writer."""

    action_type: str                        # e.g., "CRIME_ROBBERY", "COMBAT_FAIR_DUEL"
    dimension: KarmaDimension               # Primary dimension affected
    delta: float = Field(ge=-25, le=25)
    timestamp: datetime
    context: str = ""
    witnessed_by: Witness = Witness.NONE


class DivineBoon(BaseModel):
    """A timed blessing or curse currently held by a character."""

    source: DeityName
    type: str
    power: int = Field(ge=1, le=3, default=1)
    description: str = ""
    granted_at: datetime
    expires_at: Optional[datetime] = None   # None = permanent until removed

    def is_active(self, at: datetime) -> bool:
        return self.expires_at is None or self.expires_at > at


class KarmaProfile(BaseModel):
    """
    Read-only snapshot of one character's moral ledger.
    Written exclusively by the external ledger writer.
    """

    character_id: str
    karma: KarmaValues = KarmaValues()
    recent_actions: List[KarmaAction] = Field(default=[], max_length=MAX_RECENT_ACTIONS)
    gambler_affinity: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    outlaw_king_affinity: float = Field(ge=KARMA_MIN, le=KARMA_MAX, default=0.0)
    blessings: List[DivineBoon] = []
    curses: List[DivineBoon] = []
    character_level: int = Field(ge=1, default=1)
    total_actions: int = 0

    def affinity_for(self, deity: DeityName) -> float:
        if deity is DeityName.GAMBLER:
            return self.gambler_affinity
        return self.outlaw_king_affinity

    def rival_affinity(self, deity: DeityName) -> float:
        return self.affinity_for(deity.rival)

    def detect_moral_conflict(self) -> Optional[str]:
        """Return the first strongly-held opposing pair, e.g. "mercy_vs_cruelty"."""
        for first, second in OPPOSING_DIMENSIONS:
            if (
                abs(self.karma.get(first)) >= MORAL_CONFLICT_THRESHOLD
                and abs(self.karma.get(second)) >= MORAL_CONFLICT_THRESHOLD
            ):
                return f"{first.value}_vs_{second.value}"
        return None

    def active_blessings(self, at: datetime) -> List[DivineBoon]:
        return [b for b in self.blessings if b.is_active(at)]

    def active_curses(self, at: datetime) -> List[DivineBoon]:
        return [c for c in self.curses if c.is_active(at)]
