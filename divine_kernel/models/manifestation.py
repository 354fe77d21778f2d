"""Manifestation — an immutable intervention event delivered to a character."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from divine_kernel.models.karma import DeityName


EFFECT_SCHEMA_VERSION = 1


class ManifestationType(str, Enum):
    DREAM = "DREAM"
    OMEN = "OMEN"
    WHISPER = "WHISPER"
    STRANGER = "STRANGER"          # Disguised NPC encounter
    PHENOMENON = "PHENOMENON"
    ANIMAL = "ANIMAL"
    BLESSING = "BLESSING"
    CURSE = "CURSE"


# Least to most intrusive. Only these are chosen by proactive evaluation.
PROACTIVE_TYPES = [
    ManifestationType.WHISPER,
    ManifestationType.OMEN,
    ManifestationType.STRANGER,
    ManifestationType.DREAM,
]


class ManifestationTone(str, Enum):
    """How a mood biases a manifestation type."""
    BENEVOLENT = "benevolent"
    WHISPER = "whisper"
    HARSH = "harsh"


TYPE_TONES = {
    ManifestationType.DREAM: ManifestationTone.BENEVOLENT,
    ManifestationType.OMEN: ManifestationTone.HARSH,
    ManifestationType.WHISPER: ManifestationTone.WHISPER,
    ManifestationType.STRANGER: ManifestationTone.HARSH,
    ManifestationType.PHENOMENON: ManifestationTone.HARSH,
    ManifestationType.ANIMAL: ManifestationTone.WHISPER,
    ManifestationType.BLESSING: ManifestationTone.BENEVOLENT,
    ManifestationType.CURSE: ManifestationTone.HARSH,
}


class ManifestationSubtype(str, Enum):
    PROPHETIC = "PROPHETIC"
    WARNING = "WARNING"
    VISION = "VISION"
    NIGHTMARE = "NIGHTMARE"
    CHAOS = "CHAOS"
    MEMORY = "MEMORY"


class Urgency(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class StrangerInteraction(str, Enum):
    DIALOGUE = "DIALOGUE"
    TEST = "TEST"
    TRADE = "TRADE"
    GIFT = "GIFT"
    WARNING = "WARNING"


# --- Effect payloads (tagged union, versioned) ---

class DreamEffect(BaseModel):
    kind: Literal["dream"] = "dream"
    schema_version: int = EFFECT_SCHEMA_VERSION
    subtype: ManifestationSubtype
    luck_modifier: int = 0                  # Percentage points on next checks
    sanity_delta: int = 0


class OmenEffect(BaseModel):
    kind: Literal["omen"] = "omen"
    schema_version: int = EFFECT_SCHEMA_VERSION
    favorable: bool
    luck_modifier: int = 0
    duration_hours: float = Field(ge=0, default=0)


class WhisperEffect(BaseModel):
    kind: Literal["whisper"] = "whisper"
    schema_version: int = EFFECT_SCHEMA_VERSION
    hint_topic: str


class StrangerEffect(BaseModel):
    kind: Literal["stranger"] = "stranger"
    schema_version: int = EFFECT_SCHEMA_VERSION
    disguise: str
    interaction: StrangerInteraction
    duration_hours: float = Field(ge=0, default=0)


ManifestationEffect = Annotated[
    Union[DreamEffect, OmenEffect, WhisperEffect, StrangerEffect],
    Field(discriminator="kind"),
]

effect_adapter: TypeAdapter = TypeAdapter(ManifestationEffect)


class Manifestation(BaseModel):
    """
    The record of one intervention. Immutable once created; only the
    delivered / acknowledged flags flip, each exactly once, in storage.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    deity: DeityName
    character_id: str
    type: ManifestationType
    subtype: ManifestationSubtype = ManifestationSubtype.MEMORY
    message: str
    effect: Optional[ManifestationEffect] = None
    urgency: Urgency = Urgency.LOW
    delivered: bool = False
    delivered_at: Optional[datetime] = None
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    response: Optional[str] = None
    created_at: datetime
