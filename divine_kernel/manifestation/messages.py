"""
Message generation for manifestations.

The dispatcher only depends on the MessageGenerator protocol; real flavour
text comes from an external generator. TemplateMessageGenerator is the
built-in default: a few fixed lines per deity and type.
"""

import random
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel

from divine_kernel.models.attention import AttentionTriggers, Trend
from divine_kernel.models.deity import DeityMood
from divine_kernel.models.karma import DeityName, KarmaValues
from divine_kernel.models.manifestation import ManifestationSubtype, ManifestationType


class MessageContext(BaseModel):
    """What a generator may know about the moment it is writing for."""

    character_id: str
    subtype: ManifestationSubtype
    trend: Trend = Trend.STABLE
    attention: float = 0.0
    interest: float = 0.0
    affinity: float = 0.0
    mood: DeityMood = DeityMood.NEUTRAL
    triggers: AttentionTriggers = AttentionTriggers()
    karma: KarmaValues = KarmaValues()
    has_blessing: bool = False
    has_curse: bool = False


class MessageGenerator(Protocol):
    """Pluggable backend for flavour text. May be slow or fail."""

    def generate(
        self,
        deity: DeityName,
        manifestation_type: ManifestationType,
        context: MessageContext,
    ) -> str: ...


TEMPLATES: Dict[DeityName, Dict[ManifestationType, List[str]]] = {
    DeityName.GAMBLER: {
        ManifestationType.DREAM: [
            "In the endless game, you are but one card among millions. Yet even the lowliest card can decide the final hand.",
            "I watched you shuffle through another day. The deck grows thinner. When will you play your ace?",
            "In dreams, I count the cards you've played. A promising hand... or a fool's gamble?",
        ],
        ManifestationType.WHISPER: [
            "The odds favor the prepared mind.",
            "This hand feels wrong. Fold.",
            "The deck remembers what you've done.",
        ],
        ManifestationType.OMEN: [
            "A four-leaf clover crushed beneath your boot. Was it luck? Or a warning?",
            "A coin lands on its edge. Impossible? Or inevitable?",
            "Your shadow fell on snake eyes today. The dice are watching.",
        ],
        ManifestationType.STRANGER: [
            "Care for a game, stranger? The stakes are... negotiable.",
            "I've seen your kind before. Walking the line between fortune and ruin.",
        ],
    },
    DeityName.OUTLAW_KING: {
        ManifestationType.DREAM: [
            "I rode with you in your dreams tonight. Through fire and chaos. You didn't flinch. Good.",
            "In your dreams you're still locked in that cage. Wake up. The door was never locked.",
            "There's a crown made of bullets waiting for someone. In your dreams, I saw you reach for it.",
        ],
        ManifestationType.WHISPER: [
            "Break it.",
            "They can't cage what they can't catch.",
            "Rules are for the afraid.",
        ],
        ManifestationType.OMEN: [
            "A chain rusts and breaks while you watch. Nothing touched it.",
            "Crows circle overhead. Seven of them. They're laughing at something.",
            "A badge falls from a lawman's chest into the mud. He doesn't notice.",
        ],
        ManifestationType.STRANGER: [
            "You've got the look of someone who's had enough. Had enough of rules, enough of waiting. Am I wrong?",
            "Freedom tastes like gunpowder and whiskey. Have you tasted it yet?",
        ],
    },
}

FALLBACK_LINE = "You feel watched."


class TemplateMessageGenerator:
    """Picks a fixed line for (deity, type). Seed ``rng`` for reproducible picks."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def generate(
        self,
        deity: DeityName,
        manifestation_type: ManifestationType,
        context: MessageContext,
    ) -> str:
        lines = TEMPLATES.get(deity, {}).get(manifestation_type)
        if not lines:
            return FALLBACK_LINE
        return self._rng.choice(lines)
