"""Divine Kernel data models."""

from divine_kernel.models.attention import (
    AttentionRecord,
    AttentionTriggers,
    KarmaTrajectory,
    LeadershipRole,
    Trend,
)
from divine_kernel.models.deity import DeityAgentState, DeityMood, DeityPhase
from divine_kernel.models.effects import ActiveEffect
from divine_kernel.models.karma import (
    DeityName,
    DivineBoon,
    KarmaAction,
    KarmaDimension,
    KarmaProfile,
    KarmaValues,
    Witness,
)
from divine_kernel.models.manifestation import (
    DreamEffect,
    Manifestation,
    ManifestationEffect,
    ManifestationSubtype,
    ManifestationType,
    OmenEffect,
    StrangerEffect,
    StrangerInteraction,
    Urgency,
    WhisperEffect,
)
from divine_kernel.models.scheduler import (
    DreamResult,
    EngineConfig,
    MaintenanceReport,
    RestKind,
    TickSummary,
    WorldMoodFactors,
)

__all__ = [
    "ActiveEffect",
    "AttentionRecord",
    "AttentionTriggers",
    "DeityAgentState",
    "DeityMood",
    "DeityName",
    "DeityPhase",
    "DivineBoon",
    "DreamEffect",
    "DreamResult",
    "EngineConfig",
    "KarmaAction",
    "KarmaDimension",
    "KarmaProfile",
    "KarmaTrajectory",
    "KarmaValues",
    "LeadershipRole",
    "MaintenanceReport",
    "Manifestation",
    "ManifestationEffect",
    "ManifestationSubtype",
    "ManifestationType",
    "OmenEffect",
    "RestKind",
    "StrangerEffect",
    "StrangerInteraction",
    "TickSummary",
    "Trend",
    "Urgency",
    "WhisperEffect",
    "WorldMoodFactors",
]
