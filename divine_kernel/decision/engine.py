"""
Decision Engine — the scoring core of the deity agents.

Turns a karma snapshot into attention / interest scores, reads recent
behaviour as a trajectory, and decides whether a manifestation fires.

Behavioral Contract:
- Every scoring function is a pure function of its inputs and "now"
- Attention and interest are always clamped to [0, 100]
- A manifestation type on cooldown is never selected
- A deity on global cooldown, or dormant, never selects anything
- The subtype of a manifestation is a deterministic lookup, never a roll
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from divine_kernel.models.attention import (
    AttentionRecord,
    AttentionTriggers,
    KarmaTrajectory,
    LeadershipRole,
    Trend,
)
from divine_kernel.models.deity import DeityAgentState, DeityMood
from divine_kernel.models.karma import DeityName, KarmaAction, KarmaDimension, KarmaProfile
from divine_kernel.models.manifestation import (
    PROACTIVE_TYPES,
    TYPE_TONES,
    ManifestationSubtype,
    ManifestationTone,
    ManifestationType,
    Urgency,
)
from divine_kernel.models.scheduler import EngineConfig

logger = logging.getLogger(__name__)

DAY = timedelta(hours=24)

# How much each deity cares about each dimension. Negative weights are traits
# the deity dislikes; their magnitude still draws attention.
ATTENTION_WEIGHTS: Dict[DeityName, Dict[KarmaDimension, float]] = {
    DeityName.GAMBLER: {
        KarmaDimension.HONOR: 0.3,
        KarmaDimension.JUSTICE: 0.3,
        KarmaDimension.DECEPTION: -0.2,
        KarmaDimension.CHAOS: -0.15,
        KarmaDimension.MERCY: 0.15,
        KarmaDimension.LOYALTY: 0.2,
        KarmaDimension.GREED: -0.1,
        KarmaDimension.CHARITY: 0.1,
        KarmaDimension.SURVIVAL: 0.05,
        KarmaDimension.CRUELTY: -0.1,
    },
    DeityName.OUTLAW_KING: {
        KarmaDimension.CHAOS: 0.3,
        KarmaDimension.SURVIVAL: 0.25,
        KarmaDimension.DECEPTION: 0.15,
        KarmaDimension.HONOR: -0.1,
        KarmaDimension.JUSTICE: -0.2,
        KarmaDimension.GREED: 0.1,
        KarmaDimension.CRUELTY: 0.1,
        KarmaDimension.MERCY: 0.05,
        KarmaDimension.LOYALTY: 0.15,
        KarmaDimension.CHARITY: -0.05,
    },
}

# Dimensions that make up a deity's trajectory.
RELEVANT_DIMENSIONS: Dict[DeityName, List[KarmaDimension]] = {
    DeityName.GAMBLER: [
        KarmaDimension.HONOR,
        KarmaDimension.JUSTICE,
        KarmaDimension.MERCY,
        KarmaDimension.LOYALTY,
    ],
    DeityName.OUTLAW_KING: [
        KarmaDimension.CHAOS,
        KarmaDimension.SURVIVAL,
        KarmaDimension.DECEPTION,
        KarmaDimension.GREED,
    ],
}

AFFINITY_THRESHOLDS = [25, 50, 75, 90, -25, -50, -75, -90]

MOOD_MODIFIERS: Dict[DeityMood, Dict[ManifestationTone, float]] = {
    DeityMood.PLEASED: {
        ManifestationTone.BENEVOLENT: 1.5,
        ManifestationTone.HARSH: 0.5,
        ManifestationTone.WHISPER: 1.2,
    },
    DeityMood.AMUSED: {
        ManifestationTone.BENEVOLENT: 1.2,
        ManifestationTone.HARSH: 0.8,
        ManifestationTone.WHISPER: 1.0,
    },
    DeityMood.NEUTRAL: {
        ManifestationTone.BENEVOLENT: 1.0,
        ManifestationTone.HARSH: 1.0,
        ManifestationTone.WHISPER: 1.0,
    },
    DeityMood.DISPLEASED: {
        ManifestationTone.BENEVOLENT: 0.8,
        ManifestationTone.HARSH: 1.2,
        ManifestationTone.WHISPER: 0.9,
    },
    DeityMood.WRATHFUL: {
        ManifestationTone.BENEVOLENT: 0.5,
        ManifestationTone.HARSH: 2.0,
        ManifestationTone.WHISPER: 0.7,
    },
}

# (trend, sign of affinity) -> subtype
SUBTYPE_TABLE: Dict[tuple, ManifestationSubtype] = {
    (Trend.IMPROVING, 1): ManifestationSubtype.PROPHETIC,
    (Trend.DECLINING, 1): ManifestationSubtype.WARNING,
    (Trend.IMPROVING, -1): ManifestationSubtype.VISION,
    (Trend.DECLINING, -1): ManifestationSubtype.NIGHTMARE,
    (Trend.VOLATILE, 1): ManifestationSubtype.CHAOS,
    (Trend.VOLATILE, 0): ManifestationSubtype.CHAOS,
    (Trend.VOLATILE, -1): ManifestationSubtype.CHAOS,
    (Trend.IMPROVING, 0): ManifestationSubtype.MEMORY,
    (Trend.DECLINING, 0): ManifestationSubtype.MEMORY,
    (Trend.STABLE, 1): ManifestationSubtype.MEMORY,
    (Trend.STABLE, 0): ManifestationSubtype.MEMORY,
    (Trend.STABLE, -1): ManifestationSubtype.MEMORY,
}

_GAMBLING_WORDS = ("gambl", "bet", "poker", "card")
_CRIME_WORDS = ("crime", "outlaw")


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _recent(actions: List[KarmaAction], now: datetime, window: timedelta) -> List[KarmaAction]:
    return [a for a in actions if now - a.timestamp < window]


def _is_dramatic(action: KarmaAction, deity: DeityName, config: EngineConfig) -> bool:
    return action.witnessed_by.includes(deity) and abs(action.delta) >= config.dramatic_delta


# --- Trend ---

def analyze_trajectory(
    profile: KarmaProfile,
    deity: DeityName,
    now: datetime,
    config: EngineConfig,
) -> KarmaTrajectory:
    """
    Bucket the deity-relevant actions by completed 24h period and classify
    the bucket deltas. Deterministic given the same log and "now".
    """
    relevant = set(RELEVANT_DIMENSIONS[deity])
    buckets: Dict[int, float] = {}
    for action in profile.recent_actions:
        if action.dimension not in relevant:
            continue
        day_index = int((now - action.timestamp) // DAY)
        buckets[day_index] = buckets.get(day_index, 0.0) + action.delta

    dramatic = sum(1 for a in profile.recent_actions if _is_dramatic(a, deity, config))

    if len(buckets) < 2:
        return KarmaTrajectory(
            direction=Trend.STABLE,
            recent_dramatic_actions=dramatic,
            days_analyzed=len(buckets),
        )

    deltas = [buckets[k] for k in sorted(buckets)]
    mean = sum(deltas) / len(deltas)
    variance = sum((d - mean) ** 2 for d in deltas) / len(deltas)
    consistency = 1 - min(1.0, (variance ** 0.5) / 10)

    if variance > config.trend_variance_threshold:
        direction = Trend.VOLATILE
    elif mean > config.trend_mean_threshold:
        direction = Trend.IMPROVING
    elif mean < -config.trend_mean_threshold:
        direction = Trend.DECLINING
    else:
        direction = Trend.STABLE

    return KarmaTrajectory(
        direction=direction,
        velocity_per_day=mean,
        consistency=consistency,
        recent_dramatic_actions=dramatic,
        days_analyzed=len(buckets),
    )


# --- Attention & Interest ---

def calculate_attention(
    profile: KarmaProfile,
    deity: DeityName,
    now: datetime,
    config: EngineConfig,
    last_intervention_at: Optional[datetime] = None,
) -> float:
    """Weighted sum of five separately-capped signals, damped after a visit."""
    affinity_signal = min(
        abs(profile.affinity_for(deity)) * config.affinity_coefficient,
        config.affinity_cap,
    )

    weights = ATTENTION_WEIGHTS[deity]
    dimension_signal = min(
        sum(
            abs(profile.karma.get(dimension)) * abs(weight) * config.dimension_coefficient
            for dimension, weight in weights.items()
        ),
        config.dimension_cap,
    )

    window = timedelta(hours=config.activity_window_hours)
    activity_signal = min(
        len(_recent(profile.recent_actions, now, window)) * config.activity_bonus_per_action,
        config.activity_cap,
    )

    conflict_signal = config.moral_conflict_bonus if profile.detect_moral_conflict() else 0.0

    rival_signal = 0.0
    if profile.rival_affinity(deity) > config.rival_favored_threshold:
        rival_signal = config.rival_favored_bonus

    attention = (
        affinity_signal + dimension_signal + activity_signal + conflict_signal + rival_signal
    )

    if last_intervention_at is not None:
        hours_since = (now - last_intervention_at).total_seconds() / 3600.0
        if hours_since < config.recent_intervention_hours:
            attention *= config.recent_intervention_damping
        elif hours_since < config.lingering_intervention_hours:
            attention *= config.lingering_intervention_damping

    return _clamp(attention)


def is_near_threshold(affinity: float, proximity: float) -> bool:
    """True when affinity sits just short of (or past) a round threshold, but not on it."""
    for threshold in AFFINITY_THRESHOLDS:
        distance = abs(affinity - threshold)
        if 0 < distance <= proximity:
            return True
    return False


def calculate_interest(
    profile: KarmaProfile,
    deity: DeityName,
    trajectory: KarmaTrajectory,
    role: LeadershipRole,
    now: datetime,
    config: EngineConfig,
) -> float:
    """Narrative potential, independent of moral alignment."""
    interest = 0.0

    if trajectory.direction == Trend.VOLATILE:
        interest += config.volatile_interest_bonus
    elif trajectory.recent_dramatic_actions >= config.dramatic_action_count:
        interest += config.dramatic_interest_bonus

    if role == LeadershipRole.LEADER:
        interest += config.leader_interest_bonus
    elif role == LeadershipRole.OFFICER:
        interest += config.officer_interest_bonus

    interest += min(
        profile.character_level / config.level_interest_divisor,
        config.level_interest_cap,
    )

    boons = len(profile.active_blessings(now)) + len(profile.active_curses(now))
    interest += boons * config.boon_interest_bonus

    if is_near_threshold(profile.affinity_for(deity), config.threshold_proximity):
        interest += config.threshold_interest_bonus

    return _clamp(interest)


def compute_triggers(
    profile: KarmaProfile,
    deity: DeityName,
    role: LeadershipRole,
    now: datetime,
    config: EngineConfig,
) -> AttentionTriggers:
    actions = profile.recent_actions
    contexts = [a.context.lower() for a in actions]
    window = timedelta(hours=config.activity_window_hours)

    triggers = AttentionTriggers(
        high_karma=any(abs(profile.karma.get(d)) > 50 for d in KarmaDimension),
        recent_drama=any(
            abs(a.delta) >= config.dramatic_delta for a in _recent(actions, now, window)
        ),
        rival_favored=profile.rival_affinity(deity) > config.rival_favored_threshold,
        moral_conflict=profile.detect_moral_conflict() is not None,
        gang_leader=role == LeadershipRole.LEADER,
        active_quester=sum(1 for c in contexts if "quest" in c) >= 5,
    )

    if deity == DeityName.GAMBLER:
        gambling = sum(1 for c in contexts if any(w in c for w in _GAMBLING_WORDS))
        triggers.frequent_gambler = gambling >= 3
    else:
        crimes = sum(
            1 for a, c in zip(actions, contexts)
            if a.action_type.startswith("CRIME_") or any(w in c for w in _CRIME_WORDS)
        )
        triggers.law_breaker = crimes >= 3

    return triggers


# --- Probability ---

def base_probability(attention: float, config: EngineConfig) -> float:
    """Monotonic in attention with a non-zero floor: a watched character is never invisible."""
    floor = config.probability_floor
    return _clamp(floor + (attention / 100.0) * (1 - floor), floor, 1.0)


def mood_multiplier(state: DeityAgentState, manifestation_type: ManifestationType) -> float:
    tone = TYPE_TONES[manifestation_type]
    multiplier = MOOD_MODIFIERS[state.mood][tone]
    if tone == ManifestationTone.BENEVOLENT:
        multiplier *= 1 + (state.benevolence - 50) / 100.0
    elif tone == ManifestationTone.HARSH:
        multiplier *= 1 + (state.wrath - 50) / 100.0
    return multiplier * (1 + (state.influence - 50) / 100.0)


def type_probability(
    record: AttentionRecord,
    state: DeityAgentState,
    manifestation_type: ManifestationType,
    config: EngineConfig,
    scale: float = 1.0,
) -> float:
    """Chance for one type in one check, never above the configured ceiling."""
    chance = (
        config.type_base_chance.get(manifestation_type, 0.0)
        * base_probability(record.attention, config)
        * (1 + record.interest / 100.0 * config.interest_probability_bonus)
        * mood_multiplier(state, manifestation_type)
        * scale
    )
    return _clamp(chance, 0.0, config.probability_ceiling)


# --- Dispatch lookups ---

def select_subtype(trend: Trend, affinity: float) -> ManifestationSubtype:
    return SUBTYPE_TABLE[(trend, _sign(affinity))]


def urgency_for(attention: float, subtype: ManifestationSubtype) -> Urgency:
    if attention >= 90 and subtype in (ManifestationSubtype.WARNING, ManifestationSubtype.NIGHTMARE):
        return Urgency.CRITICAL
    if attention >= 70:
        return Urgency.HIGH
    if attention >= 40:
        return Urgency.MEDIUM
    return Urgency.LOW


class DecisionEngine:
    """
    Stateless apart from its configuration and random source. Inject a
    seeded ``random.Random`` for reproducible draws.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or EngineConfig()
        self._rng = rng or random.Random()

    def score(
        self,
        profile: KarmaProfile,
        deity: DeityName,
        role: LeadershipRole = LeadershipRole.NONE,
        existing: Optional[AttentionRecord] = None,
        current_time: Optional[datetime] = None,
    ) -> AttentionRecord:
        """
        Recompute attention, interest, triggers and trend. Cooldowns and
        counters are carried over from ``existing`` untouched.
        """
        if current_time is None:
            current_time = datetime.utcnow()

        last_intervention = existing.last_intervention_at if existing else None
        trajectory = analyze_trajectory(profile, deity, current_time, self.config)

        updates = {
            "attention": calculate_attention(
                profile, deity, current_time, self.config, last_intervention
            ),
            "interest": calculate_interest(
                profile, deity, trajectory, role, current_time, self.config
            ),
            "triggers": compute_triggers(profile, deity, role, current_time, self.config),
            "trend": trajectory.direction,
            "last_evaluated_at": current_time,
        }

        if existing is None:
            return AttentionRecord(
                character_id=profile.character_id,
                deity=deity,
                created_at=current_time,
                **updates,
            )
        return existing.model_copy(update=updates)

    def roll(self, probability: float) -> bool:
        return self._rng.random() < probability

    def evaluate_intervention(
        self,
        record: AttentionRecord,
        state: DeityAgentState,
        current_time: Optional[datetime] = None,
    ) -> Optional[ManifestationType]:
        """
        Walk the proactive types from least to most intrusive; the first
        eligible type that wins its draw is returned.
        """
        if current_time is None:
            current_time = datetime.utcnow()

        if not state.can_intervene(current_time):
            return None

        for manifestation_type in PROACTIVE_TYPES:
            if not record.can_receive(manifestation_type, current_time):
                continue
            chance = type_probability(record, state, manifestation_type, self.config)
            if self.roll(chance):
                return manifestation_type

        logger.debug(
            "No manifestation for %s from %s (attention=%.1f)",
            record.character_id, record.deity.value, record.attention,
        )
        return None
