"""
Mood aggregation — how the world's behaviour over the last day sets each
deity's mood and phase.

Mood is a score around a neutral 50, pushed up by what a deity approves of
and down by what it resents. Phase follows activity volume only.
"""

from datetime import datetime
from typing import Dict, Iterable, Tuple

from divine_kernel.models.deity import DeityMood, DeityPhase
from divine_kernel.models.karma import DeityName, KarmaDimension, KarmaProfile
from divine_kernel.models.scheduler import WorldMoodFactors

NEUTRAL_MOOD_SCORE = 50.0
MAJOR_EVENT_DELTA = 5

# Signed weight per world counter
MOOD_WEIGHTS: Dict[DeityName, Dict[str, float]] = {
    DeityName.GAMBLER: {
        "honorable_actions": 0.5,
        "justice_served": 1.0,
        "fair_duels": 0.3,
        "cheaters_exposed": 2.0,
        "laws_broken": -0.2,
        "chaos_events": -0.5,
    },
    DeityName.OUTLAW_KING: {
        "laws_broken": 0.5,
        "prison_escapes": 2.0,
        "chaos_events": 1.0,
        "rebellion_acts": 1.5,
        "justice_served": -0.3,
        "honorable_actions": -0.1,
    },
}

# Lower bound of each mood band, highest first
MOOD_BANDS = [
    (80.0, DeityMood.PLEASED),
    (60.0, DeityMood.AMUSED),
    (40.0, DeityMood.NEUTRAL),
    (20.0, DeityMood.DISPLEASED),
]

FERVENT_MIN_PLAYERS = 100
FERVENT_MIN_MAJOR_EVENTS = 10
ACTIVE_MIN_PLAYERS = 10


def aggregate_world_activity(
    profiles: Iterable[KarmaProfile],
    since: datetime,
    until: datetime,
) -> WorldMoodFactors:
    """Count the world counters over actions with since <= timestamp <= until."""
    factors = WorldMoodFactors()
    active = set()

    for profile in profiles:
        for action in profile.recent_actions:
            if not since <= action.timestamp <= until:
                continue
            active.add(profile.character_id)
            context = action.context.lower()

            if action.dimension == KarmaDimension.HONOR and action.delta > 0:
                factors.honorable_actions += 1
            if action.dimension == KarmaDimension.JUSTICE and action.delta > 0:
                factors.justice_served += 1
            if action.dimension == KarmaDimension.JUSTICE and action.delta < 0:
                factors.rebellion_acts += 1
            if action.action_type == "COMBAT_FAIR_DUEL":
                factors.fair_duels += 1
            if action.action_type == "GAMBLING_CHEATED" and action.delta < 0:
                factors.cheaters_exposed += 1
            if action.action_type.startswith("CRIME_"):
                factors.laws_broken += 1
            if "escape" in context and "prison" in context:
                factors.prison_escapes += 1
            if action.dimension == KarmaDimension.CHAOS and action.delta > 0:
                factors.chaos_events += 1
            if abs(action.delta) >= MAJOR_EVENT_DELTA:
                factors.major_events += 1

    factors.total_players_active = len(active)
    return factors


def compute_mood_score(deity: DeityName, factors: WorldMoodFactors) -> float:
    score = NEUTRAL_MOOD_SCORE
    for counter, weight in MOOD_WEIGHTS[deity].items():
        score += getattr(factors, counter) * weight
    return max(0.0, min(100.0, score))


def mood_for_score(score: float) -> DeityMood:
    for lower_bound, mood in MOOD_BANDS:
        if score >= lower_bound:
            return mood
    return DeityMood.WRATHFUL


def phase_for_activity(factors: WorldMoodFactors) -> DeityPhase:
    if (
        factors.total_players_active >= FERVENT_MIN_PLAYERS
        and factors.major_events >= FERVENT_MIN_MAJOR_EVENTS
    ):
        return DeityPhase.FERVENT
    if factors.total_players_active >= ACTIVE_MIN_PLAYERS:
        return DeityPhase.ACTIVE
    if factors.total_players_active >= 1:
        return DeityPhase.WATCHING
    return DeityPhase.DORMANT


def evaluate_mood(
    deity: DeityName, factors: WorldMoodFactors
) -> Tuple[DeityMood, DeityPhase, float]:
    """Mood, phase and raw score for one deity. Pure; persisting is the caller's job."""
    score = compute_mood_score(deity, factors)
    return mood_for_score(score), phase_for_activity(factors), score
