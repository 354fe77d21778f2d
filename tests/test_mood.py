"""Tests for world mood aggregation."""

from datetime import datetime, timedelta

import pytest

from divine_kernel.deity.mood import (
    MOOD_WEIGHTS,
    aggregate_world_activity,
    compute_mood_score,
    evaluate_mood,
    mood_for_score,
    phase_for_activity,
)
from divine_kernel.models.deity import DeityMood, DeityPhase
from divine_kernel.models.karma import DeityName, KarmaAction, KarmaDimension, KarmaProfile
from divine_kernel.models.scheduler import WorldMoodFactors

NOW = datetime(2026, 3, 1, 12, 0, 0)


def _action(action_type, dimension, delta, hours_ago=1.0, context=""):
    return KarmaAction(
        action_type=action_type,
        dimension=dimension,
        delta=delta,
        timestamp=NOW - timedelta(hours=hours_ago),
        context=context,
    )


class TestAggregateWorldActivity:
    def test_counts_each_signal(self):
        profiles = [
            KarmaProfile(character_id="c1", recent_actions=[
                _action("HELP", KarmaDimension.HONOR, 3),
                _action("ARREST", KarmaDimension.JUSTICE, 6),
                _action("COMBAT_FAIR_DUEL", KarmaDimension.HONOR, 2),
            ]),
            KarmaProfile(character_id="c2", recent_actions=[
                _action("GAMBLING_CHEATED", KarmaDimension.DECEPTION, -4),
                _action("CRIME_ROBBERY", KarmaDimension.CHAOS, 5),
                _action("BREAKOUT", KarmaDimension.SURVIVAL, 2, context="Escape from Prison"),
                _action("RIOT", KarmaDimension.JUSTICE, -3),
            ]),
        ]
        factors = aggregate_world_activity(profiles, NOW - timedelta(hours=24), NOW)

        assert factors.honorable_actions == 2
        assert factors.justice_served == 1
        assert factors.fair_duels == 1
        assert factors.cheaters_exposed == 1
        assert factors.laws_broken == 1
        assert factors.prison_escapes == 1
        assert factors.chaos_events == 1
        assert factors.rebellion_acts == 1
        assert factors.major_events == 2
        assert factors.total_players_active == 2

    def test_window_excludes_old_actions(self):
        profiles = [
            KarmaProfile(character_id="c1", recent_actions=[
                _action("HELP", KarmaDimension.HONOR, 3, hours_ago=30),
            ]),
        ]
        factors = aggregate_world_activity(profiles, NOW - timedelta(hours=24), NOW)
        assert factors == WorldMoodFactors()


class TestMoodScore:
    def test_quiet_world_is_neutral(self):
        for deity in DeityName:
            assert compute_mood_score(deity, WorldMoodFactors()) == 50.0

    def test_gambler_pleased_by_justice(self):
        factors = WorldMoodFactors(justice_served=20, cheaters_exposed=20)
        assert compute_mood_score(DeityName.GAMBLER, factors) == 100.0
        assert compute_mood_score(DeityName.OUTLAW_KING, factors) == pytest.approx(44.0)

    def test_outlaw_pleased_by_chaos(self):
        factors = WorldMoodFactors(chaos_events=12, laws_broken=10)
        assert compute_mood_score(DeityName.OUTLAW_KING, factors) == pytest.approx(67.0)
        assert compute_mood_score(DeityName.GAMBLER, factors) == pytest.approx(42.0)

    def test_score_clamped_low(self):
        factors = WorldMoodFactors(chaos_events=500)
        assert compute_mood_score(DeityName.GAMBLER, factors) == 0.0

    @pytest.mark.parametrize("score,mood", [
        (95, DeityMood.PLEASED),
        (80, DeityMood.PLEASED),
        (60, DeityMood.AMUSED),
        (50, DeityMood.NEUTRAL),
        (25, DeityMood.DISPLEASED),
        (5, DeityMood.WRATHFUL),
    ])
    def test_mood_bands(self, score, mood):
        assert mood_for_score(score) == mood

    def test_weights_reference_real_counters(self):
        fields = set(WorldMoodFactors.model_fields)
        for weights in MOOD_WEIGHTS.values():
            assert set(weights) <= fields


class TestPhase:
    @pytest.mark.parametrize("players,major,phase", [
        (0, 0, DeityPhase.DORMANT),
        (3, 0, DeityPhase.WATCHING),
        (40, 2, DeityPhase.ACTIVE),
        (150, 9, DeityPhase.ACTIVE),
        (150, 12, DeityPhase.FERVENT),
    ])
    def test_phase_from_activity(self, players, major, phase):
        factors = WorldMoodFactors(total_players_active=players, major_events=major)
        assert phase_for_activity(factors) == phase

    def test_evaluate_mood(self):
        factors = WorldMoodFactors(prison_escapes=10, total_players_active=5)
        mood, phase, score = evaluate_mood(DeityName.OUTLAW_KING, factors)
        assert mood == DeityMood.AMUSED
        assert phase == DeityPhase.WATCHING
        assert score == pytest.approx(70.0)
