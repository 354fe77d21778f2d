"""Tests for the data models."""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from divine_kernel.models import (
    AttentionRecord,
    DeityAgentState,
    DeityName,
    DeityPhase,
    DivineBoon,
    DreamEffect,
    EngineConfig,
    KarmaAction,
    KarmaDimension,
    KarmaProfile,
    KarmaValues,
    Manifestation,
    ManifestationSubtype,
    ManifestationType,
    OmenEffect,
    StrangerEffect,
    StrangerInteraction,
    Witness,
)
from divine_kernel.models.manifestation import PROACTIVE_TYPES, TYPE_TONES, effect_adapter


class TestDeityName:
    def test_rivals(self):
        assert DeityName.GAMBLER.rival == DeityName.OUTLAW_KING
        assert DeityName.OUTLAW_KING.rival == DeityName.GAMBLER

    def test_display_names(self):
        assert DeityName.GAMBLER.display_name == "The Gambler"
        assert DeityName.OUTLAW_KING.display_name == "The Outlaw King"

    def test_witness_includes(self):
        assert Witness.BOTH.includes(DeityName.GAMBLER)
        assert Witness.GAMBLER.includes(DeityName.GAMBLER)
        assert not Witness.GAMBLER.includes(DeityName.OUTLAW_KING)
        assert not Witness.NONE.includes(DeityName.OUTLAW_KING)


class TestKarmaProfile:
    def test_karma_values_are_bounded(self):
        with pytest.raises(ValidationError):
            KarmaValues(honor=150)

    def test_action_delta_is_bounded(self):
        with pytest.raises(ValidationError):
            KarmaAction(
                action_type="X",
                dimension=KarmaDimension.HONOR,
                delta=30,
                timestamp=datetime.utcnow(),
            )

    def test_affinity_lookup(self):
        profile = KarmaProfile(character_id="c1", gambler_affinity=40, outlaw_king_affinity=-10)
        assert profile.affinity_for(DeityName.GAMBLER) == 40
        assert profile.rival_affinity(DeityName.GAMBLER) == -10

    def test_moral_conflict_detected(self):
        profile = KarmaProfile(
            character_id="c1",
            karma=KarmaValues(mercy=40, cruelty=-35),
        )
        assert profile.detect_moral_conflict() == "mercy_vs_cruelty"

    def test_no_moral_conflict_when_one_side_weak(self):
        profile = KarmaProfile(
            character_id="c1",
            karma=KarmaValues(mercy=40, cruelty=10),
        )
        assert profile.detect_moral_conflict() is None

    def test_active_boons_respect_expiry(self):
        now = datetime.utcnow()
        profile = KarmaProfile(
            character_id="c1",
            blessings=[
                DivineBoon(source=DeityName.GAMBLER, type="luck", granted_at=now),
                DivineBoon(
                    source=DeityName.GAMBLER,
                    type="old",
                    granted_at=now - timedelta(days=2),
                    expires_at=now - timedelta(days=1),
                ),
            ],
        )
        assert [b.type for b in profile.active_blessings(now)] == ["luck"]
        assert profile.active_curses(now) == []


class TestDeityAgentState:
    def test_default_patience_keeps_cooldown(self):
        state = DeityAgentState(deity=DeityName.GAMBLER, global_cooldown_hours=168)
        assert state.effective_cooldown == timedelta(hours=168)

    def test_patience_stretches_cooldown(self):
        state = DeityAgentState(deity=DeityName.GAMBLER, global_cooldown_hours=2, patience=100)
        assert state.effective_cooldown == timedelta(hours=3)

    def test_can_intervene_without_history(self):
        state = DeityAgentState(deity=DeityName.GAMBLER)
        assert state.can_intervene(datetime.utcnow())

    def test_cannot_intervene_inside_cooldown(self):
        now = datetime.utcnow()
        state = DeityAgentState(
            deity=DeityName.GAMBLER,
            global_cooldown_hours=168,
            last_intervention_at=now - timedelta(hours=1),
        )
        assert not state.can_intervene(now)
        assert state.can_intervene(now + timedelta(hours=168))

    def test_dormant_never_intervenes(self):
        state = DeityAgentState(deity=DeityName.OUTLAW_KING, phase=DeityPhase.DORMANT)
        assert not state.can_intervene(datetime.utcnow())

    def test_dials_are_bounded(self):
        with pytest.raises(ValidationError):
            DeityAgentState(deity=DeityName.GAMBLER, wrath=101)


class TestAttentionRecord:
    def test_scores_are_bounded(self):
        with pytest.raises(ValidationError):
            AttentionRecord(character_id="c1", deity=DeityName.GAMBLER, attention=120)

    def test_can_receive_respects_type_cooldown(self):
        now = datetime.utcnow()
        record = AttentionRecord(
            character_id="c1",
            deity=DeityName.GAMBLER,
            cooldown_until={ManifestationType.WHISPER: now + timedelta(minutes=30)},
        )
        assert not record.can_receive(ManifestationType.WHISPER, now)
        assert record.can_receive(ManifestationType.OMEN, now)
        assert record.can_receive(ManifestationType.WHISPER, now + timedelta(minutes=30))


class TestManifestation:
    def test_is_immutable(self):
        manifestation = Manifestation(
            id="m1",
            deity=DeityName.GAMBLER,
            character_id="c1",
            type=ManifestationType.WHISPER,
            message="The odds favor the prepared mind.",
            created_at=datetime.utcnow(),
        )
        with pytest.raises(ValidationError):
            manifestation.delivered = True

    def test_effect_union_discriminates_on_kind(self):
        effect = effect_adapter.validate_python(
            {"kind": "omen", "favorable": True, "luck_modifier": 5, "duration_hours": 6}
        )
        assert isinstance(effect, OmenEffect)
        assert effect.schema_version == 1

    def test_effect_json_round_trip(self):
        effect = StrangerEffect(
            disguise="masked_rider",
            interaction=StrangerInteraction.WARNING,
            duration_hours=4,
        )
        parsed = effect_adapter.validate_json(effect.model_dump_json())
        assert parsed == effect

    def test_unknown_effect_kind_rejected(self):
        with pytest.raises(ValidationError):
            effect_adapter.validate_python({"kind": "meteor"})

    def test_manifestation_carries_typed_effect(self):
        manifestation = Manifestation(
            id="m1",
            deity=DeityName.OUTLAW_KING,
            character_id="c1",
            type=ManifestationType.DREAM,
            message="...",
            effect={"kind": "dream", "subtype": "NIGHTMARE", "luck_modifier": -10},
            created_at=datetime.utcnow(),
        )
        assert isinstance(manifestation.effect, DreamEffect)
        assert manifestation.effect.subtype == ManifestationSubtype.NIGHTMARE

    def test_every_type_has_a_tone(self):
        assert set(TYPE_TONES) == set(ManifestationType)

    def test_proactive_order(self):
        assert PROACTIVE_TYPES == [
            ManifestationType.WHISPER,
            ManifestationType.OMEN,
            ManifestationType.STRANGER,
            ManifestationType.DREAM,
        ]


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.tick_schedule == "*/10 * * * *"
        assert config.max_watched_per_cycle == 100
        assert config.probability_ceiling == 0.35
        assert set(config.type_cooldown_hours) == set(PROACTIVE_TYPES)

    def test_invalid_cron_rejected(self):
        with pytest.raises(ValidationError):
            EngineConfig(tick_schedule="every ten minutes")
