"""Tests for the SQLite-backed stores."""

from datetime import datetime, timedelta

import pytest

from divine_kernel.attention.store import AttentionStore
from divine_kernel.deity.store import DeityStore
from divine_kernel.effects.store import EffectStore
from divine_kernel.manifestation.store import ManifestationStore
from divine_kernel.models.attention import AttentionRecord, AttentionTriggers, Trend
from divine_kernel.models.deity import DeityMood, DeityPhase
from divine_kernel.models.effects import ActiveEffect
from divine_kernel.models.karma import DeityName
from divine_kernel.models.manifestation import (
    Manifestation,
    ManifestationSubtype,
    ManifestationType,
    OmenEffect,
    StrangerEffect,
    StrangerInteraction,
    Urgency,
)
from divine_kernel.storage.database import Database, LostRace

NOW = datetime(2026, 3, 1, 12, 0, 0)


def _record(
    character_id: str = "char_1",
    deity: DeityName = DeityName.GAMBLER,
    attention: float = 50.0,
    evaluated_at: datetime = NOW,
) -> AttentionRecord:
    return AttentionRecord(
        character_id=character_id,
        deity=deity,
        attention=attention,
        interest=20.0,
        triggers=AttentionTriggers(high_karma=True),
        trend=Trend.IMPROVING,
        last_evaluated_at=evaluated_at,
        created_at=evaluated_at,
    )


def _manifestation(
    manifestation_id: str = "man_1",
    character_id: str = "char_1",
    created_at: datetime = NOW,
    effect=None,
) -> Manifestation:
    return Manifestation(
        id=manifestation_id,
        deity=DeityName.GAMBLER,
        character_id=character_id,
        type=ManifestationType.OMEN,
        subtype=ManifestationSubtype.PROPHETIC,
        message="A coin lands on its edge.",
        effect=effect,
        urgency=Urgency.MEDIUM,
        created_at=created_at,
    )


class TestDatabase:
    def test_nested_transaction_rolls_back_together(self):
        db = Database()
        store = ManifestationStore(db)
        with pytest.raises(LostRace):
            with db.transaction():
                store.insert(_manifestation("man_a"))
                with db.transaction():
                    store.insert(_manifestation("man_b"))
                raise LostRace("test")
        assert store.get("man_a") is None
        assert store.get("man_b") is None

    def test_outer_transaction_commits(self):
        db = Database()
        store = ManifestationStore(db)
        with db.transaction():
            store.insert(_manifestation("man_a"))
        assert store.get("man_a") is not None


class TestAttentionStore:
    def setup_method(self):
        self.store = AttentionStore(Database())

    def test_save_and_get(self):
        self.store.save_scores(_record())
        record = self.store.get("char_1", DeityName.GAMBLER)

        assert record.attention == 50.0
        assert record.triggers.high_karma
        assert record.trend == Trend.IMPROVING
        assert self.store.get("char_1", DeityName.OUTLAW_KING) is None

    def test_one_record_per_character_and_deity(self):
        self.store.save_scores(_record(attention=10))
        self.store.save_scores(_record(attention=70))

        assert self.store.count() == 1
        assert self.store.get("char_1", DeityName.GAMBLER).attention == 70

    def test_score_writes_keep_cooldowns(self):
        self.store.save_scores(_record())
        assert self.store.claim_cooldown(
            "char_1", DeityName.GAMBLER, ManifestationType.OMEN, NOW, NOW + timedelta(hours=12)
        )
        self.store.stamp_intervention("char_1", DeityName.GAMBLER, NOW)
        self.store.save_scores(_record(attention=30))

        record = self.store.get("char_1", DeityName.GAMBLER)
        assert record.cooldown_until[ManifestationType.OMEN] == NOW + timedelta(hours=12)
        assert record.intervention_counts[ManifestationType.OMEN] == 1
        assert record.last_intervention_at == NOW

    def test_claim_cooldown_only_once_while_active(self):
        until = NOW + timedelta(hours=6)
        args = ("char_1", DeityName.GAMBLER, ManifestationType.WHISPER)

        assert self.store.claim_cooldown(*args, NOW, until)
        assert not self.store.claim_cooldown(*args, NOW + timedelta(hours=1), until)
        assert self.store.claim_cooldown(
            *args, NOW + timedelta(hours=6), NOW + timedelta(hours=12)
        )

        record_counts = self.store._cooldowns(DeityName.GAMBLER, ["char_1"])["char_1"]
        assert record_counts[ManifestationType.WHISPER][1] == 2

    def test_top_watched_orders_by_attention(self):
        for i, score in enumerate([20, 90, 55]):
            self.store.save_scores(_record(f"char_{i}", attention=score))
        self.store.save_scores(_record("char_x", DeityName.OUTLAW_KING, attention=99))

        top = self.store.top_watched(DeityName.GAMBLER, 2)
        assert [r.character_id for r in top] == ["char_1", "char_2"]

    def test_tracked_ids_batch(self):
        self.store.save_scores(_record("char_a"))
        self.store.save_scores(_record("char_b", DeityName.OUTLAW_KING))

        tracked = self.store.tracked_ids(DeityName.GAMBLER, ["char_a", "char_b", "char_c"])
        assert tracked == {"char_a"}
        assert self.store.tracked_ids(DeityName.GAMBLER, []) == set()

    def test_delete_stale_only_dormant_low_attention(self):
        old = NOW - timedelta(days=40)
        self.store.save_scores(_record("stale", attention=2, evaluated_at=old))
        self.store.save_scores(_record("old_but_watched", attention=40, evaluated_at=old))
        self.store.save_scores(_record("recent_low", attention=2, evaluated_at=NOW))
        self.store.claim_cooldown(
            "stale", DeityName.GAMBLER, ManifestationType.OMEN, old, old + timedelta(hours=1)
        )

        removed = self.store.delete_stale(NOW - timedelta(days=30), 5.0)

        assert removed == 1
        assert self.store.get("stale", DeityName.GAMBLER) is None
        assert self.store.get("old_but_watched", DeityName.GAMBLER) is not None
        assert self.store.get("recent_low", DeityName.GAMBLER) is not None
        assert self.store._cooldowns(DeityName.GAMBLER, ["stale"]) == {}


class TestDeityStore:
    def setup_method(self):
        self.store = DeityStore(Database())

    def test_seeds_both_deities(self):
        states = self.store.all()
        assert {s.deity for s in states} == set(DeityName)
        assert all(s.mood == DeityMood.NEUTRAL for s in states)

    def test_reseeding_keeps_existing_state(self):
        self.store.save_mood(DeityName.GAMBLER, DeityMood.PLEASED, DeityPhase.ACTIVE, 85, NOW)
        self.store.ensure_defaults()
        assert self.store.get(DeityName.GAMBLER).mood == DeityMood.PLEASED

    def test_update_dials(self):
        state = self.store.update_dials(DeityName.OUTLAW_KING, wrath=90, patience=10)
        assert state.wrath == 90
        assert self.store.get(DeityName.OUTLAW_KING).patience == 10

    def test_update_dials_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            self.store.update_dials(DeityName.GAMBLER, influence=150)
        assert self.store.get(DeityName.GAMBLER).influence == 50

    def test_update_dials_rejects_unknown(self):
        with pytest.raises(ValueError):
            self.store.update_dials(DeityName.GAMBLER, charisma=10)

    def test_claim_global_respects_cooldown(self):
        self.store.update_dials(DeityName.GAMBLER, global_cooldown_hours=2)

        assert self.store.claim_global(DeityName.GAMBLER, NOW)
        assert not self.store.claim_global(DeityName.GAMBLER, NOW + timedelta(hours=1))
        assert self.store.claim_global(DeityName.GAMBLER, NOW + timedelta(hours=3))

        state = self.store.get(DeityName.GAMBLER)
        assert state.total_interventions == 2
        assert state.last_intervention_at == NOW + timedelta(hours=3)

    def test_claim_global_refused_when_dormant(self):
        self.store.save_mood(DeityName.GAMBLER, DeityMood.NEUTRAL, DeityPhase.DORMANT, 50, NOW)
        assert not self.store.claim_global(DeityName.GAMBLER, NOW)


class TestManifestationStore:
    def setup_method(self):
        self.db = Database()
        self.store = ManifestationStore(self.db)

    def test_insert_and_get_with_effect(self):
        effect = OmenEffect(favorable=True, luck_modifier=5, duration_hours=6)
        self.store.insert(_manifestation(effect=effect))

        loaded = self.store.get("man_1")
        assert loaded.effect == effect
        assert loaded.urgency == Urgency.MEDIUM
        assert not loaded.delivered

    def test_missing_returns_none(self):
        assert self.store.get("nope") is None

    def test_malformed_effect_reads_as_none(self):
        self.store.insert(_manifestation())
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE manifestation SET effect_json = ? WHERE id = ?",
                ('{"kind": "meteor", "size": 9}', "man_1"),
            )

        loaded = self.store.get("man_1")
        assert loaded is not None
        assert loaded.effect is None
        assert loaded.message == "A coin lands on its edge."

    def test_deliver_is_idempotent(self):
        self.store.insert(_manifestation())

        assert self.store.mark_delivered("man_1", NOW)
        first = self.store.get("man_1")
        assert not self.store.mark_delivered("man_1", NOW + timedelta(hours=1))
        second = self.store.get("man_1")

        assert first == second
        assert second.delivered_at == NOW

    def test_acknowledge_is_idempotent(self):
        self.store.insert(_manifestation())
        self.store.mark_delivered("man_1", NOW)

        assert self.store.mark_acknowledged("man_1", NOW + timedelta(minutes=5), "I listen")
        first = self.store.get("man_1")
        assert not self.store.mark_acknowledged("man_1", NOW + timedelta(hours=2), "changed")

        assert self.store.get("man_1") == first
        assert first.response == "I listen"
        assert first.delivered_at == NOW

    def test_acknowledge_implies_delivery(self):
        self.store.insert(_manifestation())
        self.store.mark_acknowledged("man_1", NOW)
        loaded = self.store.get("man_1")
        assert loaded.delivered
        assert loaded.delivered_at == NOW

    def test_polling_queries(self):
        self.store.insert(_manifestation("m_old", created_at=NOW - timedelta(hours=2)))
        self.store.insert(_manifestation("m_new", created_at=NOW))
        self.store.insert(_manifestation("m_other", character_id="char_2"))
        self.store.mark_delivered("m_old", NOW)

        assert [m.id for m in self.store.undelivered("char_1")] == ["m_new"]
        assert [m.id for m in self.store.unacknowledged("char_1")] == ["m_old"]
        assert [m.id for m in self.store.history("char_1")] == ["m_new", "m_old"]
        assert self.store.history("char_1", deity=DeityName.OUTLAW_KING) == []

    def test_prune(self):
        self.store.insert(_manifestation("m_ancient", created_at=NOW - timedelta(days=100)))
        self.store.insert(_manifestation("m_recent", created_at=NOW))

        assert self.store.prune(NOW - timedelta(days=90)) == 1
        assert self.store.get("m_ancient") is None
        assert self.store.get("m_recent") is not None


class TestEffectStore:
    def setup_method(self):
        self.store = EffectStore(Database())

    def _effect(self, key: str, expires_at: datetime) -> ActiveEffect:
        return ActiveEffect(
            character_id="char_1",
            effect_key=key,
            deity=DeityName.OUTLAW_KING,
            manifestation_id="man_1",
            payload={"luck_modifier": -5},
            started_at=NOW - timedelta(hours=1),
            expires_at=expires_at,
        )

    def test_expired_effects_invisible(self):
        self.store.put(self._effect("omen_luck", NOW + timedelta(hours=1)))
        self.store.put(self._effect("stranger_visit", NOW - timedelta(minutes=1)))

        active = self.store.active_for("char_1", NOW)
        assert [e.effect_key for e in active] == ["omen_luck"]
        assert active[0].payload == {"luck_modifier": -5}
        assert self.store.get("char_1", "stranger_visit", NOW) is None

    def test_newer_effect_replaces_key(self):
        self.store.put(self._effect("omen_luck", NOW + timedelta(hours=1)))
        self.store.put(self._effect("omen_luck", NOW + timedelta(hours=5)))

        effect = self.store.get("char_1", "omen_luck", NOW)
        assert effect.expires_at == NOW + timedelta(hours=5)

    def test_purge_expired(self):
        self.store.put(self._effect("omen_luck", NOW + timedelta(hours=1)))
        self.store.put(self._effect("stranger_visit", NOW - timedelta(minutes=1)))

        assert self.store.purge_expired(NOW) == 1
        assert self.store.purge_expired(NOW) == 0

    def test_payload_is_stored_as_given(self):
        payload = StrangerEffect(
            disguise="masked_rider",
            interaction=StrangerInteraction.WARNING,
            duration_hours=4.0,
        ).model_dump(mode="json")
        effect = self._effect("stranger_visit", NOW + timedelta(hours=4))
        self.store.put(effect.model_copy(update={"payload": payload}))

        stored = self.store.get("char_1", "stranger_visit", NOW)
        assert stored.payload == payload

    def test_payload_must_already_be_json(self):
        effect = self._effect("omen_luck", NOW + timedelta(hours=1))
        with pytest.raises(TypeError):
            self.store.put(effect.model_copy(update={"payload": {"at": NOW}}))
        assert self.store.active_for("char_1", NOW) == []
