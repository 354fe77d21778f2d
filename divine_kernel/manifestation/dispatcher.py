"""
Manifestation Dispatcher — turns a positive intervention decision into a
delivered-pending Manifestation.

Behavioral Contract:
- Message text comes from a pluggable generator, bounded by a timeout.
  A slow or failing generator abandons the dispatch; nothing is written.
- The global cooldown claim, the type cooldown claim, the intervention
  stamp, the manifestation row and any timed effect commit together or
  not at all.
- Losing either claim to a concurrent dispatcher is a silent no-op.
"""

import logging
import random
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple
from uuid import uuid4

from divine_kernel.attention.store import AttentionStore
from divine_kernel.decision.engine import select_subtype, urgency_for
from divine_kernel.deity.store import DeityStore
from divine_kernel.effects.store import EffectStore
from divine_kernel.manifestation.messages import (
    MessageContext,
    MessageGenerator,
    TemplateMessageGenerator,
)
from divine_kernel.manifestation.store import ManifestationStore
from divine_kernel.models.attention import AttentionRecord
from divine_kernel.models.deity import DeityAgentState
from divine_kernel.models.effects import ActiveEffect
from divine_kernel.models.karma import DeityName, KarmaProfile
from divine_kernel.models.manifestation import (
    DreamEffect,
    Manifestation,
    ManifestationSubtype,
    ManifestationType,
    OmenEffect,
    StrangerEffect,
    StrangerInteraction,
    WhisperEffect,
)
from divine_kernel.models.scheduler import EngineConfig
from divine_kernel.storage.database import Database, LostRace

logger = logging.getLogger(__name__)

DREAM_LUCK: Dict[ManifestationSubtype, int] = {
    ManifestationSubtype.PROPHETIC: 10,
    ManifestationSubtype.VISION: 5,
    ManifestationSubtype.MEMORY: 0,
    ManifestationSubtype.CHAOS: 0,
    ManifestationSubtype.WARNING: -5,
    ManifestationSubtype.NIGHTMARE: -10,
}

DREAM_SANITY: Dict[ManifestationSubtype, int] = {
    ManifestationSubtype.PROPHETIC: 0,
    ManifestationSubtype.VISION: 0,
    ManifestationSubtype.MEMORY: 0,
    ManifestationSubtype.CHAOS: -5,
    ManifestationSubtype.WARNING: 0,
    ManifestationSubtype.NIGHTMARE: -10,
}

DREAM_EFFECT_HOURS = 8.0
OMEN_LUCK = 5
OMEN_HOURS = 6.0
STRANGER_HOURS = 4.0

# disguise -> interactions the disguise can offer
STRANGER_DISGUISES: Dict[DeityName, Dict[str, List[StrangerInteraction]]] = {
    DeityName.GAMBLER: {
        "card_sharp": [StrangerInteraction.DIALOGUE, StrangerInteraction.TEST, StrangerInteraction.TRADE],
        "fortune_teller": [StrangerInteraction.DIALOGUE, StrangerInteraction.WARNING, StrangerInteraction.GIFT],
        "gambler": [StrangerInteraction.TEST, StrangerInteraction.TRADE],
        "traveling_preacher": [StrangerInteraction.DIALOGUE, StrangerInteraction.WARNING],
        "mysterious_merchant": [StrangerInteraction.TRADE, StrangerInteraction.TEST, StrangerInteraction.GIFT],
    },
    DeityName.OUTLAW_KING: {
        "grizzled_outlaw": [StrangerInteraction.DIALOGUE, StrangerInteraction.TEST, StrangerInteraction.GIFT],
        "masked_rider": [StrangerInteraction.WARNING, StrangerInteraction.TEST],
        "wild_woman": [StrangerInteraction.DIALOGUE, StrangerInteraction.GIFT, StrangerInteraction.TEST],
        "escaped_prisoner": [StrangerInteraction.DIALOGUE, StrangerInteraction.WARNING],
        "frontier_hermit": [StrangerInteraction.TEST, StrangerInteraction.TRADE, StrangerInteraction.GIFT],
    },
}


def hint_topic(record: AttentionRecord) -> str:
    """What a whisper nudges the character about, from the strongest trigger."""
    triggers = record.triggers
    if triggers.moral_conflict:
        return "conscience"
    if triggers.frequent_gambler:
        return "gambling"
    if triggers.law_breaker:
        return "crime"
    if triggers.rival_favored:
        return "rival"
    if triggers.gang_leader:
        return "leadership"
    return "fate"


def build_effect(
    deity: DeityName,
    manifestation_type: ManifestationType,
    subtype: ManifestationSubtype,
    record: AttentionRecord,
    affinity: float,
    rng: random.Random,
) -> Tuple[Optional[object], Optional[str], Optional[float]]:
    """Return (effect payload, active effect key, duration hours)."""
    if manifestation_type == ManifestationType.DREAM:
        effect = DreamEffect(
            subtype=subtype,
            luck_modifier=DREAM_LUCK[subtype],
            sanity_delta=DREAM_SANITY[subtype],
        )
        if effect.luck_modifier:
            return effect, "dream_luck", DREAM_EFFECT_HOURS
        return effect, None, None

    if manifestation_type == ManifestationType.OMEN:
        favorable = affinity > 0
        effect = OmenEffect(
            favorable=favorable,
            luck_modifier=OMEN_LUCK if favorable else -OMEN_LUCK,
            duration_hours=OMEN_HOURS,
        )
        return effect, "omen_luck", OMEN_HOURS

    if manifestation_type == ManifestationType.WHISPER:
        return WhisperEffect(hint_topic=hint_topic(record)), None, None

    if manifestation_type == ManifestationType.STRANGER:
        disguises = STRANGER_DISGUISES[deity]
        disguise = rng.choice(sorted(disguises))
        effect = StrangerEffect(
            disguise=disguise,
            interaction=rng.choice(disguises[disguise]),
            duration_hours=STRANGER_HOURS,
        )
        return effect, "stranger_visit", STRANGER_HOURS

    return None, None, None


class ManifestationDispatcher:
    def __init__(
        self,
        db: Database,
        attention_store: AttentionStore,
        deity_store: DeityStore,
        manifestation_store: ManifestationStore,
        effect_store: EffectStore,
        generator: Optional[MessageGenerator] = None,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.attention_store = attention_store
        self.deity_store = deity_store
        self.manifestation_store = manifestation_store
        self.effect_store = effect_store
        self.generator = generator or TemplateMessageGenerator(rng)
        self.config = config or EngineConfig()
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._in_flight: Set[Future] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def dispatch(
        self,
        record: AttentionRecord,
        state: DeityAgentState,
        manifestation_type: ManifestationType,
        profile: Optional[KarmaProfile] = None,
        current_time: Optional[datetime] = None,
    ) -> Optional[Manifestation]:
        """
        Create and persist one manifestation. Returns None when the message
        could not be generated or a concurrent dispatcher won the claims.
        """
        if current_time is None:
            current_time = datetime.utcnow()
        if self._closed:
            logger.warning(
                "Dispatcher closed; dropping %s for %s",
                manifestation_type.value, record.character_id,
            )
            return None

        deity = record.deity
        profile = profile or KarmaProfile(character_id=record.character_id)
        affinity = profile.affinity_for(deity)
        subtype = select_subtype(record.trend, affinity)
        context = MessageContext(
            character_id=record.character_id,
            subtype=subtype,
            trend=record.trend,
            attention=record.attention,
            interest=record.interest,
            affinity=affinity,
            mood=state.mood,
            triggers=record.triggers,
            karma=profile.karma,
            has_blessing=bool(profile.active_blessings(current_time)),
            has_curse=bool(profile.active_curses(current_time)),
        )

        message = self._generate_message(deity, manifestation_type, context)
        if message is None:
            return None

        effect, effect_key, effect_hours = build_effect(
            deity, manifestation_type, subtype, record, affinity, self._rng
        )

        manifestation = Manifestation(
            id=f"man_{uuid4().hex[:12]}",
            deity=deity,
            character_id=record.character_id,
            type=manifestation_type,
            subtype=subtype,
            message=message,
            effect=effect,
            urgency=urgency_for(record.attention, subtype),
            created_at=current_time,
        )

        cooldown = timedelta(hours=self.config.type_cooldown_hours.get(manifestation_type, 0.0))

        try:
            with self.db.transaction():
                if not self.deity_store.claim_global(deity, current_time):
                    raise LostRace(f"{deity.value} global cooldown")
                if not self.attention_store.claim_cooldown(
                    record.character_id,
                    deity,
                    manifestation_type,
                    current_time,
                    current_time + cooldown,
                ):
                    raise LostRace(f"{manifestation_type.value} cooldown for {record.character_id}")
                self.attention_store.stamp_intervention(record.character_id, deity, current_time)
                self.manifestation_store.insert(manifestation)
                if effect_key is not None:
                    self.effect_store.put(ActiveEffect(
                        character_id=record.character_id,
                        effect_key=effect_key,
                        deity=deity,
                        manifestation_id=manifestation.id,
                        payload=effect.model_dump(mode="json"),
                        started_at=current_time,
                        expires_at=current_time + timedelta(hours=effect_hours),
                    ))
        except LostRace as race:
            logger.info("Dispatch skipped for %s by %s: %s", record.character_id, deity.value, race)
            return None

        logger.info(
            "%s sent a %s (%s) to %s",
            deity.display_name, manifestation_type.value, subtype.value, record.character_id,
        )
        return manifestation

    def _generate_message(
        self,
        deity: DeityName,
        manifestation_type: ManifestationType,
        context: MessageContext,
    ) -> Optional[str]:
        # One worker per call: a hung generator only ever holds its own thread
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="manifestation-message")
        future = executor.submit(self.generator.generate, deity, manifestation_type, context)
        executor.shutdown(wait=False)
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._finished)

        try:
            return future.result(timeout=self.config.message_timeout_seconds)
        except FutureTimeout:
            logger.warning(
                "Message generation timed out for %s (%s); dispatch abandoned",
                context.character_id, deity.value,
            )
        except Exception:
            logger.exception(
                "Message generation failed for %s (%s); dispatch abandoned",
                context.character_id, deity.value,
            )
        return None

    def _finished(self, future: Future) -> None:
        with self._lock:
            self._in_flight.discard(future)

    def close(self, timeout: Optional[float] = None) -> None:
        """Refuse new dispatches and give running generator calls a bounded grace period."""
        self._closed = True
        with self._lock:
            pending = list(self._in_flight)
        if not pending:
            return
        if timeout is None:
            timeout = self.config.message_timeout_seconds
        _, still_running = wait(pending, timeout=timeout)
        if still_running:
            logger.warning("%d message generator calls still running at close", len(still_running))
