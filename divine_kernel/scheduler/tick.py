"""
Tick Scheduler — the heartbeat of the deity agents.

Each cycle, per deity:
  WATCHED (top-N by attention) → RESCORE → PERSIST → EVALUATE → (DISPATCH)
  DISCOVERED (new candidates)  → SCORE → PERSIST
then a mood pass over the last day of world activity.

Newly discovered characters are never evaluated in the cycle that finds
them. A failure for one character is logged and the cycle moves on; a
failure to select the population aborts the cycle.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from croniter import croniter

from divine_kernel.attention.store import AttentionStore
from divine_kernel.decision.engine import DecisionEngine, type_probability
from divine_kernel.deity.mood import evaluate_mood
from divine_kernel.deity.store import DeityNotFound, DeityStore
from divine_kernel.effects.store import EffectStore
from divine_kernel.ledger.store import (
    InMemorySocialDirectory,
    KarmaLedger,
    SocialDirectory,
    WorldActivitySource,
)
from divine_kernel.manifestation.dispatcher import ManifestationDispatcher
from divine_kernel.manifestation.store import ManifestationStore
from divine_kernel.models.attention import AttentionRecord
from divine_kernel.models.deity import DeityAgentState
from divine_kernel.models.karma import DeityName, KarmaProfile
from divine_kernel.models.manifestation import ManifestationType
from divine_kernel.models.scheduler import (
    DreamResult,
    EngineConfig,
    MaintenanceReport,
    RestKind,
    TickSummary,
)

logger = logging.getLogger(__name__)


class _Outcome(str, Enum):
    EVALUATED = "evaluated"
    INTERVENED = "intervened"
    SKIPPED = "skipped"
    FAILED = "failed"


class TickScheduler:
    def __init__(
        self,
        ledger: KarmaLedger,
        attention_store: AttentionStore,
        deity_store: DeityStore,
        manifestation_store: ManifestationStore,
        effect_store: EffectStore,
        dispatcher: ManifestationDispatcher,
        engine: Optional[DecisionEngine] = None,
        social: Optional[SocialDirectory] = None,
        world: Optional[WorldActivitySource] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.ledger = ledger
        self.attention_store = attention_store
        self.deity_store = deity_store
        self.manifestation_store = manifestation_store
        self.effect_store = effect_store
        self.dispatcher = dispatcher
        self.config = config or EngineConfig()
        self.engine = engine or DecisionEngine(self.config)
        self.social = social or InMemorySocialDirectory()
        self.world = world or ledger

        self._cycle_lock = threading.Lock()
        self._running = False
        self._cycle_count = 0
        self.last_summary: Optional[TickSummary] = None
        self.last_maintenance: Optional[MaintenanceReport] = None

    @property
    def status(self) -> str:
        """Current scheduler status."""
        return "running" if self._running else "stopped"

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    def update_config(self, config: EngineConfig) -> None:
        """Swap tunables everywhere they are read; takes effect next cycle."""
        self.config = config
        self.engine.config = config
        self.dispatcher.config = config

    # --- Batch cycle ---

    def run_once(self, current_time: Optional[datetime] = None) -> Optional[TickSummary]:
        """
        Run a single cycle. Returns None if another cycle is still running
        in this process.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Deity tick already in progress; skipping overlapping run")
            return None
        try:
            return self._run_cycle(current_time or datetime.utcnow())
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, current_time: datetime) -> TickSummary:
        started = time.monotonic()
        summary = TickSummary(started_at=current_time)
        cfg = self.config

        present = []
        for deity in DeityName:
            state = self._load_state(deity)
            if state is None:
                summary.interventions_by_deity[deity] = 0
                continue
            present.append(deity)
            watched = self.attention_store.top_watched(deity, cfg.max_watched_per_cycle)
            new_ids = self._discover(deity, len(watched))

            outcomes = self._evaluate_all(watched, state, current_time)
            for character_id in new_ids:
                outcomes.append(self._score_new(character_id, deity, current_time))

            summary.evaluated += sum(
                1 for o in outcomes[:len(watched)]
                if o in (_Outcome.EVALUATED, _Outcome.INTERVENED)
            )
            summary.discovered += sum(
                1 for o in outcomes[len(watched):] if o == _Outcome.EVALUATED
            )
            summary.failures += sum(1 for o in outcomes if o == _Outcome.FAILED)
            summary.interventions_by_deity[deity] = sum(
                1 for o in outcomes if o == _Outcome.INTERVENED
            )

        factors = self.world.world_activity(
            current_time - timedelta(hours=cfg.mood_window_hours), current_time
        )
        for deity in present:
            mood, phase, score = evaluate_mood(deity, factors)
            self.deity_store.save_mood(deity, mood, phase, score, current_time)
            summary.mood_by_deity[deity] = mood
            logger.debug(
                "%s is now %s (phase %s, score %.1f)",
                deity.display_name, mood.value, phase.value, score,
            )

        summary.duration_ms = (time.monotonic() - started) * 1000.0
        self._cycle_count += 1
        self.last_summary = summary
        logger.info(
            "Deity tick: evaluated=%d discovered=%d failures=%d interventions=%s in %.1fms",
            summary.evaluated,
            summary.discovered,
            summary.failures,
            {d.value: n for d, n in summary.interventions_by_deity.items()},
            summary.duration_ms,
        )
        return summary

    def _load_state(self, deity: DeityName) -> Optional[DeityAgentState]:
        try:
            return self.deity_store.get(deity)
        except DeityNotFound:
            logger.error("No agent state stored for %s; skipping deity", deity.value)
            return None

    def _discover(self, deity: DeityName, watched_count: int) -> List[str]:
        cfg = self.config
        if cfg.max_new_per_cycle == 0:
            return []
        candidates = self.ledger.find_candidates(
            deity,
            cfg.discovery_min_affinity,
            cfg.discovery_min_total_actions,
            cfg.max_new_per_cycle + watched_count,
        )
        tracked = self.attention_store.tracked_ids(deity, candidates)
        return [c for c in candidates if c not in tracked][:cfg.max_new_per_cycle]

    def _evaluate_all(
        self,
        watched: List[AttentionRecord],
        state: DeityAgentState,
        current_time: datetime,
    ) -> List[_Outcome]:
        if self.config.evaluation_workers > 1 and len(watched) > 1:
            # Stale state is safe here: the dispatcher's global claim re-checks it
            with ThreadPoolExecutor(max_workers=self.config.evaluation_workers) as pool:
                return list(pool.map(
                    lambda record: self._evaluate_watched(record, state, current_time),
                    watched,
                ))

        outcomes = []
        for record in watched:
            outcome = self._evaluate_watched(record, state, current_time)
            if outcome == _Outcome.INTERVENED:
                state = self.deity_store.get(record.deity)
            outcomes.append(outcome)
        return outcomes

    def _evaluate_watched(
        self,
        record: AttentionRecord,
        state: DeityAgentState,
        current_time: datetime,
    ) -> _Outcome:
        try:
            profile = self.ledger.get_profile(record.character_id)
            if profile is None:
                self._forget(record, current_time)
                return _Outcome.SKIPPED

            scored = self._rescore(profile, record.deity, record, current_time)
            choice = self.engine.evaluate_intervention(scored, state, current_time)
            if choice is None:
                return _Outcome.EVALUATED

            manifestation = self.dispatcher.dispatch(
                scored,
                state,
                choice,
                profile=profile,
                current_time=current_time,
            )
            return _Outcome.INTERVENED if manifestation else _Outcome.EVALUATED
        except Exception:
            logger.exception(
                "Attention evaluation failed for character %s (%s)",
                record.character_id, record.deity.value,
            )
            return _Outcome.FAILED

    def _forget(self, record: AttentionRecord, current_time: datetime) -> None:
        """
        A character with no profile draws no attention. Zero the record once
        so it drops out of the watched set; the stamp is left alone afterwards
        so the retention sweep can reach it.
        """
        if record.attention == 0 and record.interest == 0:
            return
        logger.info(
            "No karma profile for %s; %s stops watching",
            record.character_id, record.deity.value,
        )
        self.attention_store.save_scores(record.model_copy(update={
            "attention": 0.0,
            "interest": 0.0,
            "last_evaluated_at": current_time,
        }))

    def _score_new(
        self, character_id: str, deity: DeityName, current_time: datetime
    ) -> _Outcome:
        try:
            profile = self.ledger.get_profile(character_id)
            if profile is None:
                return _Outcome.SKIPPED
            self._rescore(profile, deity, None, current_time)
            return _Outcome.EVALUATED
        except Exception:
            logger.exception(
                "Attention scoring failed for new character %s (%s)",
                character_id, deity.value,
            )
            return _Outcome.FAILED

    def _rescore(
        self,
        profile: KarmaProfile,
        deity: DeityName,
        existing: Optional[AttentionRecord],
        current_time: datetime,
    ) -> AttentionRecord:
        role = self.social.leadership_role(profile.character_id)
        scored = self.engine.score(profile, deity, role, existing, current_time)
        return self.attention_store.save_scores(scored)

    # --- Per-character entry points ---

    def refresh_attention(
        self,
        character_id: str,
        current_time: Optional[datetime] = None,
    ) -> List[AttentionRecord]:
        """Rescore both deities for one character. Empty if the character is unknown."""
        if current_time is None:
            current_time = datetime.utcnow()

        profile = self.ledger.get_profile(character_id)
        if profile is None:
            return []
        return [
            self._rescore(
                profile,
                deity,
                self.attention_store.get(character_id, deity),
                current_time,
            )
            for deity in DeityName
        ]

    def check_for_dream(
        self,
        character_id: str,
        rest_kind: RestKind = RestKind.FULL_REST,
        current_time: Optional[datetime] = None,
    ) -> Optional[DreamResult]:
        """
        Called when a character rests. At most one deity sends a dream; the
        better-rested the character, the likelier it is. Never raises: the
        rest itself must not fail because of the deities.
        """
        if current_time is None:
            current_time = datetime.utcnow()

        try:
            return self._dream(character_id, rest_kind, current_time)
        except Exception:
            logger.exception("Dream check failed for character %s", character_id)
            return None

    def _dream(
        self,
        character_id: str,
        rest_kind: RestKind,
        current_time: datetime,
    ) -> Optional[DreamResult]:
        profile = self.ledger.get_profile(character_id)
        if profile is None:
            return None

        records = self.refresh_attention(character_id, current_time)
        if sum(r.attention for r in records) < self.config.dream_min_total_attention:
            return None

        multiplier = self.config.rest_multipliers.get(rest_kind, 1.0)
        for record in sorted(records, key=lambda r: r.attention, reverse=True):
            state = self._load_state(record.deity)
            if state is None or not state.can_intervene(current_time):
                continue
            if not record.can_receive(ManifestationType.DREAM, current_time):
                continue

            chance = type_probability(
                record, state, ManifestationType.DREAM, self.config, scale=multiplier
            )
            if not self.engine.roll(chance):
                continue

            manifestation = self.dispatcher.dispatch(
                record,
                state,
                ManifestationType.DREAM,
                profile=profile,
                current_time=current_time,
            )
            if manifestation is None:
                continue
            return DreamResult(
                deity=record.deity,
                manifestation_id=manifestation.id,
                subtype=manifestation.subtype,
                message=manifestation.message,
                effect_hints=manifestation.effect,
            )

        return None

    # --- Maintenance ---

    def run_maintenance(self, current_time: Optional[datetime] = None) -> MaintenanceReport:
        """Daily retention sweep."""
        if current_time is None:
            current_time = datetime.utcnow()

        cfg = self.config
        report = MaintenanceReport(
            attention_removed=self.attention_store.delete_stale(
                current_time - timedelta(days=cfg.attention_retention_days),
                cfg.attention_retention_max_score,
            ),
            manifestations_pruned=self.manifestation_store.prune(
                current_time - timedelta(days=cfg.manifestation_history_days)
            ),
            effects_expired=self.effect_store.purge_expired(current_time),
        )
        self.last_maintenance = report
        logger.info(
            "Deity maintenance: attention_removed=%d manifestations_pruned=%d effects_expired=%d",
            report.attention_removed, report.manifestations_pruned, report.effects_expired,
        )
        return report

    # --- Async runner ---

    def next_runs(self, base: Optional[datetime] = None) -> dict:
        """Next tick and maintenance times per the configured cron schedules."""
        base = base or datetime.utcnow()
        return {
            "tick": croniter(self.config.tick_schedule, base).get_next(datetime),
            "maintenance": croniter(self.config.maintenance_schedule, base).get_next(datetime),
        }

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run ticks and maintenance on their cron schedules until stopped."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            upcoming = self.next_runs()
            while not stop_event.is_set():
                due = min(upcoming.values())
                delay = max(0.0, (due - datetime.utcnow()).total_seconds())
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass

                now = datetime.utcnow()
                if upcoming["tick"] <= now:
                    self._guarded(self.run_once, now)
                    upcoming["tick"] = croniter(self.config.tick_schedule, now).get_next(datetime)
                if upcoming["maintenance"] <= now:
                    self._guarded(self.run_maintenance, now)
                    upcoming["maintenance"] = croniter(
                        self.config.maintenance_schedule, now
                    ).get_next(datetime)
        finally:
            self._running = False

    def _guarded(self, job, now: datetime) -> None:
        try:
            job(now)
        except Exception:
            logger.exception("Scheduled deity job %s failed", job.__name__)
