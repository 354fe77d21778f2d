"""
Deity State Store — exactly one DeityAgentState row per deity.

The global cooldown is claimed by compare-and-swap on the previously
observed ``last_intervention_at``: two dispatchers that both saw the deity
as eligible cannot both win.
"""

import logging
from datetime import datetime
from typing import List, Optional

from divine_kernel.models.deity import DeityAgentState, DeityMood, DeityPhase
from divine_kernel.models.karma import DeityName
from divine_kernel.storage.database import Database, from_db, to_db

logger = logging.getLogger(__name__)

DIAL_FIELDS = ("influence", "patience", "wrath", "benevolence", "global_cooldown_hours")


class DeityNotFound(KeyError):
    pass


class DeityStore:
    def __init__(self, db: Database, default_global_cooldown_hours: float = 1.0):
        self.db = db
        self.ensure_defaults(default_global_cooldown_hours)

    def ensure_defaults(self, global_cooldown_hours: float = 1.0) -> None:
        """Seed one row per deity; existing rows are left alone."""
        with self.db.transaction() as conn:
            for deity in DeityName:
                state = DeityAgentState(
                    deity=deity,
                    global_cooldown_hours=global_cooldown_hours,
                    updated_at=datetime.utcnow(),
                )
                conn.execute(
                    """
                    INSERT OR IGNORE INTO deity_state (
                        deity, mood, phase, mood_score, last_intervention_at,
                        global_cooldown_hours, influence, patience, wrath,
                        benevolence, total_interventions, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._params(state),
                )

    def get(self, deity: DeityName) -> DeityAgentState:
        row = self.db.fetchone("SELECT * FROM deity_state WHERE deity = ?", (deity.value,))
        if not row:
            raise DeityNotFound(deity.value)
        return self._deserialize(row)

    def all(self) -> List[DeityAgentState]:
        rows = self.db.fetchall("SELECT * FROM deity_state ORDER BY deity")
        return [self._deserialize(r) for r in rows]

    def save(self, state: DeityAgentState) -> DeityAgentState:
        """Overwrite a deity's whole state. Used by tests and admin tooling."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO deity_state (
                    deity, mood, phase, mood_score, last_intervention_at,
                    global_cooldown_hours, influence, patience, wrath,
                    benevolence, total_interventions, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._params(state),
            )
        return state

    def save_mood(
        self,
        deity: DeityName,
        mood: DeityMood,
        phase: DeityPhase,
        mood_score: float,
        now: datetime,
    ) -> DeityAgentState:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE deity_state SET mood = ?, phase = ?, mood_score = ?, updated_at = ? "
                "WHERE deity = ?",
                (mood.value, phase.value, mood_score, to_db(now), deity.value),
            )
        return self.get(deity)

    def update_dials(self, deity: DeityName, **dials: float) -> DeityAgentState:
        """Tune influence / patience / wrath / benevolence / global cooldown."""
        unknown = set(dials) - set(DIAL_FIELDS)
        if unknown:
            raise ValueError(f"Unknown deity dials: {sorted(unknown)}")

        with self.db.transaction():
            current = self.get(deity)
            # Re-validate so the 0..100 bounds apply
            updated = DeityAgentState.model_validate(
                {**current.model_dump(), **dials, "updated_at": datetime.utcnow()}
            )
            self.save(updated)
        logger.info("Updated dials for %s: %s", deity.value, dials)
        return updated

    def claim_global(self, deity: DeityName, now: datetime) -> bool:
        """
        Stamp ``last_intervention_at`` and bump the counter if the deity is
        currently allowed to intervene. False means cooldown, dormancy, or a
        lost race.
        """
        with self.db.transaction() as conn:
            current = self.get(deity)
            if not current.can_intervene(now):
                return False
            cursor = conn.execute(
                """
                UPDATE deity_state SET
                    last_intervention_at = ?,
                    total_interventions = total_interventions + 1,
                    updated_at = ?
                WHERE deity = ? AND phase != ? AND last_intervention_at IS ?
                """,
                (
                    to_db(now),
                    to_db(now),
                    deity.value,
                    DeityPhase.DORMANT.value,
                    to_db(current.last_intervention_at),
                ),
            )
            return cursor.rowcount == 1

    def _params(self, state: DeityAgentState) -> tuple:
        return (
            state.deity.value,
            state.mood.value,
            state.phase.value,
            state.mood_score,
            to_db(state.last_intervention_at),
            state.global_cooldown_hours,
            state.influence,
            state.patience,
            state.wrath,
            state.benevolence,
            state.total_interventions,
            to_db(state.updated_at),
        )

    def _deserialize(self, row) -> DeityAgentState:
        return DeityAgentState(
            deity=DeityName(row["deity"]),
            mood=DeityMood(row["mood"]),
            phase=DeityPhase(row["phase"]),
            mood_score=row["mood_score"],
            last_intervention_at=from_db(row["last_intervention_at"]),
            global_cooldown_hours=row["global_cooldown_hours"],
            influence=row["influence"],
            patience=row["patience"],
            wrath=row["wrath"],
            benevolence=row["benevolence"],
            total_interventions=row["total_interventions"],
            updated_at=from_db(row["updated_at"]),
        )
