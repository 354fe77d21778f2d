"""
Attention Store — per (character, deity) attention records.

Behavioral Contract:
- At most one record per (character, deity); created lazily on first scoring.
- Score writes never touch cooldowns or counters.
- A type cooldown is claimed with a conditional upsert: only one writer
  can move it forward while it is expired.
- Records are removed only by the retention sweep.
"""

import json
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from divine_kernel.models.attention import AttentionRecord, AttentionTriggers, Trend
from divine_kernel.models.karma import DeityName
from divine_kernel.models.manifestation import ManifestationType
from divine_kernel.storage.database import Database, from_db, to_db

logger = logging.getLogger(__name__)


class AttentionStore:
    """SQLite-backed attention tracker sharing the deity ``Database``."""

    def __init__(self, db: Database):
        self.db = db

    def save_scores(self, record: AttentionRecord) -> AttentionRecord:
        """Insert or refresh the scored fields of a record."""
        created_at = record.created_at or record.last_evaluated_at or datetime.utcnow()
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO attention (
                    character_id, deity, attention, interest, triggers_json,
                    trend, last_evaluated_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(character_id, deity) DO UPDATE SET
                    attention = excluded.attention,
                    interest = excluded.interest,
                    triggers_json = excluded.triggers_json,
                    trend = excluded.trend,
                    last_evaluated_at = excluded.last_evaluated_at
                """,
                (
                    record.character_id,
                    record.deity.value,
                    record.attention,
                    record.interest,
                    record.triggers.model_dump_json(),
                    record.trend.value,
                    to_db(record.last_evaluated_at),
                    to_db(created_at),
                ),
            )
        return record

    def get(self, character_id: str, deity: DeityName) -> Optional[AttentionRecord]:
        row = self.db.fetchone(
            "SELECT * FROM attention WHERE character_id = ? AND deity = ?",
            (character_id, deity.value),
        )
        if not row:
            return None
        cooldowns = self._cooldowns(deity, [character_id])
        return self._deserialize(row, cooldowns.get(character_id, {}))

    def for_character(self, character_id: str) -> List[AttentionRecord]:
        """Both deities' records for one character, if they exist."""
        records = []
        for deity in DeityName:
            record = self.get(character_id, deity)
            if record:
                records.append(record)
        return records

    def top_watched(self, deity: DeityName, limit: int) -> List[AttentionRecord]:
        """Highest-attention records for a deity, attention descending."""
        rows = self.db.fetchall(
            "SELECT * FROM attention WHERE deity = ? "
            "ORDER BY attention DESC, character_id LIMIT ?",
            (deity.value, limit),
        )
        cooldowns = self._cooldowns(deity, [r["character_id"] for r in rows])
        return [
            self._deserialize(r, cooldowns.get(r["character_id"], {})) for r in rows
        ]

    def tracked_ids(self, deity: DeityName, character_ids: Iterable[str]) -> Set[str]:
        """Which of the given characters already have a record, in one query."""
        ids = list(character_ids)
        if not ids:
            return set()
        placeholders = ", ".join("?" for _ in ids)
        rows = self.db.fetchall(
            f"SELECT character_id FROM attention WHERE deity = ? "
            f"AND character_id IN ({placeholders})",
            (deity.value, *ids),
        )
        return {r["character_id"] for r in rows}

    def claim_cooldown(
        self,
        character_id: str,
        deity: DeityName,
        manifestation_type: ManifestationType,
        now: datetime,
        until: datetime,
    ) -> bool:
        """
        Move a type cooldown to ``until`` and bump its counter, but only if it
        is currently expired. Returns False when another writer holds it.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO attention_cooldown (
                    character_id, deity, type, cooldown_until, intervention_count
                ) VALUES (?, ?, ?, ?, 1)
                ON CONFLICT(character_id, deity, type) DO UPDATE SET
                    cooldown_until = excluded.cooldown_until,
                    intervention_count = attention_cooldown.intervention_count + 1
                WHERE attention_cooldown.cooldown_until <= ?
                """,
                (
                    character_id,
                    deity.value,
                    manifestation_type.value,
                    to_db(until),
                    to_db(now),
                ),
            )
            return cursor.rowcount == 1

    def stamp_intervention(
        self, character_id: str, deity: DeityName, now: datetime
    ) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO attention (
                    character_id, deity, last_intervention_at, created_at
                ) VALUES (?, ?, ?, ?)
                ON CONFLICT(character_id, deity) DO UPDATE SET
                    last_intervention_at = excluded.last_intervention_at
                """,
                (character_id, deity.value, to_db(now), to_db(now)),
            )

    def delete_stale(self, evaluated_before: datetime, max_attention: float) -> int:
        """Retention sweep: drop dormant, low-attention records and their cooldowns."""
        with self.db.transaction() as conn:
            stale = conn.execute(
                "SELECT character_id, deity FROM attention "
                "WHERE attention < ? AND COALESCE(last_evaluated_at, created_at) < ?",
                (max_attention, to_db(evaluated_before)),
            ).fetchall()
            for row in stale:
                conn.execute(
                    "DELETE FROM attention_cooldown WHERE character_id = ? AND deity = ?",
                    (row["character_id"], row["deity"]),
                )
                conn.execute(
                    "DELETE FROM attention WHERE character_id = ? AND deity = ?",
                    (row["character_id"], row["deity"]),
                )
        if stale:
            logger.info("Removed %d stale attention records", len(stale))
        return len(stale)

    def count(self, deity: Optional[DeityName] = None) -> int:
        if deity is None:
            row = self.db.fetchone("SELECT COUNT(*) AS cnt FROM attention")
        else:
            row = self.db.fetchone(
                "SELECT COUNT(*) AS cnt FROM attention WHERE deity = ?", (deity.value,)
            )
        return row["cnt"]

    def _cooldowns(
        self, deity: DeityName, character_ids: List[str]
    ) -> Dict[str, Dict[ManifestationType, Tuple[datetime, int]]]:
        if not character_ids:
            return {}
        placeholders = ", ".join("?" for _ in character_ids)
        rows = self.db.fetchall(
            f"SELECT * FROM attention_cooldown WHERE deity = ? "
            f"AND character_id IN ({placeholders})",
            (deity.value, *character_ids),
        )
        result: Dict[str, Dict[ManifestationType, Tuple[datetime, int]]] = {}
        for r in rows:
            per_type = result.setdefault(r["character_id"], {})
            per_type[ManifestationType(r["type"])] = (
                from_db(r["cooldown_until"]),
                r["intervention_count"],
            )
        return result

    def _deserialize(
        self, row, cooldowns: Dict[ManifestationType, Tuple[datetime, int]]
    ) -> AttentionRecord:
        return AttentionRecord(
            character_id=row["character_id"],
            deity=DeityName(row["deity"]),
            attention=row["attention"],
            interest=row["interest"],
            triggers=AttentionTriggers(**json.loads(row["triggers_json"])),
            trend=Trend(row["trend"]),
            cooldown_until={t: until for t, (until, _) in cooldowns.items()},
            intervention_counts={t: count for t, (_, count) in cooldowns.items()},
            last_evaluated_at=from_db(row["last_evaluated_at"]),
            last_intervention_at=from_db(row["last_intervention_at"]),
            created_at=from_db(row["created_at"]),
        )
