"""
Manifestation Store — append-only log of interventions.

Behavioral Contract:
- A manifestation row is written once and never rewritten.
- Only ``delivered`` and ``acknowledged`` flip, each at most once: the
  update matches only while the flag is still false.
- An effect payload that no longer parses is logged and read back as None;
  the manifestation itself is still returned.
- Rows older than the history window are pruned by maintenance.
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError

from divine_kernel.models.karma import DeityName
from divine_kernel.models.manifestation import (
    Manifestation,
    ManifestationSubtype,
    ManifestationType,
    Urgency,
    effect_adapter,
)
from divine_kernel.storage.database import Database, from_db, to_db

logger = logging.getLogger(__name__)


class ManifestationStore:
    def __init__(self, db: Database):
        self.db = db

    def insert(self, manifestation: Manifestation) -> Manifestation:
        effect_json = None
        if manifestation.effect is not None:
            effect_json = manifestation.effect.model_dump_json()

        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO manifestation (
                    id, deity, character_id, type, subtype, message, effect_json,
                    urgency, delivered, delivered_at, acknowledged, acknowledged_at,
                    response, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    manifestation.id,
                    manifestation.deity.value,
                    manifestation.character_id,
                    manifestation.type.value,
                    manifestation.subtype.value,
                    manifestation.message,
                    effect_json,
                    manifestation.urgency.value,
                    int(manifestation.delivered),
                    to_db(manifestation.delivered_at),
                    int(manifestation.acknowledged),
                    to_db(manifestation.acknowledged_at),
                    manifestation.response,
                    to_db(manifestation.created_at),
                ),
            )
        return manifestation

    def get(self, manifestation_id: str) -> Optional[Manifestation]:
        row = self.db.fetchone(
            "SELECT * FROM manifestation WHERE id = ?", (manifestation_id,)
        )
        return self._deserialize(row) if row else None

    def undelivered(self, character_id: str) -> List[Manifestation]:
        """Pending manifestations for a character, oldest first."""
        rows = self.db.fetchall(
            "SELECT * FROM manifestation WHERE character_id = ? AND delivered = 0 "
            "ORDER BY created_at, rowid",
            (character_id,),
        )
        return [self._deserialize(r) for r in rows]

    def unacknowledged(self, character_id: str) -> List[Manifestation]:
        """Delivered but not yet acknowledged, oldest first."""
        rows = self.db.fetchall(
            "SELECT * FROM manifestation WHERE character_id = ? AND delivered = 1 "
            "AND acknowledged = 0 ORDER BY created_at, rowid",
            (character_id,),
        )
        return [self._deserialize(r) for r in rows]

    def history(
        self,
        character_id: str,
        limit: int = 20,
        deity: Optional[DeityName] = None,
    ) -> List[Manifestation]:
        """Most recent first."""
        if deity is None:
            rows = self.db.fetchall(
                "SELECT * FROM manifestation WHERE character_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (character_id, limit),
            )
        else:
            rows = self.db.fetchall(
                "SELECT * FROM manifestation WHERE character_id = ? AND deity = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (character_id, deity.value, limit),
            )
        return [self._deserialize(r) for r in rows]

    def mark_delivered(self, manifestation_id: str, now: datetime) -> bool:
        """True only for the call that actually flipped the flag."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE manifestation SET delivered = 1, delivered_at = ? "
                "WHERE id = ? AND delivered = 0",
                (to_db(now), manifestation_id),
            )
            return cursor.rowcount == 1

    def mark_acknowledged(
        self,
        manifestation_id: str,
        now: datetime,
        response: Optional[str] = None,
    ) -> bool:
        """Acknowledging implies delivery; neither timestamp is ever overwritten."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE manifestation SET
                    acknowledged = 1,
                    acknowledged_at = ?,
                    response = ?,
                    delivered = 1,
                    delivered_at = COALESCE(delivered_at, ?)
                WHERE id = ? AND acknowledged = 0
                """,
                (to_db(now), response, to_db(now), manifestation_id),
            )
            return cursor.rowcount == 1

    def prune(self, created_before: datetime) -> int:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM manifestation WHERE created_at < ?",
                (to_db(created_before),),
            )
            removed = cursor.rowcount
        if removed:
            logger.info("Pruned %d manifestations older than %s", removed, created_before)
        return removed

    def count_since(self, deity: DeityName, since: datetime) -> int:
        row = self.db.fetchone(
            "SELECT COUNT(*) AS cnt FROM manifestation WHERE deity = ? AND created_at >= ?",
            (deity.value, to_db(since)),
        )
        return row["cnt"]

    def _deserialize(self, row) -> Manifestation:
        effect = None
        if row["effect_json"]:
            try:
                effect = effect_adapter.validate_json(row["effect_json"])
            except ValidationError:
                logger.warning(
                    "Unreadable effect payload on manifestation %s; returning without effect",
                    row["id"],
                )

        return Manifestation(
            id=row["id"],
            deity=DeityName(row["deity"]),
            character_id=row["character_id"],
            type=ManifestationType(row["type"]),
            subtype=ManifestationSubtype(row["subtype"]),
            message=row["message"],
            effect=effect,
            urgency=Urgency(row["urgency"]),
            delivered=bool(row["delivered"]),
            delivered_at=from_db(row["delivered_at"]),
            acknowledged=bool(row["acknowledged"]),
            acknowledged_at=from_db(row["acknowledged_at"]),
            response=row["response"],
            created_at=from_db(row["created_at"]),
        )
