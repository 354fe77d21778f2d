"""
Active Effect Store — timed consequences of manifestations.

Expiry is explicit: an effect past ``expires_at`` is never returned, whether
or not the maintenance sweep has purged it yet.
"""

import json
import logging
from datetime import datetime
from typing import List, Optional

from divine_kernel.models.effects import ActiveEffect
from divine_kernel.models.karma import DeityName
from divine_kernel.storage.database import Database, from_db, to_db

logger = logging.getLogger(__name__)


class EffectStore:
    def __init__(self, db: Database):
        self.db = db

    def put(self, effect: ActiveEffect) -> ActiveEffect:
        """A newer effect under the same key replaces the old one."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO active_effect (
                    character_id, effect_key, deity, manifestation_id,
                    payload_json, started_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    effect.character_id,
                    effect.effect_key,
                    effect.deity.value,
                    effect.manifestation_id,
                    json.dumps(effect.payload),
                    to_db(effect.started_at),
                    to_db(effect.expires_at),
                ),
            )
        return effect

    def get(self, character_id: str, effect_key: str, now: datetime) -> Optional[ActiveEffect]:
        row = self.db.fetchone(
            "SELECT * FROM active_effect WHERE character_id = ? AND effect_key = ? "
            "AND expires_at > ?",
            (character_id, effect_key, to_db(now)),
        )
        return self._deserialize(row) if row else None

    def active_for(self, character_id: str, now: datetime) -> List[ActiveEffect]:
        rows = self.db.fetchall(
            "SELECT * FROM active_effect WHERE character_id = ? AND expires_at > ? "
            "ORDER BY expires_at",
            (character_id, to_db(now)),
        )
        return [self._deserialize(r) for r in rows]

    def purge_expired(self, now: datetime) -> int:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM active_effect WHERE expires_at <= ?", (to_db(now),)
            )
            removed = cursor.rowcount
        if removed:
            logger.info("Purged %d expired effects", removed)
        return removed

    def _deserialize(self, row) -> ActiveEffect:
        return ActiveEffect(
            character_id=row["character_id"],
            effect_key=row["effect_key"],
            deity=DeityName(row["deity"]),
            manifestation_id=row["manifestation_id"],
            payload=json.loads(row["payload_json"]),
            started_at=from_db(row["started_at"]),
            expires_at=from_db(row["expires_at"]),
        )
