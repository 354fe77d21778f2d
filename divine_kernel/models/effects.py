"""Active Effect — a timed consequence of a manifestation, with explicit expiry."""

from datetime import datetime

from pydantic import BaseModel

from divine_kernel.models.karma import DeityName


class ActiveEffect(BaseModel):
    """Keyed by (character_id, effect_key); expired rows are invisible on read."""

    character_id: str
    effect_key: str                         # e.g., "omen_luck", "stranger_visit"
    deity: DeityName
    manifestation_id: str
    payload: dict = {}
    started_at: datetime
    expires_at: datetime

    def is_active(self, at: datetime) -> bool:
        return self.expires_at > at
