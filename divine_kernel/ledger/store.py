"""
Karma Ledger boundary — read-only collaborators the deity engine consumes.

The engine never writes karma. Production plugs in adapters over the game's
character store; the in-memory versions here back development and tests.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from divine_kernel.deity.mood import aggregate_world_activity
from divine_kernel.models.attention import LeadershipRole
from divine_kernel.models.karma import DeityName, KarmaProfile
from divine_kernel.models.scheduler import WorldMoodFactors


class KarmaLedger(Protocol):
    """Protocol for reading karma snapshots."""

    def get_profile(self, character_id: str) -> Optional[KarmaProfile]: ...

    def find_candidates(
        self,
        deity: DeityName,
        min_affinity: float,
        min_total_actions: int,
        limit: int,
    ) -> List[str]: ...


class SocialDirectory(Protocol):
    """Protocol for gang / group leadership lookups."""

    def leadership_role(self, character_id: str) -> LeadershipRole: ...


class WorldActivitySource(Protocol):
    """Protocol for population-wide activity rollups."""

    def world_activity(self, since: datetime, until: datetime) -> WorldMoodFactors: ...


class InMemoryKarmaLedger:
    """
    Dict-backed ledger. Also serves as a WorldActivitySource by rolling up
    the recent actions of every profile it holds.
    """

    def __init__(self, profiles: Optional[Iterable[KarmaProfile]] = None):
        self._profiles: Dict[str, KarmaProfile] = {}
        for profile in profiles or []:
            self.put(profile)

    def put(self, profile: KarmaProfile) -> None:
        self._profiles[profile.character_id] = profile

    def remove(self, character_id: str) -> bool:
        return self._profiles.pop(character_id, None) is not None

    def get_profile(self, character_id: str) -> Optional[KarmaProfile]:
        return self._profiles.get(character_id)

    def find_candidates(
        self,
        deity: DeityName,
        min_affinity: float,
        min_total_actions: int,
        limit: int,
    ) -> List[str]:
        """Characters with a significant affinity or a busy history, most polarized first."""
        matches = [
            p for p in self._profiles.values()
            if abs(p.affinity_for(deity)) >= min_affinity
            or p.total_actions >= min_total_actions
        ]
        matches.sort(key=lambda p: (-abs(p.affinity_for(deity)), p.character_id))
        return [p.character_id for p in matches[:limit]]

    def world_activity(self, since: datetime, until: datetime) -> WorldMoodFactors:
        return aggregate_world_activity(self._profiles.values(), since, until)

    def __len__(self) -> int:
        return len(self._profiles)


class InMemorySocialDirectory:
    """Characters default to no leadership role."""

    def __init__(self, roles: Optional[Dict[str, LeadershipRole]] = None):
        self._roles: Dict[str, LeadershipRole] = dict(roles or {})

    def set_role(self, character_id: str, role: LeadershipRole) -> None:
        self._roles[character_id] = role

    def leadership_role(self, character_id: str) -> LeadershipRole:
        return self._roles.get(character_id, LeadershipRole.NONE)
