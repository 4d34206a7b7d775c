"""
Episode ordering and the backfill policy.

Episodes of a series are totally ordered by ascending (season, episode).
Marking an episode while earlier ones are still unwatched does not commit
anything by itself: it produces a PendingConfirmation the caller resolves
with a BackfillChoice (or dismisses).
"""
from bisect import bisect_left
from datetime import date
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple, Union
from sqlmodel import SQLModel
from apps.core.models import EpisodeSummary
from apps.tracker.models import EpisodeKey

class BackfillChoice(str, Enum):
    CURRENT_ONLY = "current_only"
    CURRENT_AND_PREVIOUS = "current_and_previous"

class PendingConfirmation(SQLModel):
    user_id: int
    tmdb_id: int
    season_number: int
    episode_number: int
    watched_at: date
    missing: List[Tuple[int, int]]

    @property
    def episode_key(self) -> EpisodeKey:
        return (self.season_number, self.episode_number)

    def keys_for(self, choice: BackfillChoice) -> List[EpisodeKey]:
        """Keys to commit for a choice, oldest first, target last."""
        if choice == BackfillChoice.CURRENT_AND_PREVIOUS:
            return [tuple(k) for k in self.missing] + [self.episode_key]
        return [self.episode_key]

class EpisodeOrdering:
    def __init__(self, episodes: Iterable[Union[EpisodeSummary, EpisodeKey]]):
        keys = set()
        for ep in episodes:
            key = ep.key if isinstance(ep, EpisodeSummary) else tuple(ep)
            keys.add((int(key[0]), int(key[1])))
        self.keys: List[EpisodeKey] = sorted(keys)
        self._key_set = keys

    def __len__(self):
        return len(self.keys)

    def __contains__(self, key):
        return tuple(key) in self._key_set

    def next_unwatched(self, watched: Set[EpisodeKey]) -> Optional[EpisodeKey]:
        """First episode not in ``watched``; None when the series is up to date."""
        return next((key for key in self.keys if key not in watched), None)

    def previous_keys_of(self, season_number: int, episode_number: int) -> List[EpisodeKey]:
        """Every listed episode strictly before (season, episode)."""
        return self.keys[:bisect_left(self.keys, (season_number, episode_number))]

    def missing_before(self, season_number: int, episode_number: int, watched: Set[EpisodeKey]) -> List[EpisodeKey]:
        return [key for key in self.previous_keys_of(season_number, episode_number) if key not in watched]
