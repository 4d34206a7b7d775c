import logging
from typing import Optional, Tuple
from datetime import date, datetime, timezone
from sqlmodel import SQLModel, Field, UniqueConstraint
from apps.core.models import MediaKind
from apps.tracker.exceptions import InvalidUnitKey

logger = logging.getLogger(__name__)

# (season_number, episode_number) inside one title
EpisodeKey = Tuple[int, int]

# Reserved key meaning "the movie itself"
MOVIE_SENTINEL: EpisodeKey = (0, 0)

class WatchedItem(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint(
            "user_id", "media_type", "tmdb_id", "season_number", "episode_number",
            name="unique_watched_item",
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    media_type: str = Field(index=True) # 'movie' or 'tv'
    tmdb_id: int = Field(index=True)

    season_number: int = 0
    episode_number: int = 0

    watched_at: date = Field(default_factory=date.today)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_event(self) -> "WatchedEvent":
        return WatchedEvent(
            user_id=self.user_id,
            media_type=MediaKind(self.media_type),
            tmdb_id=self.tmdb_id,
            season_number=self.season_number,
            episode_number=self.episode_number,
            watched_at=self.watched_at.isoformat() if self.watched_at else None,
        )

class WatchedUnit(SQLModel):
    """A request to mark (or unmark) one unit as watched."""
    user_id: int
    media_type: MediaKind
    tmdb_id: int
    season_number: int = 0
    episode_number: int = 0
    watched_at: Optional[date] = None

    @property
    def episode_key(self) -> EpisodeKey:
        return (self.season_number, self.episode_number)

    @property
    def key(self) -> Tuple[int, str, int, int, int]:
        return (self.user_id, self.media_type.value, self.tmdb_id, self.season_number, self.episode_number)

class WatchedEvent(SQLModel):
    """A watched record as listed by the persistence API.

    ``watched_at`` stays a raw string: the API is remote and a record may
    carry a missing or malformed date, which the aggregator has to tolerate.
    """
    user_id: Optional[int] = None
    media_type: MediaKind
    tmdb_id: int
    season_number: int = 0
    episode_number: int = 0
    watched_at: Optional[str] = None

    @property
    def episode_key(self) -> EpisodeKey:
        return (self.season_number, self.episode_number)


def validate_unit(unit: WatchedUnit) -> WatchedUnit:
    """
    Rejects malformed keys. Movies must carry the (0, 0) sentinel,
    series episodes must have a positive season and episode.
    """
    if unit.user_id is None or unit.user_id <= 0:
        raise InvalidUnitKey("user_id is required")
    if unit.tmdb_id is None or unit.tmdb_id <= 0:
        raise InvalidUnitKey("tmdb_id must be a positive integer")

    if unit.media_type == MediaKind.MOVIE:
        if unit.episode_key != MOVIE_SENTINEL:
            raise InvalidUnitKey("movie units must use season 0 and episode 0")
    elif unit.season_number <= 0 or unit.episode_number <= 0:
        raise InvalidUnitKey(
            f"series units need a positive season and episode (got S{unit.season_number}E{unit.episode_number})"
        )
    return unit

def resolve_watched_at(value: Optional[date], today: Optional[date] = None) -> date:
    """Missing dates become today and future dates are clamped to today."""
    today = today or date.today()
    if value is None:
        return today
    if isinstance(value, datetime):
        value = value.date()
    if value > today:
        logger.info(f"Clamping future watched date {value} to {today}")
        return today
    return value

def episode_unit(user_id: int, tmdb_id: int, season_number: int, episode_number: int,
                 watched_at: Optional[date] = None) -> WatchedUnit:
    return WatchedUnit(
        user_id=user_id,
        media_type=MediaKind.TV,
        tmdb_id=tmdb_id,
        season_number=season_number,
        episode_number=episode_number,
        watched_at=watched_at,
    )

def movie_unit(user_id: int, tmdb_id: int, watched_at: Optional[date] = None) -> WatchedUnit:
    return WatchedUnit(user_id=user_id, media_type=MediaKind.MOVIE, tmdb_id=tmdb_id, watched_at=watched_at)
