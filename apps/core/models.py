from typing import Optional
from enum import Enum
from sqlmodel import SQLModel

class MediaKind(str, Enum):
    MOVIE = "movie"
    TV = "tv"

# Catalog contracts. These are what TMDB lookups are reduced to before
# they cross into the tracker or the presentation layer.

class TvSummary(SQLModel):
    id: int
    name: str
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    total_episodes: Optional[int] = None
    average_episode_runtime: Optional[int] = None # Minutes

class MovieSummary(SQLModel):
    id: int
    title: str
    poster_url: Optional[str] = None
    runtime: Optional[int] = None # Minutes

class EpisodeSummary(SQLModel):
    season_number: int
    episode_number: int
    name: str
    air_date: Optional[str] = None
    still_url: Optional[str] = None
    overview: str = ""

    @property
    def key(self):
        return (self.season_number, self.episode_number)

class SearchResult(SQLModel):
    id: int
    media_type: MediaKind
    title: str
    poster_url: Optional[str] = None
    year: str = "-"
    type_label: str
    rank: Optional[int] = None # TMDB vote count
    episodes: Optional[int] = None # TV only

class CastPerson(SQLModel):
    id: int
    name: str
    character: str = ""
    role: str = "acting" # acting, voice
    profile_url: Optional[str] = None
