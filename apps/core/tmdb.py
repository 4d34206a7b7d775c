import asyncio
import logging
import httpx
from typing import Optional, Dict, Any, List, Iterable
from config import settings
from apps.core.models import MediaKind, TvSummary, MovieSummary, EpisodeSummary, SearchResult, CastPerson

logger = logging.getLogger(__name__)

def parse_ids(raw: Any, limit: Optional[int] = None) -> List[int]:
    """Positive integer ids, de-duplicated in order, capped at the batch limit."""
    if isinstance(raw, str):
        raw = raw.split(",")
    limit = limit or settings.CATALOG_BATCH_LIMIT
    ids: List[int] = []
    for value in raw or []:
        try:
            parsed = int(str(value).strip())
        except ValueError:
            continue
        if parsed > 0 and parsed not in ids:
            ids.append(parsed)
    return ids[:limit]

def _positive(value: Any) -> Optional[int]:
    return value if isinstance(value, int) and value > 0 else None

class TMDBService:
    """
    Catalog lookups against TMDB. Every public lookup degrades to an empty
    result (None, [] or {}) when TMDB is unreachable, answers non-OK, or
    no API key is configured.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.TMDB_API_KEY
        self.base_url = settings.TMDB_BASE_URL
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            params={"api_key": self.api_key, "language": settings.TMDB_LANGUAGE},
        )

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def _get(self, path: str, **params) -> Optional[Dict[str, Any]]:
        if not self.api_key:
            return None
        try:
            response = await self.client.get(path, params=params or None)
        except httpx.HTTPError as e:
            logger.warning(f"TMDB request {path} failed: {e}")
            return None
        if response.status_code != 200:
            logger.warning(f"TMDB request {path} answered {response.status_code}")
            return None
        return response.json()

    def get_image_url(self, path: Optional[str], base: Optional[str] = None) -> Optional[str]:
        if not path:
            return None
        return f"{base or settings.TMDB_POSTER_URL}{path}"

    async def get_details(self, media_type: str, tmdb_id: int) -> Dict[str, Any]:
        """Get full details for a movie or TV show, including credits."""
        data = await self._get(f"/{MediaKind(media_type).value}/{tmdb_id}", append_to_response="credits")
        return data or {}

    # --- Summaries ---

    async def get_tv_summary(self, tmdb_id: int) -> Optional[TvSummary]:
        data = await self._get(f"/tv/{tmdb_id}")
        if not data:
            return None
        runtimes = data.get("episode_run_time") or []
        return TvSummary(
            id=data.get("id") or tmdb_id,
            name=data.get("name") or f"Series {tmdb_id}",
            poster_url=self.get_image_url(data.get("poster_path")),
            backdrop_url=self.get_image_url(data.get("backdrop_path"), settings.TMDB_BACKDROP_URL),
            total_episodes=_positive(data.get("number_of_episodes")),
            average_episode_runtime=_positive(runtimes[0]) if runtimes else None,
        )

    async def get_movie_summary(self, tmdb_id: int) -> Optional[MovieSummary]:
        data = await self._get(f"/movie/{tmdb_id}")
        if not data:
            return None
        return MovieSummary(
            id=data.get("id") or tmdb_id,
            title=data.get("title") or f"Movie {tmdb_id}",
            poster_url=self.get_image_url(data.get("poster_path")),
            runtime=_positive(data.get("runtime")),
        )

    async def get_tv_summaries(self, ids: Iterable[int]) -> List[TvSummary]:
        """One batch (at most CATALOG_BATCH_LIMIT ids). Failed ids are left out."""
        summaries = await asyncio.gather(*(self.get_tv_summary(i) for i in parse_ids(ids)))
        return [s for s in summaries if s]

    async def get_movie_summaries(self, ids: Iterable[int]) -> List[MovieSummary]:
        summaries = await asyncio.gather(*(self.get_movie_summary(i) for i in parse_ids(ids)))
        return [s for s in summaries if s]

    # --- Seasons & Episodes ---

    async def get_season_details(self, tv_id: int, season_number: int) -> Dict[str, Any]:
        """Get details for a specific season. Missing seasons yield {}."""
        data = await self._get(f"/tv/{tv_id}/season/{season_number}")
        return data or {}

    async def get_episodes(self, tv_id: int) -> List[EpisodeSummary]:
        """
        Full episode listing of a series, ascending by (season, episode).
        Specials (season 0) are skipped.
        """
        data = await self._get(f"/tv/{tv_id}")
        if not data:
            return []

        season_numbers = [
            s.get("season_number") for s in data.get("seasons") or []
            if isinstance(s.get("season_number"), int) and s.get("season_number") > 0
        ][:settings.CATALOG_SEASON_LIMIT]
        if not season_numbers:
            return []

        seasons = await asyncio.gather(*(self.get_season_details(tv_id, n) for n in season_numbers))

        episodes = []
        for season_number, season in zip(season_numbers, seasons):
            for ep in season.get("episodes") or []:
                ep_num = ep.get("episode_number")
                if not isinstance(ep_num, int) or ep_num <= 0:
                    continue
                episodes.append(EpisodeSummary(
                    season_number=season_number,
                    episode_number=ep_num,
                    name=(ep.get("name") or "").strip() or f"Episode {ep_num}",
                    air_date=ep.get("air_date") or None,
                    still_url=self.get_image_url(ep.get("still_path"), settings.TMDB_STILL_URL),
                    overview=ep.get("overview") or "",
                ))

        episodes.sort(key=lambda e: e.key)
        return episodes

    # --- Search & Credits ---

    async def search(self, query: str) -> List[SearchResult]:
        """Search for movies and TV shows."""
        query = (query or "").strip()
        if not query:
            return []

        data = await self._get("/search/multi", query=query, include_adult="false", page=1)
        if not data:
            return []

        hits = [
            item for item in data.get("results") or []
            if item.get("media_type") in (MediaKind.MOVIE.value, MediaKind.TV.value)
        ][:settings.SEARCH_RESULT_LIMIT]

        tv_ids = [item["id"] for item in hits if item["media_type"] == MediaKind.TV.value]
        tv_summaries = await asyncio.gather(*(self.get_tv_summary(i) for i in tv_ids))
        episodes_by_id = {i: (s.total_episodes if s else None) for i, s in zip(tv_ids, tv_summaries)}

        results = []
        for item in hits:
            is_movie = item["media_type"] == MediaKind.MOVIE.value
            released = item.get("release_date") if is_movie else item.get("first_air_date")
            vote_count = item.get("vote_count")
            results.append(SearchResult(
                id=item["id"],
                media_type=MediaKind(item["media_type"]),
                title=item.get("title") or item.get("name") or f"Item {item['id']}",
                poster_url=self.get_image_url(item.get("poster_path"), settings.TMDB_THUMB_URL),
                year=released[:4] if released and len(released) >= 4 else "-",
                type_label="Movie" if is_movie else "Series",
                rank=vote_count if isinstance(vote_count, int) else None,
                episodes=None if is_movie else episodes_by_id.get(item["id"]),
            ))
        return results

    async def get_cast(self, media_type: str, tmdb_id: int) -> List[CastPerson]:
        data = await self.get_details(media_type, tmdb_id)
        cast = (data.get("credits") or {}).get("cast") or []

        people = []
        for person in cast[:settings.CAST_PREVIEW_LIMIT]:
            character = person.get("character") or ""
            lowered = character.lower()
            people.append(CastPerson(
                id=person.get("id"),
                name=person.get("name") or "",
                character=character,
                role="voice" if "voice" in lowered else "acting",
                profile_url=self.get_image_url(person.get("profile_path"), settings.TMDB_THUMB_URL),
            ))
        return people
