from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlmodel import Session
from database import get_session
from apps.auth.deps import require_user
from apps.auth.models import User
from apps.core.models import MediaKind
from apps.core.router import get_catalog
from apps.core.tmdb import TMDBService
from apps.tracker.exceptions import InvalidUnitKey
from apps.tracker.models import WatchedEvent, WatchedUnit
from apps.tracker.ordering import EpisodeOrdering
from apps.tracker.reconcile import reconcile, format_minutes, pick_selected_series
from apps.tracker.services import WatchedService
from apps.tracker.stats import aggregate, build_month_grid, MonthGrid

router = APIRouter(tags=["tracker"])

def get_service(session: Session = Depends(get_session)) -> WatchedService:
    return WatchedService(session)

# --- Watched items API (used by the sync gateway) ---

@router.get("/api/user/watched", response_model=List[WatchedEvent])
def list_watched(
    user_id: int,
    media_type: Optional[MediaKind] = None,
    tmdb_id: Optional[int] = None,
    season_number: Optional[int] = None,
    episode_number: Optional[int] = None,
    service: WatchedService = Depends(get_service),
):
    if user_id <= 0:
        raise HTTPException(status_code=400, detail="user_id is required")
    if tmdb_id is not None and tmdb_id <= 0:
        raise HTTPException(status_code=400, detail="invalid tmdb_id")
    if (season_number is not None and season_number < 0) or (episode_number is not None and episode_number < 0):
        raise HTTPException(status_code=400, detail="season_number and episode_number must not be negative")

    items = service.list(user_id, media_type, tmdb_id, season_number, episode_number)
    return [item.to_event() for item in items]

@router.post("/api/user/watched")
def upsert_watched(unit: WatchedUnit, service: WatchedService = Depends(get_service)):
    try:
        service.upsert(unit)
    except InvalidUnitKey as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "ok"}

@router.delete("/api/user/watched", status_code=204)
def delete_watched(unit: WatchedUnit, service: WatchedService = Depends(get_service)):
    try:
        service.remove(unit)
    except InvalidUnitKey as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(status_code=204)

# --- Progress views ---

@router.get("/tracker/progress")
async def progress(
    selected: Optional[int] = None,
    user: User = Depends(require_user),
    service: WatchedService = Depends(get_service),
    catalog: TMDBService = Depends(get_catalog),
):
    events = [item.to_event() for item in service.list(user.id)]
    result = await reconcile(events, catalog)

    return {
        "series": result.series,
        "movies": result.movies,
        "totals": result.totals,
        "totals_text": {
            "series": format_minutes(result.totals.series_minutes),
            "movies": format_minutes(result.totals.movie_minutes),
        },
        "selected_series": pick_selected_series(result.series, selected),
    }

@router.get("/tracker/stats", response_model=MonthGrid)
def stats(
    year: Optional[int] = None,
    month: Optional[int] = None,
    user: User = Depends(require_user),
    service: WatchedService = Depends(get_service),
):
    today = date.today()
    year = year or today.year
    month = month or today.month
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")

    events = [item.to_event() for item in service.list(user.id)]
    try:
        return build_month_grid(year, month, aggregate(events, today), today)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@router.get("/tracker/series/{tmdb_id}")
async def series_episodes(
    tmdb_id: int,
    user: User = Depends(require_user),
    service: WatchedService = Depends(get_service),
    catalog: TMDBService = Depends(get_catalog),
):
    episodes = await catalog.get_episodes(tmdb_id)
    watched = {
        (item.season_number, item.episode_number): item.watched_at.isoformat()
        for item in service.list(user.id, MediaKind.TV, tmdb_id)
        if item.season_number > 0 and item.episode_number > 0
    }
    next_key = EpisodeOrdering(episodes).next_unwatched(set(watched))

    return {
        "tmdb_id": tmdb_id,
        "episodes": [
            {**ep.model_dump(), "watched": ep.key in watched, "watched_at": watched.get(ep.key)}
            for ep in episodes
        ],
        "next_episode": {"season_number": next_key[0], "episode_number": next_key[1]} if next_key else None,
    }
