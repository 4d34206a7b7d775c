from __future__ import annotations

import sys
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from apps.core.models import MediaKind, TvSummary, MovieSummary, EpisodeSummary, SearchResult
from apps.tracker.exceptions import CollaboratorUnavailable
from apps.tracker.models import WatchedEvent, WatchedUnit
from database import create_db_and_tables


class FakeCatalog:
    """In-memory stand-in for TMDBService."""

    def __init__(
        self,
        tv: Iterable[TvSummary] = (),
        movies: Iterable[MovieSummary] = (),
        episodes: Optional[Dict[int, List[EpisodeSummary]]] = None,
        search_results: Optional[Dict[str, List[SearchResult]]] = None,
        failing_ids: Iterable[int] = (),
    ):
        self.tv = {s.id: s for s in tv}
        self.movies = {m.id: m for m in movies}
        self.episodes = episodes or {}
        self.search_results = search_results or {}
        self.failing_ids = set(failing_ids)
        self.tv_batches: List[List[int]] = []
        self.movie_batches: List[List[int]] = []

    async def get_tv_summaries(self, ids):
        ids = list(ids)
        self.tv_batches.append(ids)
        if self.failing_ids & set(ids):
            raise CollaboratorUnavailable("catalog batch failed")
        return [self.tv[i] for i in ids if i in self.tv]

    async def get_movie_summaries(self, ids):
        ids = list(ids)
        self.movie_batches.append(ids)
        if self.failing_ids & set(ids):
            raise CollaboratorUnavailable("catalog batch failed")
        return [self.movies[i] for i in ids if i in self.movies]

    async def get_episodes(self, tv_id):
        return list(self.episodes.get(tv_id, []))

    async def search(self, query):
        return list(self.search_results.get(query, []))

    async def close(self):
        pass


class FakeGateway:
    """In-memory persistence API with per-key failure injection."""

    def __init__(self, events: Iterable[WatchedEvent] = (), failing_keys: Iterable[Tuple] = (),
                 fail_fetch: bool = False):
        self.store: Dict[Tuple[str, int, int, int], Optional[str]] = {}
        for e in events:
            self.store[(e.media_type.value, e.tmdb_id, e.season_number, e.episode_number)] = e.watched_at
        self.failing_keys = set(failing_keys)
        self.fail_fetch = fail_fetch
        self.commits: List[WatchedUnit] = []
        self.retracts: List[WatchedUnit] = []

    @staticmethod
    def _key(unit: WatchedUnit):
        return (unit.media_type.value, unit.tmdb_id, unit.season_number, unit.episode_number)

    async def fetch_watched(self, user_id, media_type=None, tmdb_id=None):
        if self.fail_fetch:
            raise CollaboratorUnavailable("persistence down")
        return [
            WatchedEvent(user_id=user_id, media_type=MediaKind(kind), tmdb_id=tid,
                         season_number=s, episode_number=e, watched_at=watched_at)
            for (kind, tid, s, e), watched_at in self.store.items()
            if (media_type is None or kind == MediaKind(media_type).value) and (tmdb_id is None or tid == tmdb_id)
        ]

    async def commit(self, unit: WatchedUnit) -> bool:
        self.commits.append(unit)
        if self._key(unit) in self.failing_keys:
            return False
        self.store[self._key(unit)] = unit.watched_at.isoformat() if unit.watched_at else None
        return True

    async def retract(self, unit: WatchedUnit) -> bool:
        self.retracts.append(unit)
        if self._key(unit) in self.failing_keys:
            return False
        self.store.pop(self._key(unit), None)
        return True


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def today() -> date:
    return date(2024, 5, 10)


@pytest.fixture()
def make_catalog():
    return FakeCatalog


@pytest.fixture()
def make_gateway():
    return FakeGateway


@pytest.fixture()
def engine():
    db_engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture()
def app(engine, catalog):
    from main import app as fastapi_app
    from database import get_session
    from apps.core.router import get_catalog

    def override_session():
        with Session(engine) as db_session:
            yield db_session

    fastapi_app.dependency_overrides[get_session] = override_session
    fastapi_app.dependency_overrides[get_catalog] = lambda: catalog
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)
