import logging
import httpx
from pydantic import ValidationError
from typing import Optional, List
from config import settings
from apps.core.models import MediaKind
from apps.tracker.exceptions import CollaboratorUnavailable
from apps.tracker.models import WatchedEvent, WatchedUnit

logger = logging.getLogger(__name__)

WATCHED_PATH = "/api/user/watched"

class SyncGateway:
    """
    Client of the watched-items persistence API. The only place that talks
    to the remote store: list, upsert one unit, delete one unit.
    """

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url or settings.API_BASE_URL
        self.client = client or httpx.AsyncClient(base_url=self.base_url)

    async def close(self):
        await self.client.aclose()

    async def fetch_watched(
        self,
        user_id: int,
        media_type: Optional[MediaKind] = None,
        tmdb_id: Optional[int] = None,
    ) -> List[WatchedEvent]:
        """Raises CollaboratorUnavailable when the list cannot be read."""
        params = {"user_id": user_id}
        if media_type:
            params["media_type"] = MediaKind(media_type).value
        if tmdb_id:
            params["tmdb_id"] = tmdb_id

        try:
            response = await self.client.get(WATCHED_PATH, params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorUnavailable(f"Could not load watched items: {e}") from e

        try:
            items = response.json()
            if not isinstance(items, list):
                raise ValueError(f"expected a list, got {type(items).__name__}")
            return [WatchedEvent.model_validate(item) for item in items]
        except (ValueError, ValidationError) as e:
            raise CollaboratorUnavailable(f"Unreadable watched items response: {e}") from e

    async def commit(self, unit: WatchedUnit) -> bool:
        """Upserts one unit. False means nothing was stored."""
        payload = unit.model_dump(mode="json", exclude_none=True)
        try:
            response = await self.client.post(WATCHED_PATH, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Commit of {unit.key} failed: {e}")
            return False
        if response.is_success:
            return True
        logger.warning(f"Commit of {unit.key} rejected with {response.status_code}")
        return False

    async def retract(self, unit: WatchedUnit) -> bool:
        payload = unit.model_dump(mode="json", exclude={"watched_at"})
        try:
            response = await self.client.request("DELETE", WATCHED_PATH, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Retract of {unit.key} failed: {e}")
            return False
        if response.is_success:
            return True
        logger.warning(f"Retract of {unit.key} rejected with {response.status_code}")
        return False
