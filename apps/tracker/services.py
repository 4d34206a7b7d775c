import logging
from typing import Optional, List
from datetime import date, datetime, timezone
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from apps.core.models import MediaKind
from apps.tracker.models import WatchedItem, WatchedUnit, validate_unit, resolve_watched_at

logger = logging.getLogger(__name__)

class WatchedService:
    """Persistence of watched units, keyed by (user, media type, title, season, episode)."""

    def __init__(self, session: Session):
        self.session = session

    def _find(self, unit: WatchedUnit) -> Optional[WatchedItem]:
        return self.session.exec(
            select(WatchedItem).where(
                WatchedItem.user_id == unit.user_id,
                WatchedItem.media_type == unit.media_type.value,
                WatchedItem.tmdb_id == unit.tmdb_id,
                WatchedItem.season_number == unit.season_number,
                WatchedItem.episode_number == unit.episode_number,
            )
        ).first()

    def upsert(self, unit: WatchedUnit, today: Optional[date] = None) -> WatchedItem:
        """
        Inserts the unit or overwrites the watched date of the existing one.
        The default date is applied here, at commit time.
        """
        validate_unit(unit)
        watched_at = resolve_watched_at(unit.watched_at, today)
        logger.debug(f"upsert user={unit.user_id} {unit.media_type.value}:{unit.tmdb_id} "
                     f"S{unit.season_number}E{unit.episode_number} at {watched_at}")

        # Two requests for the same key may race on the unique constraint
        for attempt in range(3):
            try:
                item = self._find(unit)
                if not item:
                    item = WatchedItem(
                        user_id=unit.user_id,
                        media_type=unit.media_type.value,
                        tmdb_id=unit.tmdb_id,
                        season_number=unit.season_number,
                        episode_number=unit.episode_number,
                    )
                item.watched_at = watched_at
                item.updated_at = datetime.now(timezone.utc)

                self.session.add(item)
                self.session.commit()
                self.session.refresh(item)
                return item
            except IntegrityError:
                self.session.rollback()
                continue

        raise RuntimeError("Failed to save watched unit due to concurrency")

    def remove(self, unit: WatchedUnit) -> bool:
        """Deletes the unit if present. Returns False (not an error) when it was absent."""
        validate_unit(unit)
        item = self._find(unit)
        if not item:
            return False

        self.session.delete(item)
        self.session.commit()
        return True

    def list(
        self,
        user_id: int,
        media_type: Optional[MediaKind] = None,
        tmdb_id: Optional[int] = None,
        season_number: Optional[int] = None,
        episode_number: Optional[int] = None,
    ) -> List[WatchedItem]:
        query = select(WatchedItem).where(WatchedItem.user_id == user_id)

        if media_type:
            query = query.where(WatchedItem.media_type == MediaKind(media_type).value)
        if tmdb_id:
            query = query.where(WatchedItem.tmdb_id == tmdb_id)
        if season_number is not None:
            query = query.where(WatchedItem.season_number == season_number)
        if episode_number is not None:
            query = query.where(WatchedItem.episode_number == episode_number)

        query = query.order_by(WatchedItem.watched_at.desc(), WatchedItem.updated_at.desc())
        return list(self.session.exec(query).all())
