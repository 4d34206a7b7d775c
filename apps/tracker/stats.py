"""
Day-bucketed viewing statistics: per-day counts and dominant titles, the
42-cell month calendar and its heatmap intensities.
"""
import re
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
from sqlmodel import SQLModel, Field
from apps.core.models import MediaKind
from apps.tracker.models import WatchedEvent

logger = logging.getLogger(__name__)

GRID_CELLS = 42 # 6 weeks x 7 days
TOP_ITEMS_PER_DAY = 3

_DATE_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})")

class ItemCount(SQLModel):
    media_type: MediaKind
    tmdb_id: int
    count: int = 0

class DayBucket(SQLModel):
    day: date
    total_views: int = 0
    items: List[ItemCount] = Field(default_factory=list) # first-seen order

    def top_items(self, limit: int = TOP_ITEMS_PER_DAY) -> List[ItemCount]:
        # sorted() is stable, so equal counts keep first-seen order
        return sorted(self.items, key=lambda item: -item.count)[:limit]

class CalendarCell(SQLModel):
    day: date
    in_month: bool
    total_views: int = 0
    top_items: List[ItemCount] = Field(default_factory=list)
    intensity: float = 0.0
    is_today: bool = False
    is_future: bool = False

class MonthGrid(SQLModel):
    year: int
    month: int
    max_views: int = 0
    cells: List[CalendarCell] = Field(default_factory=list)

def to_date_key(raw: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    Calendar day of a raw ``watched_at`` value, by taking its YYYY-MM-DD prefix.
    A missing value counts as today; a malformed one yields None.
    """
    if raw is None or not str(raw).strip():
        return today or date.today()
    match = _DATE_PREFIX.match(str(raw).strip())
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(1))
    except ValueError:
        return None

def aggregate(events: Iterable[WatchedEvent], today: Optional[date] = None) -> Dict[date, DayBucket]:
    """Buckets raw watched events (both media kinds) by calendar day."""
    views: Dict[date, int] = {}
    counts: Dict[date, Dict[Tuple[MediaKind, int], int]] = {}
    skipped = 0

    for event in events:
        day = to_date_key(event.watched_at, today)
        if day is None:
            skipped += 1
            continue
        views[day] = views.get(day, 0) + 1
        per_item = counts.setdefault(day, {})
        item = (event.media_type, event.tmdb_id)
        per_item[item] = per_item.get(item, 0) + 1

    if skipped:
        logger.warning(f"Skipped {skipped} watched events with malformed dates")

    return {
        day: DayBucket(
            day=day,
            total_views=views[day],
            items=[ItemCount(media_type=kind, tmdb_id=tmdb_id, count=count)
                   for (kind, tmdb_id), count in counts[day].items()],
        )
        for day in views
    }

def grid_start(year: int, month: int) -> date:
    """The Sunday on or before the 1st of the month."""
    first = date(year, month, 1)
    return first - timedelta(days=(first.weekday() + 1) % 7)

def grid_days(year: int, month: int) -> List[date]:
    """
    The 42 days shown for a month. Raises ValueError for months whose grid
    does not fit between date.min and date.max.
    """
    try:
        start = grid_start(year, month)
        start + timedelta(days=GRID_CELLS - 1)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"{year}-{month:02d} is outside the supported calendar range") from e
    return [start + timedelta(days=offset) for offset in range(GRID_CELLS)]

def heat_intensity(total_views: int, max_views: int) -> float:
    if total_views <= 0 or max_views <= 0:
        return 0.0
    return 0.2 + 0.8 * (total_views / max_views)

def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1

def build_month_grid(
    year: int,
    month: int,
    buckets: Dict[date, DayBucket],
    today: Optional[date] = None,
) -> MonthGrid:
    """
    Always 42 cells starting from grid_start(); computed from scratch for
    each month so navigation carries nothing over.
    """
    today = today or date.today()
    days = grid_days(year, month)

    max_views = max((buckets[d].total_views for d in days if d in buckets), default=0)

    cells = []
    for day in days:
        bucket = buckets.get(day)
        total = bucket.total_views if bucket else 0
        cells.append(CalendarCell(
            day=day,
            in_month=day.month == month,
            total_views=total,
            top_items=bucket.top_items() if bucket else [],
            intensity=heat_intensity(total, max_views),
            is_today=day == today,
            is_future=day > today,
        ))

    return MonthGrid(year=year, month=month, max_views=max_views, cells=cells)
