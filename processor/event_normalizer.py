"""Event normalizer turning raw source events into canonical events."""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup

from processor.heuristics import HeuristicTables, dedupe_tags, is_free_cost, slugify
from processor.models import (
    ApiSourceEvent,
    CanonicalEvent,
    Category,
    EventImage,
    IcsSourceEvent,
    RawSourceEvent,
    Venue,
)
from processor.season import week_of

logger = logging.getLogger(__name__)

API_SOURCE = 'events-calendar-api'
ICS_SOURCE = 'ics-feed'
MANUAL_SOURCE = 'manual'


def strip_html(html: Optional[str]) -> str:
    """Remove markup from an HTML fragment and decode entities."""
    if not html:
        return ''
    return BeautifulSoup(html, 'html.parser').get_text().strip()


def resolve_timezone(name: Optional[str], default: str) -> ZoneInfo:
    """Return the named zone, falling back to the default for unknown names."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{name}', using {default}")
    return ZoneInfo(default)


def parse_source_datetime(value: str, tz: ZoneInfo) -> datetime:
    """
    Parse an upstream timestamp such as ``2025-08-01 09:00:00``.

    Naive timestamps are local to the event's timezone; timestamps that
    already carry an offset are kept as-is.
    """
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


class EventNormalizer:
    """
    Pure transformation from raw source events to canonical events.

    The normalizer holds no mutable state: all heuristics come from the
    injected :class:`HeuristicTables`, and the only clock reading is the
    ``now`` argument used for bookkeeping timestamps.
    """

    def __init__(
        self,
        tables: Optional[HeuristicTables] = None,
        source_prefix: str = 'chq',
        default_timezone: str = 'America/New_York'
    ):
        self.tables = tables or HeuristicTables()
        self.source_prefix = source_prefix
        self.default_timezone = default_timezone

    def normalize(self, raw: RawSourceEvent, now: Optional[datetime] = None) -> CanonicalEvent:
        """
        Normalize a raw event from any source.

        Args:
            raw: ApiSourceEvent or IcsSourceEvent
            now: Timestamp recorded as last_modified (default: current UTC time)

        Returns:
            CanonicalEvent

        Raises:
            TypeError: If raw is not a known source event type
        """
        now = now or datetime.now(timezone.utc)
        if isinstance(raw, ApiSourceEvent):
            return self._normalize_api(raw, now)
        if isinstance(raw, IcsSourceEvent):
            return self._normalize_ics(raw, now)
        raise TypeError(f"Unsupported source event type: {type(raw).__name__}")

    def normalize_all(self, raw_events: List[RawSourceEvent], now: Optional[datetime] = None) -> List[CanonicalEvent]:
        return [self.normalize(raw, now) for raw in raw_events]

    def generate_uid(self, event_id: int, start: datetime) -> str:
        """Backward-compatible uid: ``{prefix}-{id}-{YYYYMMDD}T{HHMMSS}``."""
        return f"{self.source_prefix}-{event_id}-{start.strftime('%Y%m%dT%H%M%S')}"

    def _normalize_api(self, raw: ApiSourceEvent, now: datetime) -> CanonicalEvent:
        tz = resolve_timezone(raw.timezone, self.default_timezone)
        start = parse_source_datetime(raw.start_date, tz)
        end = parse_source_datetime(raw.end_date, tz)

        description = strip_html(raw.description) if raw.description else None
        text = f"{raw.title} {description or ''}"

        return CanonicalEvent(
            id=str(raw.id),
            uid=self.generate_uid(raw.id, start),
            title=raw.title,
            description=description,
            start_date=start,
            end_date=end,
            timezone=raw.timezone or self.default_timezone,
            location=raw.venue.name if raw.venue else 'TBD',
            venue=raw.venue,
            categories=list(raw.categories),
            tags=self._api_tags(raw, text),
            category=self._primary_category(raw.categories),
            subcategory=self._subcategory(raw.categories),
            week=week_of(start),
            confidence=self.tables.assess_confidence(text),
            audience=self.tables.infer_audience(text),
            presenter=self.tables.extract_presenter(raw.title),
            sync_status='synced',
            last_modified=now,
            last_updated=now,
            source=API_SOURCE,
            cost=raw.cost,
            url=raw.url,
            image=raw.image,
            status=raw.status,
            featured=raw.featured,
            day_of_week=(start.weekday() + 1) % 7,
            ticket_required=self._ticket_required(raw.cost),
            series=self.tables.match_series(text),
            discipline=self.tables.match_discipline([cat.name for cat in raw.categories]),
        )

    def _normalize_ics(self, raw: IcsSourceEvent, now: datetime) -> CanonicalEvent:
        venue_name, location = split_location(raw.location)
        category, subcategory = self.tables.categorize(
            raw.categories, f"{raw.summary} {raw.description}"
        )
        description = strip_html(raw.description) or None
        text = f"{raw.summary} {description or ''}"
        start_name = getattr(raw.start.tzinfo, 'key', None)

        return CanonicalEvent(
            id=raw.uid,
            uid=raw.uid,
            title=raw.summary,
            description=description,
            start_date=raw.start,
            end_date=raw.end,
            timezone=start_name or self.default_timezone,
            location=location,
            venue=Venue(id=None, name=venue_name) if venue_name else None,
            categories=[
                Category(id=0, name=name, slug=slugify(name), taxonomy='ics_category')
                for name in raw.categories
            ],
            tags=self._ics_tags(raw),
            category=category,
            subcategory=subcategory,
            week=week_of(raw.start),
            confidence=self.tables.assess_confidence(text),
            audience=self.tables.infer_audience(text),
            presenter=self.tables.extract_presenter(raw.summary),
            sync_status='synced',
            last_modified=now,
            last_updated=raw.last_modified or now,
            source=ICS_SOURCE,
            url=raw.url,
            image=EventImage(url=raw.attach) if raw.attach else None,
            day_of_week=(raw.start.weekday() + 1) % 7,
            series=self.tables.match_series(text),
            discipline=self.tables.match_discipline(raw.categories),
        )

    def _api_tags(self, raw: ApiSourceEvent, text: str) -> List[str]:
        tags = []
        if raw.venue:
            tags.append(raw.venue.name.lower())
        for cat in raw.categories:
            tags.append(cat.slug)
            tags.append(cat.name.lower())

        tags.extend(self.tables.expand_abbreviations(text))
        tags.extend(self.tables.match_event_types(text))

        if raw.cost:
            tags.append('free' if is_free_cost(raw.cost) else 'ticketed')

        return dedupe_tags(tags)

    def _ics_tags(self, raw: IcsSourceEvent) -> List[str]:
        tags = [
            slugify(category)
            for category in raw.categories
            if not self.tables.is_generic_category(category)
        ]
        tags.extend(self.tables.match_ics_tags(raw.description))
        tags.extend(self.tables.match_ics_tags(raw.summary))
        return dedupe_tags(tags)

    def _primary_category(self, categories: List[Category]) -> str:
        if not categories:
            return 'General'
        for priority in self.tables.priority_categories:
            for cat in categories:
                if priority.lower() in cat.name.lower():
                    return cat.name
        return categories[0].name

    def _subcategory(self, categories: List[Category]) -> Optional[str]:
        for cat in categories:
            if cat.parent > 0:
                return cat.name
        return None

    def _ticket_required(self, cost: Optional[str]) -> bool:
        if not cost:
            return False
        return not is_free_cost(cost)


def split_location(location: str) -> Tuple[str, str]:
    """
    Split ``"Venue, Location, ..."`` into (venue, location).

    A single segment is used for both.
    """
    parts = [part.strip() for part in (location or '').split(',')]
    if len(parts) >= 2:
        return parts[0], parts[1]
    stripped = (location or '').strip()
    return stripped, stripped
