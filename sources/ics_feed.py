"""ICS feed adapter: fetching, parsing and reconciling VEVENT records."""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests
from icalendar import Calendar

from processor.change_detector import ICS_WATCH_FIELDS, ChangeDetector, needs_update
from processor.event_normalizer import EventNormalizer, resolve_timezone, split_location
from processor.models import CanonicalEvent, ChangeRecord, IcsSourceEvent
from sources.exceptions import SourceFetchError

logger = logging.getLogger(__name__)


@dataclass
class ParsedIcs:
    """Events and calendar-level metadata from one ICS document."""
    events: List[IcsSourceEvent]
    metadata: Dict[str, Any] = field(default_factory=dict)


class IcsFeedAdapter:
    """Adapter for the monthly ICS export of the events calendar."""

    BASE_URL = "https://www.chq.org/events/month/"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: int = 30,
        normalizer: Optional[EventNormalizer] = None,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.normalizer = normalizer or EventNormalizer()
        self.session = session or requests.Session()
        self.change_detector = ChangeDetector(ICS_WATCH_FIELDS, source='ics-update')

    def fetch_month(self, year: int, month: int) -> str:
        """Fetch the ICS export for one month."""
        return self.fetch_feed(f"{self.base_url}{year:04d}-{month:02d}/?ical=1")

    def fetch_feed(self, url: str) -> str:
        """
        Fetch raw ICS text.

        Raises:
            SourceFetchError: If the request fails or returns an error status
        """
        logger.info(f"Fetching ICS data from {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise SourceFetchError(f"Failed to fetch ICS feed: {e}") from e
        return response.text

    def parse(self, ics_text: str) -> ParsedIcs:
        """
        Parse ICS text into events and calendar metadata.

        VEVENTs without a uid, summary, start or end are dropped.

        Raises:
            ValueError: If the text is not an iCalendar document at all
        """
        calendar = Calendar.from_ical(ics_text)
        metadata = {
            'calendar_name': _text(calendar.get('X-WR-CALNAME')),
            'description': _text(calendar.get('X-WR-CALDESC')),
            'refresh_interval': _text(calendar.get('REFRESH-INTERVAL')),
            'last_generated': datetime.now(timezone.utc),
        }

        events = []
        dropped = 0
        for component in calendar.walk('VEVENT'):
            event = self._parse_vevent(component)
            if event is None:
                dropped += 1
                continue
            events.append(event)

        if dropped:
            logger.info(f"Dropped {dropped} incomplete VEVENT records")
        logger.info(f"Parsed {len(events)} events from ICS data")
        return ParsedIcs(events=events, metadata=metadata)

    def to_canonical(self, ics_event: IcsSourceEvent, now: Optional[datetime] = None) -> CanonicalEvent:
        return self.normalizer.normalize(ics_event, now)

    def detect_changes(self, old_event: CanonicalEvent, new_event: CanonicalEvent) -> List[ChangeRecord]:
        return self.change_detector.detect_changes(old_event, new_event)

    def needs_update(self, existing: CanonicalEvent, incoming: IcsSourceEvent) -> bool:
        return needs_update(existing.last_updated, incoming.last_modified)

    def parse_location(self, location: str) -> Tuple[str, str]:
        return split_location(location)

    def _parse_vevent(self, component) -> Optional[IcsSourceEvent]:
        uid = _text(component.get('UID'))
        summary = _text(component.get('SUMMARY'))
        start = self._datetime(component.get('DTSTART'))
        end = self._datetime(component.get('DTEND'))

        if not (uid and summary and start and end):
            return None

        return IcsSourceEvent(
            uid=uid,
            summary=summary,
            start=start,
            end=end,
            description=_text(component.get('DESCRIPTION')) or '',
            location=_text(component.get('LOCATION')) or '',
            url=_text(component.get('URL')),
            categories=_categories(component),
            last_modified=self._datetime(component.get('LAST-MODIFIED')),
            created=self._datetime(component.get('CREATED')),
            dtstamp=self._datetime(component.get('DTSTAMP')),
            attach=_text(component.get('ATTACH'))
        )

    def _datetime(self, prop) -> Optional[datetime]:
        """Convert an icalendar date property to an aware datetime in the feed's local zone."""
        if prop is None:
            return None
        value = getattr(prop, 'dt', prop)
        tz = resolve_timezone(None, self.normalizer.default_timezone)
        if isinstance(value, datetime):
            return value.astimezone(tz) if value.tzinfo is not None else value.replace(tzinfo=tz)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=tz)
        return None


def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        value = value[0] if value else None
        if value is None:
            return None
    text = str(value).strip()
    return text or None


def _categories(component) -> List[str]:
    """Flatten one or many CATEGORIES properties into a list of names."""
    value = component.get('CATEGORIES')
    if value is None:
        return []
    values = value if isinstance(value, list) else [value]

    names = []
    for item in values:
        cats = getattr(item, 'cats', None)
        if cats is None:
            cats = str(item).split(',')
        for cat in cats:
            name = str(cat).strip()
            if name:
                names.append(name)
    return names
