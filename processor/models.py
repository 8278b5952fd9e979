"""Data models for event ingestion and synchronization."""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar dates."""
    start: date
    end: date

    @classmethod
    def parse(cls, start: str, end: str) -> 'DateRange':
        """Build a range from two YYYY-MM-DD strings."""
        return cls(
            start=datetime.strptime(start, '%Y-%m-%d').date(),
            end=datetime.strptime(end, '%Y-%m-%d').date()
        )

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def weekly_chunks(self) -> List['DateRange']:
        """Split the range into consecutive 7-day sub-ranges."""
        chunks = []
        current = self.start
        while current <= self.end:
            chunk_end = min(current + timedelta(days=6), self.end)
            chunks.append(DateRange(start=current, end=chunk_end))
            current += timedelta(days=7)
        return chunks

    def __str__(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


@dataclass(frozen=True)
class Venue:
    id: Optional[int]
    name: str
    address: Optional[str] = None
    show_map: bool = False


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    slug: str
    taxonomy: str
    parent: int = 0


@dataclass(frozen=True)
class EventImage:
    url: str
    alt: Optional[str] = None
    sizes: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ApiSourceEvent:
    """Raw event from the events calendar REST API."""
    id: int
    title: str
    description: Optional[str]
    start_date: str
    end_date: str
    timezone: str
    venue: Optional[Venue]
    categories: List[Category]
    cost: Optional[str]
    url: Optional[str]
    image: Optional[EventImage]
    status: str
    featured: bool

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'ApiSourceEvent':
        """
        Build an event from an API payload.

        The upstream sends ``[]`` or ``false`` instead of null for absent
        venues and images, so anything that is not a mapping is treated as
        missing.

        Raises:
            KeyError: If id, title, start_date or end_date is missing
        """
        venue_data = payload.get('venue')
        venue = None
        if isinstance(venue_data, dict) and venue_data.get('venue'):
            venue = Venue(
                id=venue_data.get('id'),
                name=venue_data['venue'],
                address=venue_data.get('address') or None,
                show_map=bool(venue_data.get('show_map', False))
            )

        image_data = payload.get('image')
        image = None
        if isinstance(image_data, dict) and image_data.get('url'):
            sizes = {}
            for size_name, size_value in (image_data.get('sizes') or {}).items():
                if isinstance(size_value, dict):
                    size_value = size_value.get('url')
                if size_value:
                    sizes[size_name] = size_value
            image = EventImage(
                url=image_data['url'],
                alt=image_data.get('alt') or None,
                sizes=sizes
            )

        categories = [
            Category(
                id=int(cat.get('id', 0)),
                name=cat.get('name', ''),
                slug=cat.get('slug', ''),
                taxonomy=cat.get('taxonomy', 'tribe_events_cat'),
                parent=int(cat.get('parent') or 0)
            )
            for cat in payload.get('categories') or []
        ]

        return cls(
            id=int(payload['id']),
            title=payload['title'],
            description=payload.get('description') or None,
            start_date=payload['start_date'],
            end_date=payload['end_date'],
            timezone=payload.get('timezone') or '',
            venue=venue,
            categories=categories,
            cost=payload.get('cost') or None,
            url=payload.get('url') or None,
            image=image,
            status=payload.get('status', 'publish'),
            featured=bool(payload.get('featured', False))
        )


@dataclass(frozen=True)
class IcsSourceEvent:
    """Raw VEVENT from an ICS feed."""
    uid: str
    summary: str
    start: datetime
    end: datetime
    description: str = ''
    location: str = ''
    url: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    last_modified: Optional[datetime] = None
    created: Optional[datetime] = None
    dtstamp: Optional[datetime] = None
    attach: Optional[str] = None


RawSourceEvent = Union[ApiSourceEvent, IcsSourceEvent]


@dataclass
class PagedResponse:
    """One page of the events API."""
    events: List[ApiSourceEvent]
    total: int
    total_pages: int
    next_rest_url: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'PagedResponse':
        return cls(
            events=[ApiSourceEvent.from_dict(e) for e in payload.get('events') or []],
            total=int(payload.get('total') or 0),
            total_pages=int(payload.get('total_pages') or 0),
            next_rest_url=payload.get('next_rest_url') or None
        )


@dataclass(frozen=True)
class ChangeRecord:
    """A single field-level difference between two versions of an event."""
    field: str
    old_value: Any
    new_value: Any
    timestamp: datetime
    source: str


@dataclass
class CanonicalEvent:
    """Normalized event as stored and served."""
    id: str
    uid: str
    title: str
    description: Optional[str]
    start_date: datetime
    end_date: datetime
    timezone: str
    location: str
    venue: Optional[Venue]
    categories: List[Category]
    tags: List[str]
    category: str
    subcategory: Optional[str]
    week: int
    confidence: str
    audience: str
    presenter: Optional[str]
    sync_status: str
    last_modified: datetime
    last_updated: datetime
    source: str
    cost: Optional[str] = None
    url: Optional[str] = None
    image: Optional[EventImage] = None
    status: str = 'publish'
    featured: bool = False
    day_of_week: int = 0
    ticket_required: bool = False
    series: Optional[str] = None
    discipline: Optional[str] = None
    change_log: List[ChangeRecord] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def event_date(self) -> date:
        """Local calendar date the event starts on."""
        return self.start_date.date()


@dataclass
class SyncResult:
    """Result of sync operation."""
    success: bool = False
    events_processed: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    events_skipped: int = 0
    errors: List[str] = field(default_factory=list)
    duration: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'events_processed': self.events_processed,
            'events_created': self.events_created,
            'events_updated': self.events_updated,
            'events_deleted': self.events_deleted,
            'events_skipped': self.events_skipped,
            'errors': list(self.errors),
            'duration': self.duration
        }
