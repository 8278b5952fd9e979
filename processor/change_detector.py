"""Field-level change detection between two versions of an event."""
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from processor.models import CanonicalEvent, ChangeRecord

# Fields compared when reconciling API events
API_WATCH_FIELDS = (
    'title', 'description', 'start_date', 'end_date', 'location',
    'cost', 'status', 'featured', 'categories', 'tags',
)

# Fields compared when reconciling ICS events
ICS_WATCH_FIELDS = (
    'title', 'description', 'start_date', 'end_date', 'location', 'venue',
    'presenter', 'category', 'subcategory', 'url', 'image',
)

SET_FIELDS = frozenset({'categories', 'tags'})


def _freeze(value: Any) -> Any:
    """Turn a value into something hashable for membership comparison."""
    if is_dataclass(value):
        value = asdict(value)
    if isinstance(value, dict):
        return tuple(sorted((key, _freeze(item)) for key, item in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _as_instant(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _render(value: Any) -> Any:
    """Render a value the way it is recorded in a change log."""
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, list):
        return [_render(item) for item in value]
    return value


class ChangeDetector:
    """
    Compares two canonical events across a fixed watch-list.

    Set-valued fields are compared by membership so reordering categories
    or tags is not a change. Fields whose name ends in ``_date`` are
    compared as instants, so the same moment written with a different
    offset is not a change either.
    """

    def __init__(self, watch_fields: Iterable[str] = API_WATCH_FIELDS, source: str = 'api-sync'):
        self.watch_fields = tuple(watch_fields)
        self.source = source

    def field_differs(self, field_name: str, old_value: Any, new_value: Any) -> bool:
        if field_name.endswith('_date'):
            return _as_instant(old_value) != _as_instant(new_value)
        if field_name in SET_FIELDS:
            return (
                frozenset(_freeze(item) for item in old_value or [])
                != frozenset(_freeze(item) for item in new_value or [])
            )
        return _freeze(old_value) != _freeze(new_value)

    def detect_changes(
        self,
        old_event: CanonicalEvent,
        new_event: CanonicalEvent,
        timestamp: Optional[datetime] = None
    ) -> List[ChangeRecord]:
        """
        Compare two events and list the differing watch-list fields.

        Args:
            old_event: Stored version
            new_event: Incoming version
            timestamp: Time recorded on each change (default: now, UTC)

        Returns:
            One ChangeRecord per differing field, in watch-list order
        """
        timestamp = timestamp or datetime.now(timezone.utc)
        changes = []
        for field_name in self.watch_fields:
            old_value = getattr(old_event, field_name, None)
            new_value = getattr(new_event, field_name, None)
            if self.field_differs(field_name, old_value, new_value):
                changes.append(ChangeRecord(
                    field=field_name,
                    old_value=_render(old_value),
                    new_value=_render(new_value),
                    timestamp=timestamp,
                    source=self.source
                ))
        return changes

    def requires_update(self, old_event: CanonicalEvent, new_event: CanonicalEvent) -> bool:
        return any(
            self.field_differs(
                field_name,
                getattr(old_event, field_name, None),
                getattr(new_event, field_name, None)
            )
            for field_name in self.watch_fields
        )


def needs_update(last_updated: Optional[datetime], last_modified: Optional[datetime]) -> bool:
    """
    Decide whether an incoming record is newer than the stored one.

    Missing timestamps on either side always mean an update is needed.
    """
    if last_updated is None or last_modified is None:
        return True
    return _as_instant(last_modified) > _as_instant(last_updated)
