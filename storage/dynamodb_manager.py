"""DynamoDB manager for canonical event storage."""
import logging
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.models import CanonicalEvent, Category, ChangeRecord, DateRange, EventImage, Venue

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    """Convert DynamoDB Decimals back to ints/floats, recursively."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


def _to_storable(value: Any) -> Any:
    """Render change log values into types DynamoDB accepts."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_to_storable(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_storable(item) for key, item in value.items()}
    return value


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class DynamoDBManager:
    """Event store backed by a DynamoDB table keyed on ``id``."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str, dynamodb_resource=None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb_resource: boto3 DynamoDB resource (default: a new one)
        """
        self.table_name = table_name
        self.dynamodb = dynamodb_resource or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def get(self, event_id: str) -> Optional[CanonicalEvent]:
        """
        Get one event by id.

        Returns:
            CanonicalEvent, or None if the id is not stored
        """
        try:
            response = self.table.get_item(Key={'id': event_id})
        except ClientError as e:
            logger.error(f"Error getting event {event_id}: {e}")
            raise

        item = response.get('Item')
        return self._item_to_event(item) if item else None

    def put(self, event: CanonicalEvent) -> None:
        try:
            self.table.put_item(Item=self._event_to_item(event))
        except ClientError as e:
            logger.error(f"Error writing event {event.id}: {e}")
            raise

    def delete(self, event_id: str) -> None:
        try:
            self.table.delete_item(Key={'id': event_id})
        except ClientError as e:
            logger.error(f"Error deleting event {event_id}: {e}")
            raise

    def scan(self, filter_expression=None) -> List[CanonicalEvent]:
        """
        Retrieve events using a Scan operation.

        Args:
            filter_expression: Optional boto3 condition, e.g. ``Attr('week').eq(3)``

        Returns:
            Matching events; items that cannot be converted are skipped
        """
        kwargs = {}
        if filter_expression is not None:
            kwargs['FilterExpression'] = filter_expression

        try:
            response = self.table.scan(**kwargs)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

        events = []
        for item in items:
            try:
                events.append(self._item_to_event(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to convert item {item.get('id')} to CanonicalEvent: {e}")
        logger.info(f"Retrieved {len(events)} events from DynamoDB")
        return events

    def scan_range(self, date_range: DateRange, source: Optional[str] = None) -> List[CanonicalEvent]:
        """Events starting within a date range, optionally from one source."""
        condition = Attr('event_date').between(
            date_range.start.isoformat(), date_range.end.isoformat()
        )
        if source:
            condition = condition & Attr('source').eq(source)
        return self.scan(condition)

    def batch_delete_events(self, event_ids: Iterable[str]) -> int:
        """
        Delete events in batches of 25 items.

        Returns:
            Count of successfully deleted events
        """
        event_ids = list(event_ids)
        if not event_ids:
            return 0

        logger.info(f"Deleting {len(event_ids)} events from DynamoDB")
        success_count = 0

        for i in range(0, len(event_ids), self.BATCH_SIZE):
            batch = event_ids[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for event_id in batch:
                        writer.delete_item(Key={'id': event_id})
                success_count += len(batch)
            except ClientError as e:
                logger.error(f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}")
                continue

        logger.info(f"Successfully deleted {success_count} events")
        return success_count

    def _event_to_item(self, event: CanonicalEvent) -> Dict[str, Any]:
        """Convert a CanonicalEvent to a DynamoDB item with ISO-8601 dates."""
        item = {
            'id': event.id,
            'uid': event.uid,
            'title': event.title,
            'start_date': event.start_date.isoformat(),
            'end_date': event.end_date.isoformat(),
            'event_date': event.event_date.isoformat(),
            'timezone': event.timezone,
            'location': event.location,
            'categories': [asdict(cat) for cat in event.categories],
            'tags': list(event.tags),
            'category': event.category,
            'status': event.status,
            'featured': event.featured,
            'day_of_week': event.day_of_week,
            'ticket_required': event.ticket_required,
            'week': event.week,
            'confidence': event.confidence,
            'audience': event.audience,
            'sync_status': event.sync_status,
            'last_modified': event.last_modified.isoformat(),
            'last_updated': event.last_updated.isoformat(),
            'source': event.source,
            'change_log': [
                {
                    'field': change.field,
                    'old_value': _to_storable(change.old_value),
                    'new_value': _to_storable(change.new_value),
                    'timestamp': change.timestamp.isoformat(),
                    'source': change.source
                }
                for change in event.change_log
            ]
        }

        # Add optional fields if present
        optional = {
            'description': event.description,
            'subcategory': event.subcategory,
            'presenter': event.presenter,
            'cost': event.cost,
            'url': event.url,
            'series': event.series,
            'discipline': event.discipline,
            'venue': asdict(event.venue) if event.venue else None,
            'image': asdict(event.image) if event.image else None,
            'created_at': event.created_at.isoformat() if event.created_at else None,
            'updated_at': event.updated_at.isoformat() if event.updated_at else None,
        }
        item.update({key: value for key, value in optional.items() if value is not None})
        return item

    def _item_to_event(self, item: Dict[str, Any]) -> CanonicalEvent:
        """
        Convert a DynamoDB item to a CanonicalEvent.

        Raises:
            KeyError: If a required attribute is missing
        """
        item = _plain(item)
        venue = Venue(**item['venue']) if item.get('venue') else None
        image = EventImage(**item['image']) if item.get('image') else None

        return CanonicalEvent(
            id=item['id'],
            uid=item['uid'],
            title=item['title'],
            description=item.get('description'),
            start_date=datetime.fromisoformat(item['start_date']),
            end_date=datetime.fromisoformat(item['end_date']),
            timezone=item.get('timezone', ''),
            location=item.get('location', ''),
            venue=venue,
            categories=[Category(**cat) for cat in item.get('categories', [])],
            tags=list(item.get('tags', [])),
            category=item.get('category', 'General'),
            subcategory=item.get('subcategory'),
            week=int(item['week']),
            confidence=item.get('confidence', 'confirmed'),
            audience=item.get('audience', 'all-ages'),
            presenter=item.get('presenter'),
            sync_status=item.get('sync_status', 'synced'),
            last_modified=datetime.fromisoformat(item['last_modified']),
            last_updated=datetime.fromisoformat(item['last_updated']),
            source=item['source'],
            cost=item.get('cost'),
            url=item.get('url'),
            image=image,
            status=item.get('status', 'publish'),
            featured=bool(item.get('featured', False)),
            day_of_week=int(item.get('day_of_week', 0)),
            ticket_required=bool(item.get('ticket_required', False)),
            series=item.get('series'),
            discipline=item.get('discipline'),
            change_log=[
                ChangeRecord(
                    field=change['field'],
                    old_value=change.get('old_value'),
                    new_value=change.get('new_value'),
                    timestamp=datetime.fromisoformat(change['timestamp']),
                    source=change['source']
                )
                for change in item.get('change_log', [])
            ],
            created_at=_parse_datetime(item.get('created_at')),
            updated_at=_parse_datetime(item.get('updated_at'))
        )
