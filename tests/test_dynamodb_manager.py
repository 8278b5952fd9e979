"""Unit tests for DynamoDB manager."""
from dataclasses import replace
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from boto3.dynamodb.conditions import Attr

from processor.event_normalizer import EventNormalizer, MANUAL_SOURCE
from processor.models import ApiSourceEvent, ChangeRecord, DateRange
from storage.dynamodb_manager import DynamoDBManager

NOW = datetime(2025, 7, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def dynamodb_manager(dynamodb, events_table):
    """Create DynamoDBManager instance with mock table."""
    return DynamoDBManager(events_table.name, dynamodb_resource=dynamodb)


@pytest.fixture
def make_event(api_event_payload):
    normalizer = EventNormalizer()

    def make(**overrides):
        return normalizer.normalize(ApiSourceEvent.from_dict(api_event_payload(**overrides)), NOW)
    return make


class TestDynamoDBManager:

    def test_get_missing(self, dynamodb_manager):
        assert dynamodb_manager.get('does-not-exist') is None

    def test_put_and_get_round_trip(self, dynamodb_manager, make_event):
        event = replace(
            make_event(image={'url': 'https://www.chq.org/a.jpg', 'alt': 'Amp', 'sizes': {}}),
            created_at=NOW,
            updated_at=NOW,
            change_log=[ChangeRecord('title', 'Old', 'New', NOW, 'api-sync')]
        )

        dynamodb_manager.put(event)
        stored = dynamodb_manager.get(event.id)

        assert stored == event
        assert stored.start_date.utcoffset() == event.start_date.utcoffset()

    def test_item_attributes(self, dynamodb_manager, events_table, make_event):
        dynamodb_manager.put(make_event())

        item = events_table.get_item(Key={'id': '101'})['Item']

        assert item['event_date'] == '2025-08-01'
        assert item['start_date'] == '2025-08-01T09:00:00-04:00'
        assert item['last_updated'] == NOW.isoformat()
        assert item['venue']['name'] == 'Amphitheater'
        assert 'presenter' in item
        assert 'image' not in item
        assert 'subcategory' not in item

    def test_delete(self, dynamodb_manager, make_event):
        dynamodb_manager.put(make_event())

        dynamodb_manager.delete('101')

        assert dynamodb_manager.get('101') is None

    def test_scan_with_filter(self, dynamodb_manager, make_event):
        dynamodb_manager.put(make_event(event_id=1, featured=True))
        dynamodb_manager.put(make_event(event_id=2))

        featured = dynamodb_manager.scan(Attr('featured').eq(True))

        assert [e.id for e in featured] == ['1']
        assert len(dynamodb_manager.scan()) == 2

    def test_scan_skips_unreadable_items(self, dynamodb_manager, events_table, make_event):
        dynamodb_manager.put(make_event())
        events_table.put_item(Item={'id': 'junk', 'title': 'No dates'})

        assert [e.id for e in dynamodb_manager.scan()] == ['101']

    def test_scan_range_by_date_and_source(self, dynamodb_manager, make_event):
        dynamodb_manager.put(make_event(event_id=1, start_date='2025-07-01 09:00:00'))
        dynamodb_manager.put(make_event(event_id=2, start_date='2025-07-07 23:30:00'))
        dynamodb_manager.put(make_event(event_id=3, start_date='2025-07-08 09:00:00'))
        dynamodb_manager.put(replace(make_event(event_id=4, start_date='2025-07-02 09:00:00'), source=MANUAL_SOURCE))

        week = DateRange(start=date(2025, 7, 1), end=date(2025, 7, 7))

        assert sorted(e.id for e in dynamodb_manager.scan_range(week)) == ['1', '2', '4']
        assert sorted(e.id for e in dynamodb_manager.scan_range(week, source='events-calendar-api')) == ['1', '2']

    def test_batch_delete_events(self, dynamodb_manager, make_event):
        for event_id in range(1, 31):
            dynamodb_manager.put(make_event(event_id=event_id))

        deleted = dynamodb_manager.batch_delete_events([str(i) for i in range(1, 28)])

        assert deleted == 27
        assert sorted(e.id for e in dynamodb_manager.scan()) == ['28', '29', '30']

    def test_batch_delete_nothing(self, dynamodb_manager):
        assert dynamodb_manager.batch_delete_events([]) == 0

    def test_timezone_offset_survives_round_trip(self, dynamodb_manager, make_event):
        event = make_event(timezone='America/Chicago')

        dynamodb_manager.put(event)
        stored = dynamodb_manager.get(event.id)

        assert stored.start_date == datetime(2025, 8, 1, 9, 0, tzinfo=ZoneInfo('America/Chicago'))
        assert stored.event_date == date(2025, 8, 1)
