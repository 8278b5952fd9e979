"""Shared fixtures for the calendar sync tests."""
import boto3
import pytest
from moto import mock_aws

EVENTS_TABLE = 'test-chq-events'
STATUS_TABLE = 'test-chq-sync-status'


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials and regions."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def api_event_payload():
    """Factory for events API payloads."""
    def make(event_id=101, title='Morning Lecture: The Future of AI with Dr. Jane Smith',
             start_date='2025-08-01 09:00:00', end_date='2025-08-01 10:00:00', **overrides):
        payload = {
            'id': event_id,
            'title': title,
            'description': '<p>A conversation on <strong>technology</strong> and society.</p>',
            'start_date': start_date,
            'end_date': end_date,
            'timezone': 'America/New_York',
            'venue': {'id': 7, 'venue': 'Amphitheater', 'address': '1 Ames Ave', 'show_map': True},
            'categories': [
                {'id': 3, 'name': 'Morning Lecture', 'slug': 'morning-lecture',
                 'taxonomy': 'tribe_events_cat', 'parent': 0}
            ],
            'cost': '$0',
            'url': f'https://www.chq.org/event/{event_id}/',
            'image': False,
            'status': 'publish',
            'featured': False
        }
        payload.update(overrides)
        return payload
    return make


@pytest.fixture
def dynamodb():
    """Mocked DynamoDB resource."""
    with mock_aws():
        yield boto3.resource('dynamodb', region_name='us-east-1')


def _create_table(dynamodb, name):
    return dynamodb.create_table(
        TableName=name,
        KeySchema=[{'AttributeName': 'id', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'id', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )


@pytest.fixture
def events_table(dynamodb):
    return _create_table(dynamodb, EVENTS_TABLE)


@pytest.fixture
def status_table(dynamodb):
    return _create_table(dynamodb, STATUS_TABLE)
