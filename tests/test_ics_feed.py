"""Unit tests for IcsFeedAdapter."""
from dataclasses import replace
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
import responses

from processor.event_normalizer import ICS_SOURCE
from sources.exceptions import SourceFetchError
from sources.ics_feed import IcsFeedAdapter

EASTERN = ZoneInfo('America/New_York')

SAMPLE_ICS = "\r\n".join([
    "BEGIN:VCALENDAR",
    "VERSION:2.0",
    "PRODID:-//Chautauqua Institution//Events//EN",
    "X-WR-CALNAME:Chautauqua Institution",
    "X-WR-CALDESC:Events for Chautauqua Institution",
    "BEGIN:VEVENT",
    "UID:10001-1751415300-1751421600@www.chq.org",
    "SUMMARY:Chautauqua Symphony Orchestra featuring Yo-Yo Ma",
    "DTSTART:20250702T001500Z",
    "DTEND:20250702T020000Z",
    "DTSTAMP:20250630T120000Z",
    "CREATED:20250601T120000Z",
    "LAST-MODIFIED:20250630T120000Z",
    "DESCRIPTION:Free for all ages. Rain location: Hall of Christ",
    "LOCATION:Amphitheater\\, Chautauqua Institution\\, 1 Ames Ave",
    "URL:https://www.chq.org/event/cso/",
    "CATEGORIES:Chautauqua Institution Program,Music",
    "ATTACH;FMTTYPE=image/jpeg:https://www.chq.org/cso.jpg",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "UID:10002@www.chq.org",
    "SUMMARY:Morning Lecture: TBA",
    "DTSTART;VALUE=DATE:20250703",
    "DTEND;VALUE=DATE:20250704",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "UID:10003@www.chq.org",
    "SUMMARY:Event without a start",
    "END:VEVENT",
    "END:VCALENDAR",
    "",
])


@pytest.fixture
def adapter():
    return IcsFeedAdapter()


@pytest.fixture
def parsed(adapter):
    return adapter.parse(SAMPLE_ICS)


class TestParse:

    def test_incomplete_events_are_dropped(self, parsed):
        assert [e.uid for e in parsed.events] == ['10001-1751415300-1751421600@www.chq.org', '10002@www.chq.org']

    def test_metadata(self, parsed):
        assert parsed.metadata['calendar_name'] == 'Chautauqua Institution'
        assert parsed.metadata['description'] == 'Events for Chautauqua Institution'
        assert isinstance(parsed.metadata['last_generated'], datetime)

    def test_event_fields(self, parsed):
        event = parsed.events[0]

        assert event.summary == 'Chautauqua Symphony Orchestra featuring Yo-Yo Ma'
        assert event.start == datetime(2025, 7, 1, 20, 15, tzinfo=EASTERN)
        assert event.end == datetime(2025, 7, 1, 22, 0, tzinfo=EASTERN)
        assert event.location == 'Amphitheater, Chautauqua Institution, 1 Ames Ave'
        assert event.categories == ['Chautauqua Institution Program', 'Music']
        assert event.last_modified == datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc)
        assert event.url == 'https://www.chq.org/event/cso/'
        assert event.attach == 'https://www.chq.org/cso.jpg'

    def test_date_only_values_are_local_midnight(self, parsed):
        event = parsed.events[1]

        assert event.start == datetime(2025, 7, 3, 0, 0, tzinfo=EASTERN)
        assert event.description == ''
        assert event.last_modified is None

    def test_not_a_calendar(self, adapter):
        with pytest.raises(ValueError):
            adapter.parse("this is not a calendar")


class TestToCanonical:

    def test_canonical_event(self, adapter, parsed):
        event = adapter.to_canonical(parsed.events[0])

        assert event.source == ICS_SOURCE
        assert event.venue.name == 'Amphitheater'
        assert event.location == 'Chautauqua Institution'
        assert event.presenter == 'Yo-Yo Ma'
        assert (event.category, event.subcategory) == ('Music', 'Classical')
        assert event.week == 2
        assert 'chautauqua-institution-program' not in event.tags
        assert {'music', 'free', 'all-ages', 'rain-location', 'hall'} <= set(event.tags)

    def test_tba_event(self, adapter, parsed):
        assert adapter.to_canonical(parsed.events[1]).confidence == 'TBA'

    def test_parse_location(self, adapter):
        assert adapter.parse_location('Hall of Philosophy') == ('Hall of Philosophy', 'Hall of Philosophy')


class TestReconciliation:

    def test_detect_changes_uses_ics_watch_list(self, adapter, parsed):
        old = adapter.to_canonical(parsed.events[0])
        new = replace(old, presenter='Itzhak Perlman', tags=['different'])

        changes = adapter.detect_changes(old, new)

        assert [c.field for c in changes] == ['presenter']
        assert changes[0].source == 'ics-update'

    def test_needs_update(self, adapter, parsed):
        stored = adapter.to_canonical(parsed.events[0])
        incoming = parsed.events[0]

        assert not adapter.needs_update(stored, incoming)
        newer = replace(incoming, last_modified=datetime(2025, 7, 1, tzinfo=timezone.utc))
        assert adapter.needs_update(stored, newer)
        assert adapter.needs_update(stored, replace(incoming, last_modified=None))


class TestFetch:

    @responses.activate
    def test_fetch_month(self, adapter):
        responses.add(
            responses.GET,
            'https://www.chq.org/events/month/2025-07/?ical=1',
            body=SAMPLE_ICS,
            status=200
        )

        text = adapter.fetch_month(2025, 7)

        assert 'BEGIN:VCALENDAR' in text
        assert responses.calls[0].request.url == 'https://www.chq.org/events/month/2025-07/?ical=1'

    @responses.activate
    def test_fetch_failure(self, adapter):
        responses.add(responses.GET, 'https://www.chq.org/events/month/2025-07/?ical=1', status=404)

        with pytest.raises(SourceFetchError):
            adapter.fetch_month(2025, 7)
